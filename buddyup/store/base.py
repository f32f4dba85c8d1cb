"""
Store protocol for the accountability engine.

Defines the persistence contract shared by the in-memory and SQL stores.
Services depend only on this interface, so a store can be swapped without
touching business logic.

Every conditional write is atomic: either the precondition holds and the
change is applied, or nothing changes and the caller is told so (None,
PreconditionFailed, or UniqueViolation).
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from buddyup.models.challenge import Challenge, Completion
from buddyup.models.habit import Habit
from buddyup.models.message import Message
from buddyup.models.partnership import Partnership, PartnershipStatus


class UniqueViolation(Exception):
    """A uniqueness rule rejected the write (duplicate pair, day, record)."""

    def __init__(self, constraint: str):
        super().__init__(constraint)
        self.constraint = constraint


class PreconditionFailed(Exception):
    """The guarded row no longer matched the expected values."""


class Store(Protocol):
    """
    Persistence contract.

    Reads return frozen models. Writes that take `expected` only apply when
    every listed field still holds the given value; habit writes always bump
    `version` by one.
    """

    # Partnerships

    def insert_partnership(self, partnership: Partnership) -> Partnership:
        """
        Raises:
            UniqueViolation: the pair already has a PENDING or ACTIVE partnership
        """
        ...

    def get_partnership(self, partnership_id: str) -> Optional[Partnership]:
        ...

    def list_partnerships_for_user(self, user_id: str) -> List[Partnership]:
        ...

    def update_partnership_if(
        self,
        partnership_id: str,
        expected_statuses: Sequence[PartnershipStatus],
        changes: Dict[str, Any],
    ) -> Optional[Partnership]:
        """
        Apply `changes` if the current status is one of `expected_statuses`.

        Returns:
            Updated partnership, or None if the status did not match

        Raises:
            UniqueViolation: resuming would create a second live partnership
        """
        ...

    # Invite codes

    def get_invite_code(self, user_id: str) -> Optional[str]:
        ...

    def insert_invite_code(self, user_id: str, code: str, created_at: datetime) -> str:
        """
        Raises:
            UniqueViolation: the user already has a code, or the code is taken
        """
        ...

    def find_invite_code_owner(self, code: str) -> Optional[str]:
        ...

    # Habits

    def insert_habit(self, habit: Habit) -> Habit:
        ...

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        ...

    def list_habits(self, partnership_ids: Iterable[str]) -> List[Habit]:
        ...

    def update_habit_if(
        self,
        habit_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        mark_applied: Optional[str] = None,
        message: Optional[Message] = None,
    ) -> Optional[Habit]:
        """
        Compare-and-set on a habit row.

        Args:
            mark_applied: challenge whose close this write applies; its
                `aggregate_applied` flag is set in the same transaction
            message: chat message appended in the same transaction

        Returns:
            Updated habit (version + 1), or None if any expected field differed
        """
        ...

    # Challenges and completions

    def insert_challenge(self, challenge: Challenge, habit_guard: Dict[str, Any]) -> Challenge:
        """
        Insert a challenge while holding the parent habit to `habit_guard`.

        Bumps the habit's version in the same transaction.

        Raises:
            PreconditionFailed: the habit no longer matches `habit_guard`
            UniqueViolation: the habit already has a challenge on that day
        """
        ...

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        ...

    def find_challenge(self, habit_id: str, due_date: date) -> Optional[Challenge]:
        ...

    def list_challenges(self, habit_ids: Iterable[str]) -> List[Challenge]:
        ...

    def close_challenge_if_open(self, challenge_id: str, closed_at: datetime) -> Optional[Challenge]:
        """
        Returns:
            The closed challenge for exactly one caller, None for everyone else
        """
        ...

    def insert_completion(self, completion: Completion) -> Completion:
        """
        Returns:
            The completion with its store-assigned `seq`

        Raises:
            UniqueViolation: the user already recorded this challenge
        """
        ...

    def list_completions(self, challenge_ids: Iterable[str]) -> List[Completion]:
        """Completions ordered by `seq` (write order)."""
        ...

    # Messages

    def insert_message(self, message: Message) -> Message:
        ...

    def list_messages(self, partnership_id: str) -> List[Message]:
        """Oldest first."""
        ...

    # Health

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        """Release connections held by the store."""
        ...
