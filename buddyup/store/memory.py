"""
In-memory store.

Default backend when DATABASE_URL is not configured, and the one tests
run against. A single lock makes every conditional write atomic.
"""
import itertools
import threading
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from buddyup.models.challenge import Challenge, ChallengeStatus, Completion
from buddyup.models.habit import Habit
from buddyup.models.message import Message
from buddyup.models.partnership import NON_TERMINAL_STATUSES, Partnership, PartnershipStatus
from buddyup.store.base import PreconditionFailed, UniqueViolation


class MemoryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._seq = itertools.count(1)
        self._partnerships: Dict[str, Partnership] = {}
        self._invite_codes: Dict[str, str] = {}  # user_id -> code
        self._habits: Dict[str, Habit] = {}
        self._challenges: Dict[str, Challenge] = {}
        self._challenge_days: Dict[Tuple[str, date], str] = {}
        self._completions: Dict[str, Completion] = {}
        self._completion_keys: Dict[Tuple[str, str], str] = {}
        self._messages: List[Message] = []

    def clear(self):
        with self._lock:
            self._partnerships.clear()
            self._invite_codes.clear()
            self._habits.clear()
            self._challenges.clear()
            self._challenge_days.clear()
            self._completions.clear()
            self._completion_keys.clear()
            self._messages.clear()

    # Partnerships

    def _live_pair_taken(self, key: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            p.pair_key == key and p.status in NON_TERMINAL_STATUSES and p.partnership_id != exclude_id
            for p in self._partnerships.values()
        )

    def insert_partnership(self, partnership: Partnership) -> Partnership:
        with self._lock:
            if partnership.status in NON_TERMINAL_STATUSES and self._live_pair_taken(partnership.pair_key):
                raise UniqueViolation("uq_partnerships_live_pair")
            self._partnerships[partnership.partnership_id] = partnership
            return partnership

    def get_partnership(self, partnership_id: str) -> Optional[Partnership]:
        return self._partnerships.get(partnership_id)

    def list_partnerships_for_user(self, user_id: str) -> List[Partnership]:
        with self._lock:
            found = [p for p in self._partnerships.values() if p.is_member(user_id)]
        return sorted(found, key=lambda p: p.created_at)

    def update_partnership_if(
        self,
        partnership_id: str,
        expected_statuses: Sequence[PartnershipStatus],
        changes: Dict[str, Any],
    ) -> Optional[Partnership]:
        with self._lock:
            current = self._partnerships.get(partnership_id)
            if current is None or current.status not in expected_statuses:
                return None
            updated = current.model_copy(update=changes)
            if (
                updated.status in NON_TERMINAL_STATUSES
                and current.status not in NON_TERMINAL_STATUSES
                and self._live_pair_taken(updated.pair_key, exclude_id=partnership_id)
            ):
                raise UniqueViolation("uq_partnerships_live_pair")
            self._partnerships[partnership_id] = updated
            return updated

    # Invite codes

    def get_invite_code(self, user_id: str) -> Optional[str]:
        return self._invite_codes.get(user_id)

    def insert_invite_code(self, user_id: str, code: str, created_at: datetime) -> str:
        with self._lock:
            if user_id in self._invite_codes or code in self._invite_codes.values():
                raise UniqueViolation("invite_codes")
            self._invite_codes[user_id] = code
            return code

    def find_invite_code_owner(self, code: str) -> Optional[str]:
        with self._lock:
            for user_id, existing in self._invite_codes.items():
                if existing == code:
                    return user_id
        return None

    # Habits

    def insert_habit(self, habit: Habit) -> Habit:
        with self._lock:
            self._habits[habit.habit_id] = habit
            return habit

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        return self._habits.get(habit_id)

    def list_habits(self, partnership_ids: Iterable[str]) -> List[Habit]:
        wanted = set(partnership_ids)
        with self._lock:
            found = [h for h in self._habits.values() if h.partnership_id in wanted]
        return sorted(found, key=lambda h: h.created_at)

    @staticmethod
    def _matches(habit: Habit, expected: Dict[str, Any]) -> bool:
        return all(getattr(habit, field) == value for field, value in expected.items())

    def update_habit_if(
        self,
        habit_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
        mark_applied: Optional[str] = None,
        message: Optional[Message] = None,
    ) -> Optional[Habit]:
        with self._lock:
            current = self._habits.get(habit_id)
            if current is None or not self._matches(current, expected):
                return None
            updated = current.model_copy(update={**changes, "version": current.version + 1})
            self._habits[habit_id] = updated
            if mark_applied is not None and mark_applied in self._challenges:
                self._challenges[mark_applied] = self._challenges[mark_applied].model_copy(
                    update={"aggregate_applied": True}
                )
            if message is not None:
                self.insert_message(message)
            return updated

    # Challenges

    def insert_challenge(self, challenge: Challenge, habit_guard: Dict[str, Any]) -> Challenge:
        with self._lock:
            habit = self._habits.get(challenge.habit_id)
            if habit is None or not self._matches(habit, habit_guard):
                raise PreconditionFailed(challenge.habit_id)
            day_key = (challenge.habit_id, challenge.due_date)
            if day_key in self._challenge_days:
                raise UniqueViolation("uq_challenges_habit_due_date")
            self._habits[habit.habit_id] = habit.model_copy(update={"version": habit.version + 1})
            self._challenges[challenge.challenge_id] = challenge
            self._challenge_days[day_key] = challenge.challenge_id
            return challenge

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        return self._challenges.get(challenge_id)

    def find_challenge(self, habit_id: str, due_date: date) -> Optional[Challenge]:
        with self._lock:
            challenge_id = self._challenge_days.get((habit_id, due_date))
            return self._challenges.get(challenge_id) if challenge_id else None

    def list_challenges(self, habit_ids: Iterable[str]) -> List[Challenge]:
        wanted = set(habit_ids)
        with self._lock:
            found = [c for c in self._challenges.values() if c.habit_id in wanted]
        return sorted(found, key=lambda c: (c.due_date, c.created_at))

    def close_challenge_if_open(self, challenge_id: str, closed_at: datetime) -> Optional[Challenge]:
        with self._lock:
            current = self._challenges.get(challenge_id)
            if current is None or current.status != ChallengeStatus.OPEN:
                return None
            closed = current.model_copy(update={"status": ChallengeStatus.CLOSED, "closed_at": closed_at})
            self._challenges[challenge_id] = closed
            return closed

    # Completions

    def insert_completion(self, completion: Completion) -> Completion:
        with self._lock:
            key = (completion.challenge_id, completion.user_id)
            if key in self._completion_keys:
                raise UniqueViolation("uq_completions_challenge_user")
            stored = completion.model_copy(update={"seq": next(self._seq)})
            self._completions[stored.completion_id] = stored
            self._completion_keys[key] = stored.completion_id
            return stored

    def list_completions(self, challenge_ids: Iterable[str]) -> List[Completion]:
        wanted = set(challenge_ids)
        with self._lock:
            found = [c for c in self._completions.values() if c.challenge_id in wanted]
        return sorted(found, key=lambda c: c.seq)

    # Messages

    def insert_message(self, message: Message) -> Message:
        with self._lock:
            stored = message.model_copy(update={"seq": next(self._seq)})
            self._messages.append(stored)
            return stored

    def list_messages(self, partnership_id: str) -> List[Message]:
        with self._lock:
            found = [m for m in self._messages if m.partnership_id == partnership_id]
        return sorted(found, key=lambda m: (m.created_at, m.seq))

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass
