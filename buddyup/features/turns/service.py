"""
buddyup/features/turns/service.py
Turn pointer: who may set the next goal for a habit.

The pointer is a TurnSlot on the habit row. It moves in two ways:
- pass_turn: the holder hands it over (unbounded; every pass is counted
  and announced in the chat by the same store write)
- cycle close: it goes to the partner who did not set that day's goal
  (applied by the challenge service)
"""

from buddyup.core.errors import InvalidStateError, NotYourTurnError
from buddyup.core.logging import log_event
from buddyup.core.metrics import cas_conflicts_total, engine_transitions_total
from buddyup.core.tracing import start_span
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.users.identity import display_for_user
from buddyup.models.habit import Habit, HabitStatus, TurnSlot
from buddyup.models.partnership import Partnership, PartnershipStatus

MAX_CAS_ATTEMPTS = 10


def turn_holder(habit: Habit, partnership: Partnership) -> str:
    """User id currently allowed to set the next goal."""
    return habit.current_turn.user_in(partnership)


def other_member(partnership: Partnership, user_id: str) -> str:
    return partnership.other_member(user_id)


def pass_message(user_id: str, habit_name: str) -> str:
    return (
        f'{display_for_user(user_id)} passed their turn to set the next goal for "{habit_name}". '
        f"Your turn to set the goal!"
    )


class TurnService:
    def __init__(self, store, dispatcher, clock, habits, messages):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.habits = habits
        self.messages = messages

    def pass_turn(self, habit_id: str, user_id: str) -> Habit:
        """
        Hand the turn to the other member.

        Raises:
            NotAuthorizedError: caller is not a member
            InvalidStateError: habit or partnership not ACTIVE
            NotYourTurnError: caller does not hold the turn
        """
        with start_span("turn.pass", {"habit_id": habit_id, "user_id": user_id}):
            updated, partnership = self._flip(habit_id, user_id)

        receiver_id = partnership.other_member(user_id)

        engine_transitions_total.inc(labels={"type": "turn_passed"})
        log_event(
            "info",
            "turn.passed",
            user_id=user_id,
            partnership_id=partnership.partnership_id,
            habit_id=habit_id,
            event_type="turn_passed",
            extra={"pass_count": updated.pass_count},
        )
        self.dispatcher.send(
            receiver_id,
            NotificationKind.TURN_TO_SET_GOAL,
            {"actor_name": display_for_user(user_id), "habit_name": updated.name, "habit_id": habit_id},
        )
        return updated

    def _flip(self, habit_id: str, user_id: str):
        for _ in range(MAX_CAS_ATTEMPTS):
            habit, partnership = self.habits.load_for_member(habit_id, user_id)
            if partnership.status != PartnershipStatus.ACTIVE:
                raise InvalidStateError("Partnership is not active")
            if habit.status != HabitStatus.ACTIVE:
                raise InvalidStateError("Habit is not active")
            slot = TurnSlot.for_user(partnership, user_id)
            if habit.current_turn != slot:
                raise NotYourTurnError("It's not your turn to set a goal")

            now = self.clock.now()
            announcement = self.messages.build_system(partnership, user_id, pass_message(user_id, habit.name))
            updated = self.store.update_habit_if(
                habit_id,
                {"version": habit.version},
                {
                    "current_turn": slot.flipped(),
                    "pass_count": habit.pass_count + 1,
                    "last_passed_by": user_id,
                    "passed_at": now,
                    "updated_at": now,
                },
                message=announcement,
            )
            if updated is not None:
                return updated, partnership
            cas_conflicts_total.inc(labels={"entity": "habit"})
        raise InvalidStateError("Habit is busy, try again")
