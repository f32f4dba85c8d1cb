"""
buddyup/features/habits/service.py
Habit lifecycle: propose -> approve/reject -> (active) -> completed/cancelled.

A habit starts PENDING with the turn on its creator. Only the other member
may resolve it, and only once: the resolving write is a compare-and-set on
status PENDING, so a second resolution (or a racing one) fails InvalidState.
"""

import uuid
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

from buddyup.core.errors import InvalidStateError, NotAuthorizedError, NotFoundError, ValidationError
from buddyup.core.logging import log_event
from buddyup.core.metrics import cas_conflicts_total, engine_transitions_total
from buddyup.core.tracing import start_span
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.users.identity import display_for_user
from buddyup.models.habit import Frequency, Habit, HabitStatus, TurnSlot
from buddyup.models.partnership import Partnership, PartnershipStatus


class HabitService:
    def __init__(self, store, dispatcher, clock, partnerships):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.partnerships = partnerships

    def load(self, habit_id: str) -> Habit:
        habit = self.store.get_habit(habit_id)
        if habit is None:
            raise NotFoundError("Habit not found")
        return habit

    def load_for_member(self, habit_id: str, user_id: str) -> Tuple[Habit, Partnership]:
        habit = self.load(habit_id)
        partnership = self.partnerships.require_member(habit.partnership_id, user_id)
        return habit, partnership

    def get(self, habit_id: str, user_id: str) -> Habit:
        habit, _ = self.load_for_member(habit_id, user_id)
        return habit

    def propose_habit(
        self,
        user_id: str,
        partnership_id: str,
        name: str,
        description: Optional[str] = None,
        category: str = "general",
        frequency: Frequency = Frequency.DAILY,
        custom_days: Optional[Iterable[int]] = None,
        duration_days: Optional[int] = None,
    ) -> Habit:
        """
        Propose a habit to your buddy. The turn starts with the proposer.

        Raises:
            ValidationError: blank name, bad duration
            NotAuthorizedError: caller is not a member
            InvalidStateError: partnership is not ACTIVE
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Habit name is required")
        if duration_days is not None and duration_days < 1:
            raise ValidationError("duration_days must be at least 1")

        partnership = self.partnerships.require_active_member(partnership_id, user_id)
        now = self.clock.now()
        habit = Habit(
            habit_id=str(uuid.uuid4()),
            partnership_id=partnership_id,
            name=name,
            description=(description or "").strip() or None,
            category=(category or "general").strip() or "general",
            frequency=frequency,
            custom_days=sorted(set(custom_days or [])),
            duration_days=duration_days,
            created_by=user_id,
            status=HabitStatus.PENDING,
            current_turn=TurnSlot.for_user(partnership, user_id),
            created_at=now,
            updated_at=now,
        )
        with start_span("habit.propose", {"partnership_id": partnership_id}):
            habit = self.store.insert_habit(habit)

        engine_transitions_total.inc(labels={"type": "habit_proposed"})
        log_event(
            "info",
            "habit.proposed",
            user_id=user_id,
            partnership_id=partnership_id,
            habit_id=habit.habit_id,
            event_type="habit_proposed",
        )
        self.dispatcher.send(
            partnership.other_member(user_id),
            NotificationKind.HABIT_NEEDS_APPROVAL,
            {"actor_name": display_for_user(user_id), "habit_name": habit.name, "habit_id": habit.habit_id},
        )
        return habit

    def resolve_approval(self, habit_id: str, user_id: str, action: str) -> Habit:
        """
        Approve or reject a PENDING habit of an ACTIVE partnership. Self-approval
        is not allowed.

        Args:
            action: "approve" or "reject"
        """
        if action not in ("approve", "reject"):
            raise ValidationError("action must be 'approve' or 'reject'")

        habit, partnership = self.load_for_member(habit_id, user_id)
        if habit.created_by == user_id:
            raise NotAuthorizedError("You cannot approve or reject your own habit")
        if habit.status != HabitStatus.PENDING:
            raise InvalidStateError("Habit has already been resolved")
        if partnership.status != PartnershipStatus.ACTIVE:
            raise InvalidStateError("Partnership is not active")

        now = self.clock.now()
        if action == "approve":
            today = self.clock.today()
            changes = {
                "status": HabitStatus.ACTIVE,
                "resolved_at": now,
                "start_date": today,
                "end_date": today + timedelta(days=habit.duration_days) if habit.duration_days else None,
                "updated_at": now,
            }
            event_type, kind = "habit_approved", NotificationKind.HABIT_APPROVED
        else:
            changes = {"status": HabitStatus.CANCELLED, "resolved_at": now, "updated_at": now}
            event_type, kind = "habit_rejected", NotificationKind.HABIT_REJECTED

        with start_span("habit.resolve", {"habit_id": habit_id, "action": action}):
            updated = self.store.update_habit_if(habit_id, {"status": HabitStatus.PENDING}, changes)
        if updated is None:
            cas_conflicts_total.inc(labels={"entity": "habit"})
            raise InvalidStateError("Habit has already been resolved")

        engine_transitions_total.inc(labels={"type": event_type})
        log_event(
            "info",
            event_type.replace("_", ".", 1),
            user_id=user_id,
            partnership_id=partnership.partnership_id,
            habit_id=habit_id,
            event_type=event_type,
        )
        self.dispatcher.send(
            updated.created_by,
            kind,
            {"actor_name": display_for_user(user_id), "habit_name": updated.name, "habit_id": habit_id},
        )
        return updated

    def dismiss(self, habit_id: str, user_id: str) -> Habit:
        """Hide a rejected proposal from its creator's feed. Idempotent."""
        habit, _ = self.load_for_member(habit_id, user_id)
        if habit.created_by != user_id:
            raise NotAuthorizedError("Only the creator can dismiss this habit")
        if habit.status != HabitStatus.CANCELLED:
            raise NotAuthorizedError("Only the creator of a cancelled habit can dismiss it")
        if habit.dismissed_at is not None:
            return habit

        now = self.clock.now()
        updated = self.store.update_habit_if(
            habit_id,
            {"status": HabitStatus.CANCELLED, "dismissed_at": None},
            {"dismissed_at": now, "updated_at": now},
        )
        if updated is None:
            return self.load(habit_id)
        log_event("info", "habit.dismissed", user_id=user_id, habit_id=habit_id, event_type="habit_dismissed")
        return updated

    def cancel_habit(self, habit_id: str, user_id: str) -> Habit:
        habit, _ = self.load_for_member(habit_id, user_id)
        if habit.status != HabitStatus.ACTIVE:
            raise InvalidStateError("Only active habits can be cancelled")

        now = self.clock.now()
        updated = self.store.update_habit_if(
            habit_id,
            {"status": HabitStatus.ACTIVE},
            {"status": HabitStatus.CANCELLED, "updated_at": now},
        )
        if updated is None:
            cas_conflicts_total.inc(labels={"entity": "habit"})
            raise InvalidStateError("Only active habits can be cancelled")

        engine_transitions_total.inc(labels={"type": "habit_cancelled"})
        log_event("info", "habit.cancelled", user_id=user_id, habit_id=habit_id, event_type="habit_cancelled")
        return updated

    def list_for_partnership(self, partnership_id: str, user_id: str) -> List[Habit]:
        self.partnerships.require_member(partnership_id, user_id)
        return self.store.list_habits([partnership_id])
