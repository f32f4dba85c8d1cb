"""
buddyup/features/challenges/service.py
Daily goals and their completion cycle.

Per habit and calendar day: no-challenge -> open -> closed.
- create_challenge: turn holder only, one per habit per day
- complete_challenge / record_miss: one record per partner per challenge
- the cycle closes when both partners have a record; the caller whose write
  flips the challenge OPEN -> CLOSED applies the habit aggregate (streak,
  counters, turn advance, duration completion) in the same write that marks
  the challenge aggregate_applied; StreakAuditor.repair finishes closes
  whose habit write never landed

Every guard is re-checked at write time: the challenge insert is guarded by
a habit compare-and-set plus the (habit, due_date) unique constraint, and
records by the (challenge, user) unique constraint.
"""

import uuid
from datetime import timedelta
from typing import List, Optional

from buddyup.core.errors import (
    AlreadyCompletedError,
    DuplicateForDayError,
    InvalidStateError,
    NotFoundError,
    NotYourTurnError,
    ValidationError,
)
from buddyup.core.logging import log_event
from buddyup.core.metrics import cas_conflicts_total, engine_transitions_total
from buddyup.core.tracing import start_span
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.streaks.service import (
    StreakState,
    apply_record,
    close_changes,
    duration_changes,
    last_seq,
    load_history,
    replay,
)
from buddyup.features.users.identity import display_for_user
from buddyup.models.challenge import (
    Challenge,
    ChallengeDetail,
    ChallengeStatus,
    Completion,
    CompletionStatus,
    FeelingTags,
    RecordOutcome,
)
from buddyup.models.habit import Habit, HabitStatus, TurnSlot
from buddyup.models.partnership import Partnership, PartnershipStatus
from buddyup.store.base import PreconditionFailed, UniqueViolation

MAX_CAS_ATTEMPTS = 20


class ChallengeService:
    def __init__(self, store, dispatcher, clock, partnerships, habits):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock
        self.partnerships = partnerships
        self.habits = habits

    # Lookups

    def load(self, challenge_id: str) -> Challenge:
        challenge = self.store.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        return challenge

    def get(self, challenge_id: str, user_id: str) -> ChallengeDetail:
        challenge = self.load(challenge_id)
        self.habits.load_for_member(challenge.habit_id, user_id)
        completions = self.store.list_completions([challenge_id])
        return ChallengeDetail(challenge=challenge, completions=tuple(completions))

    def list_for_partnership(self, partnership_id: str, user_id: str) -> List[Challenge]:
        self.partnerships.require_member(partnership_id, user_id)
        habit_ids = [h.habit_id for h in self.store.list_habits([partnership_id])]
        return self.store.list_challenges(habit_ids)

    # Create

    def _target_day(self, habit: Habit):
        """Today if free; tomorrow if today's cycle already closed."""
        today = self.clock.today()
        existing = self.store.find_challenge(habit.habit_id, today)
        if existing is None:
            return today
        if existing.status == ChallengeStatus.OPEN:
            raise DuplicateForDayError("A goal has already been set for today")
        tomorrow = today + timedelta(days=1)
        if self.store.find_challenge(habit.habit_id, tomorrow) is not None:
            raise DuplicateForDayError("A goal has already been set for tomorrow")
        return tomorrow

    def create_challenge(
        self,
        habit_id: str,
        user_id: str,
        title: str,
        description: Optional[str] = None,
    ) -> Challenge:
        """
        Set the next goal for a habit.

        Raises:
            ValidationError: blank title
            NotAuthorizedError: caller is not a member
            InvalidStateError: habit or partnership not ACTIVE
            NotYourTurnError: caller does not hold the turn
            DuplicateForDayError: target day already has a goal
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Goal title is required")

        habit, partnership = self.habits.load_for_member(habit_id, user_id)
        if partnership.status != PartnershipStatus.ACTIVE:
            raise InvalidStateError("Partnership is not active")
        if habit.status != HabitStatus.ACTIVE:
            raise InvalidStateError("Habit is not active")
        slot = TurnSlot.for_user(partnership, user_id)
        if habit.current_turn != slot:
            raise NotYourTurnError("It's not your turn to set a goal")

        due_date = self._target_day(habit)
        challenge = Challenge(
            challenge_id=str(uuid.uuid4()),
            habit_id=habit_id,
            created_by=user_id,
            title=title,
            description=(description or "").strip() or None,
            due_date=due_date,
            status=ChallengeStatus.OPEN,
            created_at=self.clock.now(),
        )

        with start_span("challenge.create", {"habit_id": habit_id, "user_id": user_id}):
            try:
                challenge = self.store.insert_challenge(
                    challenge,
                    habit_guard={"status": HabitStatus.ACTIVE, "current_turn": slot},
                )
            except UniqueViolation:
                raise DuplicateForDayError("A goal has already been set for this day")
            except PreconditionFailed:
                cas_conflicts_total.inc(labels={"entity": "habit"})
                current = self.habits.load(habit_id)
                if current.status != HabitStatus.ACTIVE:
                    raise InvalidStateError("Habit is not active")
                raise NotYourTurnError("It's not your turn to set a goal")

        engine_transitions_total.inc(labels={"type": "challenge_created"})
        log_event(
            "info",
            "challenge.created",
            user_id=user_id,
            partnership_id=partnership.partnership_id,
            habit_id=habit_id,
            challenge_id=challenge.challenge_id,
            event_type="challenge_created",
            extra={"due_date": challenge.due_date.isoformat()},
        )
        self.dispatcher.send(
            partnership.other_member(user_id),
            NotificationKind.GOAL_SET_FOR_YOU,
            {
                "actor_name": display_for_user(user_id),
                "habit_name": habit.name,
                "challenge_title": challenge.title,
                "challenge_id": challenge.challenge_id,
            },
        )
        return challenge

    # Record

    def complete_challenge(
        self,
        challenge_id: str,
        user_id: str,
        reflection: Optional[str] = None,
        feeling_tags: Optional[FeelingTags] = None,
        photo_ref: Optional[str] = None,
    ) -> RecordOutcome:
        """Record that the caller did today's goal."""
        return self._record(
            challenge_id,
            user_id,
            CompletionStatus.COMPLETED,
            reflection=reflection,
            feeling_tags=feeling_tags,
            photo_ref=photo_ref,
        )

    def record_miss(
        self,
        challenge_id: str,
        user_id: str,
        status: CompletionStatus = CompletionStatus.MISSED,
        reflection: Optional[str] = None,
    ) -> RecordOutcome:
        """Record a MISSED (resets the streak) or SKIPPED (keeps it) outcome."""
        status = CompletionStatus(status)
        if status == CompletionStatus.COMPLETED:
            raise ValidationError("Use complete_challenge to record a completion")
        return self._record(challenge_id, user_id, status, reflection=reflection)

    def _record(
        self,
        challenge_id: str,
        user_id: str,
        status: CompletionStatus,
        reflection: Optional[str] = None,
        feeling_tags: Optional[FeelingTags] = None,
        photo_ref: Optional[str] = None,
    ) -> RecordOutcome:
        challenge = self.load(challenge_id)
        habit, partnership = self.habits.load_for_member(challenge.habit_id, user_id)

        existing = self.store.list_completions([challenge_id])
        if any(c.user_id == user_id for c in existing):
            raise AlreadyCompletedError("You have already recorded this goal")
        if partnership.status != PartnershipStatus.ACTIVE:
            raise InvalidStateError("Partnership is not active")
        if habit.status != HabitStatus.ACTIVE:
            raise InvalidStateError("Habit is not active")
        if challenge.due_date > self.clock.today():
            raise InvalidStateError("This goal is not due yet")

        if feeling_tags is not None and feeling_tags.is_empty():
            feeling_tags = None
        completion = Completion(
            completion_id=str(uuid.uuid4()),
            challenge_id=challenge_id,
            user_id=user_id,
            status=status,
            reflection=(reflection or "").strip() or None,
            feeling_tags=feeling_tags,
            photo_ref=photo_ref,
            recorded_at=self.clock.now(),
        )

        with start_span("challenge.record", {"challenge_id": challenge_id, "status": status.value}):
            try:
                completion = self.store.insert_completion(completion)
            except UniqueViolation:
                raise AlreadyCompletedError("You have already recorded this goal")

            records = self.store.list_completions([challenge_id])
            both_recorded = {r.user_id for r in records} >= set(partnership.members)
            closed = None
            if both_recorded:
                closed = self.store.close_challenge_if_open(challenge_id, self.clock.now())
            cycle_completed = both_recorded and all(r.status == CompletionStatus.COMPLETED for r in records)
            habit = self._apply_to_habit(
                habit.habit_id,
                partnership,
                completion,
                closes_cycle=both_recorded,
                cycle_completed=cycle_completed,
                in_order=records[-1].completion_id == completion.completion_id,
                closed=closed,
            )

        event_type = f"challenge_{status.value.lower()}"
        engine_transitions_total.inc(labels={"type": event_type})
        log_event(
            "info",
            "challenge.recorded",
            user_id=user_id,
            partnership_id=partnership.partnership_id,
            habit_id=habit.habit_id,
            challenge_id=challenge_id,
            event_type=event_type,
            extra={"cycle_closed": closed is not None, "streak": habit.streak_count},
        )
        if closed is not None:
            engine_transitions_total.inc(labels={"type": "cycle_closed"})
            log_event(
                "info",
                "challenge.closed",
                partnership_id=partnership.partnership_id,
                habit_id=habit.habit_id,
                challenge_id=challenge_id,
                event_type="cycle_closed",
                extra={"cycle_completed": cycle_completed},
            )
        if status == CompletionStatus.COMPLETED:
            self.dispatcher.send(
                partnership.other_member(user_id),
                NotificationKind.GOAL_COMPLETED_BY_BUDDY,
                {
                    "actor_name": display_for_user(user_id),
                    "habit_name": habit.name,
                    "challenge_title": challenge.title,
                    "challenge_id": challenge_id,
                },
            )

        return RecordOutcome(
            completion=completion,
            challenge=closed or self.load(challenge_id),
            habit=habit,
            cycle_closed=closed is not None,
        )

    def _apply_to_habit(
        self,
        habit_id: str,
        partnership: Partnership,
        completion: Completion,
        closes_cycle: bool,
        cycle_completed: bool,
        in_order: bool,
        closed: Optional[Challenge],
    ) -> Habit:
        """
        Fold one record into the habit row, retrying on version conflicts.

        Args:
            closes_cycle: both partners have recorded this challenge
            in_order: the record is the newest of its challenge
            closed: the challenge, if this caller flipped it to CLOSED; the
                turn advance is applied and the challenge marked in one write
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            habit = self.habits.load(habit_id)
            if in_order and completion.seq > habit.last_applied_seq:
                state = apply_record(StreakState.from_habit(habit), completion.status, closes_cycle, cycle_completed)
                applied_seq = completion.seq
            else:
                challenges, completions = load_history(self.store, habit_id)
                state = replay(challenges, completions)
                applied_seq = max(last_seq(completions), habit.last_applied_seq)

            now = self.clock.now()
            changes = dict(state.as_habit_changes(), last_applied_seq=applied_seq, updated_at=now)
            if closed is not None:
                changes.update(close_changes(habit, closed, partnership, cycle_completed, closed.closed_at or now))
            changes.update(duration_changes(habit, state))

            updated = self.store.update_habit_if(
                habit_id,
                {"version": habit.version},
                changes,
                mark_applied=closed.challenge_id if closed is not None else None,
            )
            if updated is not None:
                if updated.status == HabitStatus.COMPLETED and habit.status != HabitStatus.COMPLETED:
                    engine_transitions_total.inc(labels={"type": "habit_completed"})
                    log_event("info", "habit.completed", habit_id=habit_id, event_type="habit_completed")
                return updated
            cas_conflicts_total.inc(labels={"entity": "habit"})

        log_event(
            "error",
            "habit.aggregate_conflict",
            habit_id=habit_id,
            challenge_id=completion.challenge_id,
            error_code="cas_exhausted",
        )
        raise InvalidStateError("Habit is busy; counters will be repaired by the streak audit")
