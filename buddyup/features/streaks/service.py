"""
buddyup/features/streaks/service.py
Streak and completion accounting.

One step function, apply_record, drives both the incremental path (each
recorded outcome updates the habit as it is written) and replay (fold the
whole completion history in write order). Using the same step for both keeps
the stored counters and a from-scratch recomputation in agreement.

The habit row remembers the highest completion seq it has folded
(last_applied_seq). A write whose record is not newer than that, or that is
not the newest record of its challenge, recomputes with replay instead of
folding, so habit writes landing out of seq order still match the replay.

Rules:
- every record counts toward total_records
- a MISSED record resets the streak to 0; SKIPPED leaves it alone
- the record that closes a cycle (second partner's) bumps completed_cycles
- a closed cycle where both partners COMPLETED adds 1 to the streak
- there is no time-based reset; an idle habit keeps its streak
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import BaseModel, ConfigDict

from buddyup.core.errors import NotFoundError
from buddyup.core.logging import log_event
from buddyup.core.metrics import cas_conflicts_total
from buddyup.models.challenge import Challenge, ChallengeStatus, Completion, CompletionStatus
from buddyup.models.habit import Habit, HabitStatus, TurnSlot
from buddyup.models.partnership import Partnership

MAX_REPAIR_STEPS = 50


class StreakState(BaseModel):
    model_config = ConfigDict(frozen=True)

    streak: int = 0
    longest: int = 0
    completed_cycles: int = 0
    total_records: int = 0

    @classmethod
    def from_habit(cls, habit: Habit) -> "StreakState":
        return cls(
            streak=habit.streak_count,
            longest=habit.longest_streak,
            completed_cycles=habit.completed_cycles,
            total_records=habit.total_records,
        )

    def as_habit_changes(self) -> Dict[str, int]:
        return {
            "streak_count": self.streak,
            "longest_streak": self.longest,
            "completed_cycles": self.completed_cycles,
            "total_records": self.total_records,
        }


def apply_record(
    state: StreakState,
    status: CompletionStatus,
    closes_cycle: bool,
    cycle_completed: bool,
) -> StreakState:
    """Fold one recorded outcome into the running state."""
    streak = 0 if status == CompletionStatus.MISSED else state.streak
    completed_cycles = state.completed_cycles
    if closes_cycle:
        completed_cycles += 1
        if cycle_completed:
            streak += 1
    return StreakState(
        streak=streak,
        longest=max(state.longest, streak),
        completed_cycles=completed_cycles,
        total_records=state.total_records + 1,
    )


def replay(challenges: Iterable[Challenge], completions: Iterable[Completion]) -> StreakState:
    """
    Recompute a habit's counters from its full history.

    Args:
        challenges: all challenges of one habit
        completions: completions of those challenges (any order)

    Returns:
        StreakState the incremental path should have produced
    """
    challenge_ids = {c.challenge_id for c in challenges}
    ordered = sorted(
        (c for c in completions if c.challenge_id in challenge_ids),
        key=lambda c: c.seq,
    )

    seen: Dict[str, List[Completion]] = defaultdict(list)
    state = StreakState()
    for record in ordered:
        seen[record.challenge_id].append(record)
        records = seen[record.challenge_id]
        closes = len(records) == 2
        completed = closes and all(r.status == CompletionStatus.COMPLETED for r in records)
        state = apply_record(state, record.status, closes, completed)
    return state


def load_history(store, habit_id: str) -> Tuple[List[Challenge], List[Completion]]:
    """All challenges of a habit and their completions (seq order)."""
    challenges = store.list_challenges([habit_id])
    completions = store.list_completions([c.challenge_id for c in challenges])
    return challenges, completions


def last_seq(completions: Iterable[Completion]) -> int:
    return max((c.seq for c in completions), default=0)


def close_changes(
    habit: Habit,
    challenge: Challenge,
    partnership: Partnership,
    cycle_completed: bool,
    at: datetime,
    move_turn: bool = True,
) -> Dict[str, Any]:
    """Habit fields a closed cycle sets besides the counters."""
    changes: Dict[str, Any] = {}
    if move_turn:
        next_holder = partnership.other_member(challenge.created_by)
        changes["current_turn"] = TurnSlot.for_user(partnership, next_holder)
    if cycle_completed and (habit.last_completed_at is None or habit.last_completed_at < at):
        changes["last_completed_at"] = at
    return changes


def duration_changes(habit: Habit, state: StreakState) -> Dict[str, Any]:
    """Fixed-length habits finish once enough cycles have closed."""
    if habit.status == HabitStatus.ACTIVE and habit.duration_days and state.completed_cycles >= habit.duration_days:
        return {"status": HabitStatus.COMPLETED}
    return {}


def pending_closes(challenges: Iterable[Challenge]) -> List[Challenge]:
    """Closed challenges whose close never reached the habit row."""
    return [c for c in challenges if c.status == ChallengeStatus.CLOSED and not c.aggregate_applied]


class StreakAudit(BaseModel):
    model_config = ConfigDict(frozen=True)

    habit_id: str
    stored: StreakState
    replayed: StreakState
    pending_closes: Tuple[str, ...] = ()
    consistent: bool


class StreakAuditor:
    """Compares stored habit counters with a replay and can write the replay back."""

    def __init__(self, store):
        self.store = store

    def _load(self, habit_id: str) -> Habit:
        habit = self.store.get_habit(habit_id)
        if habit is None:
            raise NotFoundError("Habit not found")
        return habit

    def audit(self, habit_id: str) -> StreakAudit:
        habit = self._load(habit_id)
        challenges, completions = load_history(self.store, habit_id)
        stored = StreakState.from_habit(habit)
        replayed = replay(challenges, completions)
        pending = tuple(c.challenge_id for c in pending_closes(challenges))
        return StreakAudit(
            habit_id=habit_id,
            stored=stored,
            replayed=replayed,
            pending_closes=pending,
            consistent=stored == replayed and not pending,
        )

    def repair(self, habit_id: str, now=None) -> StreakAudit:
        """
        Bring the habit row back in line with its history (CAS on version).

        Counters are overwritten with the replay. Closed challenges whose
        close never reached the habit are applied one at a time, oldest
        first: turn advance (only for the habit's latest challenge),
        last_completed_at and duration completion.
        """
        repaired = False
        for _ in range(MAX_REPAIR_STEPS):
            habit = self._load(habit_id)
            challenges, completions = load_history(self.store, habit_id)
            replayed = replay(challenges, completions)
            stored = StreakState.from_habit(habit)
            applied_seq = last_seq(completions)
            pending = pending_closes(challenges)

            if stored == replayed and habit.last_applied_seq == applied_seq and not pending:
                if repaired:
                    log_event("warning", "streak.repaired", habit_id=habit_id, extra={"replayed": replayed.model_dump()})
                return StreakAudit(habit_id=habit_id, stored=stored, replayed=replayed, consistent=True)

            changes = dict(replayed.as_habit_changes(), last_applied_seq=applied_seq)
            changes.update(duration_changes(habit, replayed))
            mark = None
            if pending:
                challenge = pending[0]
                partnership = self.store.get_partnership(habit.partnership_id)
                records = [c for c in completions if c.challenge_id == challenge.challenge_id]
                cycle_completed = bool(records) and all(r.status == CompletionStatus.COMPLETED for r in records)
                move_turn = habit.status == HabitStatus.ACTIVE and challenges[-1].challenge_id == challenge.challenge_id
                changes.update(
                    close_changes(habit, challenge, partnership, cycle_completed, challenge.closed_at or now, move_turn)
                )
                mark = challenge.challenge_id
            if now is not None:
                changes["updated_at"] = now

            updated = self.store.update_habit_if(habit_id, {"version": habit.version}, changes, mark_applied=mark)
            if updated is None:
                cas_conflicts_total.inc(labels={"entity": "habit"})
                continue
            repaired = True
            if mark is not None:
                log_event(
                    "warning",
                    "streak.close_reapplied",
                    habit_id=habit_id,
                    challenge_id=mark,
                    event_type="cycle_closed",
                )
        return self.audit(habit_id)
