"""Tests for habit proposal, approval, rejection, dismissal and cancellation."""

from datetime import date, timedelta

import pytest

from buddyup.core.errors import InvalidStateError, NotAuthorizedError, NotFoundError, ValidationError
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.models.habit import Frequency, HabitStatus, TurnSlot
from buddyup.models.partnership import PartnershipStatus
from buddyup.tests.factories import ALICE, BOB, CAROL


@pytest.fixture
def proposed(engine, notifier, active_partnership):
    habit = engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "Read 20 pages", duration_days=30)
    notifier.clear()
    return habit


class TestPropose:
    def test_proposal_is_pending_with_turn_on_proposer(self, engine, notifier, active_partnership):
        habit = engine.habits.propose_habit(BOB, active_partnership.partnership_id, "  Stretch  ", category="fitness")

        assert habit.status == HabitStatus.PENDING
        assert habit.name == "Stretch"
        assert habit.current_turn == TurnSlot.PARTY_B
        assert habit.streak_count == 0
        assert habit.start_date is None
        assert notifier.kinds_for(ALICE) == [NotificationKind.HABIT_NEEDS_APPROVAL]

    def test_custom_days_are_normalized(self, engine, active_partnership):
        habit = engine.habits.propose_habit(
            ALICE, active_partnership.partnership_id, "Gym",
            frequency=Frequency.CUSTOM, custom_days=[4, 0, 4, 2],
        )
        assert habit.custom_days == [0, 2, 4]

    def test_blank_name_rejected(self, engine, active_partnership):
        with pytest.raises(ValidationError):
            engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "   ")

    def test_requires_active_partnership(self, engine):
        pending = engine.partnerships.invite(ALICE, BOB)

        with pytest.raises(InvalidStateError):
            engine.habits.propose_habit(ALICE, pending.partnership_id, "Walk")

    def test_paused_partnership_blocks_proposals(self, engine, active_partnership):
        engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.PAUSED)

        with pytest.raises(InvalidStateError):
            engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "Walk")

    def test_outsider_cannot_propose(self, engine, active_partnership):
        with pytest.raises(NotAuthorizedError):
            engine.habits.propose_habit(CAROL, active_partnership.partnership_id, "Walk")


class TestResolve:
    def test_approve_activates_and_dates_the_habit(self, engine, notifier, clock, proposed):
        habit = engine.habits.resolve_approval(proposed.habit_id, BOB, "approve")

        assert habit.status == HabitStatus.ACTIVE
        assert habit.start_date == date(2025, 1, 6)
        assert habit.end_date == date(2025, 1, 6) + timedelta(days=30)
        assert habit.resolved_at == clock.now()
        assert habit.current_turn == TurnSlot.PARTY_A
        assert notifier.kinds_for(ALICE) == [NotificationKind.HABIT_APPROVED]

    def test_reject_cancels_without_start_date(self, engine, notifier, proposed):
        habit = engine.habits.resolve_approval(proposed.habit_id, BOB, "reject")

        assert habit.status == HabitStatus.CANCELLED
        assert habit.start_date is None
        assert habit.resolved_at is not None
        assert notifier.kinds_for(ALICE) == [NotificationKind.HABIT_REJECTED]

    @pytest.mark.parametrize("state", ["pending", "active", "cancelled"])
    @pytest.mark.parametrize("action", ["approve", "reject"])
    def test_self_resolution_forbidden_in_every_state(self, engine, proposed, state, action):
        if state == "active":
            engine.habits.resolve_approval(proposed.habit_id, BOB, "approve")
        elif state == "cancelled":
            engine.habits.resolve_approval(proposed.habit_id, BOB, "reject")

        with pytest.raises(NotAuthorizedError):
            engine.habits.resolve_approval(proposed.habit_id, ALICE, action)

    def test_resolution_requires_active_partnership(self, engine, active_partnership, proposed):
        engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.PAUSED)

        with pytest.raises(InvalidStateError):
            engine.habits.resolve_approval(proposed.habit_id, BOB, "approve")
        assert engine.habits.load(proposed.habit_id).status == HabitStatus.PENDING

        engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.ACTIVE)
        assert engine.habits.resolve_approval(proposed.habit_id, BOB, "approve").status == HabitStatus.ACTIVE

    def test_second_resolution_is_invalid_state(self, engine, proposed):
        engine.habits.resolve_approval(proposed.habit_id, BOB, "approve")

        with pytest.raises(InvalidStateError):
            engine.habits.resolve_approval(proposed.habit_id, BOB, "reject")

    def test_unknown_action_rejected(self, engine, proposed):
        with pytest.raises(ValidationError):
            engine.habits.resolve_approval(proposed.habit_id, BOB, "maybe")

    def test_unknown_habit_not_found(self, engine, active_partnership):
        with pytest.raises(NotFoundError):
            engine.habits.resolve_approval("missing", BOB, "approve")

    def test_version_bumps_on_every_write(self, engine, proposed):
        approved = engine.habits.resolve_approval(proposed.habit_id, BOB, "approve")
        assert approved.version == proposed.version + 1


class TestDismissAndCancel:
    def test_creator_dismisses_rejected_proposal(self, engine, clock, proposed):
        engine.habits.resolve_approval(proposed.habit_id, BOB, "reject")
        clock.advance(minutes=5)

        dismissed = engine.habits.dismiss(proposed.habit_id, ALICE)
        assert dismissed.dismissed_at == clock.now()

        clock.advance(minutes=5)
        again = engine.habits.dismiss(proposed.habit_id, ALICE)
        assert again.dismissed_at == dismissed.dismissed_at

    def test_only_creator_dismisses(self, engine, proposed):
        engine.habits.resolve_approval(proposed.habit_id, BOB, "reject")

        with pytest.raises(NotAuthorizedError):
            engine.habits.dismiss(proposed.habit_id, BOB)

    def test_creator_cannot_dismiss_pending(self, engine, proposed):
        with pytest.raises(NotAuthorizedError):
            engine.habits.dismiss(proposed.habit_id, ALICE)
        assert engine.habits.load(proposed.habit_id).dismissed_at is None

    def test_creator_cannot_dismiss_active(self, engine, active_habit):
        with pytest.raises(NotAuthorizedError):
            engine.habits.dismiss(active_habit.habit_id, ALICE)

    def test_cancel_active_habit(self, engine, active_habit):
        cancelled = engine.habits.cancel_habit(active_habit.habit_id, BOB)

        assert cancelled.status == HabitStatus.CANCELLED
        assert cancelled.start_date is not None
        with pytest.raises(InvalidStateError):
            engine.habits.cancel_habit(active_habit.habit_id, ALICE)

    def test_list_for_partnership_members_only(self, engine, active_partnership, proposed):
        habits = engine.habits.list_for_partnership(active_partnership.partnership_id, BOB)
        assert [h.habit_id for h in habits] == [proposed.habit_id]

        with pytest.raises(NotAuthorizedError):
            engine.habits.list_for_partnership(active_partnership.partnership_id, CAROL)
