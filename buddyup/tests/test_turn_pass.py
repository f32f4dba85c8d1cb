"""Tests for passing the turn to set the next goal."""

import pytest

from buddyup.core.errors import InvalidStateError, NotAuthorizedError, NotYourTurnError, StoreUnavailableError
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.features.turns.service import pass_message, turn_holder
from buddyup.features.users.identity import display_for_user
from buddyup.models.habit import TurnSlot
from buddyup.models.message import MessageType
from buddyup.models.partnership import PartnershipStatus
from buddyup.tests.factories import ALICE, BOB, CAROL


def test_pass_flips_turn_and_records_who_passed(engine, clock, active_partnership, active_habit):
    clock.advance(minutes=10)
    habit = engine.turns.pass_turn(active_habit.habit_id, ALICE)

    assert habit.current_turn == TurnSlot.PARTY_B
    assert turn_holder(habit, active_partnership) == BOB
    assert habit.pass_count == 1
    assert habit.last_passed_by == ALICE
    assert habit.passed_at == clock.now()


def test_pass_posts_system_message_and_notifies(engine, notifier, active_partnership, active_habit):
    engine.turns.pass_turn(active_habit.habit_id, ALICE)

    messages = engine.messages.list_messages(active_partnership.partnership_id, BOB)
    assert len(messages) == 1
    assert messages[0].message_type == MessageType.SYSTEM
    assert messages[0].sender_id == ALICE
    assert messages[0].content == pass_message(ALICE, "Morning run")
    assert display_for_user(ALICE) in messages[0].content
    assert notifier.kinds_for(BOB) == [NotificationKind.TURN_TO_SET_GOAL]


def test_passing_back_and_forth_is_unbounded(engine, active_habit):
    for holder in (ALICE, BOB, ALICE, BOB, ALICE):
        habit = engine.turns.pass_turn(active_habit.habit_id, holder)

    assert habit.pass_count == 5
    assert habit.current_turn == TurnSlot.PARTY_B


def test_non_holder_cannot_pass(engine, active_habit):
    with pytest.raises(NotYourTurnError):
        engine.turns.pass_turn(active_habit.habit_id, BOB)


def test_outsider_cannot_pass(engine, active_habit):
    with pytest.raises(NotAuthorizedError):
        engine.turns.pass_turn(active_habit.habit_id, CAROL)


def test_pass_requires_active_habit_and_partnership(engine, active_partnership, active_habit):
    engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.PAUSED)
    with pytest.raises(InvalidStateError):
        engine.turns.pass_turn(active_habit.habit_id, ALICE)

    engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.ACTIVE)
    engine.habits.cancel_habit(active_habit.habit_id, BOB)
    with pytest.raises(InvalidStateError):
        engine.turns.pass_turn(active_habit.habit_id, ALICE)


def test_receiver_can_set_goal_after_pass(engine, active_habit):
    engine.turns.pass_turn(active_habit.habit_id, ALICE)

    challenge = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Run 3k")
    assert challenge.created_by == BOB
    with pytest.raises(NotYourTurnError):
        engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 4k")


def test_failed_pass_leaves_no_announcement(engine, store, monkeypatch, active_partnership, active_habit):
    def unavailable(*args, **kwargs):
        raise StoreUnavailableError("Store unavailable during update_habit_if")

    with monkeypatch.context() as m:
        m.setattr(store, "update_habit_if", unavailable)
        with pytest.raises(StoreUnavailableError):
            engine.turns.pass_turn(active_habit.habit_id, ALICE)

    assert engine.habits.load(active_habit.habit_id).current_turn == TurnSlot.PARTY_A
    assert engine.messages.list_messages(active_partnership.partnership_id, ALICE) == []

    engine.turns.pass_turn(active_habit.habit_id, ALICE)
    messages = engine.messages.list_messages(active_partnership.partnership_id, ALICE)
    assert [m.message_type for m in messages] == [MessageType.SYSTEM]
