"""Tests for the daily goal cycle: set, record, close, streak and turn advance."""

from datetime import date

import pytest

from buddyup.core.errors import (
    AlreadyCompletedError,
    DuplicateForDayError,
    InvalidStateError,
    NotAuthorizedError,
    NotYourTurnError,
    ValidationError,
)
from buddyup.core.metrics import engine_transitions_total
from buddyup.features.notifications.dispatcher import NotificationKind
from buddyup.models.challenge import ChallengeStatus, CompletionStatus, FeelingTags
from buddyup.models.habit import HabitStatus, TurnSlot
from buddyup.models.partnership import PartnershipStatus
from buddyup.tests.factories import ALICE, BOB, CAROL


def both_complete(engine, challenge_id):
    engine.challenges.complete_challenge(challenge_id, ALICE)
    return engine.challenges.complete_challenge(challenge_id, BOB)


class TestCreateChallenge:
    def test_turn_holder_sets_todays_goal(self, engine, notifier, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        assert challenge.due_date == date(2025, 1, 6)
        assert challenge.status == ChallengeStatus.OPEN
        assert challenge.created_by == ALICE
        assert notifier.kinds_for(BOB) == [NotificationKind.GOAL_SET_FOR_YOU]
        assert notifier.sent[0].url == f"/challenges/{challenge.challenge_id}"

    def test_non_holder_gets_not_your_turn(self, engine, active_habit):
        with pytest.raises(NotYourTurnError):
            engine.challenges.create_challenge(active_habit.habit_id, BOB, "Run 5k")

    def test_second_goal_while_today_open_is_duplicate(self, engine, active_habit):
        engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        with pytest.raises(DuplicateForDayError):
            engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 10k")

    def test_closed_today_moves_next_goal_to_tomorrow(self, engine, active_habit):
        today = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, today.challenge_id)

        tomorrow = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim")
        assert tomorrow.due_date == date(2025, 1, 7)

        with pytest.raises(DuplicateForDayError):
            engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim again")

    def test_pending_habit_rejected(self, engine, active_partnership):
        habit = engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "Journal")

        with pytest.raises(InvalidStateError):
            engine.challenges.create_challenge(habit.habit_id, ALICE, "Write a page")

    def test_paused_partnership_rejected(self, engine, active_partnership, active_habit):
        engine.partnerships.update_status(active_partnership.partnership_id, BOB, PartnershipStatus.PAUSED)

        with pytest.raises(InvalidStateError):
            engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

    def test_blank_title_rejected(self, engine, active_habit):
        with pytest.raises(ValidationError):
            engine.challenges.create_challenge(active_habit.habit_id, ALICE, "  ")

    def test_outsider_rejected(self, engine, active_habit):
        with pytest.raises(NotAuthorizedError):
            engine.challenges.create_challenge(active_habit.habit_id, CAROL, "Run 5k")


class TestRecord:
    def test_first_record_keeps_cycle_open(self, engine, notifier, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        notifier.clear()

        outcome = engine.challenges.complete_challenge(challenge.challenge_id, BOB, reflection=" felt good ")

        assert outcome.cycle_closed is False
        assert outcome.challenge.status == ChallengeStatus.OPEN
        assert outcome.completion.reflection == "felt good"
        assert outcome.habit.total_records == 1
        assert outcome.habit.streak_count == 0
        assert outcome.habit.current_turn == TurnSlot.PARTY_A
        assert notifier.kinds_for(ALICE) == [NotificationKind.GOAL_COMPLETED_BY_BUDDY]

    def test_both_completed_closes_cycle_and_passes_turn(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        outcome = both_complete(engine, challenge.challenge_id)

        assert outcome.cycle_closed is True
        assert outcome.challenge.status == ChallengeStatus.CLOSED
        assert outcome.challenge.closed_at is not None
        habit = outcome.habit
        assert habit.streak_count == 1
        assert habit.longest_streak == 1
        assert habit.completed_cycles == 1
        assert habit.total_records == 2
        assert habit.current_turn == TurnSlot.PARTY_B
        assert habit.last_completed_at is not None
        assert engine_transitions_total.value({"type": "cycle_closed"}) == 1

    def test_turn_goes_to_partner_who_did_not_set_goal(self, engine, clock, active_habit):
        first = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, first.challenge_id)

        clock.advance(days=1)
        second = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim")
        outcome = both_complete(engine, second.challenge_id)

        assert outcome.habit.current_turn == TurnSlot.PARTY_A
        assert outcome.habit.streak_count == 2

    def test_missed_resets_streak_but_closes_cycle(self, engine, clock, notifier, active_habit):
        first = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, first.challenge_id)

        clock.advance(days=1)
        second = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim")
        notifier.clear()
        engine.challenges.complete_challenge(second.challenge_id, BOB)
        outcome = engine.challenges.record_miss(second.challenge_id, ALICE, reflection="overslept")

        habit = outcome.habit
        assert outcome.cycle_closed is True
        assert outcome.completion.status == CompletionStatus.MISSED
        assert habit.streak_count == 0
        assert habit.longest_streak == 1
        assert habit.completed_cycles == 2
        assert habit.current_turn == TurnSlot.PARTY_A
        assert notifier.kinds_for(BOB) == []

    def test_skipped_keeps_streak(self, engine, clock, active_habit):
        first = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, first.challenge_id)

        clock.advance(days=1)
        second = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim")
        engine.challenges.record_miss(second.challenge_id, ALICE, status=CompletionStatus.SKIPPED)
        outcome = engine.challenges.complete_challenge(second.challenge_id, BOB)

        assert outcome.cycle_closed is True
        assert outcome.habit.streak_count == 1
        assert outcome.habit.completed_cycles == 2
        assert outcome.habit.total_records == 4

    def test_record_twice_is_already_completed(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        engine.challenges.complete_challenge(challenge.challenge_id, ALICE)

        with pytest.raises(AlreadyCompletedError):
            engine.challenges.complete_challenge(challenge.challenge_id, ALICE)
        with pytest.raises(AlreadyCompletedError):
            engine.challenges.record_miss(challenge.challenge_id, ALICE)

    def test_future_goal_cannot_be_recorded_yet(self, engine, clock, active_habit):
        today = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, today.challenge_id)
        tomorrow = engine.challenges.create_challenge(active_habit.habit_id, BOB, "Swim")

        with pytest.raises(InvalidStateError):
            engine.challenges.complete_challenge(tomorrow.challenge_id, ALICE)

        clock.advance(days=1)
        outcome = engine.challenges.complete_challenge(tomorrow.challenge_id, ALICE)
        assert outcome.completion.status == CompletionStatus.COMPLETED

    def test_record_miss_refuses_completed_status(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        with pytest.raises(ValidationError):
            engine.challenges.record_miss(challenge.challenge_id, BOB, status=CompletionStatus.COMPLETED)

    def test_outsider_cannot_record(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        with pytest.raises(NotAuthorizedError):
            engine.challenges.complete_challenge(challenge.challenge_id, CAROL)

    def test_paused_partnership_blocks_records(self, engine, active_partnership, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        engine.partnerships.update_status(active_partnership.partnership_id, ALICE, PartnershipStatus.PAUSED)

        with pytest.raises(InvalidStateError):
            engine.challenges.complete_challenge(challenge.challenge_id, BOB)

    def test_empty_feeling_tags_stored_as_none(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        empty = engine.challenges.complete_challenge(challenge.challenge_id, ALICE, feeling_tags=FeelingTags())
        tagged = engine.challenges.complete_challenge(
            challenge.challenge_id, BOB, feeling_tags=FeelingTags(difficulty="hard", mood="tired"),
        )

        assert empty.completion.feeling_tags is None
        assert tagged.completion.feeling_tags.difficulty == "hard"

    def test_detail_lists_both_records(self, engine, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")
        both_complete(engine, challenge.challenge_id)

        detail = engine.challenges.get(challenge.challenge_id, BOB)
        assert detail.challenge.status == ChallengeStatus.CLOSED
        assert [c.user_id for c in detail.completions] == [ALICE, BOB]


class TestDuration:
    def test_habit_completes_after_duration_cycles(self, engine, clock, active_partnership):
        habit = engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "Plank", duration_days=2)
        engine.habits.resolve_approval(habit.habit_id, BOB, "approve")

        first = engine.challenges.create_challenge(habit.habit_id, ALICE, "1 minute")
        after_first = both_complete(engine, first.challenge_id).habit
        assert after_first.status == HabitStatus.ACTIVE

        clock.advance(days=1)
        second = engine.challenges.create_challenge(habit.habit_id, BOB, "2 minutes")
        after_second = both_complete(engine, second.challenge_id).habit

        assert after_second.status == HabitStatus.COMPLETED
        assert after_second.completed_cycles == 2
        assert engine_transitions_total.value({"type": "habit_completed"}) == 1

        clock.advance(days=1)
        with pytest.raises(InvalidStateError):
            engine.challenges.create_challenge(habit.habit_id, ALICE, "3 minutes")

    def test_list_for_partnership(self, engine, active_partnership, active_habit):
        challenge = engine.challenges.create_challenge(active_habit.habit_id, ALICE, "Run 5k")

        listed = engine.challenges.list_for_partnership(active_partnership.partnership_id, BOB)
        assert [c.challenge_id for c in listed] == [challenge.challenge_id]
