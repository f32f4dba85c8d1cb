"""Tests for the SQLAlchemy store against an in-memory SQLite database."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from buddyup.core.clock import FixedClock
from buddyup.core.database import build_engine, create_all_tables, drop_all_tables
from buddyup.core.errors import StoreUnavailableError
from buddyup.core.metrics import store_retries_total
from buddyup.features.engine import Engine
from buddyup.features.notifications.dispatcher import QueueNotifier, RecordingNotifier
from buddyup.main import create_app
from buddyup.models.challenge import ChallengeStatus, CompletionStatus, FeelingTags
from buddyup.models.habit import HabitStatus, TurnSlot
from buddyup.models.message import MessageType
from buddyup.models.partnership import Partnership, PartnershipStatus
from buddyup.store import build_store
from buddyup.store.base import PreconditionFailed, UniqueViolation
from buddyup.store.sql import SqlStore
from buddyup.tests.factories import ALICE, BOB, START


@pytest.fixture
def sql_store():
    engine = build_engine("sqlite://")
    create_all_tables(engine)
    yield SqlStore(engine, retry_attempts=2, retry_base_delay_ms=0)
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def sql_engine(sql_store):
    return Engine(sql_store, RecordingNotifier(), FixedClock(START))


def _partnership(pid, a=ALICE, b=BOB, status=PartnershipStatus.PENDING):
    return Partnership(partnership_id=pid, party_a=a, party_b=b, status=status, created_at=START, updated_at=START)


class TestPartnershipRows:
    def test_round_trip_keeps_aware_datetimes(self, sql_store):
        sql_store.insert_partnership(_partnership("p1"))

        loaded = sql_store.get_partnership("p1")
        assert loaded.created_at == START
        assert loaded.created_at.tzinfo is not None
        assert loaded.status == PartnershipStatus.PENDING

    def test_live_pair_is_unique(self, sql_store):
        sql_store.insert_partnership(_partnership("p1"))

        with pytest.raises(UniqueViolation):
            sql_store.insert_partnership(_partnership("p2", a=BOB, b=ALICE))

    def test_completed_pair_does_not_block(self, sql_store):
        sql_store.insert_partnership(_partnership("p1", status=PartnershipStatus.COMPLETED))
        sql_store.insert_partnership(_partnership("p2"))

        assert {p.partnership_id for p in sql_store.list_partnerships_for_user(BOB)} == {"p1", "p2"}

    def test_conditional_update(self, sql_store):
        sql_store.insert_partnership(_partnership("p1"))

        assert sql_store.update_partnership_if("p1", [PartnershipStatus.ACTIVE], {"status": PartnershipStatus.PAUSED}) is None
        updated = sql_store.update_partnership_if(
            "p1", [PartnershipStatus.PENDING], {"status": PartnershipStatus.ACTIVE, "accepted_at": START}
        )
        assert updated.status == PartnershipStatus.ACTIVE
        assert updated.accepted_at == START

    def test_invite_codes(self, sql_store):
        sql_store.insert_invite_code(ALICE, "ABCD1234", START)

        assert sql_store.get_invite_code(ALICE) == "ABCD1234"
        assert sql_store.find_invite_code_owner("ABCD1234") == ALICE
        assert sql_store.find_invite_code_owner("NOPE0000") is None
        with pytest.raises(UniqueViolation):
            sql_store.insert_invite_code(BOB, "ABCD1234", START)


class TestEngineOnSql:
    def test_full_cycle(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run", custom_days=[1, 3])
        habit = sql_engine.habits.resolve_approval(habit.habit_id, BOB, "approve")
        assert habit.start_date == date(2025, 1, 6)
        assert habit.custom_days == [1, 3]

        challenge = sql_engine.challenges.create_challenge(habit.habit_id, ALICE, "5k")
        first = sql_engine.challenges.complete_challenge(
            challenge.challenge_id, ALICE, feeling_tags=FeelingTags(mood="happy", legacy_tags=["sunny"])
        )
        second = sql_engine.challenges.record_miss(challenge.challenge_id, BOB, status=CompletionStatus.SKIPPED)

        assert second.completion.seq > first.completion.seq
        assert second.cycle_closed is True
        assert second.challenge.status == ChallengeStatus.CLOSED
        assert second.habit.current_turn == TurnSlot.PARTY_B
        assert second.habit.completed_cycles == 1

        stored = sql_store.list_completions([challenge.challenge_id])
        assert stored[0].feeling_tags.mood == "happy"
        assert stored[0].feeling_tags.legacy_tags == ["sunny"]
        assert stored[0].recorded_at.tzinfo is not None
        assert sql_engine.streaks.audit(habit.habit_id).consistent

    def test_challenge_guard_and_day_uniqueness(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run")
        habit = sql_engine.habits.resolve_approval(habit.habit_id, BOB, "approve")
        challenge = sql_engine.challenges.create_challenge(habit.habit_id, ALICE, "5k")

        with pytest.raises(PreconditionFailed):
            sql_store.insert_challenge(
                challenge.model_copy(update={"challenge_id": "other", "due_date": date(2025, 1, 8)}),
                habit_guard={"current_turn": TurnSlot.PARTY_B},
            )
        version_before = sql_store.get_habit(habit.habit_id).version
        with pytest.raises(UniqueViolation):
            sql_store.insert_challenge(
                challenge.model_copy(update={"challenge_id": "dupe"}),
                habit_guard={"status": HabitStatus.ACTIVE},
            )
        assert sql_store.get_habit(habit.habit_id).version == version_before

    def test_habit_cas_on_version(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run")

        assert sql_store.update_habit_if(habit.habit_id, {"version": habit.version + 5}, {"pass_count": 1}) is None
        updated = sql_store.update_habit_if(habit.habit_id, {"version": habit.version, "dismissed_at": None}, {"pass_count": 1})
        assert updated.version == habit.version + 1
        assert updated.pass_count == 1

    def test_messages_ordered(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run")
        sql_engine.habits.resolve_approval(habit.habit_id, BOB, "approve")

        sql_engine.messages.post_message(partnership.partnership_id, BOB, "first")
        sql_engine.turns.pass_turn(habit.habit_id, ALICE)

        stored = sql_store.list_messages(partnership.partnership_id)
        assert [m.message_type for m in stored] == [MessageType.TEXT, MessageType.SYSTEM]
        assert stored[0].seq < stored[1].seq
        assert sql_store.ping() is True

    def test_pass_announcement_shares_the_habit_write(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run")
        habit = sql_engine.habits.resolve_approval(habit.habit_id, BOB, "approve")
        announcement = sql_engine.messages.build_system(partnership, ALICE, "Alice passed the turn")
        sql_store.insert_message(announcement)

        with pytest.raises(UniqueViolation):
            sql_store.update_habit_if(
                habit.habit_id,
                {"version": habit.version},
                {"current_turn": TurnSlot.PARTY_B, "pass_count": 1},
                message=announcement,
            )

        unchanged = sql_store.get_habit(habit.habit_id)
        assert unchanged.version == habit.version
        assert unchanged.current_turn == TurnSlot.PARTY_A
        assert len(sql_store.list_messages(partnership.partnership_id)) == 1

    def test_close_marks_challenge_applied(self, sql_engine, sql_store):
        partnership = sql_engine.partnerships.invite(ALICE, BOB)
        sql_engine.partnerships.accept(partnership.partnership_id, BOB)
        habit = sql_engine.habits.propose_habit(ALICE, partnership.partnership_id, "Run")
        habit = sql_engine.habits.resolve_approval(habit.habit_id, BOB, "approve")
        challenge = sql_engine.challenges.create_challenge(habit.habit_id, ALICE, "5k")
        sql_engine.challenges.complete_challenge(challenge.challenge_id, ALICE)
        assert sql_store.get_challenge(challenge.challenge_id).aggregate_applied is False

        sql_engine.challenges.complete_challenge(challenge.challenge_id, BOB)

        assert sql_store.get_challenge(challenge.challenge_id).aggregate_applied is True
        assert sql_store.get_habit(habit.habit_id).last_applied_seq > 0
        assert sql_engine.streaks.audit(habit.habit_id).pending_closes == ()


class TestRetries:
    def test_transient_failure_is_retried_then_surfaces(self, sql_store):
        calls = []

        def flaky(session):
            calls.append(1)
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))

        with pytest.raises(StoreUnavailableError):
            sql_store._run("flaky", flaky)
        assert len(calls) == 2
        assert store_retries_total.value({"operation": "flaky"}) == 1

    def test_recovers_after_one_failure(self, sql_store):
        attempts = []

        def once_flaky(session):
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("SELECT 1", {}, Exception("connection reset"))
            return "ok"

        assert sql_store._run("once_flaky", once_flaky) == "ok"


def test_build_store_picks_backend():
    from buddyup.store.memory import MemoryStore

    assert isinstance(build_store(None), MemoryStore)
    assert isinstance(build_store("sqlite://"), SqlStore)


def test_naive_datetimes_stored_as_utc(sql_store):
    naive = datetime(2025, 1, 6, 9, 0)
    sql_store.insert_partnership(
        Partnership(partnership_id="p1", party_a=ALICE, party_b=BOB, created_at=naive, updated_at=naive)
    )
    assert sql_store.get_partnership("p1").created_at == datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def test_sql_store_close_disposes_engine():
    db = MagicMock()

    SqlStore(db).close()

    db.dispose.assert_called_once_with()


def test_shutdown_disposes_sql_engine_and_closes_redis():
    db = build_engine("sqlite://")
    create_all_tables(db)
    queue = MagicMock()
    engine = Engine(SqlStore(db), QueueNotifier(queue), FixedClock(START))

    with patch.object(type(db), "dispose", autospec=True) as dispose:
        with TestClient(create_app(engine=engine)):
            dispose.assert_not_called()
            queue.connection.close.assert_not_called()

    dispose.assert_called_once_with(db)
    queue.connection.close.assert_called_once_with()
