# buddyup/conftest.py

import pytest
from fastapi.testclient import TestClient

from buddyup.core.clock import FixedClock
from buddyup.core.metrics import METRICS
from buddyup.features.engine import Engine
from buddyup.features.notifications.dispatcher import RecordingNotifier
from buddyup.models.partnership import PartnershipStatus
from buddyup.store.memory import MemoryStore
from buddyup.tests.factories import ALICE, BOB, START


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, notifier, clock):
    return Engine(store, notifier, clock)


@pytest.fixture
def active_partnership(engine, notifier):
    """ALICE (initiator) and BOB (receiver), accepted."""
    partnership = engine.partnerships.invite(ALICE, BOB)
    partnership = engine.partnerships.accept(partnership.partnership_id, BOB)
    assert partnership.status == PartnershipStatus.ACTIVE
    notifier.clear()
    return partnership


@pytest.fixture
def active_habit(engine, notifier, active_partnership):
    """Daily habit proposed by ALICE and approved by BOB; ALICE holds the turn."""
    habit = engine.habits.propose_habit(ALICE, active_partnership.partnership_id, "Morning run")
    habit = engine.habits.resolve_approval(habit.habit_id, BOB, "approve")
    notifier.clear()
    return habit


@pytest.fixture
def app(engine):
    from buddyup.main import create_app

    return create_app(engine=engine)


@pytest.fixture
def client(app):
    return TestClient(app)


