"""
buddyup/features/engine.py
Composition root for the accountability engine.

Built once at startup (see main.py lifespan) and shared by the API routers
through app.state.engine. Tests build their own with a MemoryStore, a
FixedClock and a RecordingNotifier.
"""

from typing import Optional

from buddyup.core.clock import SystemClock
from buddyup.core.logging import log_event
from buddyup.features.challenges.service import ChallengeService
from buddyup.features.feed.service import FeedService
from buddyup.features.habits.service import HabitService
from buddyup.features.messages.service import MessageService
from buddyup.features.notifications.dispatcher import LogNotifier, NotificationDispatcher, Notifier
from buddyup.features.partnerships.service import PartnershipService
from buddyup.features.streaks.service import StreakAuditor
from buddyup.features.timeline.service import TimelineService
from buddyup.features.turns.service import TurnService


class Engine:
    def __init__(self, store, notifier: Optional[Notifier] = None, clock=None, cfg=None):
        self.store = store
        self.clock = clock or SystemClock()
        self.notifier = notifier or LogNotifier()
        self.dispatcher = NotificationDispatcher(self.notifier, self.clock)

        self.partnerships = PartnershipService(store, self.dispatcher, self.clock)
        self.messages = MessageService(store, self.dispatcher, self.clock, self.partnerships)
        self.habits = HabitService(store, self.dispatcher, self.clock, self.partnerships)
        self.turns = TurnService(store, self.dispatcher, self.clock, self.habits, self.messages)
        self.challenges = ChallengeService(store, self.dispatcher, self.clock, self.partnerships, self.habits)
        self.streaks = StreakAuditor(store)
        self.feed = FeedService(store, self.clock, cfg)
        self.timeline = TimelineService(store, self.partnerships)

    def close(self) -> None:
        """Release the store's connections and the notifier's broker connection."""
        self.store.close()
        self.notifier.close()
        log_event("info", "engine.closed", extra={"store": type(self.store).__name__, "notifier": self.notifier.name})
