"""
buddyup/features/notifications/dispatcher.py
Fire-and-forget notifications for partnership, habit and goal events.

The engine calls NotificationDispatcher.send after a transition has been
persisted. Delivery failures are logged and counted, never raised: a push
gateway outage must not fail a goal completion.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from buddyup.core.clock import SystemClock
from buddyup.core.config import settings
from buddyup.core.logging import log_event
from buddyup.core.metrics import notifications_total


class NotificationKind(str, Enum):
    BUDDY_INVITE_RECEIVED = "BUDDY_INVITE_RECEIVED"
    BUDDY_INVITE_ACCEPTED = "BUDDY_INVITE_ACCEPTED"
    GOAL_SET_FOR_YOU = "GOAL_SET_FOR_YOU"
    GOAL_COMPLETED_BY_BUDDY = "GOAL_COMPLETED_BY_BUDDY"
    HABIT_NEEDS_APPROVAL = "HABIT_NEEDS_APPROVAL"
    HABIT_APPROVED = "HABIT_APPROVED"
    HABIT_REJECTED = "HABIT_REJECTED"
    NEW_MESSAGE = "NEW_MESSAGE"
    TURN_TO_SET_GOAL = "TURN_TO_SET_GOAL"
    PARTNERSHIP_PAUSED = "PARTNERSHIP_PAUSED"
    PARTNERSHIP_RESUMED = "PARTNERSHIP_RESUMED"


# kind -> (title, body, action url); formatted with the event context
_TEMPLATES: Dict[NotificationKind, tuple] = {
    NotificationKind.BUDDY_INVITE_RECEIVED: (
        "New Buddy Invitation!",
        "{actor_name} wants to be your accountability buddy",
        "/buddies",
    ),
    NotificationKind.BUDDY_INVITE_ACCEPTED: (
        "Invitation accepted",
        "{actor_name} is now your accountability buddy",
        "/buddies",
    ),
    NotificationKind.GOAL_SET_FOR_YOU: (
        "New goal for today",
        '{actor_name} set a goal for "{habit_name}": {challenge_title}',
        "/challenges/{challenge_id}",
    ),
    NotificationKind.GOAL_COMPLETED_BY_BUDDY: (
        "Goal Completed!",
        '{actor_name} completed: "{challenge_title}"',
        "/dashboard",
    ),
    NotificationKind.HABIT_NEEDS_APPROVAL: (
        "New habit proposal",
        '{actor_name} proposed "{habit_name}"',
        "/dashboard",
    ),
    NotificationKind.HABIT_APPROVED: (
        "Habit approved",
        '{actor_name} approved "{habit_name}"',
        "/dashboard",
    ),
    NotificationKind.HABIT_REJECTED: (
        "Habit declined",
        '{actor_name} declined "{habit_name}"',
        "/dashboard",
    ),
    NotificationKind.NEW_MESSAGE: (
        "Message from {actor_name}",
        "You have a new message from your buddy",
        "/partnerships/{partnership_id}/chat",
    ),
    NotificationKind.TURN_TO_SET_GOAL: (
        "Your Turn to Set Today's Goal!",
        'Set a goal for "{habit_name}"',
        "/dashboard",
    ),
    NotificationKind.PARTNERSHIP_PAUSED: (
        "Partnership paused",
        "{actor_name} paused your partnership",
        "/buddies",
    ),
    NotificationKind.PARTNERSHIP_RESUMED: (
        "Partnership resumed",
        "{actor_name} resumed your partnership",
        "/buddies",
    ),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return ""


class Notification(BaseModel):
    """Rendered notification ready for delivery."""

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    recipient_id: str
    title: str
    body: str
    url: str
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


def build_notification(
    kind: NotificationKind,
    recipient_id: str,
    context: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Notification:
    ctx = dict(context or {})
    values = _SafeDict({k: "" if v is None else str(v) for k, v in ctx.items()})
    title, body, url = _TEMPLATES[kind]
    return Notification(
        kind=kind,
        recipient_id=recipient_id,
        title=title.format_map(values),
        body=body.format_map(values),
        url=url.format_map(values),
        context=ctx,
        created_at=now or SystemClock().now(),
    )


class Notifier:
    """Delivery backend. Implementations may raise; the dispatcher contains it."""

    name = "base"

    def notify(self, notification: Notification) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release connections held by the backend."""


class LogNotifier(Notifier):
    """Writes notifications to the application log (development default)."""

    name = "log"

    def notify(self, notification: Notification) -> None:
        log_event(
            "info",
            "notification.sent",
            user_id=notification.recipient_id,
            event_type=notification.kind.value,
            extra={"title": notification.title, "body": notification.body},
        )


class QueueNotifier(Notifier):
    """Enqueues push delivery on an RQ queue; a worker POSTs to the gateway."""

    name = "queue"

    def __init__(self, queue):
        self.queue = queue

    @classmethod
    def from_settings(cls, cfg=None) -> "QueueNotifier":
        from redis import Redis
        from rq import Queue

        cfg = cfg or settings
        connection = Redis.from_url(cfg.REDIS_URL)
        return cls(Queue(cfg.NOTIFICATIONS_QUEUE, connection=connection))

    def notify(self, notification: Notification) -> None:
        self.queue.enqueue(
            "buddyup.workers.push_delivery.deliver_push",
            notification.model_dump(mode="json"),
            job_timeout="1m",
            result_ttl=3600,
        )

    def close(self) -> None:
        self.queue.connection.close()


class RecordingNotifier(Notifier):
    """Keeps every notification in memory. Used by tests."""

    name = "recording"

    def __init__(self):
        self.sent: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.sent.append(notification)

    def kinds_for(self, recipient_id: str) -> List[NotificationKind]:
        return [n.kind for n in self.sent if n.recipient_id == recipient_id]

    def clear(self):
        self.sent.clear()


def build_notifier(mode: Optional[str] = None) -> Notifier:
    mode = (mode or settings.NOTIFICATIONS_MODE or "log").lower()
    if mode == "queue":
        return QueueNotifier.from_settings()
    return LogNotifier()


class NotificationDispatcher:
    """Renders and hands off notifications without ever failing the caller."""

    def __init__(self, notifier: Notifier, clock=None):
        self.notifier = notifier
        self.clock = clock or SystemClock()

    def send(self, recipient_id: str, kind: NotificationKind, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Returns:
            True if the notifier accepted the notification, False otherwise
        """
        try:
            notification = build_notification(kind, recipient_id, context, now=self.clock.now())
            self.notifier.notify(notification)
        except Exception as e:
            notifications_total.inc(labels={"event_kind": kind.value, "outcome": "failed"})
            log_event(
                "warning",
                "notification.failed",
                user_id=recipient_id,
                event_type=kind.value,
                error_code="notification_failed",
                extra={"notifier": self.notifier.name, "error": str(e)},
            )
            return False
        notifications_total.inc(labels={"event_kind": kind.value, "outcome": "sent"})
        return True
