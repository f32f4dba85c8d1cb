"""
buddyup/models/feed.py
Activity feed models: the immutable snapshot the feed is derived from and
the items it produces.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from buddyup.models.challenge import Challenge, Completion
from buddyup.models.habit import Habit
from buddyup.models.partnership import Partnership


class ActionNeeded(str, Enum):
    SET_GOAL = "SET_GOAL"
    COMPLETE_GOAL = "COMPLETE_GOAL"
    WAITING = "WAITING"


class FeedItemKind(str, Enum):
    HABIT_APPROVAL = "habit_approval"
    BUDDY_HABITS = "buddy_habits"
    BUDDY_INVITE = "buddy_invite"
    TURN_PASSED = "turn_passed"
    HABIT_PENDING = "habit_pending"
    HABIT_DECLINED = "habit_declined"


# Lower = shown first
FEED_PRIORITIES = {
    FeedItemKind.HABIT_APPROVAL: 1,
    FeedItemKind.BUDDY_HABITS: 2,
    FeedItemKind.BUDDY_INVITE: 3,
    FeedItemKind.TURN_PASSED: 3,
    FeedItemKind.HABIT_PENDING: 4,
    FeedItemKind.HABIT_DECLINED: 5,
}


class FeedSnapshot(BaseModel):
    """Everything visible to one viewer at read time."""

    model_config = ConfigDict(frozen=True)

    partnerships: Tuple[Partnership, ...] = ()
    habits: Tuple[Habit, ...] = ()
    challenges: Tuple[Challenge, ...] = ()
    completions: Tuple[Completion, ...] = ()


class HabitActionStatus(BaseModel):
    """One habit inside a buddy_habits item"""

    model_config = ConfigDict(frozen=True)

    habit_id: str
    name: str
    action_needed: ActionNeeded
    streak_count: int
    holds_turn: bool
    today_challenge_id: Optional[str] = None
    today_challenge_title: Optional[str] = None
    next_due_date: Optional[date] = Field(default=None, description="Day the next goal would be set for")


class ActivityItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str = Field(description="Stable dedup key")
    kind: FeedItemKind
    priority: int
    timestamp: datetime
    partnership_id: str
    buddy_id: str
    habit_id: Optional[str] = None
    habit_name: Optional[str] = None
    habits: Tuple[HabitActionStatus, ...] = ()


class FeedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    items: Tuple[ActivityItem, ...]
    computed_at: datetime


class UpdatesSummary(BaseModel):
    """What changed for a viewer since a client's last poll"""

    model_config = ConfigDict(frozen=True)

    has_updates: bool
    partnerships: int = 0
    habits: int = 0
    completions: int = 0
    messages: int = 0
    checked_at: datetime
