"""Timeline event models.

Chat-style partnership history: messages interleaved with habit and goal
events.
"""

from datetime import datetime
from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field


TimelineEventType = Literal[
    "message",
    "system_message",
    "habit_created",
    "habit_approved",
    "habit_rejected",
    "goal_set",
    "goal_completed",
    "goal_missed",
    "goal_skipped",
]


class TimelineEvent(BaseModel):
    """Normalized timeline event."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Stable event ID (source kind + source ID)")
    ts: datetime = Field(..., description="Event timestamp (ISO datetime)")
    type: TimelineEventType = Field(..., description="Event type")
    actor_user_id: Optional[str] = Field(None, description="User who performed action")
    partnership_id: str = Field(..., description="Partnership ID")
    summary: str = Field(..., description="Human-readable summary")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Event-specific metadata")


class TimelineResponse(BaseModel):
    """Timeline API response."""

    model_config = ConfigDict(frozen=True)

    partnership_id: str
    events: list[TimelineEvent]
