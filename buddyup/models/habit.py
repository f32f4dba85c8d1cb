"""
buddyup/models/habit.py
Habit models: a commitment shared by both partners, plus the turn pointer.
"""

from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date, datetime
from enum import Enum
from typing import List, Literal, Optional

from buddyup.models.partnership import Partnership


class HabitStatus(str, Enum):
    """Habit lifecycle: pending -> active -> completed, or pending/active -> cancelled"""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKDAYS = "WEEKDAYS"
    CUSTOM = "CUSTOM"


class TurnSlot(str, Enum):
    """Which side of the partnership may set the next goal."""

    PARTY_A = "PARTY_A"
    PARTY_B = "PARTY_B"

    def flipped(self) -> "TurnSlot":
        return TurnSlot.PARTY_B if self is TurnSlot.PARTY_A else TurnSlot.PARTY_A

    @classmethod
    def for_user(cls, partnership: Partnership, user_id: str) -> "TurnSlot":
        if user_id == partnership.party_a:
            return cls.PARTY_A
        if user_id == partnership.party_b:
            return cls.PARTY_B
        raise ValueError(f"User {user_id} is not a member of partnership {partnership.partnership_id}")

    def user_in(self, partnership: Partnership) -> str:
        return partnership.party_a if self is TurnSlot.PARTY_A else partnership.party_b


class Habit(BaseModel):
    """Habit scoped to one partnership. `version` is the compare-and-set token."""

    model_config = ConfigDict(frozen=True)

    habit_id: str = Field(description="UUID")
    partnership_id: str
    name: str = Field(max_length=200)
    description: Optional[str] = None
    category: str = Field(default="general", max_length=100)
    frequency: Frequency = Field(default=Frequency.DAILY)
    custom_days: List[int] = Field(default_factory=list, description="Weekdays 0-6 for CUSTOM frequency")
    duration_days: Optional[int] = Field(default=None, description="Fixed length in days; None is open-ended")
    end_date: Optional[date] = None
    created_by: str
    status: HabitStatus = Field(default=HabitStatus.PENDING)
    current_turn: TurnSlot
    streak_count: int = 0
    longest_streak: int = 0
    completed_cycles: int = 0
    total_records: int = 0
    last_applied_seq: int = Field(default=0, description="Highest completion seq folded into the counters")
    pass_count: int = 0
    last_passed_by: Optional[str] = None
    passed_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    start_date: Optional[date] = None
    resolved_at: Optional[datetime] = Field(default=None, description="When the proposal was approved or rejected")
    dismissed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0


class ProposeHabitRequest(BaseModel):
    """Request to propose a habit to your buddy"""

    partnership_id: str
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: str = Field(default="general", min_length=1, max_length=100)
    frequency: Frequency = Field(default=Frequency.DAILY)
    custom_days: List[int] = Field(default_factory=list)
    duration_days: Optional[int] = Field(default=None, ge=1, le=3650)

    @model_validator(mode="after")
    def _check_custom_days(self):
        if any(day < 0 or day > 6 for day in self.custom_days):
            raise ValueError("custom_days must be weekday numbers 0-6")
        if self.frequency == Frequency.CUSTOM and not self.custom_days:
            raise ValueError("CUSTOM frequency requires custom_days")
        return self


class ApprovalRequest(BaseModel):
    action: Literal["approve", "reject"]
