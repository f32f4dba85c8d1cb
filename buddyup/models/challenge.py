"""
buddyup/models/challenge.py
Challenge and completion models.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from buddyup.models.habit import Habit


class ChallengeStatus(str, Enum):
    """open -> closed once both partners have recorded an outcome"""

    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CompletionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    MISSED = "MISSED"
    SKIPPED = "SKIPPED"


Difficulty = Literal["easy", "just_right", "hard", "impossible"]
Mood = Literal["bored", "tired", "sleepy", "happy", "energized", "excited"]

DIFFICULTY_VALUES = ("easy", "just_right", "hard", "impossible")
MOOD_VALUES = ("bored", "tired", "sleepy", "happy", "energized", "excited")


class FeelingTags(BaseModel):
    """
    How a partner felt about a goal.

    Older clients stored a bare array of strings; those still load: known
    difficulty and mood words are lifted into the structured fields and
    anything else lands in `legacy_tags`. Writes always use this shape.
    """

    model_config = ConfigDict(frozen=True)

    difficulty: Optional[Difficulty] = None
    mood: Optional[Mood] = None
    legacy_tags: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shapes(cls, data: Any) -> Any:
        if isinstance(data, str):
            text = data.strip()
            if not text:
                return {}
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = [part.strip() for part in text.split(",") if part.strip()]

        if isinstance(data, (list, tuple)):
            return cls._from_tag_list([str(tag) for tag in data])

        if isinstance(data, dict):
            data = dict(data)
            # The completion form posted {"difficulty", "feeling"}.
            if "feeling" in data and "mood" not in data:
                data["mood"] = data.pop("feeling")
            for key in ("difficulty", "mood"):
                if data.get(key) == "":
                    data[key] = None
        return data

    @staticmethod
    def _from_tag_list(tags: List[str]) -> dict:
        structured: dict = {"legacy_tags": []}
        for raw in tags:
            tag = raw.strip().lower().replace(" ", "_")
            if tag in DIFFICULTY_VALUES and "difficulty" not in structured:
                structured["difficulty"] = tag
            elif tag in MOOD_VALUES and "mood" not in structured:
                structured["mood"] = tag
            elif raw.strip():
                structured["legacy_tags"].append(raw.strip())
        return structured

    def is_empty(self) -> bool:
        return self.difficulty is None and self.mood is None and not self.legacy_tags


class Challenge(BaseModel):
    """One dated goal under an active habit"""

    model_config = ConfigDict(frozen=True)

    challenge_id: str = Field(description="UUID")
    habit_id: str
    created_by: str
    title: str = Field(max_length=200)
    description: Optional[str] = None
    due_date: date
    status: ChallengeStatus = Field(default=ChallengeStatus.OPEN)
    closed_at: Optional[datetime] = None
    aggregate_applied: bool = Field(default=False, description="Close already applied to the habit (turn, counters)")
    created_at: datetime


class Completion(BaseModel):
    """One partner's recorded outcome for a challenge"""

    model_config = ConfigDict(frozen=True)

    completion_id: str = Field(description="UUID")
    challenge_id: str
    user_id: str
    status: CompletionStatus = Field(default=CompletionStatus.COMPLETED)
    reflection: Optional[str] = None
    feeling_tags: Optional[FeelingTags] = None
    photo_ref: Optional[str] = None
    recorded_at: datetime
    seq: int = Field(default=0, description="Store-assigned write order")


class CreateChallengeRequest(BaseModel):
    habit_id: str
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class CompleteChallengeRequest(BaseModel):
    reflection: Optional[str] = Field(default=None, max_length=4000)
    feeling_tags: Optional[FeelingTags] = None
    photo_ref: Optional[str] = Field(default=None, max_length=500, description="Reference returned by the upload service")


class RecordMissRequest(BaseModel):
    status: Literal["MISSED", "SKIPPED"] = "MISSED"
    reflection: Optional[str] = Field(default=None, max_length=4000)


class ChallengeDetail(BaseModel):
    """A challenge with both partners' recorded outcomes"""

    model_config = ConfigDict(frozen=True)

    challenge: Challenge
    completions: Tuple[Completion, ...] = ()


class RecordOutcome(BaseModel):
    """Result of recording an outcome; `cycle_closed` is true for the closing record"""

    model_config = ConfigDict(frozen=True)

    completion: Completion
    challenge: Challenge
    habit: Habit
    cycle_closed: bool = False
