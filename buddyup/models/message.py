"""
buddyup/models/message.py
Partnership chat messages (append-only).
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from enum import Enum


class MessageType(str, Enum):
    TEXT = "TEXT"
    SYSTEM = "SYSTEM"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str = Field(description="UUID")
    partnership_id: str
    sender_id: str
    content: str = Field(min_length=1, max_length=4000)
    message_type: MessageType = Field(default=MessageType.TEXT)
    created_at: datetime
    seq: int = Field(default=0, description="Store-assigned write order")


class PostMessageRequest(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
