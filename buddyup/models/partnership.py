"""
buddyup/models/partnership.py
Partnership models: two users, one accountability relationship.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class PartnershipStatus(str, Enum):
    """Partnership lifecycle: pending -> active <-> paused -> completed"""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


# Only these count toward the one-live-partnership-per-pair rule.
NON_TERMINAL_STATUSES = (PartnershipStatus.PENDING, PartnershipStatus.ACTIVE)


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for an unordered pair of users."""
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"


class Partnership(BaseModel):
    """Pairing of an initiator (party_a) and a receiver (party_b)."""

    model_config = ConfigDict(frozen=True)

    partnership_id: str = Field(description="UUID")
    party_a: str = Field(description="Initiator user ID")
    party_b: str = Field(description="Receiver user ID")
    status: PartnershipStatus = Field(default=PartnershipStatus.PENDING)
    created_at: datetime
    updated_at: datetime
    accepted_at: Optional[datetime] = None

    @property
    def members(self) -> Tuple[str, str]:
        return (self.party_a, self.party_b)

    @property
    def pair_key(self) -> str:
        return pair_key(self.party_a, self.party_b)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def other_member(self, user_id: str) -> str:
        if user_id == self.party_a:
            return self.party_b
        if user_id == self.party_b:
            return self.party_a
        raise ValueError(f"User {user_id} is not a member of partnership {self.partnership_id}")


class InvitePartnerRequest(BaseModel):
    """Invite another user by their ID"""

    receiver_id: str = Field(min_length=1, max_length=100)


class AcceptInviteCodeRequest(BaseModel):
    """Join a partnership through someone's invite code"""

    code: str = Field(min_length=4, max_length=32)


class UpdatePartnershipStatusRequest(BaseModel):
    status: PartnershipStatus
