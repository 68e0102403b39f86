from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Preference(str, Enum):
    """How a participant wants to meet people on a topic."""

    PAIRWISE = "pairwise"
    GROUP = "group"


class ParticipantStatus(str, Enum):
    """Persisted per-participant progress through the weekly round."""

    AWAITING_TOPICS = "awaiting_topics"
    RESPONDED = "responded"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    OPTED_OUT = "opted_out"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ParticipantResponse(BaseModel):
    """
    A participant's declared topics and pairing preference for one cycle.
    """

    participant_id: str
    topics: List[str] = Field(default_factory=list)
    preference: Preference = Preference.GROUP
    submitted_at: Optional[datetime] = None

    @field_validator("preference", mode="before")
    @classmethod
    def _default_preference(cls, value):
        # Missing preference means the participant is happy in a group
        if value is None or value == "":
            return Preference.GROUP
        return value


class RoomRecord(BaseModel):
    """
    A provisioned conversation room. Rooms are archived, never deleted.
    """

    room_id: str
    topic: Optional[str] = None
    kind: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    archived: bool = False
