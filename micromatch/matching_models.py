# pydantic models for the matching system
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field


class UnitKind(str, Enum):
    PAIR = "pair"
    GROUP = "group"


class CyclePhase(str, Enum):
    """Ordered phases of one matching cycle run."""

    COLLECTED = "collected"
    NORMALIZED = "normalized"
    BUCKETED = "bucketed"
    PAIRED = "paired"
    GROUPED = "grouped"
    PROVISIONED = "provisioned"
    LEDGERED = "ledgered"


class TopicBucket(BaseModel):
    """Participants interested in one canonical topic, split by preference.

    Fields:
        topic: Canonical topic string.
        pairwise: Participants who asked for a 1:1 conversation.
        group: Participants who asked for a group conversation, plus any
            pairwise leftover folded in by the pairing allocator.
    """

    topic: str
    pairwise: Set[str] = Field(default_factory=set)
    group: Set[str] = Field(default_factory=set)


class AssignmentUnit(BaseModel):
    """One planned room's worth of participants.

    Fields:
        topic: Canonical topic shared by all members.
        kind: PAIR (exactly two members) or GROUP (two or more).
        members: Ordered participant ids.
        batch: 1-based batch number when a topic's group was split into
            several batches, otherwise None.
        room_id: Transport room id, set once the room is provisioned.
    """

    topic: str
    kind: UnitKind
    members: List[str]
    batch: Optional[int] = None
    room_id: Optional[str] = None


class ProvisionOutcome(BaseModel):
    """Result of provisioning a single unit."""

    unit: AssignmentUnit
    ok: bool
    room_id: Optional[str] = None
    error: Optional[str] = None
    abandoned: bool = False


class CycleResult(BaseModel):
    """What a matching cycle hands back to the orchestrator.

    Fields:
        created_units: Units whose rooms were created and whose members were invited.
        unmatched: Cycle participants included in no created unit.
        not_enough: True when fewer than two participants responded.
        week_bucket: ISO Monday date the unmatched list was recorded under.
        failed_units: Units abandoned after a transport error.
        abandoned_units: Units never finished because the provisioning deadline expired.
        phase: Last phase the run completed.
    """

    created_units: List[AssignmentUnit] = Field(default_factory=list)
    unmatched: List[str] = Field(default_factory=list)
    not_enough: bool = False
    week_bucket: str = ""
    failed_units: List[AssignmentUnit] = Field(default_factory=list)
    abandoned_units: List[AssignmentUnit] = Field(default_factory=list)
    phase: CyclePhase = CyclePhase.COLLECTED

    @property
    def matched(self) -> Set[str]:
        return {m for unit in self.created_units for m in unit.members}


class TopicMapping(BaseModel):
    raw: str
    canonical: str


class CanonicalTopics(BaseModel):
    """Structured output expected from the canonicalization model."""

    mappings: List[TopicMapping] = Field(default_factory=list)


class ConversationStarters(BaseModel):
    """Structured output expected from the starter-question model."""

    questions: List[str] = Field(default_factory=list)
