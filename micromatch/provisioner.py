"""
Creates one room per assignment unit, invites its members and posts the
opening message.

Per unit:
    1) Create a private room named after topic + kind + date; on a name clash
       retry once with a random suffix.
    2) Invite members one by one. "Already a member" counts as success; any
       other error abandons the unit and none of its members count as matched.
    3) Record the room and its members in the store.
    4) Post the opening message with generated starters (generic fallback).

Setting `cancelled` stops a unit before its next create or invite call; it comes
back flagged `abandoned`, with an empty room recorded if one was already
created. A unit whose members are all invited is always finished.
Transport errors never escape `provision`; they come back as a failed ProvisionOutcome.
"""
from __future__ import annotations

import hashlib
import random
import re
import string
import threading
from datetime import datetime
from typing import List, Optional

from loguru import logger

from .ai import NoStarterGenerator, StarterGenerator
from .errors import AlreadyMemberError, NameTakenError, ProvisionCancelled, StoreError, TransportError
from .matching_models import AssignmentUnit, ProvisionOutcome, UnitKind
from .store import MatchStore
from .transport import MessagingTransport


MAX_ROOM_NAME_LENGTH = 80
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def sanitize_room_name(name: str) -> str:
    """Lowercase, replace anything outside [a-z0-9-] with '-', collapse and trim dashes, cap at 80 chars."""
    cleaned = re.sub(r"[^a-z0-9-]", "-", str(name or "").lower())
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned[:MAX_ROOM_NAME_LENGTH]


def date_stamp(when: datetime) -> str:
    return when.strftime("%Y%m%d")


def topic_slug(topic: str) -> str:
    """Name-safe form of a topic; topics with nothing left after sanitizing get a stable digest."""
    slug = sanitize_room_name(topic)
    if slug:
        return slug
    return "t" + hashlib.sha1(str(topic or "").encode("utf-8")).hexdigest()[:8]


def room_name(unit: AssignmentUnit, stamp: str, prefix: str = "micromatch") -> str:
    kind = "duo" if unit.kind == UnitKind.PAIR else "grp"
    suffix = f"-{unit.batch}" if unit.batch else ""
    return sanitize_room_name(f"{prefix}-{topic_slug(unit.topic)}-{kind}-{stamp}{suffix}")


def random_suffix(length: int = 4, rng: Optional[random.Random] = None) -> str:
    return "".join((rng or random).choice(SUFFIX_ALPHABET) for _ in range(length))


def opening_message(unit: AssignmentUnit, starters: List[str]) -> str:
    if unit.kind == UnitKind.PAIR:
        base = f"Welcome! Meet your Micro-Match for this week! You both share an interest in *{unit.topic}* :wave:"
    else:
        base = f"Welcome and meet your micro matches for this week! You are all interested in chatting about *{unit.topic}* :tada:"

    if starters:
        questions = "\nHere are some ice breakers:\n" + "\n".join(f"• {q}" for q in starters)
    else:
        questions = f"\nStarter: *What's something new you learned about {unit.topic} recently?*"

    return f"{base}{questions}\n\nReminder: this room gets archived next Monday. Let's make this micro match count!"


class RoomProvisioner:
    def __init__(
        self,
        transport: MessagingTransport,
        store: MatchStore,
        starters: Optional[StarterGenerator] = None,
        starter_count: int = 3,
        prefix: str = "micromatch",
        stamp: Optional[str] = None,
        rng: Optional[random.Random] = None,
        cancelled: Optional[threading.Event] = None,
    ):
        self.transport = transport
        self.store = store
        self.starters = starters or NoStarterGenerator()
        self.starter_count = starter_count
        self.prefix = prefix
        self.stamp = stamp or date_stamp(datetime.now())
        self.rng = rng
        self.cancelled = cancelled or threading.Event()

    def checkpoint(self) -> None:
        if self.cancelled.is_set():
            raise ProvisionCancelled()

    def create_room(self, name: str) -> str:
        try:
            return self.transport.create_room(name, private=True)
        except NameTakenError:
            self.checkpoint()
            alt = sanitize_room_name(f"{name[:MAX_ROOM_NAME_LENGTH - 5]}-{random_suffix(rng=self.rng)}")
            logger.debug(f"Room name {name} taken, retrying as {alt}")
            return self.transport.create_room(alt, private=True)

    def invite(self, room_id: str, members: List[str]) -> None:
        for member in members:
            self.checkpoint()
            try:
                self.transport.invite_members(room_id, [member])
            except AlreadyMemberError:
                continue

    def generate_starters(self, topic: str) -> List[str]:
        try:
            return list(self.starters.generate(topic, self.starter_count) or [])[: self.starter_count]
        except Exception as e:
            logger.warning(f"Starter generator failed for '{topic}' ({e}); using generic starter.")
            return []

    def record(self, room_id: str, unit: Optional[AssignmentUnit], topic: str, kind: str) -> None:
        try:
            self.store.upsert_room(room_id, topic=topic, kind=kind)
            if unit is not None:
                self.store.add_room_participants(room_id, unit.members)
        except StoreError as e:
            # The room exists on the transport either way
            logger.error(f"Could not record room {room_id} for '{topic}': {e}")

    def abandon(self, unit: AssignmentUnit, room_id: Optional[str] = None) -> ProvisionOutcome:
        logger.warning(f"Provisioning of '{unit.topic}' {unit.kind.value} unit stopped at the deadline")
        if room_id is not None:
            # Keep the empty room findable for archival
            self.record(room_id, None, unit.topic, unit.kind.value)
        return ProvisionOutcome(unit=unit, ok=False, room_id=room_id, error="deadline", abandoned=True)

    def provision(self, unit: AssignmentUnit) -> ProvisionOutcome:
        name = room_name(unit, self.stamp, self.prefix)
        kind = unit.kind.value
        try:
            self.checkpoint()
            room_id = self.create_room(name)
        except ProvisionCancelled:
            return self.abandon(unit)
        except TransportError as e:
            logger.error(f"Error creating {kind} room for topic '{unit.topic}': {e}")
            return ProvisionOutcome(unit=unit, ok=False, error=e.code)

        try:
            self.invite(room_id, unit.members)
        except ProvisionCancelled:
            return self.abandon(unit, room_id)
        except TransportError as e:
            logger.error(f"Error inviting members to {room_id} ('{unit.topic}'): {e}")
            self.record(room_id, None, unit.topic, kind)
            return ProvisionOutcome(unit=unit, ok=False, room_id=room_id, error=e.code)

        text = opening_message(unit, self.generate_starters(unit.topic))
        self.record(room_id, unit, unit.topic, kind)

        try:
            self.transport.post_message(room_id, text)
        except TransportError as e:
            logger.error(f"Error posting opening message to {room_id} ('{unit.topic}'): {e}")
            return ProvisionOutcome(unit=unit, ok=False, room_id=room_id, error=e.code)

        placed = unit.model_copy(update={"room_id": room_id})
        logger.info(f"Created {kind} room {room_id} ({name}) with {len(unit.members)} members")
        return ProvisionOutcome(unit=placed, ok=True, room_id=room_id)
