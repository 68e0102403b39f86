"""
Pytest fixtures and in-test fakes for the transport and AI capabilities.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from micromatch.errors import AlreadyMemberError, NameTakenError, TransportError
from micromatch.store import SqlStore


FRIDAY = datetime(2026, 10, 16, 9, 30, tzinfo=timezone.utc)


class FakeTransport:
    """Records calls; failures are injected per room-name fragment or participant."""

    def __init__(
        self,
        taken_names=(),
        fail_create=(),
        fail_invite=(),
        already_member=(),
        fail_post=(),
        block_create: Optional[Dict[str, threading.Event]] = None,
    ):
        self.taken_names = set(taken_names)
        self.fail_create = tuple(fail_create)
        self.fail_invite = set(fail_invite)
        self.already_member = set(already_member)
        self.fail_post = set(fail_post)
        self.block_create = block_create or {}
        self.rooms: Dict[str, str] = {}
        self.members: Dict[str, List[str]] = {}
        self.create_attempts: List[str] = []
        self.messages: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def create_room(self, name: str, private: bool = True) -> str:
        for fragment, event in self.block_create.items():
            if fragment in name:
                event.wait(timeout=5)
        with self._lock:
            self.create_attempts.append(name)
            if name in self.taken_names or name in self.rooms.values():
                raise NameTakenError(name)
            if any(fragment in name for fragment in self.fail_create):
                raise TransportError("restricted_action")
            room_id = f"C{len(self.rooms) + 1:03d}"
            self.rooms[room_id] = name
            self.members[room_id] = []
            return room_id

    def invite_members(self, room_id: str, participant_ids: List[str]) -> None:
        with self._lock:
            for pid in participant_ids:
                if pid in self.fail_invite:
                    raise TransportError("user_not_found")
                if pid in self.already_member:
                    raise AlreadyMemberError()
                self.members[room_id].append(pid)

    def post_message(self, room_id: str, text: str, blocks=None) -> None:
        with self._lock:
            if room_id in self.fail_post:
                raise TransportError("channel_not_found")
            self.messages.append({"channel": room_id, "text": text, "blocks": blocks})

    def messages_to(self, channel: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["channel"] == channel]


class StaticCanonicalizer:
    def __init__(self, mapping=None, error: Optional[Exception] = None):
        self.mapping = mapping or {}
        self.error = error
        self.calls: List[List[str]] = []

    def canonicalize(self, topics):
        self.calls.append(list(topics))
        if self.error is not None:
            raise self.error
        return dict(self.mapping)


class StaticStarters:
    def __init__(self, questions=None, error: Optional[Exception] = None):
        self.questions = questions or []
        self.error = error

    def generate(self, topic, count):
        if self.error is not None:
            raise self.error
        return list(self.questions)


@pytest.fixture
def store():
    return SqlStore("sqlite://")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def friday():
    return FRIDAY
