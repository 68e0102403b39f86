"""
Messaging transport used to create rooms, invite members and post messages.

`SlackTransport` talks to the Slack Web API over httpx. `RecordingTransport`
keeps everything in memory and is used for dry runs.
"""
from __future__ import annotations

import itertools
import threading
from typing import Any, Dict, List, Optional, Protocol

import httpx
from loguru import logger

from .errors import AlreadyMemberError, NameTakenError, TransportError


ALREADY_MEMBER_CODES = {"already_in_channel", "cant_invite_self"}


class MessagingTransport(Protocol):
    def create_room(self, name: str, private: bool = True) -> str:
        ...

    def invite_members(self, room_id: str, participant_ids: List[str]) -> None:
        ...

    def post_message(self, room_id: str, text: str, blocks: Optional[List[Dict[str, Any]]] = None) -> None:
        ...


class SlackTransport:
    """Slack Web API client covering the three calls the matcher needs."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://slack.com/api",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            token: Bot token (xoxb-...).
            api_url: Base URL of the Web API.
            timeout: Per-request timeout in seconds.
            client: Pre-built httpx client, mainly for tests.
        """
        if not token:
            raise ValueError("A Slack bot token is required")
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self.headers = {"Authorization": f"Bearer {token}"}

    def close(self) -> None:
        self.client.close()

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.client.post(f"{self.api_url}/{method}", json=payload, headers=self.headers)
        except httpx.TimeoutException as e:
            raise TransportError("timeout", f"{method} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError("http_error", f"{method} failed: {e}") from e

        if resp.status_code == 429:
            raise TransportError("ratelimited", f"{method} was rate limited")
        if resp.status_code >= 400:
            raise TransportError("http_error", f"{method} returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TransportError("invalid_response", f"{method} returned non-JSON body") from e
        if not data.get("ok"):
            code = str(data.get("error") or "unknown_error")
            raise TransportError(code, f"{method} failed: {code}")
        return data

    def create_room(self, name: str, private: bool = True) -> str:
        try:
            data = self._call("conversations.create", {"name": name, "is_private": private})
        except TransportError as e:
            if e.code == "name_taken":
                raise NameTakenError(name) from e
            raise
        room_id = (data.get("channel") or {}).get("id")
        if not room_id:
            raise TransportError("invalid_response", "conversations.create returned no channel")
        return room_id

    def invite_members(self, room_id: str, participant_ids: List[str]) -> None:
        try:
            self._call("conversations.invite", {"channel": room_id, "users": ",".join(participant_ids)})
        except TransportError as e:
            if e.code in ALREADY_MEMBER_CODES:
                raise AlreadyMemberError(e.code) from e
            raise

    def post_message(self, room_id: str, text: str, blocks: Optional[List[Dict[str, Any]]] = None) -> None:
        payload: Dict[str, Any] = {"channel": room_id, "text": text}
        if blocks:
            payload["blocks"] = blocks
        self._call("chat.postMessage", payload)


class RecordingTransport:
    """In-memory transport: rooms get sequential ids and all calls are kept."""

    def __init__(self, prefix: str = "dry"):
        self.prefix = prefix
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.rooms: Dict[str, str] = {}
        self.members: Dict[str, List[str]] = {}
        self.messages: List[Dict[str, Any]] = []

    def create_room(self, name: str, private: bool = True) -> str:
        with self._lock:
            if name in self.rooms.values():
                raise NameTakenError(name)
            room_id = f"{self.prefix}-{next(self._ids):04d}"
            self.rooms[room_id] = name
            self.members[room_id] = []
        logger.debug(f"[dry-run] created room {name} -> {room_id}")
        return room_id

    def invite_members(self, room_id: str, participant_ids: List[str]) -> None:
        with self._lock:
            members = self.members.setdefault(room_id, [])
            if all(p in members for p in participant_ids):
                raise AlreadyMemberError()
            for p in participant_ids:
                if p not in members:
                    members.append(p)

    def post_message(self, room_id: str, text: str, blocks: Optional[List[Dict[str, Any]]] = None) -> None:
        with self._lock:
            self.messages.append({"channel": room_id, "text": text, "blocks": blocks})
        logger.debug(f"[dry-run] message to {room_id}: {text[:60]!r}")
