"""Exception types shared by the matching engine and its collaborators."""

from typing import Optional


class MicroMatchError(Exception):
    """Base class for all micromatch errors."""


class TransportError(MicroMatchError):
    """A messaging transport call failed.

    `code` carries the transport's own error identifier (e.g. Slack's
    `channel_not_found`) so callers can branch on it without parsing text.
    """

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or code)


class NameTakenError(TransportError):
    """Room creation failed because the requested name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__("name_taken", f"Room name already taken: {name}")


class AlreadyMemberError(TransportError):
    """Invite failed only because the participant is already in the room."""

    def __init__(self, code: str = "already_in_channel"):
        super().__init__(code)


class StoreError(MicroMatchError):
    """A persistent store operation failed."""


class CycleInProgressError(MicroMatchError):
    """A matching cycle was started while another one is still running."""


class ProvisionCancelled(MicroMatchError):
    """Provisioning of a unit was stopped because the cycle deadline expired."""
