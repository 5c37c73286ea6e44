"""
Stream types and data classes.

Connection state of the subscriber and the events decoded from inbound
frames.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionPhase(Enum):
    """Phase of the stream connection lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionState:
    """Current connection state.

    ``attempt`` and ``next_delay`` are only meaningful while reconnecting.
    """

    phase: ConnectionPhase
    attempt: int = 0
    next_delay: float | None = None

    @classmethod
    def disconnected(cls) -> ConnectionState:
        return cls(ConnectionPhase.DISCONNECTED)

    @classmethod
    def connecting(cls, attempt: int = 0) -> ConnectionState:
        return cls(ConnectionPhase.CONNECTING, attempt=attempt)

    @classmethod
    def connected(cls) -> ConnectionState:
        return cls(ConnectionPhase.CONNECTED)

    @classmethod
    def reconnecting(cls, attempt: int, next_delay: float) -> ConnectionState:
        return cls(ConnectionPhase.RECONNECTING, attempt=attempt, next_delay=next_delay)

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED

    @property
    def is_active(self) -> bool:
        """Anything but Disconnected."""
        return self.phase is not ConnectionPhase.DISCONNECTED

    def __str__(self) -> str:
        if self.phase is ConnectionPhase.RECONNECTING:
            return f"reconnecting(attempt={self.attempt}, delay={self.next_delay}s)"
        return self.phase.value


class EventKind(Enum):
    """Top-level kind of a stream event."""

    COMMIT = "commit"
    IDENTITY = "identity"
    ACCOUNT = "account"
    UNKNOWN = "unknown"


class CommitOperation(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FrameDecodeError(ValueError):
    """Raised when an inbound frame cannot be decoded into a StreamEvent."""


@dataclass
class StreamEvent:
    """A decoded stream event.

    Ephemeral: consumed and discarded after dispatch.
    """

    did: str
    time_us: int
    kind: EventKind
    collection: str | None = None
    operation: CommitOperation | None = None
    rkey: str | None = None
    record: dict[str, Any] | None = None
    rev: str | None = None
    cid: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def uri(self) -> str | None:
        """Record URI ``at://{did}/{collection}/{rkey}`` for commit events."""
        if self.collection is None or self.rkey is None:
            return None
        return f"at://{self.did}/{self.collection}/{self.rkey}"

    @property
    def text(self) -> str | None:
        if self.record is None:
            return None
        value = self.record.get("text")
        return value if isinstance(value, str) else None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamEvent:
        """Build an event from a parsed frame.

        Raises:
            FrameDecodeError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise FrameDecodeError(f"Frame is not an object: {type(data).__name__}")

        try:
            did = data["did"]
            time_us = data["time_us"]
            kind_value = data["kind"]
        except KeyError as e:
            raise FrameDecodeError(f"Frame missing field {e}") from e

        if not isinstance(did, str) or not did:
            raise FrameDecodeError("Frame field 'did' must be a non-empty string")
        if isinstance(time_us, bool) or not isinstance(time_us, int):
            raise FrameDecodeError("Frame field 'time_us' must be an integer")

        try:
            kind = EventKind(kind_value)
        except ValueError:
            kind = EventKind.UNKNOWN

        event = cls(did=did, time_us=time_us, kind=kind, raw=data)

        commit = data.get("commit")
        if kind is EventKind.COMMIT:
            if not isinstance(commit, dict):
                raise FrameDecodeError("Commit frame missing 'commit' object")
            try:
                event.operation = CommitOperation(commit["operation"])
                event.collection = commit["collection"]
                event.rkey = commit["rkey"]
            except KeyError as e:
                raise FrameDecodeError(f"Commit missing field {e}") from e
            except ValueError as e:
                raise FrameDecodeError(f"Unknown commit operation: {commit.get('operation')}") from e

            record = commit.get("record")
            event.record = record if isinstance(record, dict) else None
            event.rev = commit.get("rev")
            event.cid = commit.get("cid")

        return event
