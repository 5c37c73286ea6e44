"""
Typed event bus.

Cross-component notifications (account switched, session expired,
stream state changed) are published here. The bus is owned by the
ClientContext; there is no global registry.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .stream.types import ConnectionState

logger = logging.getLogger(__name__)

E = TypeVar("E")


class AccountEventKind(Enum):
    """What happened to an account."""

    LOGGED_IN = "logged_in"
    LOGGED_OUT = "logged_out"
    SWITCHED = "switched"
    SESSION_EXPIRED = "session_expired"


@dataclass
class AccountEvent:
    kind: AccountEventKind
    account_id: str | None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass
class ConnectionStateChanged:
    state: ConnectionState
    previous: ConnectionState
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass
class StreamFatalError:
    error: Exception
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class EventBus:
    """Synchronous publish/subscribe keyed by event type.

    Example:
        >>> bus = EventBus()
        >>> unsubscribe = bus.subscribe(AccountEvent, lambda e: print(e.kind))
        >>> bus.publish(AccountEvent(AccountEventKind.SWITCHED, "did:plc:abc"))
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type[E], callback: Callable[[E], None]) -> Callable[[], None]:
        """Register a callback for one event type.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[event_type].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: object) -> None:
        """Deliver an event to every subscriber of its type, in subscription order.

        A failing callback is logged and does not stop delivery to the others.
        """
        for callback in list(self._subscribers.get(type(event), [])):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed for {type(event).__name__}")

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))
