"""
Real-time stream subscription.

Provides a self-healing WebSocket subscription to the event stream with
exponential-backoff reconnection, cursor-based resumption and a live
DID filter.
"""

from .backoff import AsyncioScheduler, BackoffPolicy, ManualScheduler, Scheduler
from .connection import (
    AiohttpStreamConnector,
    StreamClosedError,
    StreamConnection,
    StreamConnector,
    build_subscribe_url,
)
from .cursor import CursorStore, FileCursorStore, InMemoryCursorStore
from .dispatcher import EventDispatcher, queue_handoff
from .filters import FilterSet
from .subscriber import StreamSubscriber
from .types import (
    CommitOperation,
    ConnectionPhase,
    ConnectionState,
    EventKind,
    FrameDecodeError,
    StreamEvent,
)

__all__ = [
    # Types
    "ConnectionPhase",
    "ConnectionState",
    "EventKind",
    "CommitOperation",
    "StreamEvent",
    "FrameDecodeError",
    # Components
    "FilterSet",
    "EventDispatcher",
    "queue_handoff",
    "StreamSubscriber",
    # Cursor
    "CursorStore",
    "InMemoryCursorStore",
    "FileCursorStore",
    # Backoff
    "BackoffPolicy",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    # Transport
    "StreamConnection",
    "StreamConnector",
    "StreamClosedError",
    "AiohttpStreamConnector",
    "build_subscribe_url",
]
