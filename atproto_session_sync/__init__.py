"""
AT Protocol Session Sync

Resilient session and real-time synchronization core for an AT Protocol
client.

Provides:
- Authenticated requests with transparent, single-flight token refresh
- A self-healing stream subscription with backoff, cursor resumption
  and a live DID filter
- Typed events for account and connection changes

Usage:

    >>> from atproto_session_sync import ClientConfig, ClientContext, HttpRequest
    >>> async with ClientContext.create(ClientConfig.load()) as ctx:
    ...     await ctx.login("alice.bsky.social", "app-password")
    ...     timeline = await ctx.executor.execute_json(
    ...         HttpRequest.get(f"{ctx.config.service_url}/xrpc/app.bsky.feed.getTimeline")
    ...     )
    ...
    ...     queue = asyncio.Queue()
    ...     subscriber = ctx.create_subscriber(queue_handoff(queue))
    ...     await subscriber.start()
"""

from .config import ClientConfig
from .events import (
    AccountEvent,
    AccountEventKind,
    ConnectionStateChanged,
    EventBus,
    StreamFatalError,
)
from .exceptions import (
    ConnectivityExhaustedError,
    DecodeError,
    ExpiredCredentialError,
    LoginError,
    NetworkError,
    PermissionDeniedError,
    RequestFailedError,
    ServerRejectedError,
    SessionExpiredError,
    SessionSyncError,
    StoreIOError,
    UnauthenticatedError,
)
from .http import HttpRequest, HttpResponse, RequestExecutor
from .session import FailureClass, Session, SessionStore, TokenRefresher
from .session.context import ClientContext
from .stream import (
    ConnectionState,
    EventDispatcher,
    FilterSet,
    StreamEvent,
    StreamSubscriber,
    queue_handoff,
)

__version__ = "0.1.0"

__all__ = [
    # Context
    "ClientConfig",
    "ClientContext",
    # Session
    "Session",
    "SessionStore",
    "FailureClass",
    "TokenRefresher",
    # Requests
    "HttpRequest",
    "HttpResponse",
    "RequestExecutor",
    # Stream
    "ConnectionState",
    "StreamEvent",
    "FilterSet",
    "EventDispatcher",
    "StreamSubscriber",
    "queue_handoff",
    # Events
    "EventBus",
    "AccountEvent",
    "AccountEventKind",
    "ConnectionStateChanged",
    "StreamFatalError",
    # Exceptions
    "SessionSyncError",
    "RequestFailedError",
    "ExpiredCredentialError",
    "PermissionDeniedError",
    "NetworkError",
    "ServerRejectedError",
    "DecodeError",
    "SessionExpiredError",
    "UnauthenticatedError",
    "LoginError",
    "ConnectivityExhaustedError",
    "StoreIOError",
]
