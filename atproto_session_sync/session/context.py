"""
Client context.

One ClientContext is constructed at startup and passed to whatever needs
it. It owns the session store, the HTTP transport, the single-flight
refresher, the request executor, the account registry and the event bus.

Usage:
    async with ClientContext.create(ClientConfig.load()) as ctx:
        await ctx.login("alice.bsky.social", "app-password")
        timeline = await ctx.executor.execute_json(HttpRequest.get(url))
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import ClientConfig
from ..events import AccountEvent, AccountEventKind, ConnectionStateChanged, EventBus, StreamFatalError
from ..exceptions import LoginError, NetworkError, SessionExpiredError, UnauthenticatedError
from ..http.executor import RequestExecutor
from ..http.transport import TRANSPORT_ERRORS, AiohttpTransport, HttpRequest, HttpTransport
from ..stream.backoff import Scheduler
from ..stream.connection import AiohttpStreamConnector, StreamConnector
from ..stream.cursor import CursorStore, FileCursorStore
from ..stream.dispatcher import EventDispatcher
from ..stream.filters import FilterSet
from ..stream.subscriber import StreamSubscriber
from ..stream.types import ConnectionState, StreamEvent
from .accounts import AccountRegistry
from .refresher import TokenRefresher
from .store import FileSessionStore, SessionStore
from .types import FailureClass, Session, StoredAccount

logger = logging.getLogger(__name__)

CREATE_SESSION_PATH = "/xrpc/com.atproto.server.createSession"


def normalize_service_url(url: str) -> str:
    """Strip trailing slashes and add ``https://`` when no scheme is given."""
    cleaned = url.strip().rstrip("/")
    lowered = cleaned.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        cleaned = f"https://{cleaned}"
    return cleaned


class ClientContext:
    """Explicit handle to the session and stream core."""

    def __init__(
        self,
        config: ClientConfig,
        store: SessionStore,
        transport: HttpTransport,
        registry: AccountRegistry | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.transport = transport
        self.registry = registry or AccountRegistry()
        self.bus = bus or EventBus()

        self.refresher = TokenRefresher(store, transport, request_timeout=config.request_timeout)
        self.executor = RequestExecutor(
            store,
            transport,
            self.refresher,
            account_resolver=lambda: self.registry.active_id,
            request_timeout=config.request_timeout,
            on_session_expired=self._session_expired,
        )

    @classmethod
    def create(cls, config: ClientConfig | None = None) -> ClientContext:
        """Build a context with file-backed sessions and the aiohttp transport."""
        config = config or ClientConfig.load()
        return cls(
            config=config,
            store=FileSessionStore(config.sessions_dir),
            transport=AiohttpTransport(timeout=config.request_timeout),
        )

    async def close(self) -> None:
        await self.transport.close()

    async def __aenter__(self) -> ClientContext:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # Accounts

    @property
    def active_account_id(self) -> str | None:
        return self.registry.active_id

    async def active_session(self) -> Session:
        """The active account's session.

        Raises:
            UnauthenticatedError: If no account is active or its session is gone
        """
        return await self.executor.require_session()

    async def login(
        self,
        identifier: str,
        password: str,
        service_url: str | None = None,
    ) -> Session:
        """Create a session and make its account active.

        Raises:
            LoginError: The server rejected the credentials or the response
            NetworkError: The server could not be reached
        """
        endpoint = normalize_service_url(service_url or self.config.service_url)
        url = f"{endpoint}{CREATE_SESSION_PATH}"
        request = HttpRequest.post(url, {"identifier": identifier, "password": password})
        request = request.with_header("Content-Type", "application/json")

        logger.info(f"Logging in {identifier} at {endpoint}")
        try:
            response = await self.transport.send(request, timeout=self.config.request_timeout)
        except TRANSPORT_ERRORS as e:
            raise NetworkError(FailureClass.NETWORK, url=url, cause=e) from e

        if response.status != 200:
            reason = response.error_message() or f"HTTP {response.status}"
            logger.warning(f"Login failed for {identifier}: {reason}")
            raise LoginError(endpoint, reason, status=response.status)

        try:
            session = Session.from_server_response(response.json(), endpoint)
        except (ValueError, KeyError, TypeError) as e:
            raise LoginError(endpoint, f"invalid session response: {e}", status=response.status) from e

        await self.store.put(session.account_id, session)
        self.registry.add(StoredAccount(did=session.did, handle=session.handle))
        logger.info(f"Logged in as {session.handle} ({session.did})")
        self.bus.publish(AccountEvent(AccountEventKind.LOGGED_IN, session.account_id))
        return session

    async def logout(self, account_id: str | None = None) -> None:
        """Destroy an account's session (the active one by default)."""
        account_id = account_id or self.registry.active_id
        if account_id is None:
            return

        await self.store.clear(account_id)
        self.registry.remove(account_id)
        logger.info(f"Logged out {account_id}")
        self.bus.publish(AccountEvent(AccountEventKind.LOGGED_OUT, account_id))

    async def switch_account(self, account_id: str) -> Session:
        """Make another signed-in account active.

        Raises:
            UnauthenticatedError: If no session is stored for that account
        """
        session = await self.store.get(account_id)
        if session is None:
            raise UnauthenticatedError(account_id)

        if self.registry.get(account_id) is None:
            self.registry.add(StoredAccount(did=session.did, handle=session.handle))
        else:
            self.registry.switch(account_id)

        logger.info(f"Switched to account {session.handle}")
        self.bus.publish(AccountEvent(AccountEventKind.SWITCHED, account_id))
        return session

    def _session_expired(self, error: SessionExpiredError) -> None:
        self.bus.publish(AccountEvent(AccountEventKind.SESSION_EXPIRED, error.account_id))

    # Stream

    def create_subscriber(
        self,
        callback: Callable[[StreamEvent], None],
        connector: StreamConnector | None = None,
        cursor_store: CursorStore | None = None,
        scheduler: Scheduler | None = None,
        installation_key: str = "default",
    ) -> StreamSubscriber:
        """Build a stream subscriber whose state changes go to the event bus."""

        def state_changed(state: ConnectionState, previous: ConnectionState) -> None:
            self.bus.publish(ConnectionStateChanged(state, previous))

        def fatal(error: Exception) -> None:
            self.bus.publish(StreamFatalError(error))

        return StreamSubscriber(
            connector=connector or AiohttpStreamConnector(),
            cursor_store=cursor_store or FileCursorStore(self.config.cursor_path, installation_key),
            dispatcher=EventDispatcher(self.config.wanted_collection, callback),
            config=self.config,
            filter_set=FilterSet(capacity=self.config.filter_capacity),
            scheduler=scheduler,
            on_state_change=state_changed,
            on_fatal_error=fatal,
        )
