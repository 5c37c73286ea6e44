"""
Self-healing stream subscription.

The subscriber owns one logical connection to the event stream. A single
owner task runs the whole lifecycle: connect, receive, detect failure,
back off, resume from the persisted cursor. Callers only ever start,
stop, change the filter, or reset the cursor.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable

from ..config import ClientConfig
from ..exceptions import ConnectivityExhaustedError, StoreIOError
from .backoff import AsyncioScheduler, BackoffPolicy, Scheduler
from .connection import (
    StreamClosedError,
    StreamConnection,
    StreamConnector,
    build_subscribe_url,
    filter_update_message,
)
from .cursor import CursorStore
from .dispatcher import EventDispatcher
from .filters import FilterSet
from .types import ConnectionPhase, ConnectionState

logger = logging.getLogger(__name__)

ACTIVITY_LOG_INTERVAL = 100


class StreamSubscriber:
    """Maintains a standing stream subscription.

    State machine::

        Disconnected -> Connecting -> Connected -> Reconnecting -> Connecting -> ...

    Only ``stop()`` (or exhausting the reconnect ceiling) returns it to
    Disconnected. All transitions happen on the owner task, one at a time.

    Example:
        >>> subscriber = StreamSubscriber(
        ...     connector=AiohttpStreamConnector(),
        ...     cursor_store=FileCursorStore(path),
        ...     dispatcher=EventDispatcher("app.bsky.feed.post", queue_handoff(queue)),
        ... )
        >>> await subscriber.start()
        >>> await subscriber.update_filter({"did:plc:abc"})
        >>> await subscriber.stop()
    """

    def __init__(
        self,
        connector: StreamConnector,
        cursor_store: CursorStore,
        dispatcher: EventDispatcher,
        config: ClientConfig | None = None,
        filter_set: FilterSet | None = None,
        backoff: BackoffPolicy | None = None,
        scheduler: Scheduler | None = None,
        on_state_change: Callable[[ConnectionState, ConnectionState], None] | None = None,
        on_fatal_error: Callable[[ConnectivityExhaustedError], None] | None = None,
    ) -> None:
        """Initialize the subscriber.

        Args:
            connector: Opens stream connections
            cursor_store: Where the last processed position is persisted
            dispatcher: Decodes and forwards frames
            config: Endpoint, timeouts and backoff settings
            filter_set: Initial DID filter (empty = unfiltered)
            backoff: Overrides the backoff derived from config
            scheduler: Source of reconnect delays (wall clock by default)
            on_state_change: Called with (new, previous) on every transition
            on_fatal_error: Called once when reconnect attempts are exhausted
        """
        self.config = config or ClientConfig()
        self.connector = connector
        self.cursor_store = cursor_store
        self.dispatcher = dispatcher
        self.filter_set = filter_set or FilterSet(capacity=self.config.filter_capacity)
        self.backoff = backoff or BackoffPolicy(
            backoff_base=self.config.backoff_base,
            backoff_max=self.config.backoff_max,
            max_attempts=self.config.max_reconnect_attempts,
        )
        self.scheduler = scheduler or AsyncioScheduler()
        self.on_state_change = on_state_change
        self.on_fatal_error = on_fatal_error

        self._state = ConnectionState.disconnected()
        self._task: asyncio.Task[None] | None = None
        self._connection: StreamConnection | None = None
        self._last_seen: int | None = None

        self.events_received = 0
        self.connect_count = 0
        self.last_error: Exception | None = None
        self.last_connect_url: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def last_seen_cursor(self) -> int | None:
        return self._last_seen

    # Lifecycle

    async def start(self) -> None:
        """Start the subscription. No-op unless Disconnected."""
        if self._state.phase is not ConnectionPhase.DISCONNECTED:
            logger.debug(f"Stream already running ({self._state})")
            return

        self.last_error = None
        self._set_state(ConnectionState.connecting())
        self._task = asyncio.create_task(self._run(), name="stream-subscriber")
        logger.info(f"Stream subscriber started: {self.config.stream_url}")

    async def stop(self) -> None:
        """Stop the subscription from any state.

        Cancels a pending reconnect delay, closes the live connection, and
        moves to Disconnected. Idempotent.
        """
        task = self._task
        self._task = None

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._close_connection()
        self._set_state(ConnectionState.disconnected())
        logger.info("Stream subscriber stopped")

    async def wait_closed(self) -> None:
        """Wait until the owner task ends (stop or exhausted retries)."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    # Filter and cursor

    async def update_filter(self, identifiers: Iterable[str]) -> frozenset[str]:
        """Replace the DID filter.

        On a live connection the change is pushed as an update frame without
        reconnecting. Otherwise it takes effect on the next connect.

        Returns:
            The applied set (capped at the filter capacity)
        """
        applied = self.filter_set.replace(identifiers)
        logger.info(f"Updating DID filter to {len(applied)} DIDs")
        await self._push_filter()
        return applied

    async def clear_filter(self) -> frozenset[str]:
        """Receive events from all accounts."""
        return await self.update_filter([])

    async def reset_cursor(self) -> None:
        """Forget the persisted position.

        Needed when the filter changes meaning (e.g. all accounts versus a
        specific list): resuming from the old position would be wrong.
        """
        await self.cursor_store.clear()
        self._last_seen = None

    # Owner task

    async def _run(self) -> None:
        attempt = 0
        try:
            while True:
                self._set_state(ConnectionState.connecting(attempt))
                connected, error = await self._connect_and_receive()
                if connected:
                    attempt = 0

                attempt += 1
                self.last_error = error

                if self.backoff.exhausted(attempt):
                    await self._give_up(attempt - 1, error)
                    return

                delay = self.backoff.delay_for(attempt)
                logger.warning(
                    f"Stream disconnected ({error}), reconnecting in {delay}s "
                    f"(attempt {attempt}/{self.backoff.max_attempts})"
                )
                self._set_state(ConnectionState.reconnecting(attempt, delay))
                await self.scheduler.sleep(delay)
        finally:
            await self._close_connection()

    async def _connect_and_receive(self) -> tuple[bool, Exception]:
        """Run one connection from handshake to failure.

        Returns:
            Whether the handshake succeeded, and the error that ended the connection
        """
        url, connected_filter = await self._build_target()
        self.last_connect_url = url

        try:
            connection = await asyncio.wait_for(
                self.connector.connect(url), timeout=self.config.connect_timeout
            )
        except Exception as e:
            logger.warning(f"Stream connect failed: {e!r}")
            return False, e

        self._connection = connection
        self.connect_count += 1
        self._set_state(ConnectionState.connected())
        logger.info(
            f"Stream connected ({len(connected_filter)} DIDs in filter, connection #{self.connect_count})"
        )

        # The filter may have changed while the handshake was in progress
        if self.filter_set.ordered() != connected_filter:
            await self._push_filter()

        try:
            await self._receive_loop(connection)
        except Exception as e:
            return True, e
        finally:
            await self._close_connection()

        # _receive_loop only exits by raising
        return True, StreamClosedError()  # pragma: no cover

    async def _receive_loop(self, connection: StreamConnection) -> None:
        while True:
            frame = await connection.receive()
            self.events_received += 1

            event = self.dispatcher.handle_frame(frame)
            if event is not None:
                await self._advance_cursor(event.time_us)

            if self.events_received % ACTIVITY_LOG_INTERVAL == 0:
                logger.info(f"Stream received {self.events_received} total events")

    async def _advance_cursor(self, time_us: int) -> None:
        # Replayed events from the safety buffer must not move the cursor back
        if self._last_seen is not None and time_us <= self._last_seen:
            return
        self._last_seen = time_us
        try:
            await self.cursor_store.set(time_us)
        except StoreIOError as e:
            logger.warning(f"Could not persist stream cursor: {e}")

    async def _build_target(self) -> tuple[str, list[str]]:
        wanted = self.filter_set.ordered()
        persisted = await self.cursor_store.get()

        resume = None
        if persisted is not None:
            resume = max(0, persisted - self.config.cursor_buffer_us)
            self._last_seen = persisted
            logger.info(f"Resuming stream from cursor {resume}")

        if wanted:
            logger.debug(f"Filtering stream by {len(wanted)} DIDs")
        else:
            logger.debug("No DID filter (receiving all accounts)")

        url = build_subscribe_url(
            self.config.stream_url,
            self.config.wanted_collection,
            wanted_dids=wanted,
            cursor=resume,
        )
        return url, wanted

    async def _push_filter(self) -> None:
        connection = self._connection
        if connection is None or not self._state.is_connected:
            return

        wanted = self.filter_set.ordered()
        try:
            await connection.send_json(filter_update_message(wanted))
        except StreamClosedError as e:
            # The receive loop will notice the broken connection and reconnect
            logger.warning(f"Failed to send DID filter update: {e}")
            return

        logger.info(f"DID filter updated on live connection ({len(wanted)} DIDs)")

    async def _give_up(self, attempts: int, error: Exception | None) -> None:
        fatal = ConnectivityExhaustedError(attempts, cause=error)
        self.last_error = fatal
        logger.error(f"Stream giving up: {fatal.message}")
        self._set_state(ConnectionState.disconnected())
        if self.on_fatal_error:
            try:
                self.on_fatal_error(fatal)
            except Exception:
                logger.exception("Fatal error callback failed")

    async def _close_connection(self) -> None:
        connection = self._connection
        self._connection = None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Error while closing stream connection: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._state
        if state == previous:
            return
        self._state = state
        logger.debug(f"Stream state {previous} -> {state}")
        if self.on_state_change:
            try:
                self.on_state_change(state, previous)
            except Exception:
                logger.exception("State change callback failed")
