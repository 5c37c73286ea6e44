"""
Stream connection transport.

The subscriber talks to a StreamConnector / StreamConnection pair so the
connection state machine can be tested without sockets. The aiohttp
WebSocket implementation is the production one.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import aiohttp

logger = logging.getLogger(__name__)


class StreamClosedError(Exception):
    """The connection closed or failed while receiving or sending."""

    def __init__(self, reason: str = "connection closed", code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code


def build_subscribe_url(
    base_url: str,
    wanted_collection: str,
    wanted_dids: list[str] | None = None,
    cursor: int | None = None,
) -> str:
    """Build the subscribe URL.

    Args:
        base_url: Stream endpoint
        wanted_collection: The single collection to receive
        wanted_dids: DIDs to restrict to; omitted when empty
        cursor: Resume position in microseconds; omitted when None
    """
    params: list[tuple[str, str]] = [("wantedCollections", wanted_collection)]
    if wanted_dids:
        params.append(("wantedDids", ",".join(wanted_dids)))
    if cursor is not None:
        params.append(("cursor", str(cursor)))

    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def filter_update_message(wanted_dids: list[str]) -> dict[str, Any]:
    """Frame that replaces the filter on an open connection."""
    return {"type": "update", "payload": {"wantedDids": list(wanted_dids)}}


class StreamConnection(ABC):
    """One open stream connection."""

    @abstractmethod
    async def receive(self) -> str | bytes:
        """Wait for the next frame.

        Raises:
            StreamClosedError: When the connection closed or failed
        """
        ...

    @abstractmethod
    async def send_json(self, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class StreamConnector(ABC):
    """Opens stream connections."""

    @abstractmethod
    async def connect(self, url: str) -> StreamConnection:
        ...

    async def close(self) -> None:
        """Release shared resources."""
        return None


class AiohttpStreamConnection(StreamConnection):
    """StreamConnection over an aiohttp WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws

    async def receive(self) -> str | bytes:
        msg = await self._ws.receive()

        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise StreamClosedError(f"WebSocket error: {self._ws.exception()}")
        if msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
        ):
            raise StreamClosedError("WebSocket closed", code=self._ws.close_code)

        raise StreamClosedError(f"Unexpected WebSocket message type: {msg.type}")

    async def send_json(self, data: dict[str, Any]) -> None:
        try:
            await self._ws.send_str(json.dumps(data))
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            raise StreamClosedError(f"Send failed: {e}") from e

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpStreamConnector(StreamConnector):
    """Opens WebSocket connections with a shared aiohttp ClientSession."""

    def __init__(self, session: aiohttp.ClientSession | None = None, heartbeat: float = 30.0):
        self._session = session
        self._owns_session = session is None
        self.heartbeat = heartbeat

    async def connect(self, url: str) -> StreamConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        logger.debug(f"Opening WebSocket {url}")
        ws = await self._session.ws_connect(url, heartbeat=self.heartbeat)
        logger.debug("WebSocket opened")
        return AiohttpStreamConnection(ws)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
