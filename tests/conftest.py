"""
Shared test configuration and fixtures.

Provides fakes for the two network boundaries so the core can be tested
without sockets:
- FakePDS: an HttpTransport that behaves like a personal data server
  (token validation, refresh, login)
- FakeStreamConnector: a StreamConnector whose connections are fed by the test
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from atproto_session_sync.config import ClientConfig
from atproto_session_sync.http.transport import HttpRequest, HttpResponse, HttpTransport
from atproto_session_sync.session.store import InMemorySessionStore
from atproto_session_sync.session.types import Session
from atproto_session_sync.stream.connection import (
    StreamClosedError,
    StreamConnection,
    StreamConnector,
)

SERVICE = "https://pds.example.com"
ALICE = "did:plc:alice"


def json_response(status: int, body: Any) -> HttpResponse:
    return HttpResponse(status=status, body=json.dumps(body).encode())


def make_session(version: int = 1, did: str = ALICE, handle: str = "alice.test") -> Session:
    return Session(
        did=did,
        handle=handle,
        access_token=f"access-v{version}",
        refresh_token=f"refresh-v{version}",
        service_endpoint=SERVICE,
    )


class FakePDS(HttpTransport):
    """In-process stand-in for a personal data server.

    API calls succeed only with the current access token. Expired tokens
    get ``expired_response`` (401 by default). The refresh endpoint rotates
    both tokens to the next version.
    """

    def __init__(self, version: int = 1) -> None:
        self.version = version
        self.requests: list[HttpRequest] = []
        self.refresh_requests: list[HttpRequest] = []
        self.login_requests: list[HttpRequest] = []

        self.refresh_delay = 0.0
        self.refresh_response: HttpResponse | None = None
        self.expired_response: HttpResponse = json_response(
            401, {"error": "ExpiredToken", "message": "Token has expired"}
        )
        self.api_handler: Callable[[HttpRequest], Awaitable[HttpResponse] | HttpResponse] | None = None
        self.login_response: HttpResponse | None = None
        self.fail_with: BaseException | None = None

    @property
    def access_token(self) -> str:
        return f"access-v{self.version}"

    @property
    def refresh_token(self) -> str:
        return f"refresh-v{self.version}"

    async def send(self, request: HttpRequest, timeout: float | None = None) -> HttpResponse:
        self.requests.append(request)
        # Let other tasks interleave like a real network call would
        await asyncio.sleep(0)

        if self.fail_with is not None:
            raise self.fail_with

        if request.url.endswith("com.atproto.server.refreshSession"):
            return await self._refresh(request)
        if request.url.endswith("com.atproto.server.createSession"):
            return self._login(request)
        return await self._api(request)

    async def _refresh(self, request: HttpRequest) -> HttpResponse:
        self.refresh_requests.append(request)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_response is not None:
            return self.refresh_response
        if request.headers.get("Authorization") != f"Bearer {self.refresh_token}":
            return json_response(400, {"error": "ExpiredToken", "message": "Refresh token expired"})

        self.version += 1
        return json_response(
            200,
            {
                "did": ALICE,
                "handle": "alice.test",
                "accessJwt": self.access_token,
                "refreshJwt": self.refresh_token,
            },
        )

    def _login(self, request: HttpRequest) -> HttpResponse:
        self.login_requests.append(request)
        if self.login_response is not None:
            return self.login_response
        body = request.json_body or {}
        if body.get("password") != "app-password":
            return json_response(401, {"error": "AuthenticationRequired", "message": "Invalid identifier or password"})
        return json_response(
            200,
            {
                "did": ALICE,
                "handle": body.get("identifier", "alice.test"),
                "email": "alice@example.com",
                "accessJwt": self.access_token,
                "refreshJwt": self.refresh_token,
            },
        )

    async def _api(self, request: HttpRequest) -> HttpResponse:
        if request.headers.get("Authorization") != f"Bearer {self.access_token}":
            return self.expired_response
        if self.api_handler is not None:
            result = self.api_handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return json_response(200, {"ok": True, "token": self.access_token})

    def api_requests(self) -> list[HttpRequest]:
        return [
            r for r in self.requests
            if not r.url.endswith(("refreshSession", "createSession"))
        ]


_CLOSE = object()


class FakeStreamConnection(StreamConnection):
    """Connection whose inbound frames are pushed by the test."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, frame: str | bytes | dict[str, Any]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbound.put_nowait(frame)

    def drop(self, reason: str = "connection lost") -> None:
        """Simulate an abrupt close."""
        self._inbound.put_nowait(StreamClosedError(reason))

    async def receive(self) -> str | bytes:
        item = await self._inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.closed:
            raise StreamClosedError("send on closed connection")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    async def drain(self, max_iterations: int = 1000) -> None:
        """Yield until every pushed frame has been consumed."""
        for _ in range(max_iterations):
            if self._inbound.empty():
                break
            await asyncio.sleep(0)
        # One more round so the last frame finishes processing
        for _ in range(5):
            await asyncio.sleep(0)


class FakeStreamConnector(StreamConnector):
    """Connector that hands out FakeStreamConnections or scripted failures.

    ``outcomes`` is consumed in order: an exception instance makes that
    connect attempt fail; ``None`` makes it succeed. When exhausted, every
    attempt succeeds.
    """

    def __init__(self, outcomes: list[BaseException | None] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.urls: list[str] = []
        self.connections: list[FakeStreamConnection] = []

    async def connect(self, url: str) -> StreamConnection:
        self.urls.append(url)
        await asyncio.sleep(0)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome
        connection = FakeStreamConnection(url)
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeStreamConnection:
        return self.connections[-1]

    async def wait_for_connections(self, count: int, max_iterations: int = 1000) -> FakeStreamConnection:
        for _ in range(max_iterations):
            if len(self.connections) >= count:
                # Let the subscriber finish its Connected transition
                for _ in range(20):
                    await asyncio.sleep(0)
                return self.connections[count - 1]
            await asyncio.sleep(0)
        raise TimeoutError(f"Expected {count} connections, have {len(self.connections)}")


def commit_frame(
    time_us: int,
    did: str = ALICE,
    rkey: str = "3k2a",
    operation: str = "create",
    collection: str = "app.bsky.feed.post",
    text: str = "hello",
) -> dict[str, Any]:
    return {
        "did": did,
        "time_us": time_us,
        "kind": "commit",
        "commit": {
            "rev": "3k2arev",
            "operation": operation,
            "collection": collection,
            "rkey": rkey,
            "record": {"$type": collection, "text": text, "createdAt": "2024-01-01T00:00:00Z"},
            "cid": "bafyreia",
        },
    }


@pytest.fixture
def pds() -> FakePDS:
    return FakePDS()


@pytest.fixture
async def session_store() -> InMemorySessionStore:
    store = InMemorySessionStore()
    await store.put(ALICE, make_session(1))
    return store


@pytest.fixture
def config(tmp_path) -> ClientConfig:
    return ClientConfig(service_url=SERVICE, data_dir=tmp_path, request_timeout=5.0)
