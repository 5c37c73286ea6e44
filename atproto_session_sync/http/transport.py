"""
HTTP transport for authenticated calls.

Requests and responses are plain value objects so the request pipeline
can be exercised without a network. ``AiohttpTransport`` is the
production implementation.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

# Exceptions that mean "no response was received"
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class HttpRequest:
    """A fully-formed request. The auth header is attached by the executor."""

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None

    def with_header(self, name: str, value: str) -> HttpRequest:
        """Return a copy with one header set. The original is untouched."""
        return replace(self, headers={**self.headers, name: value})

    def with_bearer(self, token: str) -> HttpRequest:
        return self.with_header("Authorization", f"Bearer {token}")

    @classmethod
    def get(cls, url: str, params: dict[str, str] | None = None) -> HttpRequest:
        return cls(method="GET", url=url, params=params or {})

    @classmethod
    def post(cls, url: str, json_body: Any = None) -> HttpRequest:
        return cls(method="POST", url=url, json_body=json_body)


@dataclass(frozen=True)
class HttpResponse:
    """A received response."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    url: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.body) if self.body else None

    def error_message(self) -> str | None:
        """Extract the server's ``message`` field from an error body, if any."""
        try:
            data = self.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            message = data.get("message")
            if isinstance(message, str):
                return message
        return None


class HttpTransport(ABC):
    """Sends one request and returns the response.

    Implementations raise one of ``TRANSPORT_ERRORS`` when no response
    was received. Non-2xx statuses are returned, not raised.
    """

    @abstractmethod
    async def send(self, request: HttpRequest, timeout: float | None = None) -> HttpResponse:
        ...

    async def close(self) -> None:
        """Release underlying resources."""
        return None


class AiohttpTransport(HttpTransport):
    """HTTP transport backed by a shared aiohttp ClientSession."""

    def __init__(self, session: aiohttp.ClientSession | None = None, timeout: float = 30.0):
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send(self, request: HttpRequest, timeout: float | None = None) -> HttpResponse:
        session = self._get_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        kwargs: dict[str, Any] = {
            "headers": request.headers,
            "timeout": client_timeout,
        }
        if request.params:
            kwargs["params"] = request.params
        if request.json_body is not None:
            kwargs["json"] = request.json_body

        logger.debug(f"{request.method} {request.url}")
        async with session.request(request.method, request.url, **kwargs) as response:
            body = await response.read()
            logger.debug(f"Response {response.status} ({len(body)} bytes) from {request.url}")
            if not body:
                logger.debug(f"Empty response body from {request.url}")
            return HttpResponse(
                status=response.status,
                body=body,
                headers=dict(response.headers),
                url=str(response.url),
            )

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> AiohttpTransport:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
