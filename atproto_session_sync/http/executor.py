"""
Authenticated request execution.

Every authenticated call goes through ``RequestExecutor.execute``. It
attaches the current access token, classifies failures, and recovers
from credential expiry with exactly one refresh-and-retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ..exceptions import (
    DecodeError,
    ExpiredCredentialError,
    NetworkError,
    PermissionDeniedError,
    RequestFailedError,
    ServerRejectedError,
    SessionExpiredError,
    UnauthenticatedError,
)
from ..session.store import SessionStore
from ..session.types import FailureClass, Session
from .classify import classify_response
from .transport import TRANSPORT_ERRORS, HttpRequest, HttpResponse, HttpTransport

if TYPE_CHECKING:
    from ..session.refresher import TokenRefresher

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ERRORS_BY_FAILURE: dict[FailureClass, type[RequestFailedError]] = {
    FailureClass.EXPIRED_CREDENTIAL: ExpiredCredentialError,
    FailureClass.AMBIGUOUS_POSSIBLY_EXPIRED: ExpiredCredentialError,
    FailureClass.PERMISSION_DENIED: PermissionDeniedError,
    FailureClass.SERVER_REJECTED: ServerRejectedError,
}


class RequestExecutor:
    """Runs authenticated requests on behalf of many concurrent callers.

    There is no lock around requests. The only shared state is the
    session, read as a snapshot from the store and replaced as a whole by
    the refresher.

    Example:
        >>> executor = RequestExecutor(store, transport, refresher, lambda: "did:plc:abc")
        >>> timeline = await executor.execute_json(HttpRequest.get(url))
    """

    def __init__(
        self,
        store: SessionStore,
        transport: HttpTransport,
        refresher: TokenRefresher,
        account_resolver: Callable[[], str | None],
        request_timeout: float = 30.0,
        on_session_expired: Callable[[SessionExpiredError], None] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Where the current session is read from
            transport: HTTP transport used for every call
            refresher: Shared single-flight refresher
            account_resolver: Returns the account requests run as
            request_timeout: Per-request timeout in seconds
            on_session_expired: Called when a refresh reports the session dead
        """
        self.store = store
        self.transport = transport
        self.refresher = refresher
        self.account_resolver = account_resolver
        self.request_timeout = request_timeout
        self.on_session_expired = on_session_expired

    async def require_session(self, account_id: str | None = None) -> Session:
        """Return the active session or raise UnauthenticatedError."""
        account_id = account_id or self.account_resolver()
        if account_id is None:
            raise UnauthenticatedError()
        session = await self.store.get(account_id)
        if session is None:
            raise UnauthenticatedError(account_id)
        return session

    @overload
    async def execute(
        self,
        request: HttpRequest,
        decode: None = None,
        account_id: str | None = None,
    ) -> HttpResponse: ...

    @overload
    async def execute(
        self,
        request: HttpRequest,
        decode: Callable[[HttpResponse], T],
        account_id: str | None = None,
    ) -> T: ...

    async def execute(
        self,
        request: HttpRequest,
        decode: Callable[[HttpResponse], Any] | None = None,
        account_id: str | None = None,
    ) -> Any:
        """Send an authenticated request.

        Args:
            request: Request without an Authorization header
            decode: Optional parser for a successful response. ValueError,
                KeyError or TypeError raised by it become DecodeError.
            account_id: Run as this account instead of the active one

        Returns:
            The response, or ``decode(response)`` when a decoder is given

        Raises:
            UnauthenticatedError: No active session
            SessionExpiredError: Refresh token rejected during recovery
            RequestFailedError: Any other terminal failure (see ``.failure``)
        """
        session = await self.require_session(account_id)
        response = await self._send(request, session)
        failure = classify_response(response)

        if failure is not None and failure.is_credential_expiry:
            logger.warning(
                f"Credential expired ({failure.value}) for {request.url}, refreshing"
            )
            try:
                session = await self.refresher.refresh(session)
            except SessionExpiredError as e:
                if self.on_session_expired:
                    self.on_session_expired(e)
                raise

            # Retry exactly once with the token the refresh produced
            response = await self._send(request, session)
            failure = classify_response(response)
            if failure is None:
                logger.debug(f"Retry after refresh succeeded for {request.url}")

        if failure is not None:
            raise self._error_for(failure, request, response)

        if decode is None:
            return response
        return self._decode(decode, request, response)

    async def execute_json(self, request: HttpRequest, account_id: str | None = None) -> Any:
        """Send an authenticated request and parse the body as JSON."""
        return await self.execute(request, decode=HttpResponse.json, account_id=account_id)

    async def _send(self, request: HttpRequest, session: Session) -> HttpResponse:
        authorized = request.with_bearer(session.access_token)
        try:
            return await self.transport.send(authorized, timeout=self.request_timeout)
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Network failure for {request.url}: {e}")
            raise NetworkError(FailureClass.NETWORK, url=request.url, cause=e) from e

    def _decode(
        self,
        decode: Callable[[HttpResponse], T],
        request: HttpRequest,
        response: HttpResponse,
    ) -> T:
        try:
            return decode(response)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to decode response from {request.url}: {e}")
            raise DecodeError(
                FailureClass.DECODE,
                f"Could not decode response from {request.url}",
                status=response.status,
                url=request.url,
                cause=e,
            ) from e

    def _error_for(
        self,
        failure: FailureClass,
        request: HttpRequest,
        response: HttpResponse,
    ) -> RequestFailedError:
        server_message = response.error_message()
        error_cls = _ERRORS_BY_FAILURE.get(failure, ServerRejectedError)
        message = server_message or f"HTTP {response.status}"
        logger.debug(f"Request to {request.url} failed: {failure.value} ({message})")
        return error_cls(
            failure,
            message,
            status=response.status,
            server_message=server_message,
            url=request.url,
        )
