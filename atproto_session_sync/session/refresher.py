"""
Single-flight access token refresh.

When many concurrent calls discover an expired token at once, exactly one
refresh request goes to the server. Every caller that arrives while it is
outstanding awaits the same result.
"""

from __future__ import annotations

import asyncio
import logging

from ..exceptions import (
    DecodeError,
    NetworkError,
    ServerRejectedError,
    SessionExpiredError,
    UnauthenticatedError,
)
from ..http.transport import TRANSPORT_ERRORS, HttpRequest, HttpTransport
from ..logging_utils import SessionLoggerAdapter, redact_token
from .store import SessionStore
from .types import FailureClass, Session

logger = logging.getLogger(__name__)

REFRESH_PATH = "/xrpc/com.atproto.server.refreshSession"


class TokenRefresher:
    """Refreshes sessions, at most one network call per account at a time.

    The refreshed session is committed to the SessionStore as a single
    write before any waiter is released, so a retried request always sees
    the tokens produced by the refresh that unblocked it.
    """

    def __init__(
        self,
        store: SessionStore,
        transport: HttpTransport,
        request_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.transport = transport
        self.request_timeout = request_timeout

        self._inflight: dict[str, asyncio.Task[Session]] = {}

    async def refresh(self, current: Session) -> Session:
        """Obtain a fresh session for the account ``current`` belongs to.

        Args:
            current: The session the caller used for its failed request

        Returns:
            The new session (already stored)

        Raises:
            SessionExpiredError: The refresh token was rejected
            UnauthenticatedError: The account was logged out meanwhile
            NetworkError: The refresh call could not reach the server
        """
        account_id = current.account_id
        task = self._inflight.get(account_id)

        if task is None:
            # No await between lookup and registration: the check-and-set is atomic
            task = asyncio.create_task(self._refresh(current))
            self._inflight[account_id] = task
            task.add_done_callback(lambda t: self._finished(account_id, t))
        else:
            logger.debug(f"Joining in-flight refresh for {account_id}")

        # Shield so a cancelled caller does not abort the refresh for the others
        return await asyncio.shield(task)

    def _finished(self, account_id: str, task: asyncio.Task[Session]) -> None:
        if self._inflight.get(account_id) is task:
            del self._inflight[account_id]
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled
            task.exception()

    async def _refresh(self, stale: Session) -> Session:
        account_id = stale.account_id
        log = SessionLoggerAdapter(logger, {"account_id": account_id})
        stored = await self.store.get(account_id)

        if stored is None:
            raise UnauthenticatedError(account_id)

        if stored.access_token != stale.access_token:
            # Another caller already completed a refresh after this caller's snapshot
            log.debug(f"Session for {account_id} already refreshed, reusing it")
            return stored

        url = f"{stored.service_endpoint.rstrip('/')}{REFRESH_PATH}"
        request = HttpRequest.post(url).with_bearer(stored.refresh_token)

        log.info(
            f"Refreshing session for {account_id} "
            f"(refresh token {redact_token(stored.refresh_token)})"
        )
        try:
            response = await self.transport.send(request, timeout=self.request_timeout)
        except TRANSPORT_ERRORS as e:
            log.warning(f"Refresh for {account_id} failed to reach server: {e}")
            raise NetworkError(FailureClass.NETWORK, url=url, cause=e) from e

        if response.status in (400, 401):
            reason = response.error_message() or f"HTTP {response.status}"
            log.error(f"Refresh token rejected for {account_id}: {reason}")
            raise SessionExpiredError(account_id, reason)

        if not response.ok:
            reason = response.error_message() or f"HTTP {response.status}"
            log.error(f"Refresh for {account_id} rejected by server: {reason}")
            raise ServerRejectedError(
                FailureClass.SERVER_REJECTED,
                f"Refresh failed: {reason}",
                status=response.status,
                server_message=response.error_message(),
                url=url,
            )

        try:
            data = response.json()
            new_session = stored.with_tokens(
                access_token=data["accessJwt"],
                refresh_token=data["refreshJwt"],
                did=data.get("did"),
                handle=data.get("handle"),
                email=data.get("email"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(
                FailureClass.DECODE,
                "Could not decode refresh response",
                status=response.status,
                url=url,
                cause=e,
            ) from e

        committed = await self.store.replace(account_id, stored, new_session)
        if committed is None:
            log.warning(f"{account_id} logged out during refresh, discarding new tokens")
            raise UnauthenticatedError(account_id)
        if committed is not new_session:
            log.info(f"Session for {account_id} replaced during refresh, using the stored one")
            return committed

        log.info(f"Session refreshed for {account_id}, new tokens saved")
        return new_session
