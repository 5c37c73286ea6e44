"""
Custom exceptions for the session and stream core.

Every failure surfaced by the request pipeline or the stream subscriber
is one of these, so callers can handle them without knowing which
transport produced them.
"""

from __future__ import annotations

import asyncio
import socket
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session.types import FailureClass


class SessionSyncError(Exception):
    """Base exception for all session and stream errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RequestFailedError(SessionSyncError):
    """Raised when an authenticated request fails terminally.

    ``failure`` holds the classification of the response that ended the call.
    """

    def __init__(
        self,
        failure: FailureClass,
        message: str,
        status: int | None = None,
        server_message: str | None = None,
        url: str | None = None,
    ):
        details: dict = {"failure": failure.value}
        if status is not None:
            details["status"] = status
        if server_message:
            details["server_message"] = server_message
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.failure = failure
        self.status = status
        self.server_message = server_message
        self.url = url


class ExpiredCredentialError(RequestFailedError):
    """The access token was rejected, or the server hinted that it expired."""


class PermissionDeniedError(RequestFailedError):
    """The credential lacks the scope for this call. Refreshing cannot fix it."""


class ServerRejectedError(RequestFailedError):
    """Any other non-2xx response."""


class DecodeError(RequestFailedError):
    """A response body did not match the expected shape."""

    def __init__(
        self,
        failure: FailureClass,
        message: str,
        status: int | None = None,
        url: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(failure, message, status=status, url=url)
        if cause:
            self.details["cause"] = str(cause)
        self.cause = cause


class NetworkError(RequestFailedError):
    """Transport-level failure. No response was received."""

    def __init__(
        self,
        failure: FailureClass,
        url: str | None = None,
        cause: Exception | None = None,
    ):
        self.cause = cause
        super().__init__(failure, f"Network error: {self.describe()}", url=url)
        if cause:
            self.details["cause"] = str(cause)

    def describe(self) -> str:
        """Short human-readable description of the underlying transport failure."""
        cause = self.cause
        if cause is None:
            return "unknown network failure"
        if isinstance(cause, (asyncio.TimeoutError, TimeoutError)):
            return "the request timed out"
        if isinstance(cause, socket.gaierror):
            return "could not resolve the server address"
        if isinstance(cause, ConnectionRefusedError):
            return "could not connect to the server"
        if isinstance(cause, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
            return "the network connection was lost"
        name = type(cause).__name__
        if "SSL" in name or "Certificate" in name:
            return "a secure connection could not be established"
        text = str(cause)
        return text or name


class SessionExpiredError(SessionSyncError):
    """The refresh token itself was rejected. The session is dead.

    Callers must force a full re-authentication; retrying will not help.
    """

    def __init__(self, account_id: str | None = None, reason: str | None = None):
        details = {}
        if account_id:
            details["account_id"] = account_id
        if reason:
            details["reason"] = reason
        message = "Session expired, re-authentication required"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.account_id = account_id
        self.reason = reason


class UnauthenticatedError(SessionSyncError):
    """Raised when an operation requires an active session and there is none."""

    def __init__(self, account_id: str | None = None):
        details = {"account_id": account_id} if account_id else {}
        super().__init__("Authentication required", details)
        self.account_id = account_id


class LoginError(SessionSyncError):
    """Raised when creating a session fails."""

    def __init__(self, endpoint: str, reason: str | None = None, status: int | None = None):
        details: dict = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        if status is not None:
            details["status"] = status
        message = f"Login failed for {endpoint}"
        if reason:
            message += f": {reason}"
        super().__init__(message, details)
        self.endpoint = endpoint
        self.reason = reason
        self.status = status


class ConnectivityExhaustedError(SessionSyncError):
    """Raised when the stream gives up after the reconnect-attempt ceiling."""

    def __init__(self, attempts: int, cause: Exception | None = None):
        details: dict = {"attempts": attempts}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Failed to reconnect after {attempts} attempts", details)
        self.attempts = attempts
        self.cause = cause


class StoreIOError(SessionSyncError):
    """Raised when a file-backed store operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Store I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause
