"""
Failure classification for authenticated calls.

The server sometimes answers an expired access token with HTTP 400
instead of 401, and it also uses 400 for app passwords that lack a
scope. Telling the two apart relies on the wording of the error
message. That heuristic lives here and nowhere else.
"""

from __future__ import annotations

from ..session.types import FailureClass
from .transport import HttpResponse

# Checked first: a scope problem must never trigger a refresh
PERMISSION_PHRASES: tuple[str, ...] = (
    "token could not be verified",
    "bad token scope",
    "insufficient scope",
)

EXPIRY_PHRASES: tuple[str, ...] = (
    "token",
    "expired",
)

# Error codes that name the condition outright
EXPIRY_ERROR_CODES: frozenset[str] = frozenset({"ExpiredToken"})


def classify_message(message: str | None) -> FailureClass:
    """Classify the message of an HTTP 400 response."""
    if not message:
        return FailureClass.SERVER_REJECTED

    lowered = message.lower()
    if any(phrase in lowered for phrase in PERMISSION_PHRASES):
        return FailureClass.PERMISSION_DENIED
    if any(phrase in lowered for phrase in EXPIRY_PHRASES):
        return FailureClass.AMBIGUOUS_POSSIBLY_EXPIRED
    return FailureClass.SERVER_REJECTED


def classify_response(response: HttpResponse) -> FailureClass | None:
    """Classify a received response.

    Returns:
        None for 2xx, otherwise the failure class
    """
    if response.ok:
        return None

    if response.status == 401:
        return FailureClass.EXPIRED_CREDENTIAL

    if response.status == 400:
        message = response.error_message()
        classified = classify_message(message)
        if classified is FailureClass.SERVER_REJECTED and _error_code(response) in EXPIRY_ERROR_CODES:
            return FailureClass.AMBIGUOUS_POSSIBLY_EXPIRED
        return classified

    return FailureClass.SERVER_REJECTED


def _error_code(response: HttpResponse) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None
