"""
Session types and data classes.

Defines the credential set held for each account and the
classification of failed authenticated calls.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class FailureClass(Enum):
    """Classification of a failed authenticated call."""

    EXPIRED_CREDENTIAL = "expired_credential"
    AMBIGUOUS_POSSIBLY_EXPIRED = "ambiguous_possibly_expired"  # 400 that mentions a token
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    SERVER_REJECTED = "server_rejected"
    DECODE = "decode"

    @property
    def is_credential_expiry(self) -> bool:
        """Whether a refresh-and-retry can recover from this failure."""
        return self in (FailureClass.EXPIRED_CREDENTIAL, FailureClass.AMBIGUOUS_POSSIBLY_EXPIRED)


@dataclass(frozen=True)
class Session:
    """Credential set for one account.

    Frozen: a session is never mutated field by field. A refresh or login
    produces a new instance that replaces the old one as a whole.
    """

    did: str
    handle: str
    access_token: str
    refresh_token: str
    service_endpoint: str
    email: str | None = None

    @property
    def account_id(self) -> str:
        """Accounts are keyed by their stable identity."""
        return self.did

    def with_tokens(
        self,
        access_token: str,
        refresh_token: str,
        did: str | None = None,
        handle: str | None = None,
        email: str | None = None,
    ) -> Session:
        """Return a new session with both tokens replaced.

        The service endpoint is always preserved.
        """
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token,
            did=did or self.did,
            handle=handle or self.handle,
            email=email if email is not None else self.email,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "did": self.did,
            "handle": self.handle,
            "email": self.email,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "service_endpoint": self.service_endpoint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Deserialize from dictionary."""
        return cls(
            did=data["did"],
            handle=data["handle"],
            email=data.get("email"),
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            service_endpoint=data["service_endpoint"],
        )

    @classmethod
    def from_server_response(cls, data: dict[str, Any], service_endpoint: str) -> Session:
        """Build a session from a createSession/refreshSession response body.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            did=data["did"],
            handle=data["handle"],
            email=data.get("email"),
            access_token=data["accessJwt"],
            refresh_token=data["refreshJwt"],
            service_endpoint=service_endpoint,
        )

    def __repr__(self) -> str:
        # Tokens stay out of reprs so they never end up in logs
        return (
            f"Session(did={self.did!r}, handle={self.handle!r}, "
            f"service_endpoint={self.service_endpoint!r})"
        )


@dataclass
class StoredAccount:
    """An account known to this installation."""

    did: str
    handle: str
    display_name: str | None = None
    avatar: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "did": self.did,
            "handle": self.handle,
            "display_name": self.display_name,
            "avatar": self.avatar,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredAccount:
        return cls(
            did=data["did"],
            handle=data["handle"],
            display_name=data.get("display_name"),
            avatar=data.get("avatar"),
        )
