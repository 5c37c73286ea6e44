"""
Session management.

Credential sets per account, their storage, single-flight token refresh,
and the client context that ties them together.
"""

from .accounts import AccountRegistry
from .refresher import TokenRefresher
from .store import FileSessionStore, InMemorySessionStore, SessionStore
from .types import FailureClass, Session, StoredAccount

__all__ = [
    # Types
    "FailureClass",
    "Session",
    "StoredAccount",
    # Storage
    "SessionStore",
    "InMemorySessionStore",
    "FileSessionStore",
    # Refresh
    "TokenRefresher",
    # Accounts
    "AccountRegistry",
]
