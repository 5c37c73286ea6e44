"""
Multi-account bookkeeping.

Tracks which accounts are signed in on this installation and which one
is active. Credentials themselves live in the SessionStore.
"""

from __future__ import annotations

import logging
from typing import Any

from .types import StoredAccount

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Ordered list of known accounts plus the active account id."""

    def __init__(self, accounts: list[StoredAccount] | None = None, active_id: str | None = None):
        self._accounts: list[StoredAccount] = list(accounts or [])
        self._active_id = active_id
        if active_id is not None and self.get(active_id) is None:
            raise ValueError(f"Active account {active_id} is not registered")

    @property
    def accounts(self) -> list[StoredAccount]:
        return list(self._accounts)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def active(self) -> StoredAccount | None:
        return self.get(self._active_id) if self._active_id else None

    def get(self, did: str) -> StoredAccount | None:
        for account in self._accounts:
            if account.did == did:
                return account
        return None

    def add(self, account: StoredAccount, activate: bool = True) -> StoredAccount:
        """Register an account, updating it in place when already known."""
        for index, existing in enumerate(self._accounts):
            if existing.did == account.did:
                self._accounts[index] = account
                break
        else:
            self._accounts.append(account)
            logger.info(f"Added account {account.handle} ({account.did})")

        if activate:
            self._active_id = account.did
        return account

    def remove(self, did: str) -> str | None:
        """Forget an account.

        When the active account is removed, the first remaining account
        becomes active.

        Returns:
            The active account id after removal
        """
        self._accounts = [a for a in self._accounts if a.did != did]
        if self._active_id == did:
            self._active_id = self._accounts[0].did if self._accounts else None
        return self._active_id

    def switch(self, did: str) -> StoredAccount:
        """Make a registered account active.

        Raises:
            KeyError: If the account is not registered
        """
        account = self.get(did)
        if account is None:
            raise KeyError(did)
        self._active_id = did
        return account

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": [a.to_dict() for a in self._accounts],
            "active_id": self._active_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountRegistry:
        return cls(
            accounts=[StoredAccount.from_dict(a) for a in data.get("accounts", [])],
            active_id=data.get("active_id"),
        )
