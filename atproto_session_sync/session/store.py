"""
Session storage.

The core reads and writes credentials only through the SessionStore
interface. Two implementations are provided: an in-memory store for
tests and embedding, and a file-backed store that keeps one JSON file
per account.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from ..file_ops import delete_document, load_document, save_document
from .types import Session

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SessionStore(ABC):
    """Durable storage of one Session per account.

    Implementations must make ``put`` atomic: a concurrent ``get`` returns
    either the previous session or the new one, never a mix.
    """

    @abstractmethod
    async def get(self, account_id: str) -> Session | None:
        """Return the stored session for an account, or None."""
        ...

    @abstractmethod
    async def put(self, account_id: str, session: Session) -> None:
        """Replace the stored session for an account."""
        ...

    @abstractmethod
    async def clear(self, account_id: str) -> None:
        """Remove the stored session for an account. No-op if absent."""
        ...

    @abstractmethod
    async def replace(self, account_id: str, expected: Session, session: Session) -> Session | None:
        """Store ``session`` only if ``expected`` is still the stored session.

        Sessions are matched on their access token. The check and the
        write happen as one step, so a logout or another refresh landing
        in between is never overwritten.

        Returns:
            ``session`` if it was stored, otherwise whatever is stored now
            (None after a logout)
        """
        ...


class InMemorySessionStore(SessionStore):
    """Session store backed by a dict.

    Sessions are immutable, so replacing the dict entry is an atomic swap.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    async def get(self, account_id: str) -> Session | None:
        return self._sessions.get(account_id)

    async def put(self, account_id: str, session: Session) -> None:
        self._sessions[account_id] = session

    async def clear(self, account_id: str) -> None:
        self._sessions.pop(account_id, None)

    async def replace(self, account_id: str, expected: Session, session: Session) -> Session | None:
        current = self._sessions.get(account_id)
        if current is None or current.access_token != expected.access_token:
            return current
        self._sessions[account_id] = session
        return session


class FileSessionStore(SessionStore):
    """Session store with one JSON file per account.

    Layout: ``{base_dir}/{account_id}.json``. Writes go through a temp
    file + rename, and sessions are cached in memory once read or written.
    Cache fills and writes both happen under one lock, so a slow disk read
    can never put an older session back in the cache.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self._cache: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def _path_for(self, account_id: str) -> Path:
        return self.base_dir / f"{_UNSAFE_CHARS.sub('_', account_id)}.json"

    async def get(self, account_id: str) -> Session | None:
        cached = self._cache.get(account_id)
        if cached is not None:
            return cached

        async with self._lock:
            return await self._load(account_id)

    async def _load(self, account_id: str) -> Session | None:
        # Caller holds self._lock
        cached = self._cache.get(account_id)
        if cached is not None:
            return cached

        data = await load_document(self._path_for(account_id))
        if data is None:
            return None

        try:
            session = Session.from_dict(data)
        except KeyError as e:
            logger.warning(f"Ignoring malformed session file for {account_id}: missing {e}")
            return None

        self._cache[account_id] = session
        return session

    async def put(self, account_id: str, session: Session) -> None:
        async with self._lock:
            await self._save(account_id, session)
        logger.debug(f"Session stored for account {account_id}")

    async def _save(self, account_id: str, session: Session) -> None:
        await save_document(self._path_for(account_id), session.to_dict())
        self._cache[account_id] = session

    async def replace(self, account_id: str, expected: Session, session: Session) -> Session | None:
        async with self._lock:
            current = await self._load(account_id)
            if current is None or current.access_token != expected.access_token:
                return current
            await self._save(account_id, session)
        logger.debug(f"Session replaced for account {account_id}")
        return session

    async def clear(self, account_id: str) -> None:
        async with self._lock:
            self._cache.pop(account_id, None)
            removed = await delete_document(self._path_for(account_id))
        if removed:
            logger.debug(f"Session cleared for account {account_id}")
