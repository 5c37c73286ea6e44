"""
Stream cursor persistence.

The cursor is the ``time_us`` of the last fully processed event. It is
written after dispatch and read only when (re)connecting.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from ..exceptions import StoreIOError
from ..file_ops import delete_document, load_document, save_document

logger = logging.getLogger(__name__)


class CursorStore(ABC):
    """Durable single-value storage of the last processed stream position."""

    @abstractmethod
    async def get(self) -> int | None:
        ...

    @abstractmethod
    async def set(self, cursor: int) -> None:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...


class InMemoryCursorStore(CursorStore):
    """Cursor store that lives only as long as the process."""

    def __init__(self, cursor: int | None = None) -> None:
        self._cursor = cursor
        self.writes = 0

    async def get(self) -> int | None:
        return self._cursor

    async def set(self, cursor: int) -> None:
        self._cursor = cursor
        self.writes += 1

    async def clear(self) -> None:
        self._cursor = None


class FileCursorStore(CursorStore):
    """Cursor store backed by a small JSON file.

    Layout: ``{"cursor": <time_us>, "key": <installation key>}``. The key
    lets several installations share a data directory without resuming
    each other's position.
    """

    def __init__(self, path: Path, key: str = "default"):
        self.path = path
        self.key = key
        self._cached: int | None = None
        self._loaded = False

    async def get(self) -> int | None:
        if self._loaded:
            return self._cached

        try:
            data = await load_document(self.path)
        except StoreIOError as e:
            logger.warning(f"Ignoring unreadable cursor file {self.path}: {e}")
            data = None

        cursor = None
        if data and data.get("key") == self.key:
            value = data.get("cursor")
            if isinstance(value, int) and not isinstance(value, bool):
                cursor = value

        self._cached = cursor
        self._loaded = True
        return cursor

    async def set(self, cursor: int) -> None:
        await save_document(self.path, {"cursor": cursor, "key": self.key})
        self._cached = cursor
        self._loaded = True

    async def clear(self) -> None:
        await delete_document(self.path)
        self._cached = None
        self._loaded = True
        logger.info("Cleared saved stream cursor")
