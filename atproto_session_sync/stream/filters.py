"""
Bounded filter set of subject identifiers (DIDs).

The stream service rejects filters above its documented limit, so the
set never grows past its capacity: the oldest-inserted entries are
evicted first.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable, Iterator

from ..config import MAX_WANTED_DIDS

logger = logging.getLogger(__name__)


class FilterSet:
    """
    Insertion-ordered set of DIDs with a capacity cap.

    Features:
    - Oldest-inserted eviction when full
    - Re-adding a present DID keeps its original position
    - Empty means "unfiltered"
    """

    def __init__(self, identifiers: Iterable[str] = (), capacity: int = MAX_WANTED_DIDS):
        """
        Initialize the filter set.

        Args:
            identifiers: Initial members, oldest first
            capacity: Maximum number of members
        """
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        self._members: OrderedDict[str, None] = OrderedDict()
        self.add(identifiers)

    def add(self, identifiers: Iterable[str]) -> frozenset[str]:
        """Insert identifiers, evicting the oldest members if over capacity.

        Returns:
            The applied set
        """
        for identifier in identifiers:
            if identifier and identifier not in self._members:
                self._members[identifier] = None
        self._enforce_capacity()
        return self.members()

    def remove(self, identifiers: Iterable[str]) -> frozenset[str]:
        """Remove identifiers. Absent ones are ignored.

        Returns:
            The applied set
        """
        for identifier in identifiers:
            self._members.pop(identifier, None)
        return self.members()

    def replace(self, identifiers: Iterable[str]) -> frozenset[str]:
        """Replace all members.

        Returns:
            The applied set
        """
        self._members.clear()
        return self.add(identifiers)

    def clear(self) -> None:
        self._members.clear()

    def _enforce_capacity(self) -> None:
        evicted = 0
        while len(self._members) > self.capacity:
            # popitem(last=False) removes the oldest insertion
            self._members.popitem(last=False)
            evicted += 1
        if evicted:
            logger.warning(
                f"Filter set over capacity, evicted {evicted} oldest entries "
                f"(capacity {self.capacity})"
            )

    def members(self) -> frozenset[str]:
        return frozenset(self._members)

    def ordered(self) -> list[str]:
        """Members oldest first."""
        return list(self._members)

    def is_empty(self) -> bool:
        return not self._members

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._members

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __repr__(self) -> str:
        return f"FilterSet(size={len(self._members)}, capacity={self.capacity})"
