"""Tests for the bounded DID filter set."""

import pytest

from atproto_session_sync.config import MAX_WANTED_DIDS
from atproto_session_sync.stream.filters import FilterSet


def dids(start: int, stop: int) -> list[str]:
    return [f"did:plc:{i:05d}" for i in range(start, stop)]


class TestFilterSet:
    def test_starts_empty(self):
        filter_set = FilterSet()

        assert filter_set.is_empty()
        assert filter_set.capacity == MAX_WANTED_DIDS

    def test_add_returns_applied_set(self):
        applied = FilterSet().add(["did:plc:a", "did:plc:b"])

        assert applied == frozenset({"did:plc:a", "did:plc:b"})

    def test_empty_identifiers_skipped(self):
        assert len(FilterSet(["", "did:plc:a"])) == 1

    def test_capacity_evicts_oldest(self):
        """10,001 distinct inserts keep the newest 10,000."""
        filter_set = FilterSet()
        all_dids = dids(0, MAX_WANTED_DIDS + 1)

        filter_set.add(all_dids)

        assert len(filter_set) == MAX_WANTED_DIDS
        assert all_dids[0] not in filter_set
        assert all_dids[1] in filter_set
        assert all_dids[-1] in filter_set

    def test_eviction_across_calls(self):
        filter_set = FilterSet(capacity=3)
        filter_set.add(["a", "b", "c"])
        filter_set.add(["d"])
        filter_set.add(["e"])

        assert filter_set.ordered() == ["c", "d", "e"]

    def test_re_add_keeps_original_position(self):
        filter_set = FilterSet(["a", "b", "c"], capacity=3)
        filter_set.add(["a"])
        filter_set.add(["d"])

        # "a" was inserted first, so it is still evicted first
        assert filter_set.ordered() == ["b", "c", "d"]

    def test_remove(self):
        filter_set = FilterSet(["a", "b"])

        assert filter_set.remove(["a", "missing"]) == frozenset({"b"})

    def test_replace(self):
        filter_set = FilterSet(["a", "b"])

        assert filter_set.replace(["c"]) == frozenset({"c"})
        assert filter_set.ordered() == ["c"]

    def test_replace_is_capped(self):
        filter_set = FilterSet(capacity=2)

        assert filter_set.replace(["a", "b", "c"]) == frozenset({"b", "c"})

    def test_clear(self):
        filter_set = FilterSet(["a"])
        filter_set.clear()

        assert filter_set.is_empty()
        assert list(filter_set) == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            FilterSet(capacity=0)
