"""
Unit tests for the TTL cache store.
"""

import asyncio

import pytest

from service_reporting.app.caching.ttl_store import MISS, CacheEntry, TTLCacheStore
from shared.test_helpers import FakeClock


class TestTTLCacheStore:
    """Test cases for TTLCacheStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return TTLCacheStore(clock=clock)

    @pytest.mark.parametrize("ttl", [1, 30, 60, 300])
    def test_value_live_before_ttl_and_missing_after(self, store, clock, ttl):
        """A value is returned until its TTL elapses and never afterwards."""
        store.set("report", {"total": 3}, ttl)

        clock.advance(ttl - 0.001)
        assert store.get("report") == {"total": 3}

        clock.advance(0.002)
        assert store.get("report") is MISS

    def test_expiry_boundary_is_exclusive(self, store, clock):
        store.set("key", "value", 10)
        clock.advance(10)
        assert store.get("key") is MISS

    def test_missing_key_returns_miss(self, store):
        assert store.get("absent") is MISS
        assert not MISS
        assert store.get("absent", default=None) is None

    def test_falsy_values_are_hits(self, store):
        store.set("empty", [], 30)
        store.set("zero", 0, 30)
        assert store.get("empty") == []
        assert store.get("zero") == 0

    def test_set_overwrites_and_resets_expiry(self, store, clock):
        store.set("key", "old", 10)
        clock.advance(8)
        store.set("key", "new", 10)
        clock.advance(8)
        assert store.get("key") == "new"

    def test_non_positive_ttl_evicts(self, store):
        store.set("key", "value", 30)
        store.set("key", "other", 0)
        assert store.get("key") is MISS
        assert len(store) == 0

    def test_expired_entry_removed_on_read(self, store, clock):
        store.set("key", "value", 5)
        clock.advance(6)
        assert len(store) == 1
        store.get("key")
        assert len(store) == 0

    def test_delete_and_clear(self, store):
        store.set("a", 1, 30)
        store.set("b", 2, 30)
        assert store.delete("a") is True
        assert store.delete("a") is False
        store.clear()
        assert len(store) == 0

    def test_contains_respects_expiry(self, store, clock):
        store.set("key", "value", 5)
        assert "key" in store
        clock.advance(5)
        assert "key" not in store

    def test_purge_expired(self, store, clock):
        store.set("short", 1, 5)
        store.set("long", 2, 60)
        clock.advance(10)
        assert store.purge_expired() == 1
        assert store.get("long") == 2

    def test_stats_count_hits_and_misses(self, store):
        store.set("key", "value", 30)
        store.get("key")
        store.get("key")
        store.get("other")
        assert store.stats() == {"hits": 2, "misses": 1, "entries": 1}

    def test_cache_entry_expiry(self):
        entry = CacheEntry(key="k", value=1, stored_at=100.0, ttl_seconds=30)
        assert entry.expires_at == 130.0
        assert not entry.is_expired(129.9)
        assert entry.is_expired(130.0)

    @pytest.mark.asyncio
    async def test_start_without_interval_has_no_task(self, store):
        await store.start()
        assert store.sweep_task is None
        await store.stop()

    @pytest.mark.asyncio
    async def test_sweep_bounds_memory(self, clock):
        store = TTLCacheStore(clock=clock, sweep_interval_seconds=0.01)
        store.set("key", "value", 1)
        clock.advance(2)

        await store.start()
        try:
            for _ in range(50):
                await asyncio.sleep(0.01)
                if len(store) == 0:
                    break
            assert len(store) == 0
        finally:
            await store.stop()
        assert store.sweep_task is None

    @pytest.mark.asyncio
    async def test_stop_clears_entries(self, store):
        store.set("key", "value", 30)
        await store.stop()
        assert store.get("key") is MISS
