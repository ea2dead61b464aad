"""
In-process TTL key-value store.

Expiry is checked lazily on every read, so a lookup never returns an entry
whose ``stored_at + ttl_seconds`` has passed. The optional background sweep
only bounds memory; correctness never depends on it.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger


class _Miss:
    """Distinguished lookup-miss signal."""

    _instance: Optional["_Miss"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


@dataclass
class CacheEntry:
    """A stored value with its expiry bookkeeping."""
    key: str
    value: Any
    stored_at: float
    ttl_seconds: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        # Valid while now - stored_at < ttl
        return now - self.stored_at >= self.ttl_seconds


class TTLCacheStore:
    """Key-value store with per-entry expiry.

    Each caller supplies its own TTL; the store has no default. Capacity is
    bounded only by expiry.
    """

    def __init__(self,
                 clock: Callable[[], float] = time.monotonic,
                 sweep_interval_seconds: float = 0.0):
        self._clock = clock
        self.sweep_interval_seconds = sweep_interval_seconds
        self._entries: Dict[str, CacheEntry] = {}
        self.logger = get_logger("reporting.cache")

        self.hits = 0
        self.misses = 0

        self.sweep_task: Optional[asyncio.Task] = None
        self.running = False

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` under ``key``, resetting its expiry clock.

        A non-positive TTL stores nothing and evicts any existing entry.
        """
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl_seconds=ttl_seconds,
        )

    def get(self, key: str, default: Any = MISS) -> Any:
        """Return the live value for ``key`` or ``default`` (``MISS``)."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.misses += 1
            return default

        self.hits += 1
        return entry.value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def stats(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "entries": len(self._entries),
        }

    async def start(self):
        """Start the periodic sweep, if an interval is configured."""
        if self.sweep_interval_seconds <= 0 or self.running:
            return
        self.running = True
        self.sweep_task = asyncio.create_task(self._sweep_loop())
        self.logger.info("Cache sweep started", interval=self.sweep_interval_seconds)

    async def stop(self):
        """Stop the sweep and drop all entries."""
        self.running = False
        if self.sweep_task:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
            self.sweep_task = None

        self.clear()
        self.logger.info("Cache store stopped")

    async def _sweep_loop(self):
        while self.running:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.purge_expired()
            if removed:
                self.logger.debug("Expired cache entries purged", removed=removed, remaining=len(self))
