"""
data_cache.py — In-memory TTL cache for market data responses.

Every entry carries its own time-to-live so a quote can expire after a minute
while fundamentals for the same symbol stay fresh for a day.

- Independent per-entry expiry (valid iff now - stored_at <= ttl)
- Lazy purge on get()/has(); eager purge via prune()
- Monotonic hit/miss counters, reset only by clear()
- No size bound: this is a freshness cache, not a capacity cache

Keys are built by the caller, typically "SYMBOL:kind" or
"SYMBOL:kind:params".

Usage:
    cache = DataCache()
    cache.set("AAPL:quote", payload, ttl=60.0)
    data = cache.get("AAPL:quote")      # None once the entry is stale
    print(cache.stats().hit_rate)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class CacheEntry:
    """A cached value with the moment it was stored and its TTL in seconds."""
    data: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


@dataclass
class CacheStats:
    """Hit/miss counters for a DataCache."""
    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
            "size": self.size,
        }


# ─── DataCache ────────────────────────────────────────────────────────────────


class DataCache:
    """
    Key → value store with independent per-entry expiry.

    Parameters
    ----------
    clock : callable returning the current time in seconds.
        Defaults to time.monotonic; tests inject a fake clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    # ── Core API ───────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on a miss.

        An expired entry is removed and counted as a miss; stale data is
        never returned.
        """
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss for {}", key)
            return None

        if entry.is_expired(self._clock()):
            del self._store[key]
            self._misses += 1
            logger.debug("Cache entry expired for {}", key)
            return None

        self._hits += 1
        logger.debug("Cache hit for {}", key)
        return entry.data

    def set(self, key: str, data: Any, ttl: float) -> None:
        """Store data under key for ttl seconds, replacing any previous entry."""
        self._store[key] = CacheEntry(data=data, stored_at=self._clock(), ttl=ttl)

    def has(self, key: str) -> bool:
        """True if key is present and fresh. Does not touch the counters."""
        entry = self._store.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._store[key]
            return False
        return True

    def prune(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._store.items() if e.is_expired(now)]
        for key in expired:
            del self._store[key]
        if expired:
            logger.debug("Pruned {} expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        self._store.clear()
        self._hits = 0
        self._misses = 0

    # ── Introspection ──────────────────────────────────────────────────────

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._store))

    @property
    def size(self) -> int:
        """Number of stored entries, including expired ones not yet purged."""
        return len(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.has(key)
