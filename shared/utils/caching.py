"""
Caching utilities for the audit assistant.

In-memory cache with LRU eviction and optional per-entry TTL. The audit
service keeps resolved user identities in one of these so repeated lookups
within and across requests avoid remote calls, while organization changes
still become visible once entries expire or are evicted.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheStats:
    """Cache performance statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class CacheEntry(BaseModel):
    """Cache entry with metadata."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    value: Any
    created_at: datetime = Field(default_factory=_utcnow)
    ttl_seconds: Optional[int] = None
    access_count: int = 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if entry has expired."""
        if self.ttl_seconds is None:
            return False
        now = now or _utcnow()
        return now > self.created_at + timedelta(seconds=self.ttl_seconds)


class MemoryCache:
    """
    In-memory cache with LRU eviction.

    Safe for concurrent use from coroutines on one event loop: every
    mutation happens under a single ``asyncio.Lock``. Same-key races are
    last-write-wins.
    """

    def __init__(self, max_size: int = 1000, default_ttl: Optional[int] = 3600, clock=_utcnow):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.stats = CacheStats()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        """Get value by key, or None when missing or expired."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self.stats.misses += 1
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self.stats.misses += 1
                self.stats.evictions += 1
                return None

            # Most recently used goes to the end
            self._cache.move_to_end(key)
            entry.access_count += 1
            self.stats.hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set value by key, evicting the least recently used entry at capacity."""
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
            elif len(self._cache) >= self.max_size:
                evicted_key, _ = self._cache.popitem(last=False)
                self.stats.evictions += 1
                self.logger.debug(f"Evicted LRU entry: {evicted_key}")

            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl_seconds=ttl if ttl is not None else self.default_ttl
            )
            self.stats.sets += 1

    async def delete(self, key: str) -> bool:
        """Delete value by key."""
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                self.stats.deletes += 1
                return True
            return False

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            self._cache.clear()

    def keys(self) -> List[str]:
        """Get all cache keys, least recently used first."""
        return list(self._cache.keys())

    def __len__(self) -> int:
        return len(self._cache)

    def get_cache_info(self) -> Dict[str, Any]:
        return {
            'size': len(self._cache),
            'max_size': self.max_size,
            'default_ttl': self.default_ttl,
            'hit_rate': self.stats.hit_rate
        }
