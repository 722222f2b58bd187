"""
cache.py — In-process TTL cache
===============================
Entries are {data, timestamp, ttl}. Expiry is checked lazily on read and an
expired entry is dropped then; there is no other eviction.

`get_or_fetch` serves stale data when the fetcher fails and an (expired)
entry is still around, so a database hiccup degrades to slightly old
listings instead of a 500.

Every invalidation bumps a generation counter. A fetch that overlaps an
invalidation of its key still returns its result but does not store it.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar

from .config import settings

logger = logging.getLogger("ecosystem.cache")

T = TypeVar("T")

_MISSING = object()


@dataclass
class CacheItem:
    data: Any
    timestamp: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


class TTLCache:
    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._items: Dict[str, CacheItem] = {}
        self._stale: Dict[str, CacheItem] = {}
        self._generations: Dict[str, int] = {}
        self._cleared = 0
        self._lock = Lock()

    def _generation(self, key: str) -> int:
        """Caller holds the lock. Counters only grow, so any bump changes the sum."""
        return self._cleared + sum(
            gen for prefix, gen in self._generations.items() if key.startswith(prefix)
        )

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        item = CacheItem(
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._items[key] = item
            self._stale.pop(key, None)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            if item.expired(self._clock()):
                # Kept aside for stale-on-error fallback in get_or_fetch
                self._stale[key] = self._items.pop(key)
                return None
            return item.data

    def delete(self, key: str) -> None:
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            self._items.pop(key, None)
            self._stale.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with *prefix*. Returns the count."""
        with self._lock:
            self._generations[prefix] = self._generations.get(prefix, 0) + 1
            keys = [k for k in self._items if k.startswith(prefix)]
            keys += [k for k in self._stale if k.startswith(prefix) and k not in keys]
            for k in keys:
                self._items.pop(k, None)
                self._stale.pop(k, None)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cleared += 1
            self._items.clear()
            self._stale.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], T],
        ttl: Optional[float] = None,
    ) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock:
            started = self._generation(key)
        try:
            data = fetcher()
        except Exception as exc:
            with self._lock:
                stale = self._stale.get(key, _MISSING)
            if stale is _MISSING:
                raise
            logger.warning("Serving stale cache entry %r after fetch failure: %s", key, exc)
            return stale.data

        with self._lock:
            if self._generation(key) != started:
                # Invalidated while fetching; the result may predate the write
                return data
        self.set(key, data, ttl)
        return data


# Shared cache for public list endpoints
response_cache = TTLCache(default_ttl=settings.cache_ttl_seconds)
