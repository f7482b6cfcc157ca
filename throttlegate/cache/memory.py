"""In-memory TTL cacher.

Thread-safe, per-process store with per-entry expiry and LRU eviction.
Running several worker processes gives each its own counters, so the
effective limit is multiplied by the worker count.

Expired entries are dropped lazily: on read, when the store is full, and
when ``size()`` is asked for. Limiter windows are rewritten on every
request, so a full sweep per write would cost more than the counting.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Any

from throttlegate.cache.base import AbstractCacher, CacheItem

logger = logging.getLogger(__name__)


class MemoryCacher(AbstractCacher):
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Args:
        prefix: Key prefix.
        max_entries: Maximum number of live entries (None for unlimited).
    """

    def __init__(self, *, prefix: str = "", max_entries: int | None = 10000) -> None:
        super().__init__(prefix=prefix)
        self._max_entries = max_entries
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = dict.fromkeys(("hits", "misses", "expired", "evictions"), 0)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"MemoryCacher(prefix={self.prefix!r}, max_entries={self._max_entries}, size={len(self._store)})"

    def get(self, key: str, default: Any = None) -> Any:
        full_key = self.prefixed(key)
        with self._lock:
            item = self._store.get(full_key)
            if item is not None and item.is_expired(time.time()):
                del self._store[full_key]
                self._stats["expired"] += 1
                item = None

            if item is None:
                self._stats["misses"] += 1
                logger.debug("cache.miss", extra={"cache_key": full_key[:32]})
                return default

            self._stats["hits"] += 1
            self._store.move_to_end(full_key)
            logger.debug("cache.hit", extra={"cache_key": full_key[:32]})
            return item.value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value``; a full store first drops expired entries, then LRU ones."""

        full_key = self.prefixed(key)
        now = time.time()
        with self._lock:
            self._store[full_key] = CacheItem(value=value, expires_at=now + ttl if ttl is not None else None)
            self._store.move_to_end(full_key)
            if self._max_entries is not None and len(self._store) > self._max_entries:
                self._purge_expired_locked(now)
                while len(self._store) > self._max_entries:
                    self._store.popitem(last=False)
                    self._stats["evictions"] += 1

        logger.debug("cache.set", extra={"cache_key": full_key[:32], "ttl_s": ttl})

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(self.prefixed(key), None) is not None

    def empty(self) -> None:
        """Remove all entries and reset the statistics."""

        with self._lock:
            self._store.clear()
            for name in self._stats:
                self._stats[name] = 0

    def size(self) -> int:
        with self._lock:
            self._purge_expired_locked(time.time())
            return len(self._store)

    def stats(self) -> dict[str, int | None]:
        """Return hit/miss/expiry/eviction counters without exposing values."""

        with self._lock:
            return {"max_entries": self._max_entries, "entries": len(self._store), **self._stats}

    def _purge_expired_locked(self, now: float) -> None:
        expired = [k for k, item in self._store.items() if item.is_expired(now)]
        for key in expired:
            del self._store[key]
        self._stats["expired"] += len(expired)
