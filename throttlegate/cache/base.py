"""Cacher interface shared by all counter store backends.

The limiter depends on this abstraction (not a concrete backend) so the
storage can move from process memory to files or Redis without touching
the counting logic.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any

# Number of lock stripes used to serialize updates per key.
LOCK_STRIPES = 64


@dataclass
class CacheItem:
    """Container for cached values with expiration metadata.

    Attributes:
        value: Stored value (must be JSON-serializable for shared backends).
        expires_at: UNIX epoch seconds after which the item is stale, or None.
    """

    value: Any
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AbstractCacher(ABC):
    """Interface for key-value stores with per-entry expiry.

    Attributes:
        prefix: String prepended to every key before it reaches the backend.
    """

    def __init__(self, *, prefix: str = "") -> None:
        self.prefix = prefix
        self._lock_stripes = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def prefixed(self, key: str) -> str:
        """Return the backend key for ``key``."""
        return f"{self.prefix}{key}"

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value, or ``default`` when missing or expired."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store ``value`` under ``key``.

        Args:
            key: Cache key (unprefixed).
            value: Value to store.
            ttl: Time-to-live in seconds; None keeps the entry until deleted.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True when an entry was removed."""
        raise NotImplementedError

    @abstractmethod
    def empty(self) -> None:
        """Remove every entry under this cacher's prefix."""
        raise NotImplementedError

    @abstractmethod
    def size(self) -> int:
        """Return the number of live entries under this cacher's prefix."""
        raise NotImplementedError

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def lock(self, key: str) -> AbstractContextManager[Any]:
        """Return a lock guarding read-modify-write sequences on ``key``.

        The default is a process-local striped lock: keys hashing to the same
        stripe share a lock, which bounds memory regardless of key count.
        Backends with a shared lock primitive override this.
        """
        return self._lock_stripes[hash(self.prefixed(key)) % LOCK_STRIPES]
