"""Redis-backed cacher.

Shares counters across processes and hosts. Values are JSON-encoded and
expiry is delegated to Redis (``SET ... EX``). ``lock()`` returns a Redis
lock, so the limiter's read-modify-write is serialized across processes
as well.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import redis
from redis.exceptions import LockNotOwnedError

from throttlegate.cache.base import AbstractCacher
from throttlegate.core.errors import CacheAppError

logger = logging.getLogger(__name__)


class RedisCacher(AbstractCacher):
    """Store entries in Redis under ``prefix``.

    Args:
        prefix: Key prefix (also used to scope ``empty()`` and ``size()``).
        url: Connection URL used when ``client`` is not supplied.
        client: Pre-built ``redis.Redis`` client.
        lock_timeout: Seconds after which an abandoned lock is released.
    """

    def __init__(
        self,
        *,
        prefix: str = "",
        url: str = "redis://localhost:6379/0",
        client: redis.Redis | None = None,
        lock_timeout: float = 5.0,
    ) -> None:
        super().__init__(prefix=prefix)
        self._client = client if client is not None else redis.Redis.from_url(url)
        self._lock_timeout = lock_timeout

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"RedisCacher(prefix={self.prefix!r})"

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise CacheAppError(
                code=f"cache_{operation}_failed",
                message=f"Redis {operation} failed",
                details={"backend": "redis", "hint": str(exc)},
            ) from exc

    def get(self, key: str, default: Any = None) -> Any:
        with self._translate_errors("read"):
            raw = self._client.get(self.prefixed(key))
        if raw is None:
            logger.debug("cache.miss", extra={"cache_key": self.prefixed(key)[:32]})
            return default
        logger.debug("cache.hit", extra={"cache_key": self.prefixed(key)[:32]})
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        with self._translate_errors("write"):
            self._client.set(self.prefixed(key), json.dumps(value), ex=ttl)
        logger.debug("cache.set", extra={"cache_key": self.prefixed(key)[:32], "ttl_s": ttl})

    def delete(self, key: str) -> bool:
        with self._translate_errors("delete"):
            return bool(self._client.delete(self.prefixed(key)))

    def empty(self) -> None:
        with self._translate_errors("delete"):
            keys = list(self._client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self._client.delete(*keys)

    def size(self) -> int:
        with self._translate_errors("read"):
            return sum(1 for _ in self._client.scan_iter(match=f"{self.prefix}*"))

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold a Redis lock named after ``key`` for the duration of the block."""

        redis_lock = self._client.lock(
            f"lock:{self.prefixed(key)}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        )
        with self._translate_errors("lock"):
            acquired = redis_lock.acquire()
        if not acquired:
            raise CacheAppError(
                code="cache_lock_timeout",
                message="Timed out waiting for the counter lock",
                details={"backend": "redis"},
            )
        try:
            yield
        finally:
            self._release(redis_lock, key)

    def _release(self, redis_lock: Any, key: str) -> None:
        with self._translate_errors("lock"):
            try:
                redis_lock.release()
            except LockNotOwnedError:
                # Expired mid-block; the update it guarded is already written.
                logger.warning(
                    "cache.lock_expired",
                    extra={"cache_key": self.prefixed(key)[:32], "lock_timeout_s": self._lock_timeout},
                )
