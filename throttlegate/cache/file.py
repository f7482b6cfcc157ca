"""File-backed cacher.

Each key is stored as a small JSON document in a directory, so several
worker processes on the same host share counters. Writes go through a
temporary file and ``os.replace`` so readers never observe a partial file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from hashlib import sha256
from pathlib import Path
from typing import Any

from throttlegate.cache.base import AbstractCacher, CacheItem
from throttlegate.core.errors import CacheAppError

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class FileCacher(AbstractCacher):
    """Store entries as JSON files under ``path``.

    File names are SHA-256 digests of the prefixed key, grouped under a
    directory derived from the prefix, so arbitrary identifiers (IPv6
    addresses, API keys) are safe to use as keys.
    """

    def __init__(self, *, prefix: str = "", path: str | os.PathLike[str] = "cache") -> None:
        super().__init__(prefix=prefix)
        self._root = Path(path)
        self._dir = self._root / (sha256(prefix.encode()).hexdigest()[:16] if prefix else "default")

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"FileCacher(prefix={self.prefix!r}, path={str(self._root)!r})"

    def _file_for(self, key: str) -> Path:
        return self._dir / (sha256(self.prefixed(key).encode()).hexdigest() + _SUFFIX)

    def _read(self, path: Path) -> CacheItem | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheAppError(
                code="cache_read_failed",
                message="Unable to read cache entry",
                details={"backend": "file", "hint": str(exc)},
            ) from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = None

        if not isinstance(payload, dict):
            # A torn or foreign file is treated as a miss and dropped.
            logger.warning("cache.corrupt_entry", extra={"cache_file": path.name})
            path.unlink(missing_ok=True)
            return None

        return CacheItem(value=payload.get("value"), expires_at=payload.get("expires_at"))

    def get(self, key: str, default: Any = None) -> Any:
        path = self._file_for(key)
        item = self._read(path)
        if item is None:
            logger.debug("cache.miss", extra={"cache_file": path.name, "reason": "not_found"})
            return default

        if item.is_expired(time.time()):
            path.unlink(missing_ok=True)
            logger.debug("cache.miss", extra={"cache_file": path.name, "reason": "expired"})
            return default

        logger.debug("cache.hit", extra={"cache_file": path.name})
        return item.value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        path = self._file_for(key)
        expires_at = time.time() + ttl if ttl is not None else None
        payload = json.dumps({"value": value, "expires_at": expires_at})

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheAppError(
                code="cache_write_failed",
                message="Unable to write cache entry",
                details={"backend": "file", "hint": str(exc)},
            ) from exc

        logger.debug("cache.set", extra={"cache_file": path.name, "ttl_s": ttl})

    def delete(self, key: str) -> bool:
        path = self._file_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def empty(self) -> None:
        if not self._dir.is_dir():
            return
        for path in self._dir.glob(f"*{_SUFFIX}"):
            path.unlink(missing_ok=True)

    def size(self) -> int:
        if not self._dir.is_dir():
            return 0

        now = time.time()
        count = 0
        for path in self._dir.glob(f"*{_SUFFIX}"):
            item = self._read(path)
            if item is not None and not item.is_expired(now):
                count += 1
        return count
