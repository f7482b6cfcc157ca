"""Named cache configurations.

A ``CacheManager`` maps namespace names (e.g. ``"ratelimiter"``) to backend
options and lazily builds one cacher per namespace. Components ask for a
namespace by name and never construct backends themselves.
"""

from __future__ import annotations

import importlib
import logging
import threading
from collections.abc import Mapping
from typing import Any

from throttlegate.cache.base import AbstractCacher
from throttlegate.core.config import CacheSettings, settings
from throttlegate.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)

BACKEND_ALIASES: dict[str, str] = {
    "memory": "throttlegate.cache.memory.MemoryCacher",
    "file": "throttlegate.cache.file.FileCacher",
    "redis": "throttlegate.cache.redis_cacher.RedisCacher",
}


def resolve_cacher_class(class_name: str | type[AbstractCacher]) -> type[AbstractCacher]:
    """Resolve a backend alias, dotted path or class to a cacher class.

    Args:
        class_name: ``"memory"``, ``"file"``, ``"redis"``, a dotted import
            path, or an ``AbstractCacher`` subclass.

    Returns:
        The cacher class.

    Raises:
        ConfigurationAppError: If the class cannot be imported or is not a cacher.
    """

    if isinstance(class_name, type):
        cls: Any = class_name
    else:
        dotted = BACKEND_ALIASES.get(class_name, class_name)
        module_name, _, attr = dotted.rpartition(".")
        if not module_name:
            raise ConfigurationAppError(
                code="unknown_cache_backend",
                message=f"Unknown cache backend: {class_name}",
                details={"field": "class_name", "value": class_name},
            )
        try:
            cls = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError) as exc:
            raise ConfigurationAppError(
                code="unknown_cache_backend",
                message=f"Unable to import cache backend: {class_name}",
                details={"field": "class_name", "value": class_name},
            ) from exc

    if not (isinstance(cls, type) and issubclass(cls, AbstractCacher)):
        raise ConfigurationAppError(
            code="invalid_cache_backend",
            message=f"Cache backend must subclass AbstractCacher: {class_name}",
            details={"field": "class_name", "value": str(class_name)},
        )
    return cls


class CacheManager:
    """Registry of named cache configurations and their cacher instances."""

    def __init__(self) -> None:
        self._configs: dict[str, dict[str, Any]] = {}
        self._instances: dict[str, AbstractCacher] = {}
        self._lock = threading.RLock()

    def has_config(self, name: str) -> bool:
        with self._lock:
            return name in self._configs

    def get_config(self, name: str) -> dict[str, Any]:
        with self._lock:
            if name not in self._configs:
                raise ConfigurationAppError(
                    code="cache_config_missing",
                    message=f"Cache config not found: {name}",
                    details={"cache_config": name},
                )
            return dict(self._configs[name])

    def set_config(self, name: str, options: Mapping[str, Any]) -> None:
        """Register backend options for ``name``.

        Args:
            name: Namespace name.
            options: ``class_name`` plus backend keyword arguments
                (``prefix``, ``path``, ``max_entries``, ``url``, ...).

        Raises:
            ConfigurationAppError: If ``name`` is already configured or the
                backend class cannot be resolved.
        """

        options = dict(options)
        resolve_cacher_class(options.get("class_name", "memory"))

        with self._lock:
            if name in self._configs:
                raise ConfigurationAppError(
                    code="cache_config_exists",
                    message=f"Cache config already exists: {name}",
                    details={"cache_config": name},
                )
            self._configs[name] = options

        logger.info(
            "cache.config_registered",
            extra={"cache_config": name, "backend": str(options.get("class_name", "memory"))},
        )

    def ensure_config(self, name: str, options: Mapping[str, Any]) -> bool:
        """Register ``options`` for ``name`` unless it is already configured.

        Returns:
            True if the options were registered, False if a config existed.
        """

        with self._lock:
            if name in self._configs:
                return False
            self.set_config(name, options)
            return True

    def use(self, name: str) -> AbstractCacher:
        """Return the cacher for ``name``, building it on first use."""

        with self._lock:
            cacher = self._instances.get(name)
            if cacher is not None:
                return cacher

            options = self.get_config(name)
            cls = resolve_cacher_class(options.pop("class_name", "memory"))
            try:
                cacher = cls(**options)
            except TypeError as exc:
                raise ConfigurationAppError(
                    code="invalid_cache_options",
                    message=f"Invalid options for cache config: {name}",
                    details={"cache_config": name, "hint": str(exc)},
                ) from exc

            self._instances[name] = cacher
            return cacher

    def clear(self) -> None:
        """Drop every config and cacher instance."""

        with self._lock:
            self._configs.clear()
            self._instances.clear()


_cache_manager: CacheManager | None = None
_cache_manager_lock = threading.Lock()


def get_cache_manager() -> CacheManager:
    """Return the process-wide cache manager.

    The instance is cached in-module so counters survive across requests.
    """

    global _cache_manager

    with _cache_manager_lock:
        if _cache_manager is None:
            _cache_manager = CacheManager()
        return _cache_manager


def default_cache_options(name: str, cache_settings: CacheSettings | None = None) -> dict[str, Any]:
    """Build backend options for a namespace nobody configured explicitly.

    Args:
        name: Namespace name; also used as the key prefix (``"<name>:"``).
        cache_settings: Backend settings; defaults to the global settings.

    Returns:
        Options suitable for ``CacheManager.set_config``.
    """

    cfg = cache_settings or settings.cache
    options: dict[str, Any] = {"class_name": cfg.default_backend, "prefix": f"{name}:"}
    if cfg.default_backend == "memory":
        options["max_entries"] = cfg.max_entries
    elif cfg.default_backend == "file":
        options["path"] = cfg.file_path
    elif cfg.default_backend == "redis":
        options["url"] = cfg.redis_url
    return options
