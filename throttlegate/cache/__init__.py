"""Counter store backends.

This package provides a small abstraction layer so the limiter can start with
an in-memory store and move to files or Redis without changing the counting
logic. The Redis backend is imported on demand by the cache manager.
"""

from throttlegate.cache.base import AbstractCacher, CacheItem
from throttlegate.cache.file import FileCacher
from throttlegate.cache.manager import CacheManager, get_cache_manager
from throttlegate.cache.memory import MemoryCacher

__all__ = [
    "AbstractCacher",
    "CacheItem",
    "CacheManager",
    "FileCacher",
    "MemoryCacher",
    "get_cache_manager",
]
