"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before the package is imported so the global
settings object is built from them.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("CACHE_DEFAULT_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Callable

import pytest
from starlette.requests import Request

from throttlegate.cache.manager import CacheManager


class FakeClock:
    """Deterministic clock used to drive window boundaries."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def build_request(
    *,
    client_host: str | None = "127.0.0.1",
    path: str = "/v1/ping",
    headers: dict[str, str] | None = None,
) -> Request:
    """Build a Starlette request from a minimal ASGI scope."""

    scope = {
        "type": "http",
        "method": "GET",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "scheme": "http",
        "server": ("testserver", 80),
        "client": (client_host, 50000) if client_host else None,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_manager() -> CacheManager:
    """Fresh cache registry so counters never leak between tests."""
    return CacheManager()


@pytest.fixture
def make_request() -> Callable[..., Request]:
    return build_request
