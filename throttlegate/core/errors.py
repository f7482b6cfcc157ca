"""Application-level exception types.

This module defines domain errors used across the limiter and the cache
layer, enabling consistent error handling, logging, and API responses.

None of these errors mean "limit exceeded": that outcome is a regular 429
response produced by the limiter, never an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to carry every field.
    """

    code: str
    message: str
    hint: str
    field: str
    value: Any
    backend: str
    cache_config: str
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised when limiter or cache configuration is invalid."""


class CacheAppError(AppError):
    """Raised when a counter store backend fails to read or write."""
