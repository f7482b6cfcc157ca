"""Fixed-window rate limiter backed by a named cache.

Each identifier (client address by default) gets a window that opens with
its first request and lasts ``period`` seconds. The window's end time is
fixed when it opens; later requests only increase the count. Once the
count exceeds ``limit`` the request is rejected until the window ends.

Window state lives in the cache namespace named by ``cache_config`` as a
``[count, reset_at]`` pair whose TTL equals the time left in the window,
so stale windows evict themselves.

A ``RateLimiter`` instance carries the run state of one request (the count
and reset time observed by ``check_limit``), so build one per request from
a shared ``RateLimitConfig``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from contextlib import nullcontext
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any

from starlette.requests import Request
from starlette.responses import Response

from throttlegate.cache.base import AbstractCacher
from throttlegate.cache.manager import CacheManager, default_cache_options, get_cache_manager
from throttlegate.core.errors import ConfigurationAppError
from throttlegate.core.logging import hash_identifier
from throttlegate.security.identifiers import remote_address
from throttlegate.security.responses import negotiate_content_type, replace_body, replace_json

logger = logging.getLogger(__name__)

HTTP_429_TOO_MANY_REQUESTS = 429

SkipCheck = Callable[[Request], bool]
ErrorRenderer = Callable[[Request, Response], Response]


DEFAULT_HEADER_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "limit": "X-RateLimit-Limit",
        "remaining": "X-RateLimit-Remaining",
        "reset": "X-RateLimit-Reset",
    }
)

DEFAULT_OPTIONS: Mapping[str, Any] = MappingProxyType(
    {
        "cache_config": "ratelimiter",
        "limit": 60,
        "period": 60,
        "message": "Rate limit exceeded",
        "header_names": DEFAULT_HEADER_NAMES,
        "identifier": remote_address,
        "skip_check": None,
        "error_renderer": None,
        "serialize_updates": True,
        "clock": time.time,
    }
)


def deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``overrides`` into ``base`` recursively, returning a new dict.

    Nested mappings are merged key by key; any other value (including None)
    replaces the base value.
    """

    merged = dict(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _require_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationAppError(
            code="invalid_rate_limit_config",
            message=f"{name} must be a positive integer",
            details={"field": name, "value": value},
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration.

    Attributes:
        cache_config: Cache namespace holding window state.
        limit: Maximum admitted requests per window.
        period: Window length in seconds.
        message: Body text of the default rejection response.
        header_names: Names of the limit/remaining/reset headers, or None to
            disable header injection.
        identifier: Maps a request to its bucket key.
        skip_check: When it returns True the request bypasses the limiter.
        error_renderer: Shapes the rejection response; None selects the
            content-negotiated default.
        serialize_updates: Hold the cache's per-key lock across the counter
            read-modify-write.
        clock: Time source returning UNIX time in seconds.
    """

    cache_config: str = DEFAULT_OPTIONS["cache_config"]
    limit: int = DEFAULT_OPTIONS["limit"]
    period: int = DEFAULT_OPTIONS["period"]
    message: str = DEFAULT_OPTIONS["message"]
    header_names: Mapping[str, str] | None = field(default_factory=lambda: DEFAULT_HEADER_NAMES)
    identifier: Callable[[Request], str] = remote_address
    skip_check: SkipCheck | None = None
    error_renderer: ErrorRenderer | None = None
    serialize_updates: bool = True
    clock: Callable[[], float] = field(default=time.time, repr=False)

    def __post_init__(self) -> None:
        _require_positive_int("limit", self.limit)
        _require_positive_int("period", self.period)

        if not self.cache_config:
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message="cache_config must be a non-empty string",
                details={"field": "cache_config"},
            )

        if self.header_names is not None:
            missing = {"limit", "remaining", "reset"} - set(self.header_names)
            if missing:
                raise ConfigurationAppError(
                    code="invalid_rate_limit_config",
                    message="header_names must define limit, remaining and reset",
                    details={"field": "header_names", "value": sorted(missing)},
                )
            object.__setattr__(self, "header_names", MappingProxyType(dict(self.header_names)))

        for name in ("identifier", "skip_check", "error_renderer", "clock"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigurationAppError(
                    code="invalid_rate_limit_config",
                    message=f"{name} must be callable",
                    details={"field": name},
                )

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None, **overrides: Any) -> RateLimitConfig:
        """Build a config from user options deep-merged over the defaults.

        Supplying one header name keeps the other defaults; passing
        ``header_names=None`` (or False) disables header injection.

        Args:
            options: Option mapping (keys as in ``DEFAULT_OPTIONS``).
            **overrides: Options given as keywords; they win over ``options``.

        Raises:
            ConfigurationAppError: On unknown option names or invalid values.
        """

        supplied = deep_merge(options or {}, overrides)
        unknown = set(supplied) - set(DEFAULT_OPTIONS)
        if unknown:
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message=f"Unknown rate limiter options: {', '.join(sorted(unknown))}",
                details={"value": sorted(unknown)},
            )

        if supplied.get("header_names") is False:
            supplied["header_names"] = None

        merged = deep_merge(DEFAULT_OPTIONS, supplied)
        return cls(**{f.name: merged[f.name] for f in fields(cls)})


@dataclass(frozen=True)
class WindowState:
    """Counter state stored per identifier for one window."""

    count: int
    reset_at: int

    def to_cache(self) -> list[int]:
        return [self.count, self.reset_at]

    @classmethod
    def from_cache(cls, data: Any) -> WindowState | None:
        """Decode a cached value, returning None for anything unrecognized."""

        if isinstance(data, WindowState):
            return data
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return cls(count=int(data[0]), reset_at=int(data[1]))
        if isinstance(data, Mapping) and {"count", "reset_at"} <= set(data):
            return cls(count=int(data["count"]), reset_at=int(data["reset_at"]))
        return None


@dataclass
class LimiterRunState:
    """Values observed by the last ``check_limit`` call."""

    calls: int = 0
    reset: int = 0


class RateLimiter:
    """Fixed-window rate limiter for a single request.

    Usage:
        limiter = RateLimiter(cache_manager, config)
        if not limiter.check_limit(request):
            return limiter.error_response(request)
        return limiter.add_headers(await call_next(request))
    """

    def __init__(
        self,
        cache_manager: CacheManager | None = None,
        config: RateLimitConfig | None = None,
        **options: Any,
    ) -> None:
        """Initialize the limiter and make sure its cache namespace exists.

        Args:
            cache_manager: Registry providing the cache namespace; defaults to
                the process-wide manager.
            config: Prebuilt configuration. ``options`` are merged over it.
            **options: Option overrides (see ``DEFAULT_OPTIONS``).

        Raises:
            ConfigurationAppError: If the configuration is invalid.
        """

        if config is None:
            config = RateLimitConfig.from_options(options)
        elif options:
            base = {f.name: getattr(config, f.name) for f in fields(config)}
            config = RateLimitConfig.from_options(deep_merge(base, options))

        self.config = config
        self.cache_manager = cache_manager or get_cache_manager()
        self.state = LimiterRunState()
        self._error_renderer: ErrorRenderer = config.error_renderer or self.render_message

        if self.cache_manager.ensure_config(config.cache_config, default_cache_options(config.cache_config)):
            logger.info(
                "rate_limit.cache_registered",
                extra={"cache_config": config.cache_config},
            )

    @property
    def cacher(self) -> AbstractCacher:
        return self.cache_manager.use(self.config.cache_config)

    def _now(self) -> int:
        return int(self.config.clock())

    def check_limit(self, request: Request) -> bool:
        """Count the request and decide whether it is admitted.

        Args:
            request: Incoming request.

        Returns:
            True if the request is within the limit, otherwise False.
        """

        config = self.config
        if config.skip_check is not None and config.skip_check(request):
            logger.debug("rate_limit.skipped", extra={"path": request.url.path})
            return True

        key = config.identifier(request)
        cacher = self.cacher
        guard = cacher.lock(key) if config.serialize_updates else nullcontext()

        with guard:
            now = self._now()
            window = WindowState.from_cache(cacher.get(key))

            if window is None or now > window.reset_at:
                calls, reset = 0, now + config.period
                logger.debug(
                    "rate_limit.window_started",
                    extra={"identifier_hash": hash_identifier(key), "reset_at": reset},
                )
            else:
                calls, reset = window.count, window.reset_at

            calls += 1
            # A window ending this second still needs a storable TTL.
            ttl = max(1, reset - now)
            cacher.set(key, WindowState(count=calls, reset_at=reset).to_cache(), ttl)

        self.state.calls = calls
        self.state.reset = reset

        if calls <= config.limit:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "identifier_hash": hash_identifier(key),
                    "limit": config.limit,
                    "calls": calls,
                    "reset_at": reset,
                },
            )
            return True

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "identifier_hash": hash_identifier(key),
                "limit": config.limit,
                "calls": calls,
                "window_s": config.period,
                "retry_after_s": max(0, reset - now),
            },
        )
        return False

    def add_headers(self, response: Response) -> Response:
        """Add limit/remaining/reset headers for the current request.

        Does nothing when header injection is disabled. A request admitted by
        ``skip_check`` reports the untouched run state (full remaining, reset 0).
        """

        header_names = self.config.header_names
        if not header_names:
            return response

        remaining = max(0, self.config.limit - self.state.calls)
        response.headers[header_names["limit"]] = str(self.config.limit)
        response.headers[header_names["remaining"]] = str(remaining)
        response.headers[header_names["reset"]] = str(self.state.reset)
        return response

    def error_response(self, request: Request) -> Response:
        """Build the 429 response for a rejected request.

        The base response carries ``Retry-After`` and the rate limit headers;
        the error renderer then decides the body.
        """

        retry_after = max(0, self.state.reset - self._now())
        response = Response(
            status_code=HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)},
        )
        response = self.add_headers(response)
        return self._error_renderer(request, response)

    def render_message(self, request: Request, response: Response) -> Response:
        """Default error renderer: JSON ``{"message": ...}`` or plain text."""

        content_type = negotiate_content_type(request, ["text/html", "application/json"])
        if content_type == "application/json":
            return replace_json(response, {"message": self.config.message})
        return replace_body(response, self.config.message, media_type="text/plain")
