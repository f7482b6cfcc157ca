"""HTTP middleware applying the rate limiter to every request.

The middleware:
- Builds one immutable ``RateLimitConfig`` when the app starts
- Creates a fresh ``RateLimiter`` per request so run state never leaks
  between concurrent requests
- Returns the limiter's 429 response when the limit is exceeded
- Otherwise calls the downstream handler and adds the rate limit headers

Usage:
    app.add_middleware(RateLimiterMiddleware, limit=100, period=60)
"""

from __future__ import annotations

from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from throttlegate.cache.manager import CacheManager, get_cache_manager
from throttlegate.security.rate_limiter import RateLimitConfig, RateLimiter


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """Reject requests over the configured rate with a 429 response.

    Args:
        app: Downstream ASGI app.
        cache_manager: Registry holding the limiter's cache namespace;
            defaults to the process-wide manager.
        config: Prebuilt configuration; ``options`` are merged over it.
        **options: Rate limiter options (``limit``, ``period``, ``message``,
            ``header_names``, ``identifier``, ``skip_check``,
            ``error_renderer``, ...).
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        cache_manager: CacheManager | None = None,
        config: RateLimitConfig | None = None,
        **options: Any,
    ) -> None:
        super().__init__(app)
        self.cache_manager = cache_manager or get_cache_manager()
        # Validates options and registers the cache namespace up front.
        self.limiter_config = RateLimiter(self.cache_manager, config, **options).config

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        limiter = RateLimiter(self.cache_manager, self.limiter_config)
        if not limiter.check_limit(request):
            return limiter.error_response(request)

        response = await call_next(request)
        return limiter.add_headers(response)
