"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability: tests build isolated apps with their own settings and
cache manager instead of sharing module-level state.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from starlette.requests import Request

from throttlegate.api.routes import health_router, ping_router
from throttlegate.cache.manager import CacheManager, default_cache_options, get_cache_manager
from throttlegate.core.config import RateLimitSettings, Settings, settings
from throttlegate.core.exception_handlers import setup_exception_handlers
from throttlegate.core.logging import configure_logging
from throttlegate.core.middleware import request_id_middleware
from throttlegate.core.openapi import apply_openapi_customizations
from throttlegate.security.identifiers import IDENTIFIERS
from throttlegate.security.middleware import RateLimiterMiddleware


def rate_limit_options(rate_limit: RateLimitSettings) -> dict[str, Any]:
    """Translate rate limit settings into limiter options.

    Args:
        rate_limit: Resolved ``RATE_LIMIT_*`` settings.

    Returns:
        Keyword options accepted by ``RateLimiterMiddleware``.
    """

    exempt_paths = frozenset(rate_limit.exempt_paths)

    def skip_exempt_paths(request: Request) -> bool:
        return request.url.path in exempt_paths

    header_names = None
    if rate_limit.include_headers:
        header_names = {
            "limit": rate_limit.header_limit,
            "remaining": rate_limit.header_remaining,
            "reset": rate_limit.header_reset,
        }

    return {
        "cache_config": rate_limit.cache_config,
        "limit": rate_limit.limit,
        "period": rate_limit.period,
        "message": rate_limit.message,
        "header_names": header_names,
        "identifier": IDENTIFIERS[rate_limit.identifier],
        "skip_check": skip_exempt_paths if exempt_paths else None,
        "serialize_updates": rate_limit.serialize_updates,
    }


def create_app(
    app_settings: Settings | None = None,
    *,
    cache_manager: CacheManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        cache_manager: Cache registry for the limiter; defaults to the
            process-wide manager.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = app_settings or settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title=cfg.app.title,
        description=(
            "Demo service protected by a fixed-window rate limiter. Requests "
            "over the limit get 429 with Retry-After; every limited response "
            "carries X-RateLimit-Limit, X-RateLimit-Remaining and "
            "X-RateLimit-Reset headers."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
    )

    # Middleware: the last one added runs first, so the request id wraps
    # the limiter and 429 responses are correlated too.
    options = rate_limit_options(cfg.rate_limit)
    if cfg.rate_limit.enabled:
        manager = cache_manager or get_cache_manager()
        # A config already registered on the manager wins over cfg.cache.
        namespace = cfg.rate_limit.cache_config
        manager.ensure_config(namespace, default_cache_options(namespace, cfg.cache))
        app.add_middleware(RateLimiterMiddleware, cache_manager=manager, **options)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(ping_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(
        app,
        header_names=options["header_names"],
        exempt_paths=cfg.rate_limit.exempt_paths if cfg.rate_limit.enabled else (),
    )

    return app
