"""Request rate limiting.

``RateLimiter`` implements the fixed-window check and response shaping;
``RateLimiterMiddleware`` wires it into a Starlette/FastAPI app.
"""

from throttlegate.security.identifiers import api_key_or_address, forwarded_address, remote_address
from throttlegate.security.middleware import RateLimiterMiddleware
from throttlegate.security.rate_limiter import (
    DEFAULT_HEADER_NAMES,
    DEFAULT_OPTIONS,
    LimiterRunState,
    RateLimitConfig,
    RateLimiter,
    WindowState,
)

__all__ = [
    "DEFAULT_HEADER_NAMES",
    "DEFAULT_OPTIONS",
    "LimiterRunState",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimiterMiddleware",
    "WindowState",
    "api_key_or_address",
    "forwarded_address",
    "remote_address",
]
