"""Global exception handlers for consistent error responses.

Internal faults are reported as JSON errors with a 5xx status. They are
never rendered as 429: a client that sees 429 was rate limited, not caught
by a broken counter store.

Body shape, shared by every handler::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}

``details`` is present only when the error carries it.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from throttlegate.core.errors import AppError, CacheAppError, ConfigurationAppError
from throttlegate.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Most specific class wins; AppError subclasses not listed fall back to 400.
ERROR_STATUS_CODES: dict[type[AppError], int] = {
    CacheAppError: 503,
    ConfigurationAppError: 500,
    AppError: 400,
}


def status_code_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code."""

    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 400


def error_payload(code: str, message: str, details: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        error["details"] = details
    return {"error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an ``AppError`` raised by a route or dependency.

    Server-side faults (5xx) are logged at error level, client faults at
    warning level.
    """

    status_code = status_code_for(exc)
    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=status_code,
        content=error_payload(exc.code, exc.message, exc.details),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for anything else, including errors raised by middleware.

    Errors raised inside ``RateLimiterMiddleware`` (store outages, failing
    identifier callbacks) bypass the router's handlers and end up here. The
    client gets a generic message; the traceback goes to the log only.
    """

    logger.error(
        "unhandled_exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content=error_payload(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``."""

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
