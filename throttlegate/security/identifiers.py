"""Identifier sources for rate limit buckets.

Each function maps a request to the string key its requests are counted
under. Two requests with the same identifier share one window.
"""

from __future__ import annotations

from collections.abc import Callable

from starlette.requests import HTTPConnection

from throttlegate.core.logging import hash_identifier

Identifier = Callable[[HTTPConnection], str]


def remote_address(request: HTTPConnection) -> str:
    """Return the peer address of the connection, or ``"unknown"``."""

    return request.client.host if request.client else "unknown"


def forwarded_address(request: HTTPConnection) -> str:
    """Return the first ``X-Forwarded-For`` hop, falling back to the peer.

    Only use behind a proxy that overwrites the header; clients can set it
    to any value otherwise.
    """

    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or remote_address(request)


def api_key_or_address(request: HTTPConnection) -> str:
    """Bucket by API key when ``X-API-Key`` is sent, otherwise by client IP.

    The key itself never ends up in the cache; a short SHA-256 prefix is used.
    """

    api_key = request.headers.get("x-api-key")
    if api_key:
        return f"api_key:{hash_identifier(api_key)}"
    return f"ip:{remote_address(request)}"


IDENTIFIERS: dict[str, Identifier] = {
    "remote_address": remote_address,
    "forwarded_address": forwarded_address,
    "api_key_or_address": api_key_or_address,
}
