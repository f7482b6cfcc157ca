"""OpenAPI customization utilities.

Documents the rate limiter in the generated schema:
- A shared ``TooManyRequests`` response with the Retry-After and
  X-RateLimit-* headers
- A 429 entry on every operation except exempt paths
- Tags metadata

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Dict

from fastapi import FastAPI


def _rate_limit_headers(header_names: Mapping[str, str] | None) -> Dict[str, Any]:
    headers: Dict[str, Any] = {
        "Retry-After": {
            "description": "Seconds until the current window ends.",
            "schema": {"type": "integer", "minimum": 0},
        }
    }
    if header_names:
        headers[header_names["limit"]] = {
            "description": "Requests allowed per window.",
            "schema": {"type": "integer"},
        }
        headers[header_names["remaining"]] = {
            "description": "Requests left in the current window.",
            "schema": {"type": "integer", "minimum": 0},
        }
        headers[header_names["reset"]] = {
            "description": "UNIX time at which the current window ends.",
            "schema": {"type": "integer"},
        }
    return headers


def apply_openapi_customizations(
    app: FastAPI,
    *,
    header_names: Mapping[str, str] | None = None,
    exempt_paths: Iterable[str] = (),
) -> None:
    """Patch FastAPI's OpenAPI generation to describe rate limiting.

    Args:
        app: Application whose ``openapi()`` is wrapped.
        header_names: Rate limit header names, or None when headers are off.
        exempt_paths: Paths that bypass the limiter (no 429 documented).
    """

    original_openapi = app.openapi
    exempt = set(exempt_paths)

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        responses = components.setdefault("responses", {})
        responses.setdefault(
            "TooManyRequests",
            {
                "description": "Rate limit exceeded.",
                "headers": _rate_limit_headers(header_names),
                "content": {
                    "application/json": {
                        "schema": {
                            "type": "object",
                            "properties": {"message": {"type": "string"}},
                        }
                    },
                    "text/plain": {"schema": {"type": "string"}},
                },
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Ping", "description": "Rate limited demo endpoints."},
            {"name": "Health", "description": "Liveness checks (not rate limited)."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if path in exempt:
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj.setdefault("responses", {}).setdefault(
                        "429", {"$ref": "#/components/responses/TooManyRequests"}
                    )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
