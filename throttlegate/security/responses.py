"""Response helpers for rejection rendering.

Starlette responses render their body at construction time, so "changing
the body" of a response means building a new one that keeps the status
code and headers of the original.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from starlette.requests import HTTPConnection
from starlette.responses import Response

# Headers recomputed from the new body.
_BODY_HEADERS = {"content-length", "content-type"}


def _parse_accept(accept: str) -> list[tuple[str, float, int]]:
    """Parse an Accept header into (media_range, quality, position) tuples."""

    ranges: list[tuple[str, float, int]] = []
    for position, part in enumerate(accept.split(",")):
        media_range, *params = (piece.strip() for piece in part.split(";"))
        if not media_range:
            continue
        quality = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        ranges.append((media_range.lower(), quality, position))
    return ranges


def _matches(media_range: str, content_type: str) -> bool:
    if media_range == "*/*":
        return True
    range_type, _, range_subtype = media_range.partition("/")
    main_type, _, subtype = content_type.partition("/")
    return range_type == main_type and range_subtype in ("*", subtype)


def _specificity(media_range: str) -> int:
    if media_range == "*/*":
        return 0
    if media_range.endswith("/*"):
        return 1
    return 2


def negotiate_content_type(request: HTTPConnection, supported: Sequence[str]) -> str:
    """Pick the best supported content type for the request's Accept header.

    The most specific matching media range decides each candidate's quality;
    ties go to the candidate listed first in ``supported``. A missing header
    or no acceptable candidate selects ``supported[0]``.

    Args:
        request: Incoming request.
        supported: Candidate content types in order of preference.

    Returns:
        One of ``supported``.
    """

    accept = request.headers.get("accept", "")
    ranges = _parse_accept(accept)
    if not ranges:
        return supported[0]

    best_type = supported[0]
    best_score: tuple[float, int] = (0.0, 0)
    for index, content_type in enumerate(supported):
        matching = [r for r in ranges if _matches(r[0], content_type)]
        if not matching:
            continue
        _, quality, _ = max(matching, key=lambda r: (_specificity(r[0]), -r[2]))
        if quality <= 0:
            continue
        score = (quality, -index)
        if score > best_score:
            best_type, best_score = content_type, score
    return best_type


def replace_body(
    response: Response,
    content: str | bytes,
    media_type: str | None = None,
) -> Response:
    """Return a response with ``content`` as body and ``response``'s status and headers.

    Args:
        response: Response whose status code and headers are kept.
        content: New body.
        media_type: Content type of the new body; keeps the original one when None.
    """

    headers = {k: v for k, v in response.headers.items() if k.lower() not in _BODY_HEADERS}
    return Response(
        content=content,
        status_code=response.status_code,
        headers=headers,
        media_type=media_type or response.media_type,
    )


def replace_json(response: Response, payload: object) -> Response:
    """Return a JSON response carrying ``payload`` with ``response``'s status and headers."""

    return replace_body(
        response,
        json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
        media_type="application/json",
    )
