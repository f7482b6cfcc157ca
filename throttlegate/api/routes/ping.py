from __future__ import annotations

import time

from fastapi import APIRouter

router = APIRouter(tags=["Ping"])


@router.get("/ping")
def ping() -> dict:
    """Rate limited echo endpoint.

    Returns the server time so clients can compare it with the
    X-RateLimit-Reset header.
    """

    return {"status": "ok", "server_time": int(time.time())}
