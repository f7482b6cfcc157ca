"""Unit tests for the fixed-window RateLimiter."""

import json
from unittest.mock import MagicMock, Mock

import pytest
from starlette.responses import Response

from throttlegate.cache.memory import MemoryCacher
from throttlegate.core.errors import CacheAppError
from throttlegate.security.rate_limiter import RateLimiter, WindowState


def _limiter(cache_manager, clock, **options) -> RateLimiter:
    options.setdefault("limit", 3)
    options.setdefault("period", 60)
    return RateLimiter(cache_manager, clock=clock, **options)


def test_admits_up_to_limit_then_rejects(cache_manager, clock, make_request) -> None:
    request = make_request()

    results = [_limiter(cache_manager, clock).check_limit(request) for _ in range(4)]

    assert results == [True, True, True, False]


def test_first_request_opens_window(cache_manager, clock, make_request) -> None:
    limiter = _limiter(cache_manager, clock, period=30)

    assert limiter.check_limit(make_request()) is True
    assert limiter.state.calls == 1
    assert limiter.state.reset == int(clock()) + 30

    stored = cache_manager.use("ratelimiter").get("127.0.0.1")
    assert WindowState.from_cache(stored) == WindowState(count=1, reset_at=int(clock()) + 30)


def test_reset_is_not_extended_by_later_requests(cache_manager, clock, make_request) -> None:
    first = _limiter(cache_manager, clock, period=30)
    first.check_limit(make_request())
    opened_reset = first.state.reset

    clock.advance(20)
    second = _limiter(cache_manager, clock, period=30)
    second.check_limit(make_request())

    assert second.state.calls == 2
    assert second.state.reset == opened_reset


def test_new_window_after_expiry(cache_manager, clock, make_request) -> None:
    request = make_request()
    for _ in range(4):
        _limiter(cache_manager, clock, limit=3, period=10).check_limit(request)

    clock.advance(11)
    limiter = _limiter(cache_manager, clock, limit=3, period=10)

    assert limiter.check_limit(request) is True
    assert limiter.state.calls == 1
    assert limiter.state.reset == int(clock()) + 10


def test_request_at_reset_second_stays_in_window(cache_manager, clock, make_request) -> None:
    request = make_request()
    _limiter(cache_manager, clock, limit=1, period=10).check_limit(request)

    clock.advance(10)
    limiter = _limiter(cache_manager, clock, limit=1, period=10)

    assert limiter.check_limit(request) is False
    assert limiter.state.calls == 2


def test_store_ttl_is_remaining_window_length(clock, make_request) -> None:
    cacher = MagicMock(spec=MemoryCacher)
    cacher.get.return_value = [1, int(clock()) + 25]
    manager = Mock()
    manager.use.return_value = cacher

    limiter = RateLimiter(manager, clock=clock, limit=5, period=60)
    limiter.check_limit(make_request())

    cacher.set.assert_called_once_with("127.0.0.1", [2, int(clock()) + 25], 25)


def test_store_ttl_is_clamped_to_one_second(clock, make_request) -> None:
    cacher = MagicMock(spec=MemoryCacher)
    cacher.get.return_value = [1, int(clock())]
    manager = Mock()
    manager.use.return_value = cacher

    limiter = RateLimiter(manager, clock=clock, limit=5, period=60)
    limiter.check_limit(make_request())

    cacher.set.assert_called_once_with("127.0.0.1", [2, int(clock())], 1)


def test_serialize_updates_holds_cache_lock(clock, make_request) -> None:
    cacher = MagicMock(spec=MemoryCacher)
    cacher.get.return_value = None
    manager = Mock()
    manager.use.return_value = cacher

    RateLimiter(manager, clock=clock).check_limit(make_request())
    cacher.lock.assert_called_once_with("127.0.0.1")

    cacher.reset_mock()
    RateLimiter(manager, clock=clock, serialize_updates=False).check_limit(make_request())
    cacher.lock.assert_not_called()


def test_skip_check_bypasses_store(cache_manager, clock, make_request) -> None:
    request = make_request()
    for _ in range(3):
        _limiter(cache_manager, clock).check_limit(request)
    before = cache_manager.use("ratelimiter").get("127.0.0.1")

    for _ in range(5):
        limiter = _limiter(cache_manager, clock, skip_check=lambda req: True)
        assert limiter.check_limit(request) is True
        assert limiter.state.calls == 0
        headers = limiter.add_headers(Response()).headers
        assert headers["X-RateLimit-Remaining"] == "3"
        assert headers["X-RateLimit-Reset"] == "0"

    assert cache_manager.use("ratelimiter").get("127.0.0.1") == before


def test_skip_check_false_counts_request(cache_manager, clock, make_request) -> None:
    limiter = _limiter(cache_manager, clock, skip_check=lambda req: False)

    assert limiter.check_limit(make_request()) is True
    assert limiter.state.calls == 1


def test_identifiers_are_isolated(cache_manager, clock, make_request) -> None:
    first = make_request(client_host="10.0.0.1")
    second = make_request(client_host="10.0.0.2")

    assert _limiter(cache_manager, clock, limit=1).check_limit(first) is True
    assert _limiter(cache_manager, clock, limit=1).check_limit(first) is False
    assert _limiter(cache_manager, clock, limit=1).check_limit(second) is True


def test_custom_identifier(cache_manager, clock, make_request) -> None:
    def by_user(request):
        return request.headers.get("x-user", "anonymous")

    alice = make_request(headers={"X-User": "alice"})
    bob = make_request(headers={"X-User": "bob"})

    assert _limiter(cache_manager, clock, limit=1, identifier=by_user).check_limit(alice) is True
    assert _limiter(cache_manager, clock, limit=1, identifier=by_user).check_limit(bob) is True
    assert _limiter(cache_manager, clock, limit=1, identifier=by_user).check_limit(alice) is False


def test_add_headers_reports_run_state(cache_manager, clock, make_request) -> None:
    limiter = _limiter(cache_manager, clock, limit=10, period=10)
    limiter.check_limit(make_request())

    response = limiter.add_headers(Response("ok"))

    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert response.headers["X-RateLimit-Reset"] == str(int(clock()) + 10)


def test_remaining_never_negative(cache_manager, clock, make_request) -> None:
    request = make_request()
    for _ in range(5):
        limiter = _limiter(cache_manager, clock, limit=2)
        limiter.check_limit(request)

    response = limiter.add_headers(Response("ok"))

    assert limiter.state.calls == 5
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_add_headers_disabled(cache_manager, clock, make_request) -> None:
    limiter = _limiter(cache_manager, clock, header_names=None)
    limiter.check_limit(make_request())
    response = Response("ok", headers={"X-Other": "1"})
    before = dict(response.headers)

    result = limiter.add_headers(response)

    assert result is response
    assert dict(result.headers) == before


def test_error_response_plain_text(cache_manager, clock, make_request) -> None:
    request = make_request(headers={"Accept": "text/html"})
    for _ in range(4):
        limiter = _limiter(cache_manager, clock, period=10)
        limiter.check_limit(request)
    clock.advance(3)

    response = limiter.error_response(request)

    assert response.status_code == 429
    assert response.body == b"Rate limit exceeded"
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["Retry-After"] == "7"
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_error_response_json(cache_manager, clock, make_request) -> None:
    request = make_request(headers={"Accept": "application/json"})
    for _ in range(4):
        limiter = _limiter(cache_manager, clock, message="Slow down")
        limiter.check_limit(request)

    response = limiter.error_response(request)

    assert response.status_code == 429
    assert response.headers["content-type"] == "application/json"
    assert json.loads(response.body) == {"message": "Slow down"}
    assert response.headers["X-RateLimit-Limit"] == "3"


def test_retry_after_clamped_at_zero(cache_manager, clock, make_request) -> None:
    request = make_request()
    for _ in range(4):
        limiter = _limiter(cache_manager, clock, period=10)
        limiter.check_limit(request)
    clock.advance(30)

    assert limiter.error_response(request).headers["Retry-After"] == "0"


def test_custom_error_renderer_receives_base_response(cache_manager, clock, make_request) -> None:
    seen = {}

    def renderer(request, response):
        seen["status"] = response.status_code
        seen["headers"] = dict(response.headers)
        return Response("<h1>Too many requests</h1>", status_code=429, media_type="text/html")

    request = make_request()
    for _ in range(4):
        limiter = _limiter(cache_manager, clock, error_renderer=renderer)
        limiter.check_limit(request)

    response = limiter.error_response(request)

    assert response.body == b"<h1>Too many requests</h1>"
    assert seen["status"] == 429
    assert "retry-after" in seen["headers"]
    assert seen["headers"]["x-ratelimit-remaining"] == "0"


def test_store_errors_propagate(clock, make_request) -> None:
    cacher = MagicMock(spec=MemoryCacher)
    cacher.get.side_effect = CacheAppError(code="cache_read_failed", message="down")
    manager = Mock()
    manager.use.return_value = cacher

    limiter = RateLimiter(manager, clock=clock)

    with pytest.raises(CacheAppError):
        limiter.check_limit(make_request())
    cacher.set.assert_not_called()


def test_identifier_errors_propagate(cache_manager, clock, make_request) -> None:
    def broken(request):
        raise RuntimeError("no identity")

    limiter = _limiter(cache_manager, clock, identifier=broken)

    with pytest.raises(RuntimeError, match="no identity"):
        limiter.check_limit(make_request())


def test_construction_registers_namespace_once(cache_manager, clock) -> None:
    _limiter(cache_manager, clock, cache_config="api")
    cacher = cache_manager.use("api")

    _limiter(cache_manager, clock, cache_config="api")

    assert cache_manager.use("api") is cacher
    assert cache_manager.get_config("api")["prefix"] == "api:"


def test_existing_namespace_is_not_overwritten(cache_manager, clock, tmp_path) -> None:
    cache_manager.set_config("ratelimiter", {"class_name": "file", "path": str(tmp_path)})

    _limiter(cache_manager, clock)

    assert cache_manager.get_config("ratelimiter")["class_name"] == "file"
    assert not isinstance(cache_manager.use("ratelimiter"), MemoryCacher)
