"""Unit tests for the in-memory MemoryCacher."""

import threading

import pytest

from throttlegate.cache import memory
from throttlegate.cache.memory import MemoryCacher


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def test_set_and_get_updates_hit_miss_counters() -> None:
    cache = MemoryCacher()

    assert cache.get("missing") is None

    cache.set("key", [1, 2000], ttl=10)

    assert cache.get("key") == [1, 2000]

    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def test_get_returns_default_when_missing() -> None:
    assert MemoryCacher().get("missing", "fallback") == "fallback"


def test_expired_entry_is_evicted(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(memory, "time", fake_time)

    cache = MemoryCacher()
    cache.set("key", {"data": True}, ttl=5)

    fake_time.advance(4)
    assert cache.get("key") == {"data": True}

    fake_time.advance(1)
    assert cache.get("key") is None
    assert cache.stats()["expired"] == 1
    assert cache.stats()["evictions"] == 0


def test_entry_without_ttl_never_expires(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(memory, "time", fake_time)

    cache = MemoryCacher()
    cache.set("key", "forever")
    fake_time.advance(10_000)

    assert cache.get("key") == "forever"


def test_prefix_separates_namespaces_sharing_keys() -> None:
    cache = MemoryCacher(prefix="api:")
    cache.set("127.0.0.1", [3, 100], ttl=10)

    assert cache.prefixed("127.0.0.1") == "api:127.0.0.1"
    assert cache.has("127.0.0.1")
    assert cache.delete("127.0.0.1") is True
    assert cache.delete("127.0.0.1") is False


def test_lru_eviction_removes_least_recently_used() -> None:
    cache = MemoryCacher(max_entries=2)
    cache.set("a", {"v": 1}, ttl=100)
    cache.set("b", {"v": 2}, ttl=100)

    # Access "a" so that "b" becomes least recently used
    assert cache.get("a") == {"v": 1}

    cache.set("c", {"v": 3}, ttl=100)

    assert cache.get("a") == {"v": 1}
    assert cache.get("c") == {"v": 3}
    assert cache.get("b") is None


def test_empty_resets_state() -> None:
    cache = MemoryCacher()
    cache.set("a", {"v": 1}, ttl=10)
    cache.set("b", {"v": 2}, ttl=10)
    cache.get("a")

    cache.empty()

    stats = cache.stats()
    assert cache.size() == 0
    assert stats["hits"] == 0
    assert stats["misses"] == 0
    assert stats["evictions"] == 0
    assert stats["expired"] == 0


def test_lock_is_stable_per_key() -> None:
    cache = MemoryCacher()

    assert cache.lock("k") is cache.lock("k")
    with cache.lock("k"):
        assert cache.lock("k").locked()


def test_thread_safety_under_concurrent_sets() -> None:
    cache = MemoryCacher(max_entries=None)
    total_keys = 50

    def _writer(idx: int) -> None:
        cache.set(f"k-{idx}", {"v": idx}, ttl=30)

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(total_keys)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.size() == total_keys
    assert cache.get("k-0") == {"v": 0}
    assert cache.get("k-49") == {"v": 49}


def test_locked_increments_are_not_lost() -> None:
    cache = MemoryCacher()
    cache.set("counter", 0)

    def _increment() -> None:
        for _ in range(100):
            with cache.lock("counter"):
                cache.set("counter", cache.get("counter") + 1)

    threads = [threading.Thread(target=_increment) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cache.get("counter") == 800


def test_full_store_drops_expired_entries_before_live_ones(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_time = FakeTime()
    monkeypatch.setattr(memory, "time", fake_time)

    cache = MemoryCacher(max_entries=2)
    cache.set("old", [1, 1005], ttl=5)
    cache.set("live", [1, 1100], ttl=100)
    fake_time.advance(10)

    cache.set("new", [1, 1110], ttl=100)

    assert cache.get("live") == [1, 1100]
    assert cache.get("new") == [1, 1110]
    stats = cache.stats()
    assert stats["expired"] == 1
    assert stats["evictions"] == 0
