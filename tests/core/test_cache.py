from __future__ import annotations

import pytest

from app.core import cache as cache_module
from app.core.cache import TTLCache
from tests.helpers.metrics_stub import StubMetrics


class _FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl_but_stay_readable_as_stale():
    clock = _FakeClock()
    cache: TTLCache[str] = TTLCache(60, clock=clock)
    cache.set("token:buy", "0.42")

    clock.now = 59.9
    assert cache.get("token:buy") == "0.42"

    clock.now = 60.0
    assert cache.get("token:buy") is None
    assert cache.get_stale("token:buy") == "0.42"
    assert cache.age("token:buy") == pytest.approx(60.0)


def test_hits_and_misses_are_counted(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(cache_module, "metrics", stub)
    cache: TTLCache[int] = TTLCache(10, name="prices", clock=_FakeClock())

    cache.get("a")
    cache.set("a", 1)
    cache.get("a")

    assert cache.cache_stats == {"hits": 1, "misses": 1, "size": 1}
    assert stub.names() == ["cache.miss", "cache.hit"]
    assert stub.increment_calls[0]["tags"] == {"cache": "prices"}


def test_prunes_entries_older_than_twice_ttl_past_threshold():
    clock = _FakeClock()
    cache: TTLCache[int] = TTLCache(10, clock=clock, prune_threshold=100)
    for index in range(100):
        cache.set(f"old-{index}", index)

    clock.now = 25.0
    cache.set("fresh", 1)

    assert len(cache) == 1
    assert cache.get_stale("old-0") is None


def test_no_pruning_at_or_below_threshold():
    clock = _FakeClock()
    cache: TTLCache[int] = TTLCache(10, clock=clock, prune_threshold=100)
    for index in range(99):
        cache.set(f"old-{index}", index)

    clock.now = 25.0
    cache.set("fresh", 1)

    assert len(cache) == 100


def test_invalidate_and_clear():
    cache: TTLCache[int] = TTLCache(10, clock=_FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.get_stale("a") is None

    cache.clear()
    assert len(cache) == 0


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        TTLCache(0)
