from __future__ import annotations

import pytest

from smoothie_yield.pipeline.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def test_entries_expire_after_ttl(clock: FakeClock) -> None:
    cache = TTLCache(10, clock=clock)
    cache.set("a", 1)
    clock.now = 9.9
    assert cache.get("a") == 1
    assert "a" in cache
    clock.now = 10.0
    assert cache.get("a") is None
    assert "a" not in cache
    assert len(cache) == 0


def test_get_or_compute_only_computes_on_miss(clock: FakeClock) -> None:
    cache = TTLCache(5, clock=clock)
    calls: list[int] = []

    def compute() -> int:
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    assert cache.get_or_compute("k", compute) == 1
    clock.now = 6
    assert cache.get_or_compute("k", compute) == 2
    assert len(calls) == 2


def test_cached_none_is_a_hit(clock: FakeClock) -> None:
    cache = TTLCache(5, clock=clock)
    calls: list[None] = []

    def compute() -> None:
        calls.append(None)

    cache.get_or_compute("k", compute)
    cache.get_or_compute("k", compute)
    assert len(calls) == 1


def test_oldest_entry_is_evicted(clock: FakeClock) -> None:
    cache = TTLCache(100, maxsize=2, clock=clock)
    cache.set("a", 1)
    clock.now = 1
    cache.set("b", 2)
    clock.now = 2
    cache.set("c", 3)
    assert "a" not in cache
    assert cache.get("b") == 2 and cache.get("c") == 3
    cache.set("b", 20)
    assert len(cache) == 2


def test_invalidate(clock: FakeClock) -> None:
    cache = TTLCache(100, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert "a" not in cache and "b" in cache
    cache.invalidate()
    assert len(cache) == 0


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TTLCache(0)
