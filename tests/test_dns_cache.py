from __future__ import annotations

from typing import Dict, List, Optional

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tos.dns_cache import DNSCache, DNSCacheEntry, ExpiryHeap


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeResolver:
    def __init__(self, answers: Dict[str, List[str]]) -> None:
        self.answers = answers
        self.calls: List[str] = []
        self.error: Optional[Exception] = None

    def __call__(self, host: str) -> List[str]:
        self.calls.append(host)
        if self.error is not None:
            raise self.error
        return list(self.answers.get(host, []))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({"a.example": ["10.0.0.1", "10.0.0.2"], "b.example": ["10.0.1.1"]})


def _cache(clock: FakeClock, resolver: FakeResolver, **kwargs) -> DNSCache:
    return DNSCache(60, resolver=resolver, clock=clock, start_refresh=False, **kwargs)


def test_miss_resolves_and_caches(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)

    assert cache.get_ip_list("a.example") == ["10.0.0.1", "10.0.0.2"]
    assert cache.get_ip_list("a.example") == ["10.0.0.1", "10.0.0.2"]
    assert resolver.calls == ["a.example"]
    assert len(cache) == 1


def test_returned_list_is_a_copy(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    ips = cache.get_ip_list("a.example")
    ips.clear()

    assert cache.get("a.example").ip_list == ["10.0.0.1", "10.0.0.2"]


def test_entries_expire(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    cache.get_ip_list("a.example")

    clock.now += 61

    assert cache.get("a.example") is None
    cache.get_ip_list("a.example")
    assert resolver.calls == ["a.example", "a.example"]


def test_empty_resolution_is_not_cached(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)

    assert cache.get_ip_list("unknown.example") == []
    assert len(cache) == 0


@pytest.mark.parametrize(
    "error", [OSError("resolver down"), UnicodeError("label empty or too long")], ids=["oserror", "idna"]
)
def test_failed_refresh_keeps_serving_stale_addresses(
    clock: FakeClock, resolver: FakeResolver, error: Exception
) -> None:
    cache = _cache(clock, resolver)
    cache.get_ip_list("a.example")
    resolver.error = error

    cache.refresh()
    clock.now += 3600

    assert cache.get("a.example").ip_list == ["10.0.0.1", "10.0.0.2"]
    assert cache.get("a.example").keep_alive is True


def test_empty_refresh_marks_keep_alive(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    cache.get_ip_list("a.example")
    resolver.answers["a.example"] = []

    cache.refresh()

    assert cache.get("a.example").keep_alive is True


def test_successful_refresh_replaces_addresses(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    cache.get_ip_list("a.example")
    cache.set_keep_alive("a.example")
    resolver.answers["a.example"] = ["10.9.9.9"]
    clock.now += 30

    cache.refresh()

    entry = cache.get("a.example")
    assert entry.ip_list == ["10.9.9.9"]
    assert entry.keep_alive is False
    assert entry.expire_at == clock.now + 60


def test_capacity_evicts_soonest_expiring(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver, capacity=2)
    cache.put("one", ["1.1.1.1"])
    clock.now += 1
    cache.put("two", ["2.2.2.2"])
    clock.now += 1
    cache.put("three", ["3.3.3.3"])

    assert sorted(cache.hosts()) == ["three", "two"]


def test_put_sweeps_expired_entries(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    cache.put("old", ["1.1.1.1"])
    cache.put("sticky", ["2.2.2.2"])
    cache.set_keep_alive("sticky")

    clock.now += 120
    cache.put("new", ["3.3.3.3"])

    assert sorted(cache.hosts()) == ["new", "sticky"]


def test_remove_drops_ip_then_entry(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver)
    cache.get_ip_list("a.example")

    cache.remove("a.example", "10.0.0.1")
    assert cache.get("a.example").ip_list == ["10.0.0.2"]

    cache.remove("a.example", "10.0.0.2")
    assert cache.get("a.example") is None
    assert cache.hosts() == []
    cache.remove("missing.example", "10.0.0.2")


def test_close_is_idempotent(resolver: FakeResolver) -> None:
    cache = DNSCache(60, refresh_interval=3600, resolver=resolver)

    cache.close()
    cache.close()


@given(st.lists(st.floats(min_value=0, max_value=1e6, allow_nan=False), max_size=40), st.data())
def test_expiry_heap_orders_and_removes(expirations: List[float], data) -> None:
    heap = ExpiryHeap()
    entries = [DNSCacheEntry(host=f"h{i}", ip_list=[], expire_at=value) for i, value in enumerate(expirations)]
    for entry in entries:
        heap.push(entry)

    removed = set()
    if entries:
        victims = data.draw(st.lists(st.sampled_from(entries), unique_by=id, max_size=len(entries)))
        for victim in victims:
            heap.remove(victim)
            removed.add(victim.host)
            assert victim.index == -1

    popped = [heap.pop().expire_at for _ in range(len(heap))]
    expected = sorted(entry.expire_at for entry in entries if entry.host not in removed)
    assert popped == expected


def test_put_updates_existing_entry_in_place(clock: FakeClock, resolver: FakeResolver) -> None:
    cache = _cache(clock, resolver, capacity=2)
    cache.put("one", ["1.1.1.1"])
    first = cache.get("one")
    clock.now += 5
    cache.put("two", ["2.2.2.2"])
    clock.now += 5

    cache.put("one", ["1.1.1.9"])
    cache.put("three", ["3.3.3.3"])

    assert cache.get("one") is first
    assert first.ip_list == ["1.1.1.9"]
    assert sorted(cache.hosts()) == ["one", "three"]
