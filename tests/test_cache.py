"""Tests for gm_director.cache: TTL expiry, tags, coalescing."""

import asyncio

import pytest

from gm_director.cache import ResultCache, cache_key
from gm_director.models import GameContext


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(default_ttl=300.0, clock=clock)


# ── TTL ─────────────────────────────────────────────────────


def test_get_before_and_after_expiry(cache, clock):
    cache.put("k", "v")
    clock.now += 300.0
    assert cache.get("k") == "v"  # expiry is strictly after ttl
    clock.now += 0.1
    assert cache.get("k") is None
    assert cache.stats()["evictions"] == 1
    assert cache.stats()["entries"] == 0


def test_per_entry_ttl(cache, clock):
    cache.put("short", 1, ttl=5)
    cache.put("long", 2)
    clock.now += 10
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_stats_hits_and_misses(cache):
    cache.put("k", "v")
    cache.get("k")
    cache.get("missing")
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hitRate"] == 0.5


# ── Size bound ──────────────────────────────────────────────


def test_put_past_bound_evicts_least_recently_used(clock):
    cache = ResultCache(clock=clock, max_entries=20)
    for i in range(20):
        cache.put(f"k{i}", i)
    assert cache.get("k0") == 0  # refreshes k0

    cache.put("k20", 20)

    stats = cache.stats()
    assert stats["entries"] == 19
    assert stats["evictions"] == 2
    assert stats["maxEntries"] == 20
    assert cache.get("k0") == 0
    assert cache.get("k1") is None
    assert cache.get("k2") is None
    assert cache.get("k3") == 3
    assert cache.get("k20") == 20


def test_expired_entries_go_before_live_ones(clock):
    cache = ResultCache(clock=clock, max_entries=3)
    cache.put("short", 1, ttl=1.0)
    cache.put("a", 2)
    cache.put("b", 3)
    clock.now += 5.0
    cache.put("c", 4)
    assert cache.stats()["entries"] == 3
    assert [cache.get(k) for k in ("a", "b", "c")] == [2, 3, 4]


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        ResultCache(max_entries=0)


# ── Invalidation ────────────────────────────────────────────


def test_invalidate_tag(cache):
    cache.put("a", 1, tags=["campaign:c1", "pool:s1"])
    cache.put("b", 2, tags=["campaign:c2"])
    assert cache.invalidate_tag("campaign:c1") == 1
    assert cache.get("a") is None
    assert cache.get("b") == 2


def test_invalidate_predicate(cache):
    cache.put("keep", 1)
    cache.put("drop-1", 2)
    cache.put("drop-2", 3)
    assert cache.invalidate(lambda key, _tags: key.startswith("drop")) == 2
    assert cache.get("keep") == 1


def test_clear(cache):
    cache.put("a", 1)
    cache.clear()
    assert cache.get("a") is None


# ── get_or_compute ──────────────────────────────────────────


async def test_get_or_compute_caches(cache):
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        return "value"

    assert await cache.get_or_compute("k", compute) == "value"
    assert await cache.get_or_compute("k", compute) == "value"
    assert calls == 1


async def test_concurrent_requests_coalesce(cache):
    calls = 0
    release = asyncio.Event()

    async def compute():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"answer": 42}

    waiters = [asyncio.ensure_future(cache.get_or_compute("k", compute)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r is results[0] for r in results)
    assert cache.stats()["coalesced"] == 4


async def test_cancelled_waiter_does_not_cancel_computation(cache):
    release = asyncio.Event()

    async def compute():
        await release.wait()
        return "done"

    first = asyncio.ensure_future(cache.get_or_compute("k", compute))
    second = asyncio.ensure_future(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    first.cancel()
    release.set()
    assert await second == "done"
    assert cache.get("k") == "done"


async def test_invalidated_inflight_result_not_stored(cache):
    release = asyncio.Event()

    async def compute():
        await release.wait()
        return "stale"

    waiter = asyncio.ensure_future(cache.get_or_compute("k", compute, tags=["campaign:c1"]))
    await asyncio.sleep(0)
    cache.invalidate_tag("campaign:c1")
    release.set()
    assert await waiter == "stale"
    assert cache.get("k") is None


async def test_failed_computation_not_cached(cache):
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("k", compute)
    with pytest.raises(RuntimeError):
        await cache.get_or_compute("k", compute)
    assert calls == 2


# ── Keys ────────────────────────────────────────────────────


def test_cache_key_stable_and_distinct():
    ctx = GameContext(session_id="s", campaign_id="c", party_member_ids=frozenset({"a", "b"}))
    same = GameContext(session_id="s", campaign_id="c", party_member_ids=frozenset({"b", "a"}))
    assert cache_key("recommend", ctx, entity_type="npc") == cache_key("recommend", same, entity_type="npc")
    assert cache_key("recommend", ctx, entity_type="npc") != cache_key("recommend", ctx, entity_type="item")
    assert cache_key("recommend", ctx) != cache_key("entities", ctx)
