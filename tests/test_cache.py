"""
Tests for ConnectorCache: TTL handling, single-flight compute, maintenance.
"""

import asyncio
import dataclasses

import pytest

from cache.engine import CacheEntry, ConnectorCache
from connectors.errors import UpstreamAPIError


class _Clock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _counting_compute(result="payload", delay=0.01):
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        await asyncio.sleep(delay)
        return result

    return compute, calls


def _gated_compute(result="payload"):
    gate = asyncio.Event()
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        await gate.wait()
        return result

    return compute, gate, calls


class TestCacheGet:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        cache = ConnectorCache(default_ttl=60)
        compute, calls = _counting_compute({"labels": ["INBOX"]})

        assert await cache.get("gmail", "labels", compute) == ({"labels": ["INBOX"]}, False)
        assert await cache.get("gmail", "labels", compute) == ({"labels": ["INBOX"]}, True)
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_compute(self):
        cache = ConnectorCache(default_ttl=60)
        compute, calls = _counting_compute("shared", delay=0.05)

        results = await asyncio.gather(*(cache.get("gmail", "labels", compute) for _ in range(10)))

        assert calls["n"] == 1
        assert {payload for payload, _ in results} == {"shared"}
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_exception(self):
        cache = ConnectorCache(default_ttl=60)
        calls = {"n": 0}

        async def failing():
            calls["n"] += 1
            await asyncio.sleep(0.02)
            raise UpstreamAPIError("Gmail API error (503)", status_code=503)

        results = await asyncio.gather(
            *(cache.get("gmail", "labels", failing) for _ in range(4)),
            return_exceptions=True,
        )

        assert calls["n"] == 1
        assert all(isinstance(r, UpstreamAPIError) for r in results)
        assert cache.peek("gmail", "labels") is None

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        cache = ConnectorCache(default_ttl=60)

        async def failing():
            raise UpstreamAPIError("boom")

        with pytest.raises(UpstreamAPIError):
            await cache.get("gmail", "labels", failing)

        compute, calls = _counting_compute("ok", delay=0)
        assert await cache.get("gmail", "labels", compute) == ("ok", False)

    @pytest.mark.asyncio
    async def test_expired_entry_is_recomputed(self):
        clock = _Clock()
        cache = ConnectorCache(default_ttl=60, clock=clock)
        compute, calls = _counting_compute(delay=0)

        await cache.get("gmail", "labels", compute)
        clock.now += 60
        _, from_cache = await cache.get("gmail", "labels", compute)

        assert from_cache is False
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_per_connector_ttl(self):
        clock = _Clock()
        cache = ConnectorCache(default_ttl=60, ttl_by_connector={"outlook": 3600}, clock=clock)
        compute, _ = _counting_compute(delay=0)

        await cache.get("outlook", "folders", compute)
        await cache.get("google-calendar", "events", compute)

        assert cache.peek("outlook", "folders").expires_at == clock.now + 3600
        assert cache.peek("google-calendar", "events").expires_at == clock.now + 60

    @pytest.mark.asyncio
    async def test_keys_are_scoped_by_connector(self):
        cache = ConnectorCache(default_ttl=60)

        async def one():
            return 1

        async def two():
            return 2

        await cache.get("outlook", "folders", one)
        assert await cache.get("yahoo", "folders", two) == (2, False)

    @pytest.mark.asyncio
    async def test_cancelled_first_caller_leaves_waiters_served(self):
        cache = ConnectorCache(default_ttl=60)
        compute, gate, calls = _gated_compute()

        first = asyncio.create_task(cache.get("gmail", "labels", compute))
        await asyncio.sleep(0)
        second = asyncio.create_task(cache.get("gmail", "labels", compute))
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        gate.set()

        assert await asyncio.wait_for(second, timeout=1) == ("payload", False)
        with pytest.raises(asyncio.CancelledError):
            await first
        assert calls["n"] == 1
        assert cache.peek("gmail", "labels").payload == "payload"
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_non_positive_call_ttl_rejected_before_compute(self):
        cache = ConnectorCache(default_ttl=60)
        compute, calls = _counting_compute(delay=0)

        with pytest.raises(ValueError):
            await cache.get("gmail", "labels", compute, ttl=0)

        assert calls["n"] == 0
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_store_failure_reaches_every_waiter(self, monkeypatch):
        cache = ConnectorCache(default_ttl=60)
        compute, gate, _ = _gated_compute()

        def broken_store(*args):
            raise RuntimeError("store failed")

        monkeypatch.setattr(cache, "_store", broken_store)
        callers = [asyncio.create_task(cache.get("gmail", "labels", compute)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()

        results = await asyncio.wait_for(asyncio.gather(*callers, return_exceptions=True), timeout=1)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.stats()["in_flight"] == 0


class TestCacheMaintenance:
    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        clock = _Clock()
        cache = ConnectorCache(default_ttl=100, ttl_by_connector={"gmail": 1000}, clock=clock)
        compute, _ = _counting_compute(delay=0)
        await cache.get("gmail", "labels", compute)
        await cache.get("google-drive", "recent", compute)
        await cache.get("google-docs", "recent", compute)

        clock.now += 100

        assert cache.stats()["expired_entries"] == 2
        assert cache.cleanup_expired() == 2
        assert cache.cleanup_expired() == 0
        assert [e["connector_type"] for e in cache.entries()] == ["gmail"]

    @pytest.mark.asyncio
    async def test_invalidate(self):
        cache = ConnectorCache(default_ttl=60)
        compute, _ = _counting_compute(delay=0)
        await cache.get("gmail", "labels", compute)
        await cache.get("gmail", "search:abc", compute)
        await cache.get("outlook", "folders", compute)

        assert cache.invalidate("gmail", "labels") == 1
        assert cache.invalidate("gmail", "labels") == 0
        assert cache.invalidate("gmail") == 1
        assert cache.stats()["per_connector_counts"] == {"outlook": 1}

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            ConnectorCache(default_ttl=0)
        cache = ConnectorCache(default_ttl=10)
        with pytest.raises(ValueError):
            cache.set_ttl("gmail", -1)

    @pytest.mark.asyncio
    async def test_stats_shape(self):
        cache = ConnectorCache(default_ttl=60)
        compute, _ = _counting_compute({"a": 1}, delay=0)
        await cache.get("gmail", "labels", compute)

        stats = cache.stats()

        assert stats["total_entries"] == 1
        assert stats["bytes_approx"] > 0
        entry = cache.entries()[0]
        assert entry["cache_key"] == "labels"
        assert entry["is_expired"] is False

    @pytest.mark.asyncio
    async def test_cleanup_during_recompute_keeps_new_entry(self):
        clock = _Clock()
        cache = ConnectorCache(default_ttl=60, clock=clock)
        first, _ = _counting_compute("old", delay=0)
        await cache.get("gmail", "labels", first)
        clock.now += 60

        compute, gate, _ = _gated_compute("new")
        pending = asyncio.create_task(cache.get("gmail", "labels", compute))
        await asyncio.sleep(0)

        assert cache.stats()["in_flight"] == 1
        assert cache.cleanup_expired() == 1

        gate.set()
        assert await asyncio.wait_for(pending, timeout=1) == ("new", False)

        entry = cache.peek("gmail", "labels")
        assert entry.payload == "new"
        assert entry.is_live(clock.now)
        stats = cache.stats()
        assert stats["total_entries"] == 1
        assert stats["expired_entries"] == 0

    def test_entry_fields(self):
        assert [f.name for f in dataclasses.fields(CacheEntry)] == [
            "connector_type",
            "key",
            "payload",
            "computed_at",
            "expires_at",
        ]
