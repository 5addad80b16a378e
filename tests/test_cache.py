"""
Tests for the server-side TTL cache.
"""

import asyncio

import pytest

from reservoirhub.cache import TTLCache
from reservoirhub.scheduler import ManualClock


class TestTTLCache:
    @pytest.mark.asyncio
    async def test_expiry(self):
        clock = ManualClock()
        cache = TTLCache(clock)
        cache.set("weather", "forecast", ttl=600)

        await clock.advance(599)
        assert cache.get("weather") == "forecast"

        await clock.advance(1)
        assert cache.get("weather") is None

    def test_invalidate(self):
        cache = TTLCache(ManualClock())
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=10)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.invalidate()
        assert cache.get("b") is None

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self):
        cache = TTLCache(ManualClock())
        release = asyncio.Event()
        calls = []

        async def fetch():
            calls.append(1)
            await release.wait()
            return "lake"

        waiters = [
            asyncio.ensure_future(cache.get_or_fetch("lake-level", 900, fetch))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["lake"] * 5
        assert len(calls) == 1
        assert cache.get("lake-level") == "lake"

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        cache = TTLCache(ManualClock())
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("outflow", 86400, failing)
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("outflow", 86400, failing)

        assert len(calls) == 2
        assert cache.get("outflow") is None

    @pytest.mark.asyncio
    async def test_should_cache_rejects(self):
        cache = TTLCache(ManualClock())

        async def fetch():
            return "estimate"

        value = await cache.get_or_fetch(
            "outflow", 60, fetch, should_cache=lambda v: v != "estimate"
        )
        assert value == "estimate"
        assert cache.get("outflow") is None

    @pytest.mark.asyncio
    async def test_timed_out_caller_does_not_cancel_others(self):
        """Test a caller giving up leaves the shared fetch running for the rest."""
        cache = TTLCache(ManualClock())
        release = asyncio.Event()
        calls = []

        async def slow_fetch():
            calls.append(1)
            await release.wait()
            return "forecast"

        impatient = asyncio.ensure_future(
            asyncio.wait_for(cache.get_or_fetch("weather", 600, slow_fetch), 0.01)
        )
        await asyncio.sleep(0)
        patient = asyncio.ensure_future(cache.get_or_fetch("weather", 600, slow_fetch))

        with pytest.raises(asyncio.TimeoutError):
            await impatient
        assert not patient.done()

        release.set()
        assert await patient == "forecast"
        assert len(calls) == 1
        assert cache.get("weather") == "forecast"

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_others(self):
        cache = TTLCache(ManualClock())
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return 850.0

        first = asyncio.ensure_future(cache.get_or_fetch("outflow", 60, slow_fetch))
        second = asyncio.ensure_future(cache.get_or_fetch("outflow", 60, slow_fetch))
        await asyncio.sleep(0)

        first.cancel()
        release.set()

        assert await second == 850.0
        assert first.cancelled()
