"""Tests for the periodic cache sweep."""

from datetime import timedelta

import pytest
import pytest_asyncio

from eregs.services.cache import DurableCache
from eregs.services.sweeper import SWEEP_JOB_ID, CacheSweeper
from eregs.utils import safe_job


@pytest_asyncio.fixture
async def store(cache_dir):
    cache = DurableCache(cache_dir / "sweep.sqlite", namespace="sweep")
    await cache.open()
    yield cache
    await cache.close()


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_removes_only_expired_entries(self, store, clock):
        await store.set("old", 1, timedelta(minutes=1))
        await store.set("new", 2, timedelta(days=1))
        clock.advance(120_000)
        sweeper = CacheSweeper(lambda: store)

        assert await sweeper.run_once() == 1
        assert await store.keys() == ["new"]
        assert await store.get("old", allow_expired=True) is None

    @pytest.mark.asyncio
    async def test_nothing_to_sweep_without_store(self):
        assert await CacheSweeper(lambda: None).run_once() == 0

    @pytest.mark.asyncio
    async def test_closed_store_is_skipped(self, store):
        await store.close()

        assert await CacheSweeper(lambda: store).run_once() == 0

    @pytest.mark.asyncio
    async def test_follows_store_swaps(self, store, cache_dir, clock):
        other = DurableCache(cache_dir / "other.sqlite", namespace="other")
        await other.set("stale", 1, timedelta(seconds=1))
        current = {"store": store}
        sweeper = CacheSweeper(lambda: current["store"])
        clock.advance(5_000)

        try:
            assert await sweeper.run_once() == 0
            current["store"] = other
            assert await sweeper.run_once() == 1
        finally:
            await other.close()


class TestScheduling:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store):
        sweeper = CacheSweeper(lambda: store, interval_hours=24)

        sweeper.start()
        try:
            assert sweeper.is_running()
            job = sweeper.scheduler.get_job(SWEEP_JOB_ID)
            assert job.trigger.interval == timedelta(hours=24)
            sweeper.start()  # second start is ignored
        finally:
            sweeper.stop()

        assert not sweeper.is_running()
        sweeper.stop()

    @pytest.mark.asyncio
    async def test_job_failures_are_swallowed(self):
        def broken():
            raise RuntimeError("disk gone")

        sweeper = CacheSweeper(broken)

        assert await sweeper.sweep_job() is None


class TestSafeJob:
    def test_rejects_plain_functions(self):
        with pytest.raises(TypeError):
            safe_job(lambda: None)

    @pytest.mark.asyncio
    async def test_passes_result_through(self):
        @safe_job
        async def job(value):
            return value * 2

        assert await job(21) == 42
