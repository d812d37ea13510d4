"""Tests for the durable expiring store."""

from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from eregs.services.cache import DurableCache

HOUR = timedelta(hours=1)
HOUR_MS = 3_600_000


@pytest_asyncio.fixture
async def cache(cache_dir: Path):
    store = DurableCache(cache_dir / "test.sqlite", namespace="test")
    await store.open()
    yield store
    await store.close()


class TestGetSet:
    @pytest.mark.asyncio
    async def test_value_readable_before_expiry(self, cache, clock):
        await cache.set("procedure_1", {"id": 1, "name": "Import"}, HOUR)
        clock.advance(HOUR_MS - 1)

        assert await cache.get("procedure_1") == {"id": 1, "name": "Import"}

    @pytest.mark.asyncio
    async def test_expired_value_only_readable_when_allowed(self, cache, clock):
        await cache.set("procedure_1", [1, 2, 3], HOUR)
        clock.advance(HOUR_MS)

        assert await cache.get("procedure_1") is None
        assert await cache.get("procedure_1", allow_expired=True) == [1, 2, 3]
        # A fresh-only read must not destroy the stale copy
        assert await cache.get("procedure_1", allow_expired=True) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, cache):
        assert await cache.get("nope") is None
        assert await cache.get("nope", allow_expired=True) is None

    @pytest.mark.asyncio
    async def test_set_replaces_value_and_expiry(self, cache, clock):
        await cache.set("k", "old", timedelta(seconds=1))
        await cache.set("k", "new", HOUR)
        clock.advance(5_000)

        assert await cache.get("k") == "new"
        assert await cache.size() == 1

    @pytest.mark.asyncio
    async def test_unserializable_value_is_swallowed(self, cache):
        await cache.set("bad", {"value": object()}, HOUR)

        assert await cache.get("bad") is None
        assert cache.get_stats().errors == 1

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, cache_dir):
        path = cache_dir / "durable.sqlite"
        first = DurableCache(path, namespace="durable")
        await first.set("procedures_list", [{"id": 7}], HOUR)
        await first.close()

        second = DurableCache(path, namespace="durable")
        try:
            assert await second.get("procedures_list") == [{"id": 7}]
            assert second.is_persistent
        finally:
            await second.close()


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_keys_size_and_has_ignore_expired(self, cache, clock):
        await cache.set("short", 1, timedelta(seconds=1))
        await cache.set("long", 2, HOUR)
        clock.advance(2_000)

        assert await cache.keys() == ["long"]
        assert await cache.size() == 1
        assert await cache.has("long")
        assert not await cache.has("short")

    @pytest.mark.asyncio
    async def test_clean_expired_removes_exactly_expired(self, cache, clock):
        await cache.set("a", 1, timedelta(seconds=1))
        await cache.set("b", 2, timedelta(seconds=2))
        await cache.set("c", 3, HOUR)
        clock.advance(2_000)

        assert await cache.clean_expired() == 2
        assert await cache.clean_expired() == 0
        assert await cache.get("a", allow_expired=True) is None
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, cache):
        await cache.set("a", 1, HOUR)
        await cache.set("b", 2, HOUR)

        await cache.delete("a")
        assert await cache.get("a", allow_expired=True) is None

        await cache.clear()
        assert await cache.size() == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_safe_unopened(self, cache_dir):
        store = DurableCache(cache_dir / "never.sqlite")
        await store.close()
        await store.close()

        assert store.is_closed
        assert not (cache_dir / "never.sqlite").exists()

    @pytest.mark.asyncio
    async def test_operations_after_close_are_noops(self, cache):
        await cache.set("a", 1, HOUR)
        await cache.close()

        await cache.set("b", 2, HOUR)
        assert await cache.get("a") is None
        assert await cache.clean_expired() == 0
        assert await cache.keys() == []

    @pytest.mark.asyncio
    async def test_falls_back_to_memory_when_path_unusable(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        store = DurableCache(blocker / "cache.sqlite", namespace="fallback")
        try:
            await store.set("k", {"v": 1}, HOUR)

            assert await store.get("k") == {"v": 1}
            assert not store.is_persistent
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_memory_store_without_path(self):
        store = DurableCache(None)
        try:
            await store.set("k", "v", HOUR)
            assert await store.get("k") == "v"
            assert not store.is_persistent
        finally:
            await store.close()
