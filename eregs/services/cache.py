"""
DurableCache - Persistent key/value cache with absolute expiry.

Features:
- SQLite file per namespace (survives restarts)
- TTL with expired entries kept readable for stale fallback
- Storage failures are logged, never raised
- In-memory fallback when the database file cannot be opened
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncIterator

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from eregs.datastore.engine import (
    CacheDatabase,
    open_cache_database,
    open_memory_database,
)
from eregs.datastore.repositories import CacheEntryRepository
from eregs.services.errors import StorageError

DEFAULT_TTL = timedelta(hours=1)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class DurableCache:
    """
    Durable expiring store scoped to one namespace.

    Usage:
        cache = DurableCache(Path("data/cache/ab12.sqlite"), namespace="ab12")
        await cache.open()

        await cache.set("procedure_725", data, ttl=timedelta(days=7))
        fresh = await cache.get("procedure_725")
        stale = await cache.get("procedure_725", allow_expired=True)

        await cache.close()

    A db_path of None gives a non-persistent in-memory store.
    """

    def __init__(
        self,
        db_path: Path | None,
        namespace: str = "",
        default_ttl: timedelta = DEFAULT_TTL,
        debug: bool = False,
    ):
        self.db_path = db_path
        self.namespace = namespace
        self._default_ttl = default_ttl
        self._debug = debug
        self._database: CacheDatabase | None = None
        self._closed = False
        self._open_lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def is_open(self) -> bool:
        return self._database is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_persistent(self) -> bool:
        return self._database is not None and self._database.persistent

    async def open(self) -> None:
        """Open the underlying database. Safe to call more than once."""
        await self._ensure_open()

    async def _ensure_open(self) -> CacheDatabase:
        if self._closed:
            raise StorageError(
                f"Cache '{self.namespace}' is closed", service_id=self.namespace
            )
        if self._database is not None:
            return self._database

        async with self._open_lock:
            if self._database is None:
                try:
                    if self.db_path is None:
                        self._database = await open_memory_database()
                    else:
                        self._database = await open_cache_database(self.db_path)
                except (OSError, SQLAlchemyError) as e:
                    raise StorageError(
                        f"Could not open cache '{self.namespace}': {e}",
                        service_id=self.namespace,
                    ) from e
        return self._database

    @asynccontextmanager
    async def _repository(self) -> AsyncIterator[CacheEntryRepository]:
        """Yield a repository bound to a session that commits on success."""
        database = await self._ensure_open()
        try:
            async with database.session_factory() as session:
                yield CacheEntryRepository(session)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Cache storage failure in '{self.namespace}': {e}",
                service_id=self.namespace,
            ) from e

    async def get(self, key: str, allow_expired: bool = False) -> Any | None:
        """
        Get a value from the cache.

        Returns None if the key is missing, expired (unless allow_expired),
        unreadable, or the cache is closed.
        """
        if self._closed:
            return None

        try:
            async with self._repository() as repo:
                row = await repo.get_row(key)
        except StorageError as e:
            self._stats.errors += 1
            logger.error(f"Error getting cache key {key}: {e}")
            return None

        if row is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return None

        data, expiry = row
        expired = expiry <= now_ms()
        if expired and not allow_expired:
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return None

        try:
            value = json.loads(data)
        except ValueError as e:
            self._stats.errors += 1
            logger.error(f"Error decoding cache key {key}: {e}")
            return None

        if expired:
            self._stats.stale_hits += 1
            self._log(f"STALE HIT: {key[:50]}")
        else:
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
        return value

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Set a value in the cache, replacing any previous entry.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live (uses default if not specified)
        """
        if self._closed:
            self._log(f"DROPPED (closed): {key[:50]}")
            return

        ttl = ttl or self._default_ttl
        try:
            data = json.dumps(value)
        except (TypeError, ValueError) as e:
            self._stats.errors += 1
            logger.error(f"Error serializing cache key {key}: {e}")
            return

        expiry = now_ms() + int(ttl.total_seconds() * 1000)
        try:
            async with self._repository() as repo:
                await repo.upsert(key, data, expiry)
        except StorageError as e:
            self._stats.errors += 1
            logger.error(f"Error setting cache key {key}: {e}")
            return

        self._stats.writes += 1
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    async def has(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        if self._closed:
            return False
        try:
            async with self._repository() as repo:
                row = await repo.get_row(key)
        except StorageError as e:
            logger.error(f"Error checking cache key {key}: {e}")
            return False
        return row is not None and row[1] > now_ms()

    async def delete(self, key: str) -> None:
        """Delete a specific key from the cache."""
        if self._closed:
            return
        try:
            async with self._repository() as repo:
                await repo.delete(key)
        except StorageError as e:
            logger.error(f"Error deleting cache key {key}: {e}")
            return
        self._log(f"DELETE: {key[:50]}")

    async def clear(self) -> None:
        """Clear all cache entries."""
        if self._closed:
            return
        try:
            async with self._repository() as repo:
                count = await repo.delete_all()
        except StorageError as e:
            logger.error(f"Error clearing cache: {e}")
            return
        self._log(f"CLEAR: {count} entries removed")

    async def keys(self) -> list[str]:
        """All non-expired keys."""
        if self._closed:
            return []
        try:
            async with self._repository() as repo:
                return await repo.live_keys(now_ms())
        except StorageError as e:
            logger.error(f"Error getting cache keys: {e}")
            return []

    async def size(self) -> int:
        """Number of non-expired entries."""
        if self._closed:
            return 0
        try:
            async with self._repository() as repo:
                return await repo.count_live(now_ms())
        except StorageError as e:
            logger.error(f"Error getting cache size: {e}")
            return 0

    async def clean_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        if self._closed:
            return 0
        try:
            async with self._repository() as repo:
                removed = await repo.delete_expired(now_ms())
        except StorageError as e:
            logger.error(f"Error cleaning expired cache entries: {e}")
            return 0

        if removed:
            self._log(f"CLEANUP: {removed} expired entries removed")
        return removed

    async def close(self) -> None:
        """Release the database. Idempotent, also safe if never opened."""
        if self._closed:
            return
        self._closed = True

        async with self._open_lock:
            database, self._database = self._database, None
        if database is None:
            return
        try:
            await database.dispose()
        except (OSError, SQLAlchemyError) as e:
            logger.error(f"Error closing cache database: {e}")
        self._log("CLOSED")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[DurableCache:{self.namespace[:8]}] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.stale_hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.stale_hits) / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "stale_hits": self.stale_hits,
            "writes": self.writes,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
