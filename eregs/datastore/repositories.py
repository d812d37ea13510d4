"""
Repository layer for cache entries.
"""

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from eregs.datastore.models import CacheEntryDB


class CacheEntryRepository:
    """Cache entry repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_row(self, key: str) -> tuple[str, int] | None:
        """(serialized value, expiry ms) for key, expired or not."""
        result = await self.session.execute(
            select(CacheEntryDB.data, CacheEntryDB.expiry).where(
                CacheEntryDB.key == key
            )
        )
        row = result.one_or_none()
        return (row.data, row.expiry) if row else None

    async def upsert(self, key: str, data: str, expiry_ms: int) -> None:
        """Insert or wholesale replace the row for key."""
        stmt = insert(CacheEntryDB).values(key=key, data=data, expiry=expiry_ms)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheEntryDB.key],
            set_={"data": stmt.excluded.data, "expiry": stmt.excluded.expiry},
        )
        await self.session.execute(stmt)

    async def delete(self, key: str) -> int:
        """Delete the row for key. Returns the number removed."""
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.rowcount or 0

    async def delete_all(self) -> int:
        """Delete every row."""
        result = await self.session.execute(delete(CacheEntryDB))
        return result.rowcount or 0

    async def delete_expired(self, now_ms: int) -> int:
        """Delete rows whose expiry has passed. Returns the number removed."""
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.expiry <= now_ms)
        )
        return result.rowcount or 0

    async def live_keys(self, now_ms: int) -> list[str]:
        """Keys of unexpired rows, sorted."""
        result = await self.session.execute(
            select(CacheEntryDB.key)
            .where(CacheEntryDB.expiry > now_ms)
            .order_by(CacheEntryDB.key)
        )
        return list(result.scalars().all())

    async def count_live(self, now_ms: int) -> int:
        """Number of unexpired rows."""
        result = await self.session.execute(
            select(func.count())
            .select_from(CacheEntryDB)
            .where(CacheEntryDB.expiry > now_ms)
        )
        return result.scalar_one()
