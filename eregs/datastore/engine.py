"""
Database engine setup for the cache store.
Async SQLAlchemy engine over aiosqlite, with an in-memory fallback.
"""

from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from eregs.datastore.models import Base

MEMORY_DATABASE_URL = "sqlite+aiosqlite://"


@dataclass
class CacheDatabase:
    """An opened cache database and its session factory."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    url: str
    persistent: bool

    async def dispose(self) -> None:
        """Close every pooled connection."""
        await self.engine.dispose()


async def _create(url: str, **engine_kwargs) -> CacheDatabase:
    """Create the engine and the cache table, disposing the engine on failure."""
    engine = create_async_engine(url, future=True, **engine_kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except BaseException:
        await engine.dispose()
        raise

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return CacheDatabase(
        engine=engine,
        session_factory=session_factory,
        url=url,
        persistent=url != MEMORY_DATABASE_URL,
    )


async def open_memory_database() -> CacheDatabase:
    """Open a private in-memory database (shared by all sessions of the engine)."""
    return await _create(
        MEMORY_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


async def open_cache_database(db_path: Path) -> CacheDatabase:
    """
    Open (creating if needed) the cache database at db_path.

    Falls back to an in-memory database when the file cannot be created or
    opened, so the process keeps running with reduced durability.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        database = await _create(f"sqlite+aiosqlite:///{db_path}")
        logger.debug(f"Using cache database at: {db_path}")
        return database
    except (OSError, SQLAlchemyError) as e:
        logger.error(
            f"Error initializing cache database at {db_path}: {e}. "
            "Falling back to in-memory cache"
        )
        return await open_memory_database()
