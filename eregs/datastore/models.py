"""
Cache table definition.
SQLAlchemy 2.0+ declarative mapping; one SQLite file per namespace.
"""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class CacheEntryDB(Base):
    """Cache entries table."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(1000), primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    # Absolute wall-clock expiry in epoch milliseconds
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<CacheEntry(key={self.key[:50]}, expiry={self.expiry})>"
