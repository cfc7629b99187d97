"""
Authoritative time source.

Cooldowns, TTLs and message ordering use the storage server's clock so that
every app instance agrees on "now". Timestamps are naive UTC, like every
DateTime column in the schema.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import is_postgres


def utc_now() -> datetime:
    """Naive UTC now, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class StorageClock:
    """Reads now() from PostgreSQL; other engines fall back to the app host clock."""

    async def now(self, db: AsyncSession) -> datetime:
        if is_postgres(db):
            result = await db.execute(select(func.now()))
            return to_naive_utc(result.scalar_one())
        return utc_now()


storage_clock = StorageClock()


def get_clock() -> StorageClock:
    """FastAPI dependency; tests override it with a frozen clock."""
    return storage_clock
