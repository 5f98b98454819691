"""
Keyed store for rendered overview payloads.

One row per (user, timeframe). The store only reads and overwrites; whether an
entry is still fresh is decided by the caller from ``expires_at``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_overview.models import ActivityOverviewCache
from activity_overview.services.clock import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    user_id: str
    timeframe_days: int
    summary: str
    cached_at: datetime
    expires_at: datetime


class SqlOverviewCache:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str, timeframe_days: int) -> CacheEntry | None:
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(ActivityOverviewCache).where(
                        ActivityOverviewCache.user_id == user_id,
                        ActivityOverviewCache.timeframe_days == timeframe_days,
                    )
                )
            ).scalar_one_or_none()
        if row is None:
            return None
        return CacheEntry(
            user_id=row.user_id,
            timeframe_days=row.timeframe_days,
            summary=row.summary,
            cached_at=as_utc(row.cached_at),
            expires_at=as_utc(row.expires_at),
        )

    async def put(
        self,
        user_id: str,
        timeframe_days: int,
        summary: str,
        cached_at: datetime,
        expires_at: datetime,
    ) -> None:
        async with self._session_factory() as db:
            dialect = db.get_bind().dialect.name
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(ActivityOverviewCache).values(
                user_id=user_id,
                timeframe_days=timeframe_days,
                summary=summary,
                cached_at=cached_at,
                expires_at=expires_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "timeframe_days"],
                set_={
                    "summary": stmt.excluded.summary,
                    "cached_at": stmt.excluded.cached_at,
                    "expires_at": stmt.excluded.expires_at,
                },
            )
            await db.execute(stmt)
            await db.commit()
        logger.debug(
            "Cached overview user=%s timeframe=%d until %s",
            user_id, timeframe_days, expires_at.isoformat(),
        )


class InMemoryOverviewCache:
    """Dict-backed store with the same contract, for tests and single-process use."""

    def __init__(self) -> None:
        self.entries: dict[tuple[str, int], CacheEntry] = {}

    async def get(self, user_id: str, timeframe_days: int) -> CacheEntry | None:
        return self.entries.get((user_id, timeframe_days))

    async def put(
        self,
        user_id: str,
        timeframe_days: int,
        summary: str,
        cached_at: datetime,
        expires_at: datetime,
    ) -> None:
        self.entries[(user_id, timeframe_days)] = CacheEntry(
            user_id=user_id,
            timeframe_days=timeframe_days,
            summary=summary,
            cached_at=cached_at,
            expires_at=expires_at,
        )
