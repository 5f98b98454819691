"""
Activity overview orchestration.

A request either replays a fresh cached payload for (viewer, timeframe) or
recomputes: fetch the log window, run the metrics aggregator and the context
resolver side by side, produce a highlight, cap it, then store the result.
Generation and the cache write degrade quietly; everything else is fatal.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_overview.config import settings
from activity_overview.models import User
from activity_overview.services.activity_log import fetch_activity_logs_since
from activity_overview.services.clock import utcnow
from activity_overview.services.context import ContextResolver
from activity_overview.services.metrics import ActivityMetrics, MetricsAggregator
from activity_overview.services.narrative import (
    NarrativeGenerator,
    enforce_character_limit,
)
from activity_overview.services.overview_cache import CacheEntry

logger = logging.getLogger(__name__)

CACHE_HIT = "hit"
CACHE_MISS = "miss"

# Strong references to running computations until they finish
_inflight: set[asyncio.Task] = set()


class OverviewAuthError(Exception):
    pass


class OverviewValidationError(Exception):
    pass


class OverviewCache(Protocol):
    async def get(self, user_id: str, timeframe_days: int) -> CacheEntry | None: ...

    async def put(
        self,
        user_id: str,
        timeframe_days: int,
        summary: str,
        cached_at: datetime,
        expires_at: datetime,
    ) -> None: ...


@dataclass(frozen=True)
class OverviewResult:
    metrics: ActivityMetrics
    highlight: str
    status: str
    cached_at: datetime
    expires_at: datetime

    def body(self) -> dict:
        return {"metrics": self.metrics.to_payload(), "highlight": self.highlight}


class ActivityOverviewService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: OverviewCache,
        narrative: NarrativeGenerator,
        *,
        clock: Callable[[], datetime] = utcnow,
        timeframes: Iterable[int] = settings.OVERVIEW_TIMEFRAMES,
        ttl: timedelta = timedelta(minutes=settings.OVERVIEW_CACHE_TTL_MINUTES),
        max_log_entries: int = settings.MAX_LOG_ENTRIES,
        highlight_limit: int = settings.HIGHLIGHT_CHARACTER_LIMIT,
        restrict_metadata: bool = settings.RESTRICT_METADATA_LABELS,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._narrative = narrative
        self._clock = clock
        self._timeframes = frozenset(timeframes)
        self._ttl = ttl
        self._max_log_entries = max_log_entries
        self._highlight_limit = highlight_limit
        self._metrics = MetricsAggregator(session_factory)
        self._context = ContextResolver(session_factory, restrict_metadata)

    def validate_timeframe(self, timeframe_days) -> int:
        if (
            isinstance(timeframe_days, bool)
            or not isinstance(timeframe_days, int)
            or timeframe_days not in self._timeframes
        ):
            raise OverviewValidationError("Unsupported timeframe requested.")
        return timeframe_days

    async def get_overview(
        self, viewer: User | None, timeframe_days: int, force_refresh: bool = False
    ) -> OverviewResult:
        if viewer is None:
            raise OverviewAuthError("Unauthorized")
        timeframe_days = self.validate_timeframe(timeframe_days)
        now = self._clock()

        if not force_refresh:
            cached = await self._load_cached(viewer.id, timeframe_days, now)
            if cached is not None:
                return cached
        else:
            logger.info(
                "Forced overview refresh user=%s timeframe=%d", viewer.id, timeframe_days
            )

        # Keep computing if the caller goes away so the cache still gets written
        user_id = viewer.id
        task = asyncio.ensure_future(self._compute(viewer, timeframe_days, now))
        _inflight.add(task)
        task.add_done_callback(_inflight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(
                lambda done: _log_orphaned_failure(done, user_id, timeframe_days)
            )
            raise

    async def _load_cached(
        self, user_id: str, timeframe_days: int, now: datetime
    ) -> OverviewResult | None:
        entry = await self._cache.get(user_id, timeframe_days)
        if entry is None or entry.expires_at <= now:
            logger.debug(
                "Overview cache %s user=%s timeframe=%d",
                "empty" if entry is None else "stale", user_id, timeframe_days,
            )
            return None
        try:
            payload = json.loads(entry.summary)
            metrics = ActivityMetrics.from_payload(payload["metrics"])
            highlight = payload["highlight"]
            if not isinstance(highlight, str):
                raise TypeError("highlight is not a string")
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Discarding unreadable overview cache user=%s timeframe=%d: %s",
                user_id, timeframe_days, exc,
            )
            return None
        logger.debug("Overview cache hit user=%s timeframe=%d", user_id, timeframe_days)
        return OverviewResult(
            metrics=metrics,
            highlight=highlight,
            status=CACHE_HIT,
            cached_at=entry.cached_at,
            expires_at=entry.expires_at,
        )

    async def _compute(
        self, viewer: User, timeframe_days: int, now: datetime
    ) -> OverviewResult:
        since = now - timedelta(days=timeframe_days)
        async with self._session_factory() as db:
            logs = await fetch_activity_logs_since(db, since, self._max_log_entries)

        metrics, context = await asyncio.gather(
            self._metrics.compute(since, logs),
            self._context.build(viewer, logs),
        )
        highlight = await self._narrative.highlight(
            metrics=metrics,
            logs=logs,
            context=context,
            now=now,
            timeframe_days=timeframe_days,
        )
        result = OverviewResult(
            metrics=metrics,
            highlight=enforce_character_limit(highlight, self._highlight_limit),
            status=CACHE_MISS,
            cached_at=now,
            expires_at=now + self._ttl,
        )
        await self._persist(viewer.id, timeframe_days, result)
        logger.info(
            "Computed overview user=%s timeframe=%d from %d log entries",
            viewer.id, timeframe_days, len(logs),
        )
        return result

    async def _persist(
        self, user_id: str, timeframe_days: int, result: OverviewResult
    ) -> None:
        try:
            await self._cache.put(
                user_id,
                timeframe_days,
                json.dumps(result.body(), ensure_ascii=False),
                result.cached_at,
                result.expires_at,
            )
        except Exception as exc:
            logger.error(
                "Failed to cache activity overview user=%s timeframe=%d: %s",
                user_id, timeframe_days, exc,
            )


def _log_orphaned_failure(task: asyncio.Task, user_id: str, timeframe_days: int) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "Overview computation failed after caller left user=%s timeframe=%d",
            user_id, timeframe_days, exc_info=exc,
        )
