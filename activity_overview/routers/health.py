import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_overview.config import settings
from activity_overview.database import get_db
from activity_overview.models import ActivityLog, ActivityOverviewCache

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> dict:
    db_status = "ok"
    logs_total = 0
    cache_entries = 0
    try:
        logs_total = (
            await db.execute(
                select(func.count(ActivityLog.id)).where(ActivityLog.deleted_at.is_(None))
            )
        ).scalar_one()
        cache_entries = (
            await db.execute(select(func.count(ActivityOverviewCache.id)))
        ).scalar_one()
    except Exception as exc:
        logger.error("Health check DB probe failed: %s", exc)
        db_status = "error"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "db": db_status,
        "llm_provider": settings.LLM_PROVIDER,
        "activity_logs_total": logs_total,
        "overview_cache_entries": cache_entries,
    }
