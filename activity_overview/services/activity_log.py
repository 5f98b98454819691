"""
Activity log reader.
Loads the newest-first slice of log rows the overview works from, with the
actor's display name already resolved. Soft-deleted rows never appear.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_overview.models import ActivityLog, User
from activity_overview.services.clock import as_utc

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ActivityLogEntry:
    timestamp: datetime
    actor_display_name: str
    verb: str
    summary: str
    target_type: str
    target_project_id: str | None = None
    target_client_id: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)


def actor_display_name(full_name: str | None, email: str | None) -> str:
    name = (full_name or "").strip() or (email or "").strip() or "System"
    return _WHITESPACE.sub(" ", name)


async def fetch_activity_logs_since(
    db: AsyncSession, since: datetime, limit: int
) -> list[ActivityLogEntry]:
    result = await db.execute(
        select(ActivityLog, User.full_name, User.email)
        .outerjoin(User, User.id == ActivityLog.actor_id)
        .where(
            ActivityLog.deleted_at.is_(None),
            ActivityLog.created_at >= since,
        )
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    return [
        ActivityLogEntry(
            timestamp=as_utc(log.created_at),
            actor_display_name=actor_display_name(full_name, email),
            verb=log.verb,
            summary=log.summary,
            target_type=log.target_type,
            target_project_id=log.target_project_id,
            target_client_id=log.target_client_id,
            metadata=log.metadata_ if isinstance(log.metadata_, dict) else None,
        )
        for log, full_name, email in result.all()
    ]

