import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_overview.models import TASK_STATUS_BLOCKED, Lead, Task
from activity_overview.services.activity_log import ActivityLogEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityMetrics:
    tasks_done: int = 0
    new_leads: int = 0
    active_projects: int = 0
    blocked_tasks: int = 0

    def to_payload(self) -> dict[str, int]:
        return {
            "tasksDone": self.tasks_done,
            "newLeads": self.new_leads,
            "activeProjects": self.active_projects,
            "blockedTasks": self.blocked_tasks,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ActivityMetrics":
        return cls(
            tasks_done=int(payload["tasksDone"]),
            new_leads=int(payload["newLeads"]),
            active_projects=int(payload["activeProjects"]),
            blocked_tasks=int(payload["blockedTasks"]),
        )


async def count_tasks_done(db: AsyncSession, since: datetime) -> int:
    result = await db.execute(
        select(func.count(Task.id)).where(
            Task.deleted_at.is_(None),
            Task.accepted_at >= since,
        )
    )
    return result.scalar_one()


async def count_new_leads(db: AsyncSession, since: datetime) -> int:
    result = await db.execute(
        select(func.count(Lead.id)).where(
            Lead.deleted_at.is_(None),
            Lead.created_at >= since,
        )
    )
    return result.scalar_one()


async def count_blocked_tasks(db: AsyncSession) -> int:
    # Snapshot of the current board, not bound to the window
    result = await db.execute(
        select(func.count(Task.id)).where(
            Task.deleted_at.is_(None),
            Task.status == TASK_STATUS_BLOCKED,
        )
    )
    return result.scalar_one()


def count_active_projects(logs: Iterable[ActivityLogEntry]) -> int:
    return len({log.target_project_id for log in logs if log.target_project_id})


class MetricsAggregator:
    """Runs the counters side by side, one session each, and merges them."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _run(self, query, *args) -> int:
        async with self._session_factory() as db:
            return await query(db, *args)

    async def _active_projects(self, logs: list[ActivityLogEntry]) -> int:
        return count_active_projects(logs)

    async def compute(
        self, since: datetime, logs: list[ActivityLogEntry]
    ) -> ActivityMetrics:
        # gather propagates the first failure; no partial record is ever built
        tasks_done, new_leads, active_projects, blocked_tasks = await asyncio.gather(
            self._run(count_tasks_done, since),
            self._run(count_new_leads, since),
            self._active_projects(logs),
            self._run(count_blocked_tasks),
        )
        metrics = ActivityMetrics(
            tasks_done=tasks_done,
            new_leads=new_leads,
            active_projects=active_projects,
            blocked_tasks=blocked_tasks,
        )
        logger.debug("Computed activity metrics since %s: %s", since.isoformat(), metrics)
        return metrics
