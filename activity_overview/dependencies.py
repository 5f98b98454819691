from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_overview.database import get_db, get_session_factory
from activity_overview.models import User
from activity_overview.services.narrative import LLMClient, NarrativeGenerator
from activity_overview.services.overview import ActivityOverviewService
from activity_overview.services.overview_cache import SqlOverviewCache

llm_client = LLMClient()


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Viewer from the portal session cookie; None when there is no live user."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    result = await db.execute(
        select(User).where(User.id == str(user_id), User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


def get_overview_service() -> ActivityOverviewService:
    session_factory = get_session_factory()
    return ActivityOverviewService(
        session_factory,
        SqlOverviewCache(session_factory),
        NarrativeGenerator(llm_client),
    )
