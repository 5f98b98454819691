from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_overview.models import (
    PROJECT_TYPE_INTERNAL,
    PROJECT_TYPE_PERSONAL,
    ROLE_ADMIN,
    Client,
    ClientMember,
    Project,
    User,
)


def is_privileged(user: User) -> bool:
    return user.role == ROLE_ADMIN


async def list_accessible_client_ids(db: AsyncSession, user: User) -> list[str]:
    """Clients the user holds a live membership for."""
    result = await db.execute(
        select(ClientMember.client_id)
        .join(Client, Client.id == ClientMember.client_id)
        .where(
            ClientMember.user_id == user.id,
            ClientMember.deleted_at.is_(None),
            Client.deleted_at.is_(None),
        )
    )
    return list(result.scalars().all())


async def list_accessible_project_ids(db: AsyncSession, user: User) -> list[str]:
    """
    Projects under an accessible client, plus the user's own PERSONAL projects,
    plus every INTERNAL project.
    """
    client_ids = await list_accessible_client_ids(db, user)
    conditions = [
        (Project.type == PROJECT_TYPE_PERSONAL) & (Project.created_by == user.id),
        Project.type == PROJECT_TYPE_INTERNAL,
    ]
    if client_ids:
        conditions.append(Project.client_id.in_(client_ids))

    result = await db.execute(
        select(Project.id).where(Project.deleted_at.is_(None), or_(*conditions))
    )
    return list(result.scalars().all())
