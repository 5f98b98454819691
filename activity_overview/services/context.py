"""
Project/client label resolution for activity log entries.

Log rows carry raw ids plus whatever metadata was attached at write time. The
resolver turns ids into display names, but only for entities the viewer may
see: ids outside the viewer's scope are never looked up. Each entry's labels
are then picked from an ordered chain of extractors, first non-empty wins.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_overview.models import Client, Project, User
from activity_overview.services import permissions
from activity_overview.services.activity_log import ActivityLogEntry

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_LABEL = "General"
DEFAULT_CLIENT_LABEL = "General"
UNNAMED_PROJECT = "Unnamed Project"
UNNAMED_CLIENT = "Unnamed Client"

TARGET_LABELS = {
    "TASK": "task work",
    "PROJECT": "project updates",
    "CLIENT": "client updates",
    "COMMENT": "task comments",
    "TIME_LOG": "time logs",
    "HOUR_BLOCK": "hour blocks",
    "USER": "team members",
    "SETTINGS": "settings changes",
    "GENERAL": "general operations",
}


@dataclass(frozen=True)
class ProjectRef:
    id: str
    name: str
    client_id: str | None


@dataclass(frozen=True)
class ClientRef:
    id: str
    name: str


@dataclass
class ActivityContext:
    projects: dict[str, ProjectRef] = field(default_factory=dict)
    clients: dict[str, ClientRef] = field(default_factory=dict)
    # Set for non-privileged viewers when metadata labels must respect access
    restricted: bool = False
    allowed_project_ids: frozenset[str] = frozenset()
    allowed_client_ids: frozenset[str] = frozenset()

    def project_metadata_visible(self, entry: ActivityLogEntry) -> bool:
        if not self.restricted or entry.target_project_id is None:
            return True
        return entry.target_project_id in self.allowed_project_ids

    def client_metadata_visible(self, entry: ActivityLogEntry) -> bool:
        if not self.project_metadata_visible(entry):
            return False
        if not self.restricted or entry.target_client_id is None:
            return True
        return entry.target_client_id in self.allowed_client_ids


@dataclass(frozen=True)
class EntryLabels:
    project: str
    client: str


def read_metadata_string(source: Any, path: Iterable[str]) -> str | None:
    current = source
    for segment in path:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        else:
            return None
    return current if isinstance(current, str) else None


Extractor = Callable[[ActivityLogEntry, ActivityContext], str | None]


def _directory_project(entry: ActivityLogEntry, ctx: ActivityContext) -> str | None:
    project = ctx.projects.get(entry.target_project_id) if entry.target_project_id else None
    return project.name if project else None


def _directory_client_via_project(
    entry: ActivityLogEntry, ctx: ActivityContext
) -> str | None:
    project = ctx.projects.get(entry.target_project_id) if entry.target_project_id else None
    if project is None or project.client_id is None:
        return None
    client = ctx.clients.get(project.client_id)
    return client.name if client else None


def _directory_client(entry: ActivityLogEntry, ctx: ActivityContext) -> str | None:
    client = ctx.clients.get(entry.target_client_id) if entry.target_client_id else None
    return client.name if client else None


def _project_metadata(*path: str) -> Extractor:
    def extract(entry: ActivityLogEntry, ctx: ActivityContext) -> str | None:
        if not ctx.project_metadata_visible(entry):
            return None
        return read_metadata_string(entry.metadata, path)

    return extract


def _client_metadata(*path: str) -> Extractor:
    def extract(entry: ActivityLogEntry, ctx: ActivityContext) -> str | None:
        if not ctx.client_metadata_visible(entry):
            return None
        return read_metadata_string(entry.metadata, path)

    return extract


PROJECT_LABEL_CHAIN: tuple[Extractor, ...] = (
    _directory_project,
    _project_metadata("project", "name"),
    _project_metadata("task", "projectName"),
    _project_metadata("projectName"),
)

CLIENT_LABEL_CHAIN: tuple[Extractor, ...] = (
    _directory_client_via_project,
    _directory_client,
    _client_metadata("client", "name"),
    _client_metadata("clientName"),
)


def first_label(
    chain: Iterable[Extractor],
    entry: ActivityLogEntry,
    ctx: ActivityContext,
    default: str,
) -> str:
    for extractor in chain:
        value = extractor(entry, ctx)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


def resolve_labels(
    entry: ActivityLogEntry, ctx: ActivityContext, company_label: str
) -> EntryLabels:
    project = first_label(PROJECT_LABEL_CHAIN, entry, ctx, DEFAULT_PROJECT_LABEL)
    client = first_label(CLIENT_LABEL_CHAIN, entry, ctx, DEFAULT_CLIENT_LABEL)
    if project == DEFAULT_PROJECT_LABEL and client == DEFAULT_CLIENT_LABEL:
        client = company_label
    return EntryLabels(project=project, client=client)


def format_timestamp(entry: ActivityLogEntry) -> str:
    ts = entry.timestamp
    hour = ts.hour % 12 or 12
    return f"{ts:%b} {ts.day}, {hour}:{ts:%M} {ts:%p} UTC"


def format_activity_entry(
    entry: ActivityLogEntry, ctx: ActivityContext, company_label: str
) -> str:
    """One JSON line describing the entry for the narrative prompt."""
    labels = resolve_labels(entry, ctx, company_label)
    record: dict[str, Any] = {
        "timestamp": format_timestamp(entry),
        "actor": entry.actor_display_name,
        "project": labels.project,
        "client": labels.client,
        "projectId": entry.target_project_id,
        "clientId": entry.target_client_id,
        "targetType": entry.target_type,
        "targetLabel": TARGET_LABELS.get(entry.target_type) or entry.target_type or "activity",
        "verb": entry.verb.replace("_", " ").lower(),
        "summary": entry.summary.strip(),
    }
    if isinstance(entry.metadata, dict) and ctx.client_metadata_visible(entry):
        record["metadata"] = entry.metadata
    return json.dumps(record, ensure_ascii=False, default=str)


def dedupe_ids(values: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


class ContextResolver:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        restrict_metadata: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._restrict_metadata = restrict_metadata

    async def _with_session(self, func, *args):
        async with self._session_factory() as db:
            return await func(db, *args)

    async def _allowed_ids(
        self, viewer: User, project_ids: list[str], client_ids: list[str]
    ) -> tuple[list[str], list[str]]:
        if permissions.is_privileged(viewer):
            return project_ids, client_ids

        async def no_ids() -> list[str]:
            return []

        accessible_projects, accessible_clients = await asyncio.gather(
            self._with_session(permissions.list_accessible_project_ids, viewer)
            if project_ids else no_ids(),
            self._with_session(permissions.list_accessible_client_ids, viewer)
            if client_ids else no_ids(),
        )
        project_scope = set(accessible_projects)
        client_scope = set(accessible_clients)
        return (
            [pid for pid in project_ids if pid in project_scope],
            [cid for cid in client_ids if cid in client_scope],
        )

    @staticmethod
    async def _load_projects(db: AsyncSession, ids: list[str]) -> dict[str, ProjectRef]:
        if not ids:
            return {}
        result = await db.execute(
            select(Project.id, Project.name, Project.client_id).where(
                Project.id.in_(ids), Project.deleted_at.is_(None)
            )
        )
        return {
            row.id: ProjectRef(
                id=row.id,
                name=(row.name or "").strip() or UNNAMED_PROJECT,
                client_id=row.client_id,
            )
            for row in result.all()
        }

    @staticmethod
    async def _load_clients(db: AsyncSession, ids: list[str]) -> dict[str, ClientRef]:
        if not ids:
            return {}
        result = await db.execute(
            select(Client.id, Client.name).where(
                Client.id.in_(ids), Client.deleted_at.is_(None)
            )
        )
        return {
            row.id: ClientRef(id=row.id, name=(row.name or "").strip() or UNNAMED_CLIENT)
            for row in result.all()
        }

    async def build(self, viewer: User, logs: list[ActivityLogEntry]) -> ActivityContext:
        project_ids = dedupe_ids(log.target_project_id for log in logs)
        client_ids = dedupe_ids(log.target_client_id for log in logs)

        allowed_projects, allowed_clients = await self._allowed_ids(
            viewer, project_ids, client_ids
        )
        projects, clients = await asyncio.gather(
            self._with_session(self._load_projects, allowed_projects),
            self._with_session(self._load_clients, allowed_clients),
        )
        restricted = self._restrict_metadata and not permissions.is_privileged(viewer)
        logger.debug(
            "Resolved %d/%d projects and %d/%d clients for viewer %s",
            len(projects), len(project_ids), len(clients), len(client_ids), viewer.id,
        )
        return ActivityContext(
            projects=projects,
            clients=clients,
            restricted=restricted,
            allowed_project_ids=frozenset(allowed_projects),
            allowed_client_ids=frozenset(allowed_clients),
        )
