from datetime import timedelta

import pytest

from activity_overview.models import ActivityLog
from activity_overview.services.activity_log import (
    actor_display_name,
    fetch_activity_logs_since,
)

from factories import NOW, log, make_project, make_user


class TestActorDisplayName:
    def test_full_name_whitespace_collapsed(self):
        assert actor_display_name("  Casey \n  Admin ", "c@example.com") == "Casey Admin"

    def test_email_when_name_blank(self):
        assert actor_display_name("   ", "c@example.com") == "c@example.com"

    def test_system_when_nothing_known(self):
        assert actor_display_name(None, None) == "System"


class TestFetchActivityLogsSince:
    @pytest.mark.asyncio
    async def test_newest_first_within_window(self, db_session):
        actor = await make_user(db_session, email="ops@example.com", full_name="Ops Bot")
        project = await make_project(db_session, "Apollo")
        await log(db_session, actor, created_at=NOW - timedelta(days=2), summary="older")
        await log(db_session, actor, created_at=NOW - timedelta(hours=1), summary="newest",
                  project=project, metadata={"task": {"projectName": "Apollo"}})
        await log(db_session, actor, created_at=NOW - timedelta(days=9), summary="outside")

        entries = await fetch_activity_logs_since(db_session, NOW - timedelta(days=7), 200)

        assert [e.summary for e in entries] == ["newest", "older"]
        assert entries[0].actor_display_name == "Ops Bot"
        assert entries[0].target_project_id == project.id
        assert entries[0].metadata == {"task": {"projectName": "Apollo"}}
        assert entries[0].timestamp == NOW - timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_soft_deleted_rows_are_skipped(self, db_session):
        actor = await make_user(db_session, email="ops@example.com")
        kept = await log(db_session, actor, created_at=NOW - timedelta(hours=1), summary="kept")
        gone = await log(db_session, actor, created_at=NOW - timedelta(hours=2), summary="gone")
        row = await db_session.get(ActivityLog, gone.id)
        row.deleted_at = NOW
        await db_session.commit()

        entries = await fetch_activity_logs_since(db_session, NOW - timedelta(days=1), 200)
        assert [e.summary for e in entries] == [kept.summary]

    @pytest.mark.asyncio
    async def test_limit_keeps_most_recent(self, db_session):
        actor = await make_user(db_session, email="ops@example.com")
        for hours in range(1, 6):
            await log(db_session, actor, created_at=NOW - timedelta(hours=hours),
                      summary=f"h{hours}")

        entries = await fetch_activity_logs_since(db_session, NOW - timedelta(days=1), 2)
        assert [e.summary for e in entries] == ["h1", "h2"]
