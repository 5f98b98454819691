import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from activity_overview.database import build_engine, create_all_tables, get_db
from activity_overview.dependencies import get_current_user, get_overview_service
from activity_overview.main import app
from activity_overview.services.narrative import NarrativeGenerator
from activity_overview.services.overview import ActivityOverviewService
from activity_overview.services.overview_cache import SqlOverviewCache

from factories import FakeGenerator, FrozenClock, make_user


# File-backed SQLite per test: concurrent branches each open their own connection
@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'overview.db'}")
    await create_all_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest_asyncio.fixture
async def admin(db_session):
    return await make_user(db_session, email="ceo@example.com", full_name="Casey Admin",
                           role="ADMIN")


@pytest.fixture
def service(session_factory, generator, clock) -> ActivityOverviewService:
    return ActivityOverviewService(
        session_factory,
        SqlOverviewCache(session_factory),
        NarrativeGenerator(generator, timeout=0.5),
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(session_factory, service, admin) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_overview_service] = lambda: service
    app.dependency_overrides[get_current_user] = lambda: admin
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client(session_factory, service) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_overview_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
