from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from activity_overview.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    async_engine = create_async_engine(url, echo=echo)
    if async_engine.dialect.name == "sqlite":
        event.listen(async_engine.sync_engine, "connect", set_sqlite_pragma)
    return async_engine


def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory handed to services that fan out over several sessions."""
    return AsyncSessionLocal


async def create_all_tables(target: AsyncEngine = engine) -> None:
    from activity_overview import models  # noqa: F401  # register tables

    database = target.url.database
    if target.dialect.name == "sqlite" and database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
