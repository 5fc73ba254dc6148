# syncbridge/database.py

# type: ignore[misc]
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from syncbridge.core.config import Settings

Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    # Convert postgresql:// to postgresql+asyncpg:// for async support
    if database_url.startswith('postgresql://'):
        return database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return database_url


def build_engine(settings: Settings) -> AsyncEngine:
    database_url = normalize_database_url(settings.DATABASE_URL)
    if not database_url:
        raise ValueError("DATABASE_URL is not set in environment variables")

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False, future=True)

    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@asynccontextmanager
async def get_session(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


def dialect_insert(session: AsyncSession, model):
    """INSERT construct that supports ON CONFLICT for the session's dialect."""
    dialect_name = session.bind.dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect_name}'")


async def insert_or_get(session: AsyncSession, model, values: dict, conflict_columns: list):
    """
    Insert a row unless one already exists for ``conflict_columns``, then
    return the stored row. Concurrent callers converge on the same row.
    """
    stmt = dialect_insert(session, model).values(**values).on_conflict_do_nothing(
        index_elements=conflict_columns
    )
    await session.execute(stmt)

    query = select(model).execution_options(populate_existing=True)
    for column in conflict_columns:
        query = query.where(getattr(model, column) == values[column])
    result = await session.execute(query)
    return result.scalar_one()
