"""
Database Connection and Session Management

Provides async SQLAlchemy 2.0 engine, session factory, and dependencies
for database operations.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.models.database import Base

logger = logging.getLogger(__name__)

# session.info key holding callbacks to run once the transaction commits
AFTER_COMMIT_KEY = "after_commit"

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool,
    future=True,
)

# Create session factory
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


def run_after_commit(session: AsyncSession, callback: Callable[[], Awaitable]) -> None:
    """
    Schedule a coroutine function to run after the session commits.

    Callbacks are dropped if the transaction rolls back.
    """
    session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


async def commit_session(session: AsyncSession) -> None:
    """Commit, then run the callbacks registered with run_after_commit()."""
    await session.commit()
    callbacks = session.info.pop(AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        await callback()
    if callbacks:
        logger.debug(f"Ran {len(callbacks)} after-commit callbacks")

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    Automatically handles:
    - Session creation
    - Commit on success
    - Rollback on exception
    - Session cleanup

    The whole request runs in one transaction, so an event's conflict
    check and its insert commit (or roll back) together.

    Usage:
        @app.get("/example")
        async def example(db: AsyncSession = Depends(get_db)):
            result = await db.execute(select(CalendarEventRecord))
            return result.scalars().all()

    Yields:
        AsyncSession: Database session
    """
    session = async_session_factory()
    try:
        yield session
        await commit_session(session)
    except Exception:
        session.info.pop(AFTER_COMMIT_KEY, None)
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside FastAPI.

    Use this in background jobs (the reminder worker), CLI scripts,
    or anywhere outside the FastAPI request lifecycle.

    Usage:
        async with get_db_context() as db:
            reminders = await ReminderRepository(db).find_due(now)

    Yields:
        AsyncSession: Database session
    """
    session = async_session_factory()
    try:
        yield session
        await commit_session(session)
    except Exception:
        session.info.pop(AFTER_COMMIT_KEY, None)
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """
    Create all database tables.

    WARNING: This is for development only. In production, use Alembic
    migrations to manage schema changes.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """
    Close all database connections.

    Should be called during application shutdown.
    """
    await engine.dispose()


async def check_db_health() -> bool:
    """
    Check database connectivity for health checks.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
