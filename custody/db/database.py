"""
Custody - Database Configuration
=================================
Async SQLAlchemy engine and session factories.
PostgreSQL in production, SQLite (aiosqlite) for development and tests.

Request handlers get a session from ``get_db``. The audit trail writes
through its own factory (see ``SqlAuditStore``) so that an entry is
committed even when the request's transaction is rolled back.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from custody.config import settings

DATABASE_URL = settings.database_url


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an engine with pool settings for the URL's backend."""
    kwargs = {"echo": settings.debug}

    if url.startswith("postgresql"):
        kwargs.update({
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 1800,
        })
    elif "sqlite" in url:
        # aiosqlite connections cannot be shared across event loops
        kwargs.update({
            "poolclass": NullPool,
            "connect_args": {"check_same_thread": False},
        })

    return create_async_engine(url, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Transactional session for code outside a request (CLI commands).

    Commits on a clean exit, rolls back and re-raises otherwise.
    """
    async with (factory or AsyncSessionLocal)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: Optional[AsyncEngine] = None):
    """Create any missing tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    await engine.dispose()


async def check_db_health() -> dict:
    """
    Probe the database and the audit table.

    Returns:
        dict with connection status and the number of stored audit entries
    """
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT COUNT(*) FROM audit_logs"))
            audit_entries = result.scalar()

        return {
            "connected": True,
            "database_type": "postgresql" if "postgresql" in DATABASE_URL else "sqlite",
            "audit_entries": audit_entries,
        }

    except Exception as e:
        return {
            "connected": False,
            "error": str(e),
        }
