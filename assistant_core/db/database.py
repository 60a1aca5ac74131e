"""
Database connection and session management for Assistant Core.

This module is the SINGLE source of truth for all database operations:
- Engine and session factory management (singletons)
- FastAPI dependency injection for sessions
- Application lifecycle hooks (startup/shutdown)
- Pessimistic row locks for tool execution and thread coordination
- Health checks and table management for tests and development

All other modules should import database functions from here or from
assistant_core.db, never construct engines themselves.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Type, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from ..config import Settings, get_settings

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")

# Global singletons
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_engine(database_url: str, settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Create an async engine for a database URL.

    PostgreSQL gets a real pool in production and session-level timeouts;
    in-memory SQLite shares one connection so every session sees the same data.
    """
    settings = settings or get_settings()

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.endswith("sqlite+aiosqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(database_url, echo=settings.database_echo, **kwargs)

    if settings.app_env == "production":
        pool_kwargs = {
            "pool_size": settings.database_pool_size,
            "max_overflow": 10,
            "pool_timeout": settings.database_pool_timeout,
            "pool_recycle": 1800,  # Recycle connections after 30 minutes
            "pool_pre_ping": True,
        }
    else:
        # Development/Test: No pooling for easier debugging
        pool_kwargs = {"poolclass": NullPool}

    return create_async_engine(
        database_url,
        echo=settings.database_echo,
        connect_args={
            # psycopg3 uses options parameter for server settings
            "options": (
                f"-c application_name={settings.app_name.replace(' ', '_')}-{settings.app_version} "
                "-c TimeZone=UTC "
                "-c lock_timeout=5000 "
                "-c idle_in_transaction_session_timeout=60000 "
                "-c statement_timeout=60000"
            ),
            "connect_timeout": 5,
        },
        **pool_kwargs,
    )


def get_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Get or create the global async SQLAlchemy engine."""
    global _engine

    if _engine is None:
        settings = settings or get_settings()
        _engine = build_engine(settings.database_url, settings)
        logger.info(
            "Database engine created",
            database_url=settings.database_url.split("@")[-1],  # Hide credentials
        )

    return _engine


def get_session_factory(
    settings: Optional[Settings] = None,
) -> async_sessionmaker[AsyncSession]:
    """Get or create the global async session factory."""
    global _session_factory

    if _session_factory is None:
        engine = get_engine(settings)
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Don't expire objects after commit
        )
        logger.info("Session factory created")

    return _session_factory


def configure_session_factory(
    session_factory: Optional[async_sessionmaker[AsyncSession]],
) -> None:
    """Install a session factory (tests bind one to their own engine)."""
    global _session_factory
    _session_factory = session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get async database session for FastAPI dependency injection.

    Does NOT auto-commit - caller must explicitly commit when needed.
    Ensures proper rollback on exceptions and cleanup.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def with_unit_of_work(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a session with automatic commit on success.

    Row locks taken inside the block are held until the commit.

    Yields:
        AsyncSession that commits on successful exit
    """
    session_factory = session_factory or get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def lock_row(
    session: AsyncSession, model: Type[ModelT], row_id: UUID
) -> Optional[ModelT]:
    """
    Load a row with SELECT ... FOR UPDATE.

    The lock is transaction scoped. populate_existing makes sure an identity-map
    copy loaded earlier in the session is refreshed with the locked row's state.
    SQLite ignores FOR UPDATE; its single writer serializes transactions instead.
    """
    stmt = (
        select(model)
        .where(model.id == row_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# Application Lifecycle Hooks
async def on_startup() -> None:
    """
    Initialize database on application startup.

    Schema changes go through Alembic in production; development and test
    environments create missing tables directly.
    """
    settings = get_settings()
    engine = get_engine(settings)

    if settings.app_env in ("development", "test"):
        await create_tables()

    logger.info("Database initialized", dialect=engine.dialect.name)


async def on_shutdown() -> None:
    """Dispose of the engine and connection pool."""
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        logger.info("Database engine disposed")
        _engine = None
        _session_factory = None


# Health & Observability
async def ping() -> float:
    """
    Test database connectivity and measure latency.

    Returns:
        Response time in milliseconds
    """
    engine = get_engine()
    start = time.time()

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    return (time.time() - start) * 1000


# Migration Support
async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all database tables (for testing/development).

    Should not be used in production - use Alembic migrations instead.
    """
    from .models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created")


async def drop_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Drop all database tables (for testing/development).

    WARNING: Destructive operation - only for test cleanup.
    """
    from .models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logger.info("Database tables dropped")


__all__ = [
    "build_engine",
    "configure_session_factory",
    "create_tables",
    "drop_tables",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "lock_row",
    "on_shutdown",
    "on_startup",
    "ping",
    "with_unit_of_work",
]
