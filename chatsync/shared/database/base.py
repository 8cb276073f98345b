"""Base database configuration and utilities for chatsync.

This module provides:
- SQLAlchemy async engine setup
- Base declarative model class
- Session scope helper used by the SQL document store
- Timestamp mixin
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import MetaData, TIMESTAMP
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


# Naming convention for database constraints
# This ensures consistent naming across all migrations
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = metadata


class TimestampMixin:
    """Mixin to add created_at and updated_at timestamps to models."""

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Global async engine and session factory
# These are initialized by the service on startup
async_engine: Optional[AsyncEngine] = None
async_session_factory: Optional[async_sessionmaker] = None


def init_db(database_url: str, **kwargs) -> async_sessionmaker:
    """Initialize the async database engine and session factory.

    Args:
        database_url: Async connection URL (``postgresql+asyncpg://...`` in
            production, ``sqlite+aiosqlite://`` in tests)
        **kwargs: Additional arguments passed to create_async_engine

    Returns:
        The session factory, also kept in ``async_session_factory``.
    """
    global async_engine, async_session_factory

    engine_kwargs = {"echo": kwargs.pop("echo", False), **kwargs}
    if not database_url.startswith("sqlite"):
        # SQLite uses a static pool, these only apply to real servers
        engine_kwargs.setdefault("pool_size", 20)
        engine_kwargs.setdefault("max_overflow", 10)
        engine_kwargs.setdefault("pool_pre_ping", True)  # Verify connections before using
        engine_kwargs.setdefault("pool_recycle", 3600)  # Recycle connections after 1 hour

    async_engine = create_async_engine(database_url, **engine_kwargs)

    async_session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return async_session_factory


async def create_tables() -> None:
    """Create every table known to ``Base`` (tests and local development).

    Production schemas are managed by alembic.
    """
    if async_engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with async_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker] = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session that commits on success and rolls back on error."""
    factory = factory or async_session_factory
    if factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Close the database engine and cleanup resources.

    Call this on application shutdown.
    """
    global async_engine, async_session_factory

    if async_engine:
        await async_engine.dispose()
        async_engine = None
        async_session_factory = None
