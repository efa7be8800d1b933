"""Database connection and session management.

This module provides async database connection management using SQLAlchemy
with asyncpg for PostgreSQL (aiosqlite for local SQLite files). It includes
engine creation, session factories and the transactional session helper used
by the pipeline store.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ..config import config
from . import Base


logger = logging.getLogger(__name__)

_SUPPORTED_PREFIXES = ("postgresql+asyncpg://", "sqlite+aiosqlite://")


def normalize_database_url(database_url: str) -> str:
    """Map a plain database URL onto its async driver.

    Args:
        database_url: URL as configured, e.g. ``postgresql://...``.

    Returns:
        URL using the asyncpg or aiosqlite driver.

    Raises:
        ValueError: If the URL uses an unsupported scheme.
    """
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    elif database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if not database_url.startswith(_SUPPORTED_PREFIXES):
        raise ValueError(
            "DATABASE_URL must start with 'postgresql://', 'postgresql+asyncpg://', "
            "'sqlite://' or 'sqlite+aiosqlite://'"
        )
    return database_url


class DatabaseManager:
    """Manages async database connections and sessions.

    This class provides a singleton-like pattern for database engine
    management, created once at process start.

    Attributes:
        _engine: The async SQLAlchemy engine instance.
        _session_factory: Factory for creating async sessions.
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def get_database_url(cls) -> str:
        """The configured ``DATABASE_URL`` with an async driver.

        Raises:
            ConfigError: If DATABASE_URL is not set.
        """
        config.validate_for_database()
        return normalize_database_url(config.DATABASE_URL)

    @classmethod
    async def get_engine(cls) -> AsyncEngine:
        """Get or create the async database engine.

        Returns:
            AsyncEngine: The SQLAlchemy async engine.
        """
        if cls._engine is None:
            database_url = cls.get_database_url()
            echo = os.getenv("DATABASE_ECHO", "").lower() == "true"

            if database_url.startswith("sqlite"):
                cls._engine = create_async_engine(database_url, echo=echo)
            else:
                cls._engine = create_async_engine(
                    database_url,
                    pool_recycle=3600,  # Recycle connections after 1 hour
                    echo=echo,
                    **config.get_database_connection_args(),
                )

            logger.info("Database engine created successfully")

        return cls._engine

    @classmethod
    async def get_session_factory(cls) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory.

        Returns:
            async_sessionmaker: Factory for creating AsyncSession instances.
        """
        if cls._session_factory is None:
            engine = await cls.get_engine()
            cls._session_factory = create_session_factory(engine)

        return cls._session_factory

    @classmethod
    async def create_tables(cls) -> None:
        """Create all database tables defined in the models."""
        engine = await cls.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    @classmethod
    async def close(cls) -> None:
        """Close the database engine and release all connections."""
        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            logger.info("Database engine closed")


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory used throughout the pipeline."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def get_db_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open a transactional session.

    The session is committed on success and rolled back on exception.

    Args:
        session_factory: Factory to open the session from. Defaults to the
            process-wide factory managed by ``DatabaseManager``.

    Yields:
        AsyncSession: An async database session.

    Example:
        async with get_db_session(factory) as session:
            lead = await session.get(Lead, lead_id)
            lead.enrichment_status = EnrichmentStatus.ENRICHING
    """
    if session_factory is None:
        session_factory = await DatabaseManager.get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def create_test_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Engine without pooling, so each test database closes cleanly.

    Args:
        database_url: Database URL. Defaults to the configured one.
    """
    if database_url is None:
        database_url = DatabaseManager.get_database_url()
    else:
        database_url = normalize_database_url(database_url)

    return create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )
