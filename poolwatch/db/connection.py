"""Database connection management for PoolWatch.

This module provides database connection management including:
- Engine and session factory creation
- Session management with commit/rollback
- Schema creation
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = structlog.get_logger(__name__)


class DatabaseConnection:
    """Manages database connections and sessions."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False
    ):
        """Initialize database connection.

        Args:
            database_url: Async SQLAlchemy URL, e.g. sqlite+aiosqlite:///path/poolwatch.db
            echo: Whether to echo SQL statements
        """
        self.database_url = database_url
        self._ensure_sqlite_directory()

        self.engine: AsyncEngine = create_async_engine(
            self.database_url,
            poolclass=NullPool,
            echo=echo,
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

        logger.info(
            "database_connection_initialized",
            database_url=make_url(self.database_url).render_as_string(hide_password=True),
            echo=echo
        )

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session that commits on success.

        Yields:
            AsyncSession: Database session

        Example:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                logger.error(
                    "database_session_error",
                    exc_info=True
                )
                raise

    async def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_ready")

    async def check_connection(self) -> bool:
        """Check if database connection is working.

        Returns:
            bool: True if connection is working, False otherwise
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.error(
                "database_connection_check_failed",
                exc_info=True
            )
            return False

    async def close(self) -> None:
        """Close all database connections."""
        await self.engine.dispose()
        logger.info("database_connections_closed")


async def init_database(database_url: str, echo: bool = False) -> DatabaseConnection:
    """Create a connection and make sure the schema exists.

    Args:
        database_url: Async SQLAlchemy URL
        echo: Whether to echo SQL statements

    Returns:
        DatabaseConnection: Ready to use connection
    """
    db = DatabaseConnection(database_url=database_url, echo=echo)
    await db.create_schema()
    return db
