"""
Database session management.

This module provides utilities for creating and managing database sessions
using async SQLAlchemy with PostgreSQL. A single engine (and therefore a
single connection pool) is shared by every tenant; tenant scoping happens
per borrowed connection in ``app.db.tenant``.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.logging import logger

# Create async engine
engine = create_async_engine(
    settings.database.url,
    echo=settings.debug,
    pool_size=settings.database.pool_size,
    max_overflow=settings.database.max_overflow,
    pool_pre_ping=True,
    pool_recycle=settings.database.pool_recycle,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session for shared-schema work.

    This function is used as a dependency in FastAPI endpoints to provide
    a database session. It ensures the session is properly closed after use.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()


def get_engine() -> AsyncEngine:
    """Return the shared engine; overridden in tests."""
    return engine
