"""
Shared schema initialization.

Creates the ``shared`` schema and the tables every tenant's reports are
recorded in. Tenant schemas are created separately by tenant provisioning.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.logging import logger
from app.models.init import Base, SHARED_SCHEMA


async def create_shared_schema(engine: AsyncEngine) -> None:
    """Create the shared schema and its tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SHARED_SCHEMA}"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Shared schema '{SHARED_SCHEMA}' is ready")


async def drop_shared_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {SHARED_SCHEMA} CASCADE"))
    logger.warning(f"Shared schema '{SHARED_SCHEMA}' dropped")
