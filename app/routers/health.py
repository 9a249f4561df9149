"""
Health check endpoints.

This module provides endpoints for checking the health of the application,
including database connectivity and the table cache.
"""

from typing import Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from app.core.cache import RedisTableCache, TableExistenceCache
from app.core.deps import get_table_cache
from app.core.logging import logger
from app.db.session import get_db

router = APIRouter()


@router.get("/", response_model=Dict[str, str])
async def health_check() -> Dict[str, str]:
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@router.get("/db", response_model=Dict[str, str])
async def database_health_check(
    db: AsyncSession = Depends(get_db)
) -> Dict[str, str]:
    """
    Database health check endpoint.

    Reports the search path of the pooled connection it borrows, which must
    always be the default one outside a tenant scope.
    """
    logger.debug("Database health check endpoint called")

    try:
        result = await db.execute(text("SHOW search_path"))
        search_path = str(result.scalar())
        return {"status": "ok", "database": "connected", "search_path": search_path}
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return {"status": "error", "database": f"connection_error: {str(e)}"}


@router.get("/cache", response_model=Dict[str, str])
async def cache_health_check(
    cache: Optional[TableExistenceCache] = Depends(get_table_cache),
) -> Dict[str, str]:
    if cache is None:
        return {"status": "ok", "cache": "disabled"}
    if isinstance(cache, RedisTableCache):
        connected = await cache.ping()
        return {"status": "ok" if connected else "degraded", "cache": "redis"}
    return {"status": "ok", "cache": "memory"}
