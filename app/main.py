"""
Main application entry point.

This module initializes the FastAPI application and includes all routers.
"""

from fastapi import FastAPI

from app.core.cache import RedisTableCache, build_table_cache
from app.core.config import settings
from app.core.logging import logger
from app.core.middleware import RequestContextMiddleware
from app.core.storage import HttpBlobStore, build_blob_store
from app.db.init_db import create_shared_schema
from app.db.session import engine
from app.routers.custom_reports import router as custom_reports_router
from app.routers.health import router as health_router
from app.routers.reports import router as reports_router
from app.routers.scheduled_reports import router as scheduled_reports_router
from app.routers.tenants import router as tenants_router


app = FastAPI(
    title=settings.api.title,
    description=settings.api.description,
    version=settings.api.version,
    debug=settings.debug,
)

app.add_middleware(RequestContextMiddleware)

# Include routers with /api prefix
app.include_router(
    health_router,
    prefix="/api/health",
    tags=["health"],
)
app.include_router(
    tenants_router,
    prefix="/api/tenants",
    tags=["tenants"],
)
app.include_router(
    reports_router,
    prefix="/api/reports",
    tags=["reports"],
)
app.include_router(
    custom_reports_router,
    prefix="/api/custom-reports",
    tags=["custom-reports"],
)
app.include_router(
    scheduled_reports_router,
    prefix="/api/scheduled-reports",
    tags=["scheduled-reports"],
)


@app.on_event("startup")
async def startup_event():
    """Actions to run on application startup."""
    logger.info(f"Starting {settings.api.title}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Database URL: {settings.database.url[:20]}...")

    # === Table cache ===
    app.state.table_cache = build_table_cache(settings) if settings.cache.enabled else None
    if app.state.table_cache is None:
        logger.warning("Table cache is disabled; every existence check hits the database")
    elif isinstance(app.state.table_cache, RedisTableCache):
        if not await app.state.table_cache.ping():
            logger.error("Failed to connect to Redis. Table lookups will fall through to the database.")

    # === Export storage ===
    app.state.blob_store = build_blob_store(settings)

    # === Shared schema ===
    if settings.database.auto_create_shared_schema:
        await create_shared_schema(engine)

    logger.info(f"API Docs available at: http://{settings.api.host}:{settings.api.port}/docs")


@app.on_event("shutdown")
async def shutdown_event():
    """Actions to run on application shutdown."""
    logger.info(f"Shutting down {settings.api.title}")
    table_cache = getattr(app.state, "table_cache", None)
    if isinstance(table_cache, RedisTableCache):
        await table_cache.aclose()
    blob_store = getattr(app.state, "blob_store", None)
    if isinstance(blob_store, HttpBlobStore):
        await blob_store.aclose()
    await engine.dispose()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.api.title,
        "version": settings.api.version,
        "docs": "/docs",
    }
