"""
Dependencies for FastAPI endpoints.

This module provides dependencies for tenant resolution, tenant-scoped
sessions and the collaborators built at startup (table cache, blob store).
"""

from typing import AsyncGenerator, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.cache import TableExistenceCache
from app.core.config import settings
from app.core.exceptions import ConnectionLifecycleError, TenantNotFoundError, TenantNotReadyError
from app.core.logging import logger
from app.core.storage import BlobStore
from app.db.session import get_db, get_engine
from app.db.tenant import tenant_session
from app.schemas.tenant import TenantContext
from app.services.tenant import TenantService


async def get_tenant_context(
    x_tenant_id: UUID = Header(..., description="Tenant the request acts for"),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """
    Resolve the ``X-Tenant-ID`` header to a ready tenant.

    Raises:
        HTTPException: 404 for an unknown tenant, 409 for a tenant whose
            schema is not provisioned
    """
    try:
        return await TenantService.resolve_context(db, x_tenant_id)
    except TenantNotFoundError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    except TenantNotReadyError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


async def get_tenant_db(
    tenant: TenantContext = Depends(get_tenant_context),
    engine: AsyncEngine = Depends(get_engine),
) -> AsyncGenerator[AsyncSession, None]:
    """Session whose connection is scoped to the request's tenant schema."""
    try:
        async with tenant_session(engine, tenant.schema_name) as session:
            yield session
    except ConnectionLifecycleError as e:
        logger.error(f"Tenant connection error for {tenant.schema_name}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tenant database connection unavailable",
        )


def get_user_id(
    x_user_id: Optional[UUID] = Header(None, description="User performing the request"),
) -> Optional[UUID]:
    return x_user_id


def get_user_role(
    x_user_role: Optional[str] = Header(None, description="Role of the user performing the request"),
) -> Optional[str]:
    return x_user_role


def require_report_manager(role: Optional[str] = Depends(get_user_role)) -> str:
    """Only report managers may author SQL that runs verbatim."""
    if role not in settings.reports.manager_roles:
        logger.warning(f"Role {role!r} may not manage report definitions")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return role


def get_table_cache(request: Request) -> Optional[TableExistenceCache]:
    return getattr(request.app.state, "table_cache", None)


def get_blob_store(request: Request) -> BlobStore:
    blob_store = getattr(request.app.state, "blob_store", None)
    if blob_store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Export storage is not configured",
        )
    return blob_store
