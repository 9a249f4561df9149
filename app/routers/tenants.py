"""
Tenant API endpoints.
This module provides endpoints for provisioning schools and reading the
tenant directory.
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.logging import logger
from app.db.session import get_db, get_engine
from app.schemas.tenant import Tenant, TenantCreate
from app.services.tenant import TenantService, create_schema_slug

router = APIRouter()


@router.post("/", response_model=Tenant, status_code=status.HTTP_201_CREATED)
async def provision_tenant(
    tenant_in: TenantCreate,
    db: AsyncSession = Depends(get_db),
    engine: AsyncEngine = Depends(get_engine),
) -> Tenant:
    """
    Create a tenant and its schema.

    The schema name defaults to a slug of the school name.
    """
    schema_name = tenant_in.schema_name or create_schema_slug(tenant_in.name)
    logger.info(f"Tenant provisioning requested: {tenant_in.name} ({schema_name})")

    existing = await TenantService.get_by_schema_name(db, schema_name)
    if existing:
        logger.warning(f"Schema already in use: {schema_name}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Schema name already in use",
        )

    try:
        return await TenantService.provision(engine, db, tenant_in.name, schema_name, tenant_in.domain)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error provisioning tenant {schema_name}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to provision tenant: {str(e)}",
        )


@router.get("/", response_model=List[Tenant])
async def list_tenants(
    tenant_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    db: AsyncSession = Depends(get_db),
) -> List[Tenant]:
    return await TenantService.list_tenants(db, tenant_status)


@router.get("/{tenant_id}", response_model=Tenant)
async def get_tenant(
    tenant_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    tenant = await TenantService.get_by_id(db, tenant_id)
    if not tenant:
        logger.warning(f"Tenant not found: {tenant_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )
    return tenant
