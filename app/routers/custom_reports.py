"""
Custom report API endpoints.
This module provides CRUD endpoints for user-built reports and runs them
against the caller's tenant.
"""
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import TableExistenceCache
from app.core.deps import get_table_cache, get_tenant_context, get_tenant_db, get_user_id, get_user_role
from app.core.exceptions import CustomReportNotFoundError, PermissionDeniedError, QueryExecutionError
from app.core.logging import logger
from app.schemas.report import (
    CustomReport,
    CustomReportCreate,
    CustomReportSpec,
    CustomReportUpdate,
    ReportExecutionResult,
)
from app.schemas.tenant import TenantContext
from app.services.custom_report import CustomReportService
from app.services.report import ReportService

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Custom report not found",
    )


def _forbidden(error: PermissionDeniedError) -> HTTPException:
    logger.warning(str(error))
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


@router.post("/", response_model=CustomReport, status_code=status.HTTP_201_CREATED)
async def create_custom_report(
    report_in: CustomReportCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
    user_role: Optional[str] = Depends(get_user_role),
    cache: Optional[TableExistenceCache] = Depends(get_table_cache),
) -> CustomReport:
    logger.info(f"Custom report creation requested for tenant {tenant.tenant_id}")
    try:
        return await CustomReportService.create(
            db, tenant.schema_name, tenant.tenant_id, report_in, user_id, cache, user_role
        )
    except PermissionDeniedError as e:
        raise _forbidden(e)
    except ValueError as e:
        logger.warning(f"Invalid custom report: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/preview", response_model=Dict[str, str])
async def preview_custom_report_sql(
    spec: CustomReportSpec,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_role: Optional[str] = Depends(get_user_role),
    cache: Optional[TableExistenceCache] = Depends(get_table_cache),
) -> Dict[str, str]:
    """Compile a specification without saving or running it."""
    try:
        trusted = CustomReportService.authorize_joins(spec, user_role)
        sql = await CustomReportService.validate_spec(db, tenant.schema_name, trusted, cache)
    except PermissionDeniedError as e:
        raise _forbidden(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"sql": sql}


@router.get("/", response_model=List[CustomReport])
async def list_custom_reports(
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
) -> List[CustomReport]:
    return await CustomReportService.list_for_tenant(db, tenant.tenant_id, user_id)


@router.get("/{custom_report_id}", response_model=CustomReport)
async def get_custom_report(
    custom_report_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
) -> CustomReport:
    custom_report = await CustomReportService.get(db, custom_report_id, tenant.tenant_id, user_id)
    if not custom_report:
        raise _not_found()
    return custom_report


@router.patch("/{custom_report_id}", response_model=CustomReport)
async def update_custom_report(
    custom_report_id: UUID,
    report_in: CustomReportUpdate,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
    cache: Optional[TableExistenceCache] = Depends(get_table_cache),
) -> CustomReport:
    try:
        return await CustomReportService.update(
            db, tenant.schema_name, tenant.tenant_id, custom_report_id, report_in, cache, user_id
        )
    except CustomReportNotFoundError:
        raise _not_found()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{custom_report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_custom_report(
    custom_report_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
) -> None:
    try:
        await CustomReportService.delete(db, tenant.tenant_id, custom_report_id, user_id)
    except CustomReportNotFoundError:
        raise _not_found()


@router.post("/{custom_report_id}/execute", response_model=ReportExecutionResult)
async def execute_custom_report(
    custom_report_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
) -> ReportExecutionResult:
    logger.info(f"Custom report {custom_report_id} execution requested for tenant {tenant.tenant_id}")
    try:
        return await ReportService.execute_custom_report(
            db, tenant.schema_name, tenant.tenant_id, custom_report_id, user_id
        )
    except CustomReportNotFoundError:
        raise _not_found()
    except QueryExecutionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Report query failed: {e}", "execution_id": str(e.execution_id)},
        )
