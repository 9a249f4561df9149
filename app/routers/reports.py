"""
Report API endpoints.
This module provides endpoints for managing report definitions, running them
against the caller's tenant and reading execution history and trends.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import (
    get_blob_store,
    get_tenant_context,
    get_tenant_db,
    get_user_id,
    get_user_role,
    require_report_manager,
)
from app.core.exceptions import (
    ExecutionNotFoundError,
    PermissionDeniedError,
    QueryExecutionError,
    ReportDefinitionNotFoundError,
    UnsupportedExportFormatError,
)
from app.core.logging import logger
from app.core.storage import BlobStore
from app.db.session import get_db
from app.schemas.report import (
    CompareReportRequest,
    ExecuteReportRequest,
    ReportDefinition,
    ReportDefinitionCreate,
    ReportExecution,
    ReportExecutionResult,
    TrendPoint,
)
from app.schemas.tenant import TenantContext
from app.services.report import ReportService
from app.services.snapshot import SnapshotService

router = APIRouter()


async def _get_definition_or_404(db: AsyncSession, report_id: UUID, tenant_id: UUID):
    definition = await ReportService.get_definition(db, report_id, tenant_id)
    if not definition:
        logger.warning(f"Report definition not found: {report_id}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report definition not found",
        )
    return definition


async def _run_definition(
    db: AsyncSession,
    tenant: TenantContext,
    report_id: UUID,
    parameters: Dict[str, Any],
    user_id: Optional[UUID],
    user_role: Optional[str],
) -> ReportExecutionResult:
    definition = await _get_definition_or_404(db, report_id, tenant.tenant_id)
    try:
        ReportService.ensure_role_permitted(definition, user_role)
        return await ReportService.execute_report(
            db, tenant.schema_name, definition, parameters, tenant.tenant_id, user_id
        )
    except PermissionDeniedError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    except QueryExecutionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Report query failed: {e}", "execution_id": str(e.execution_id)},
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/definitions", response_model=ReportDefinition, status_code=status.HTTP_201_CREATED)
async def create_report_definition(
    definition_in: ReportDefinitionCreate,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_user_id),
    manager_role: str = Depends(require_report_manager),
) -> ReportDefinition:
    """
    Create a report definition.

    A definition without ``tenant_id`` is available to every tenant. Its
    query template runs verbatim, so only report managers may create one.
    """
    logger.info(f"Report definition creation requested: {definition_in.name}")
    try:
        return await ReportService.create_definition(db, definition_in, user_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/definitions", response_model=List[ReportDefinition])
async def list_report_definitions(
    report_type: Optional[str] = Query(None, description="Filter by report type"),
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> List[ReportDefinition]:
    return await ReportService.list_definitions(db, tenant.tenant_id, report_type)


@router.get("/definitions/{report_id}", response_model=ReportDefinition)
async def get_report_definition(
    report_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> ReportDefinition:
    return await _get_definition_or_404(db, report_id, tenant.tenant_id)


@router.delete("/definitions/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_report_definition(
    report_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    manager_role: str = Depends(require_report_manager),
) -> None:
    try:
        await ReportService.deactivate_definition(db, report_id, tenant.tenant_id)
    except ReportDefinitionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report definition not found",
        )


@router.post("/definitions/{report_id}/execute", response_model=ReportExecutionResult)
async def execute_report_definition(
    report_id: UUID,
    request: ExecuteReportRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
    user_role: Optional[str] = Depends(get_user_role),
    blob_store: BlobStore = Depends(get_blob_store),
) -> ReportExecutionResult:
    """
    Run a report definition against the caller's tenant.

    With ``export_format`` set, the result is also stored as a file and its
    URL returned as ``export_url``.
    """
    logger.info(f"Report {report_id} execution requested for tenant {tenant.tenant_id}")
    result = await _run_definition(db, tenant, report_id, request.parameters, user_id, user_role)

    if request.export_format:
        try:
            result.export_url = await ReportService.export_execution(
                db, result, request.export_format, blob_store, tenant.tenant_id
            )
        except UnsupportedExportFormatError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return result


@router.get("/definitions/{report_id}/trends", response_model=List[TrendPoint])
async def get_report_trends(
    report_id: UUID,
    days: int = Query(settings.reports.snapshot_trend_days, ge=1, le=365),
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> List[Dict[str, Any]]:
    return await SnapshotService.get_historical_trend(db, tenant.tenant_id, report_id, days)


@router.post("/definitions/{report_id}/compare", response_model=Dict[str, Any])
async def compare_report_with_history(
    report_id: UUID,
    request: CompareReportRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_tenant_db),
    user_id: Optional[UUID] = Depends(get_user_id),
    user_role: Optional[str] = Depends(get_user_role),
) -> Dict[str, Any]:
    """Run a report and compare its metrics with the most recent earlier snapshot."""
    result = await _run_definition(db, tenant, report_id, request.parameters, user_id, user_role)
    comparison = await SnapshotService.compare_with_history(
        db, tenant.tenant_id, report_id, result.data, request.comparison_days
    )
    return {"current": result.model_dump(mode="json"), "comparison": comparison}


@router.get("/executions", response_model=List[ReportExecution])
async def list_report_executions(
    report_definition_id: Optional[UUID] = Query(None, description="Filter by report definition"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> List[ReportExecution]:
    return await ReportService.list_executions(db, tenant.tenant_id, report_definition_id, skip, limit)


@router.get("/executions/{execution_id}", response_model=ReportExecution)
async def get_report_execution(
    execution_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> ReportExecution:
    try:
        return await ReportService.get_execution(db, execution_id, tenant.tenant_id)
    except ExecutionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report execution not found",
        )
