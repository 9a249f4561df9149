"""
Scheduled report API endpoints.
This module provides CRUD endpoints for recurring reports and the trigger
endpoint an external scheduler calls to run the ones that are due.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.deps import get_blob_store, get_tenant_context, get_user_id
from app.core.exceptions import ReportDefinitionNotFoundError, ScheduledReportNotFoundError
from app.core.logging import logger
from app.core.storage import BlobStore
from app.db.session import get_db, get_engine
from app.schemas.schedule import ScheduledReport, ScheduledReportCreate, ScheduledReportUpdate
from app.schemas.tenant import TenantContext
from app.services.schedule import ScheduledReportService

router = APIRouter()


@router.post("/", response_model=ScheduledReport, status_code=status.HTTP_201_CREATED)
async def create_scheduled_report(
    schedule_in: ScheduledReportCreate,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_user_id),
) -> ScheduledReport:
    logger.info(f"Scheduled report creation requested for tenant {tenant.tenant_id}")
    try:
        return await ScheduledReportService.create(db, tenant.tenant_id, schedule_in, user_id)
    except ReportDefinitionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report definition not found",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/", response_model=List[ScheduledReport])
async def list_scheduled_reports(
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> List[ScheduledReport]:
    return await ScheduledReportService.list_for_tenant(db, tenant.tenant_id)


@router.patch("/{scheduled_id}", response_model=ScheduledReport)
async def update_scheduled_report(
    scheduled_id: UUID,
    schedule_in: ScheduledReportUpdate,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> ScheduledReport:
    try:
        return await ScheduledReportService.update(db, tenant.tenant_id, scheduled_id, schedule_in)
    except ScheduledReportNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scheduled report not found",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{scheduled_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_scheduled_report(
    scheduled_id: UUID,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await ScheduledReportService.delete(db, tenant.tenant_id, scheduled_id)
    except ScheduledReportNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Scheduled report not found",
        )


@router.post("/process", response_model=Dict[str, Any])
async def process_due_reports(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Maximum reports to run"),
    engine: AsyncEngine = Depends(get_engine),
    blob_store: BlobStore = Depends(get_blob_store),
) -> Dict[str, Any]:
    """Run every scheduled report that is due; called by an external scheduler."""
    results = await ScheduledReportService.process_due_reports(engine, blob_store, limit)
    summary = ScheduledReportService.summarize(results)
    logger.info(f"Scheduled report batch finished: {summary}")
    return {**summary, "results": [r.model_dump(mode="json") for r in results]}
