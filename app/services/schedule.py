"""
Service layer for scheduled reports.

``calculate_next_run`` resolves when a recurring report runs next. It is a
pure function; callers persist the value it returns. Running due reports is
left to an external trigger (cron job, queue consumer or the ``process``
endpoint), which calls ``ScheduledReportService.process_due_reports``.
"""

import calendar
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    InvalidScheduleError,
    ReportDefinitionNotFoundError,
    ScheduledReportNotFoundError,
)
from app.core.logging import logger
from app.core.storage import BlobStore
from app.db.tenant import tenant_session
from app.models.scheduled_report import ScheduledReport
from app.schemas.schedule import ScheduledReportCreate, ScheduledReportUpdate, ScheduledRunResult
from app.services.report import ReportService
from app.services.tenant import TenantService

DEFAULT_TIME = "09:00"
DEFAULT_CRON = "0 9 * * *"
DEFAULT_DAY_OF_WEEK = 1  # Monday
DEFAULT_DAY_OF_MONTH = 1

TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def _parse_time(value: Optional[str]) -> Tuple[int, int]:
    match = TIME_PATTERN.match(value or DEFAULT_TIME)
    if not match:
        raise InvalidScheduleError(f"Invalid schedule time: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidScheduleError(f"Invalid schedule time: {value!r}")
    return hours, minutes


def _parse_cron(expression: Optional[str]) -> Tuple[int, int]:
    """Read the minute and hour fields of a cron expression."""
    parts = (expression or DEFAULT_CRON).split()
    if len(parts) < 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise InvalidScheduleError(f"Unsupported cron expression: {expression!r}")
    minutes, hours = int(parts[0]), int(parts[1])
    if hours > 23 or minutes > 59:
        raise InvalidScheduleError(f"Unsupported cron expression: {expression!r}")
    return hours, minutes


def _at(day: datetime, hours: int, minutes: int) -> datetime:
    return day.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def _next_daily(now: datetime, hours: int, minutes: int) -> datetime:
    next_run = _at(now, hours, minutes)
    if next_run <= now:
        next_run += timedelta(days=1)
    return next_run


def _month_day(year: int, month: int, day_of_month: int, template: datetime) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return template.replace(year=year, month=month, day=min(day_of_month, last_day))


def _config_value(config: Mapping[str, Any], key: str, default: Any) -> Any:
    value = config.get(key)
    return default if value is None else value


def calculate_next_run(
    schedule_type: str,
    schedule_config: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Compute the next run of a recurring report.

    Args:
        schedule_type: ``daily``, ``weekly``, ``monthly`` or ``custom``
        schedule_config: ``time`` (HH:MM), ``day_of_week`` (0 = Sunday),
            ``day_of_month`` (1-31) or ``cron`` (minute and hour fields only)
        now: Reference time; defaults to the current time in the report timezone

    Returns:
        A timestamp strictly after ``now``

    Raises:
        InvalidScheduleError: If the type is unknown or the config is malformed
    """
    config = schedule_config or {}
    now = now or datetime.now(ZoneInfo(settings.reports.timezone))

    if schedule_type == "daily":
        hours, minutes = _parse_time(config.get("time"))
        return _next_daily(now, hours, minutes)

    if schedule_type == "weekly":
        hours, minutes = _parse_time(config.get("time"))
        day_of_week = int(_config_value(config, "day_of_week", DEFAULT_DAY_OF_WEEK))
        if not 0 <= day_of_week <= 6:
            raise InvalidScheduleError(f"Invalid day_of_week: {day_of_week}")
        # datetime.weekday() counts from Monday
        current_day = (now.weekday() + 1) % 7
        days_until_next = (day_of_week - current_day) % 7 or 7
        return _at(now + timedelta(days=days_until_next), hours, minutes)

    if schedule_type == "monthly":
        hours, minutes = _parse_time(config.get("time"))
        day_of_month = int(_config_value(config, "day_of_month", DEFAULT_DAY_OF_MONTH))
        if not 1 <= day_of_month <= 31:
            raise InvalidScheduleError(f"Invalid day_of_month: {day_of_month}")
        slot = _at(now, hours, minutes)
        next_run = _month_day(now.year, now.month, day_of_month, slot)
        if next_run <= now:
            year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
            next_run = _month_day(year, month, day_of_month, slot.replace(day=1))
        return next_run

    if schedule_type == "custom":
        hours, minutes = _parse_cron(config.get("cron"))
        return _next_daily(now, hours, minutes)

    raise InvalidScheduleError(f"Unknown schedule type: {schedule_type}")


class ScheduledReportService:
    """Service class for scheduled report operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_id: UUID,
        schedule_in: ScheduledReportCreate,
        user_id: Optional[UUID] = None,
    ) -> ScheduledReport:
        definition = await ReportService.get_definition(db, schedule_in.report_definition_id, tenant_id)
        if definition is None:
            raise ReportDefinitionNotFoundError(
                f"Report definition not found: {schedule_in.report_definition_id}"
            )

        schedule_config = schedule_in.schedule_config.model_dump(exclude_none=True)
        next_run_at = calculate_next_run(schedule_in.schedule_type, schedule_config)

        scheduled = ScheduledReport(
            tenant_id=tenant_id,
            report_definition_id=schedule_in.report_definition_id,
            name=schedule_in.name,
            schedule_type=schedule_in.schedule_type,
            schedule_config=schedule_config,
            parameters=schedule_in.parameters,
            export_format=schedule_in.export_format,
            recipients=schedule_in.recipients,
            next_run_at=next_run_at,
            created_by=user_id,
        )
        db.add(scheduled)
        await db.commit()
        await db.refresh(scheduled)
        logger.info(f"Scheduled report {scheduled.id} created, next run at {next_run_at}")
        return scheduled

    @staticmethod
    async def get(db: AsyncSession, scheduled_id: UUID, tenant_id: Optional[UUID] = None) -> ScheduledReport:
        query = select(ScheduledReport).where(ScheduledReport.id == scheduled_id)
        if tenant_id:
            query = query.where(ScheduledReport.tenant_id == tenant_id)
        result = await db.execute(query)
        scheduled = result.scalars().first()
        if scheduled is None:
            raise ScheduledReportNotFoundError(f"Scheduled report not found: {scheduled_id}")
        return scheduled

    @staticmethod
    async def list_for_tenant(db: AsyncSession, tenant_id: UUID) -> List[ScheduledReport]:
        result = await db.execute(
            select(ScheduledReport)
            .where(ScheduledReport.tenant_id == tenant_id)
            .order_by(ScheduledReport.next_run_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def update(
        db: AsyncSession,
        tenant_id: UUID,
        scheduled_id: UUID,
        schedule_in: ScheduledReportUpdate,
    ) -> ScheduledReport:
        scheduled = await ScheduledReportService.get(db, scheduled_id, tenant_id)
        update_data = schedule_in.model_dump(exclude_unset=True)
        if "schedule_config" in update_data and schedule_in.schedule_config is not None:
            update_data["schedule_config"] = schedule_in.schedule_config.model_dump(exclude_none=True)

        for key, value in update_data.items():
            setattr(scheduled, key, value)

        if "schedule_type" in update_data or "schedule_config" in update_data:
            scheduled.next_run_at = calculate_next_run(scheduled.schedule_type, scheduled.schedule_config)

        await db.commit()
        await db.refresh(scheduled)
        logger.info(f"Updated scheduled report {scheduled_id}")
        return scheduled

    @staticmethod
    async def delete(db: AsyncSession, tenant_id: UUID, scheduled_id: UUID) -> None:
        scheduled = await ScheduledReportService.get(db, scheduled_id, tenant_id)
        await db.delete(scheduled)
        await db.commit()
        logger.info(f"Deleted scheduled report {scheduled_id}")

    @staticmethod
    async def get_ready_to_run(
        db: AsyncSession,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[ScheduledReport]:
        """Active scheduled reports whose ``next_run_at`` has passed, oldest first."""
        now = now or datetime.now(timezone.utc)
        result = await db.execute(
            select(ScheduledReport)
            .where(
                ScheduledReport.is_active.is_(True),
                ScheduledReport.next_run_at <= now,
            )
            .order_by(ScheduledReport.next_run_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def update_next_run(
        db: AsyncSession,
        scheduled_id: UUID,
        now: Optional[datetime] = None,
    ) -> ScheduledReport:
        """Record a run and advance ``next_run_at``."""
        scheduled = await ScheduledReportService.get(db, scheduled_id)
        scheduled.last_run_at = now or datetime.now(timezone.utc)
        scheduled.next_run_at = calculate_next_run(scheduled.schedule_type, scheduled.schedule_config, now)
        await db.commit()
        return scheduled

    @staticmethod
    async def run_scheduled(
        engine: AsyncEngine,
        db: AsyncSession,
        scheduled: ScheduledReport,
        blob_store: BlobStore,
    ) -> ScheduledRunResult:
        """Run one scheduled report in its tenant's schema and export the result."""
        schema_name = await TenantService.resolve_schema(db, scheduled.tenant_id)
        definition = await ReportService.get_definition(db, scheduled.report_definition_id, scheduled.tenant_id)
        if definition is None:
            raise ReportDefinitionNotFoundError(
                f"Report definition not found: {scheduled.report_definition_id}"
            )

        async with tenant_session(engine, schema_name) as tenant_db:
            result = await ReportService.execute_report(
                tenant_db,
                schema_name,
                definition,
                scheduled.parameters,
                tenant_id=scheduled.tenant_id,
                user_id=scheduled.created_by,
            )
            await ReportService.export_execution(
                tenant_db, result, scheduled.export_format, blob_store, scheduled.tenant_id
            )
        return ScheduledRunResult(id=scheduled.id, status="success", execution_id=result.execution_id)

    @staticmethod
    async def process_due_reports(
        engine: AsyncEngine,
        blob_store: BlobStore,
        limit: Optional[int] = None,
    ) -> List[ScheduledRunResult]:
        """
        Run every scheduled report that is due.

        A failing report is recorded as failed and its schedule still
        advances; it never stops the rest of the batch.
        """
        limit = limit or settings.reports.scheduler_batch_limit
        results: List[ScheduledRunResult] = []

        async with AsyncSession(engine, expire_on_commit=False) as db:
            due = await ScheduledReportService.get_ready_to_run(db, limit)
            logger.info(f"Processing {len(due)} due scheduled reports")

            # A rollback expires loaded rows, so each row is reloaded by id
            for scheduled_id in [scheduled.id for scheduled in due]:
                scheduled = await ScheduledReportService.get(db, scheduled_id)
                try:
                    outcome = await ScheduledReportService.run_scheduled(engine, db, scheduled, blob_store)
                except Exception as e:
                    logger.error(f"Scheduled report {scheduled_id} failed: {e}")
                    await db.rollback()
                    outcome = ScheduledRunResult(
                        id=scheduled_id,
                        status="failed",
                        execution_id=getattr(e, "execution_id", None),
                        error=str(e),
                    )
                await ScheduledReportService.update_next_run(db, scheduled_id)
                results.append(outcome)

        return results

    @staticmethod
    def summarize(results: List[ScheduledRunResult]) -> Dict[str, int]:
        return {
            "processed": len(results),
            "succeeded": sum(1 for r in results if r.status == "success"),
            "failed": sum(1 for r in results if r.status == "failed"),
        }
