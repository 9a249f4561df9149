"""
Service layer for custom reports.

Custom reports are stored as declarative specifications and compiled to SQL
each time they run. A specification is compiled once on create and update
so that an invalid report is rejected before it is saved.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import TableExistenceCache
from app.core.config import settings
from app.core.exceptions import CustomReportNotFoundError, InvalidReportSpecError, PermissionDeniedError
from app.core.logging import logger
from app.db.sql import TrustedSqlFragment
from app.models.custom_report import CustomReport
from app.schemas.report import CustomReportCreate, CustomReportSpec, CustomReportUpdate
from app.services.query_compiler import compile_custom_report
from app.services.tenant import TenantService

SPEC_FIELDS = ("data_sources", "joins", "selected_columns", "filters", "group_by", "order_by")


def _with_trusted_joins(spec: CustomReportSpec) -> CustomReportSpec:
    if not spec.joins:
        return spec
    joins = [join.model_copy(update={"on": TrustedSqlFragment(join.on)}) for join in spec.joins]
    return spec.model_copy(update={"joins": joins})


class CustomReportService:
    """Service class for custom report operations."""

    @staticmethod
    def to_spec(custom_report: CustomReport) -> CustomReportSpec:
        """
        Rebuild the specification of a saved report.

        Joins are only ever saved through ``authorize_joins``, so their
        predicates come back trusted.
        """
        spec = CustomReportSpec.model_validate(
            {field: getattr(custom_report, field) for field in SPEC_FIELDS}
        )
        return _with_trusted_joins(spec)

    @staticmethod
    def authorize_joins(spec: CustomReportSpec, role: Optional[str]) -> CustomReportSpec:
        """
        Mark a request's join predicates as trusted SQL.

        Join predicates are spliced into queries verbatim, so only report
        managers may author them.

        Raises:
            PermissionDeniedError: If the spec has joins and ``role`` is not a
                report manager role
        """
        if spec.joins and role not in settings.reports.manager_roles:
            raise PermissionDeniedError(f"Role {role!r} may not author join predicates")
        return _with_trusted_joins(spec)

    @staticmethod
    async def validate_spec(
        db: AsyncSession,
        tenant_schema: str,
        spec: CustomReportSpec,
        cache: Optional[TableExistenceCache] = None,
    ) -> str:
        """
        Compile a specification and check that every table it reads exists.

        Returns:
            The compiled SQL

        Raises:
            InvalidReportSpecError: If the specification cannot be compiled or
                names a table the tenant schema does not have
        """
        sql = compile_custom_report(tenant_schema, spec)
        tables = list(spec.data_sources) + [join.table for join in spec.joins]
        for table in dict.fromkeys(tables):
            if not await TenantService.table_exists(db, tenant_schema, table, cache):
                raise InvalidReportSpecError(f"Table not found: {table}")
        return sql

    @staticmethod
    async def create(
        db: AsyncSession,
        tenant_schema: str,
        tenant_id: UUID,
        report_in: CustomReportCreate,
        user_id: Optional[UUID] = None,
        cache: Optional[TableExistenceCache] = None,
        role: Optional[str] = None,
    ) -> CustomReport:
        logger.info(f"Creating custom report '{report_in.name}' for tenant {tenant_id}")
        spec = CustomReportService.authorize_joins(report_in, role)
        await CustomReportService.validate_spec(db, tenant_schema, spec, cache)

        custom_report = CustomReport(
            tenant_id=tenant_id,
            created_by=user_id,
            **report_in.model_dump(),
        )
        db.add(custom_report)
        await db.commit()
        await db.refresh(custom_report)
        return custom_report

    @staticmethod
    async def get(
        db: AsyncSession,
        custom_report_id: UUID,
        tenant_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[CustomReport]:
        """
        Get a custom report visible to ``user_id`` within a tenant.

        Without a user id every report of the tenant is visible; with one,
        only the user's own reports and shared reports are.
        """
        query = select(CustomReport).where(
            CustomReport.id == custom_report_id,
            CustomReport.tenant_id == tenant_id,
        )
        if user_id:
            query = query.where(or_(CustomReport.created_by == user_id, CustomReport.is_shared.is_(True)))
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_or_raise(
        db: AsyncSession,
        custom_report_id: UUID,
        tenant_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> CustomReport:
        custom_report = await CustomReportService.get(db, custom_report_id, tenant_id, user_id)
        if custom_report is None:
            raise CustomReportNotFoundError(f"Custom report not found: {custom_report_id}")
        return custom_report

    @staticmethod
    async def get_owned(
        db: AsyncSession,
        custom_report_id: UUID,
        tenant_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> CustomReport:
        """
        Get a custom report ``user_id`` may change.

        Shared reports stay read-only for everyone but their author. Without a
        user id every report of the tenant qualifies.

        Raises:
            CustomReportNotFoundError: If no such report belongs to the user
        """
        query = select(CustomReport).where(
            CustomReport.id == custom_report_id,
            CustomReport.tenant_id == tenant_id,
        )
        if user_id:
            query = query.where(CustomReport.created_by == user_id)
        result = await db.execute(query)
        custom_report = result.scalars().first()
        if custom_report is None:
            raise CustomReportNotFoundError(f"Custom report not found: {custom_report_id}")
        return custom_report

    @staticmethod
    async def list_for_tenant(
        db: AsyncSession,
        tenant_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> List[CustomReport]:
        query = select(CustomReport).where(CustomReport.tenant_id == tenant_id)
        if user_id:
            query = query.where(or_(CustomReport.created_by == user_id, CustomReport.is_shared.is_(True)))
        result = await db.execute(query.order_by(CustomReport.created_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def update(
        db: AsyncSession,
        tenant_schema: str,
        tenant_id: UUID,
        custom_report_id: UUID,
        report_in: CustomReportUpdate,
        cache: Optional[TableExistenceCache] = None,
        user_id: Optional[UUID] = None,
    ) -> CustomReport:
        custom_report = await CustomReportService.get_owned(db, custom_report_id, tenant_id, user_id)
        update_data = report_in.model_dump(exclude_unset=True)

        spec_changes = {key: value for key, value in update_data.items() if key in SPEC_FIELDS}
        if spec_changes:
            merged = CustomReportService.to_spec(custom_report).model_dump()
            merged.update(spec_changes)
            # Updates never change joins, so the saved predicates stay trusted
            spec = _with_trusted_joins(CustomReportSpec.model_validate(merged))
            await CustomReportService.validate_spec(db, tenant_schema, spec, cache)

        for key, value in update_data.items():
            setattr(custom_report, key, value)
        await db.commit()
        await db.refresh(custom_report)
        logger.info(f"Updated custom report {custom_report_id}")
        return custom_report

    @staticmethod
    async def delete(
        db: AsyncSession,
        tenant_id: UUID,
        custom_report_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> None:
        custom_report = await CustomReportService.get_owned(db, custom_report_id, tenant_id, user_id)
        await db.delete(custom_report)
        await db.commit()
        logger.info(f"Deleted custom report {custom_report_id}")
