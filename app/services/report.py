"""
Service layer for report execution.

This module contains the business logic for running administrator-authored
report definitions and end-user custom reports against a tenant schema,
recording every run for audit and replay, and exporting results.

All functions expect a session whose connection is already scoped to the
tenant (see ``app.db.tenant.tenant_session``). Report tables in the shared
schema are always schema-qualified, so they resolve regardless of the
connection's search path.
"""

import asyncio
import csv
import io
import json
import re
import time
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import insert, or_, select, update, func
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ExecutionNotFoundError,
    InvalidReportParameterError,
    PermissionDeniedError,
    QueryExecutionError,
    ReportDefinitionNotFoundError,
    UnsupportedExportFormatError,
)
from app.core.logging import logger
from app.core.storage import BlobStore
from app.db.sql import TrustedSqlFragment, assert_valid_identifier, quote_literal, require_trusted
from app.models.report import ExecutionStatus, ReportDefinition, ReportExecution, ReportType
from app.schemas.report import ReportDefinitionCreate, ReportExecutionResult
from app.services.custom_report import CustomReportService
from app.services.query_compiler import compile_custom_report, is_numeric_literal
from app.services.snapshot import SnapshotService
from app.utils import make_json_serializable

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

EXPORT_FORMATS = {
    "csv": ("csv", "text/csv"),
    "excel": ("csv", "text/csv"),
    "json": ("json", "application/json"),
}


def render_parameter(value: Any) -> str:
    """
    Render one template parameter as a SQL literal.

    Raises:
        InvalidReportParameterError: For lists, mappings, non-finite numbers
            and any other value without a literal form
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        return quote_literal(value)
    if is_numeric_literal(value):
        return str(value)
    if isinstance(value, Decimal) and value.is_finite():
        return str(value)
    if isinstance(value, date):
        return quote_literal(value.isoformat())
    if isinstance(value, UUID):
        return quote_literal(value)
    raise InvalidReportParameterError(f"Unsupported report parameter value: {type(value).__name__}")


def render_query_template(
    template: TrustedSqlFragment,
    parameters: Mapping[str, Any],
    tenant_schema: str,
) -> str:
    """
    Fill a report query template.

    ``{{schema}}`` becomes the validated tenant schema. Every other
    ``{{name}}`` becomes the rendered value of ``parameters[name]``: strings
    are quoted and escaped, missing or ``None`` values become ``NULL``.
    Substitution is a single pass, so values are never re-expanded.
    """
    template = require_trusted(template, "Query template")
    assert_valid_identifier(tenant_schema)

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name == "schema":
            return tenant_schema
        return render_parameter(parameters.get(name))

    return PLACEHOLDER_PATTERN.sub(replace, template)


def _type_name(value: Any) -> str:
    return "unknown" if value is None else type(value).__name__


def derive_columns(keys: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, str]]:
    first = rows[0] if rows else {}
    return [{"name": key, "type": _type_name(first.get(key)), "label": key} for key in keys]


def _error_message(error: Exception) -> str:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return str(error.orig)
    return str(error)


def render_export(
    rows: Sequence[Mapping[str, Any]],
    columns: Sequence[Mapping[str, Any]],
    export_format: str,
) -> Tuple[bytes, str, str]:
    """Render rows for export; returns (payload, file extension, content type)."""
    if export_format not in EXPORT_FORMATS:
        raise UnsupportedExportFormatError(f"Unsupported export format: {export_format}")
    extension, content_type = EXPORT_FORMATS[export_format]

    if extension == "json":
        payload = json.dumps(make_json_serializable(list(rows)), default=str).encode("utf-8")
        return payload, extension, content_type

    names = [col["name"] for col in columns] or (list(rows[0].keys()) if rows else [])
    labels = [col.get("label") or col["name"] for col in columns] or names
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL)
    writer.writerow(labels)
    for row in rows:
        writer.writerow(["" if row.get(name) is None else row.get(name) for name in names])
    return output.getvalue().encode("utf-8"), extension, content_type


class ReportService:
    """Service class for report definitions and executions."""

    @staticmethod
    def ensure_role_permitted(definition: ReportDefinition, role: Optional[str]) -> None:
        """A definition with no role list is open to every role."""
        allowed = definition.role_permissions or []
        if allowed and role not in allowed:
            raise PermissionDeniedError(f"Role {role!r} may not run report {definition.id}")

    @staticmethod
    async def create_definition(
        db: AsyncSession,
        definition_in: ReportDefinitionCreate,
        user_id: Optional[UUID] = None,
    ) -> ReportDefinition:
        logger.info(f"Creating report definition: {definition_in.name}")
        assert_valid_identifier(definition_in.data_source)

        definition = ReportDefinition(
            **definition_in.model_dump(exclude={"columns"}),
            columns=[col.model_dump() for col in definition_in.columns],
            created_by=user_id,
        )
        db.add(definition)
        await db.commit()
        await db.refresh(definition)
        return definition

    @staticmethod
    async def get_definition(
        db: AsyncSession,
        report_id: UUID,
        tenant_id: Optional[UUID] = None,
    ) -> Optional[ReportDefinition]:
        """
        Get an active report definition.

        With a tenant id, only that tenant's definitions and platform-wide
        definitions are visible.
        """
        logger.debug(f"Getting report definition by ID: {report_id}")
        query = select(ReportDefinition).where(
            ReportDefinition.id == report_id,
            ReportDefinition.is_active.is_(True),
        )
        if tenant_id:
            query = query.where(
                or_(ReportDefinition.tenant_id == tenant_id, ReportDefinition.tenant_id.is_(None))
            )
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def list_definitions(
        db: AsyncSession,
        tenant_id: Optional[UUID] = None,
        report_type: Optional[str] = None,
    ) -> List[ReportDefinition]:
        query = select(ReportDefinition).where(ReportDefinition.is_active.is_(True))
        if tenant_id:
            query = query.where(
                or_(ReportDefinition.tenant_id == tenant_id, ReportDefinition.tenant_id.is_(None))
            )
        if report_type:
            query = query.where(ReportDefinition.report_type == report_type)
        result = await db.execute(query.order_by(ReportDefinition.name))
        return list(result.scalars().all())

    @staticmethod
    async def deactivate_definition(
        db: AsyncSession,
        report_id: UUID,
        tenant_id: Optional[UUID] = None,
    ) -> ReportDefinition:
        definition = await ReportService.get_definition(db, report_id, tenant_id)
        if definition is None:
            raise ReportDefinitionNotFoundError(f"Report definition not found: {report_id}")
        definition.is_active = False
        await db.commit()
        logger.info(f"Deactivated report definition {report_id}")
        return definition

    @staticmethod
    async def _finish_execution(
        db: AsyncSession,
        execution_id: UUID,
        started: float,
        **values: Any,
    ) -> int:
        """Move an execution to its terminal status; returns the elapsed time."""
        await db.execute(
            update(ReportExecution)
            .where(ReportExecution.id == execution_id)
            .values(completed_at=func.now(), **values)
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await db.execute(
            update(ReportExecution)
            .where(ReportExecution.id == execution_id)
            .values(execution_time_ms=elapsed_ms)
        )
        await db.commit()
        return elapsed_ms

    @staticmethod
    async def _fail_execution(db: AsyncSession, execution_id: UUID, started: float, message: str) -> int:
        await db.rollback()
        return await ReportService._finish_execution(
            db,
            execution_id,
            started,
            status=ExecutionStatus.FAILED.value,
            error_message=message,
        )

    @staticmethod
    async def _run_recorded(
        db: AsyncSession,
        sql: str,
        *,
        tenant_id: Optional[UUID],
        executed_by: Optional[UUID],
        parameters: Mapping[str, Any],
        report_definition_id: Optional[UUID] = None,
        custom_report_id: Optional[UUID] = None,
    ) -> Tuple[UUID, List[Dict[str, Any]], List[str], int]:
        """
        Execute ``sql`` and record the run.

        The execution row is committed as ``running`` before the query runs
        and updated exactly once to ``completed`` or ``failed``, including
        when the run is cancelled. The elapsed time covers the insert through
        the terminal update.
        """
        started = time.perf_counter()
        result = await db.execute(
            insert(ReportExecution)
            .values(
                report_definition_id=report_definition_id,
                custom_report_id=custom_report_id,
                tenant_id=tenant_id,
                executed_by=executed_by,
                parameters=make_json_serializable(dict(parameters)),
                status=ExecutionStatus.RUNNING.value,
            )
            .returning(ReportExecution.id)
        )
        execution_id = result.scalar_one()
        await db.commit()

        try:
            conn = await db.connection()
            query_result = await conn.exec_driver_sql(sql)
            keys = list(query_result.keys())
            rows = [dict(row) for row in query_result.mappings().all()]
        except asyncio.CancelledError:
            logger.warning(f"Report execution {execution_id} cancelled")
            await asyncio.shield(ReportService._fail_execution(db, execution_id, started, "cancelled"))
            raise
        except Exception as e:
            message = _error_message(e)
            elapsed_ms = await ReportService._fail_execution(db, execution_id, started, message)
            logger.error(f"Report execution {execution_id} failed after {elapsed_ms} ms: {message}")
            if isinstance(e, SQLAlchemyError):
                raise QueryExecutionError(message, execution_id=execution_id) from e
            raise

        elapsed_ms = await ReportService._finish_execution(
            db,
            execution_id,
            started,
            status=ExecutionStatus.COMPLETED.value,
            row_count=len(rows),
        )
        logger.info(f"Report execution {execution_id} completed: {len(rows)} rows in {elapsed_ms} ms")
        return execution_id, rows, keys, elapsed_ms

    @staticmethod
    async def execute_report(
        db: AsyncSession,
        tenant_schema: str,
        definition: ReportDefinition,
        parameters: Optional[Mapping[str, Any]] = None,
        tenant_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
    ) -> ReportExecutionResult:
        """
        Run a report definition's query template against a tenant schema.

        Args:
            db: Session scoped to ``tenant_schema``
            tenant_schema: Schema substituted for ``{{schema}}``
            definition: Report definition to run
            parameters: Values for the template placeholders
            tenant_id: Tenant the run is recorded against
            user_id: User running the report

        Returns:
            Execution result with rows and column metadata

        Raises:
            QueryExecutionError: If the database rejects the query
        """
        parameters = dict(parameters or {})
        logger.info(f"Executing report {definition.id} ({definition.name}) on schema {tenant_schema}")

        # Definitions are authored by report managers
        template = TrustedSqlFragment(definition.query_template)
        sql = render_query_template(template, parameters, tenant_schema)

        execution_id, rows, keys, elapsed_ms = await ReportService._run_recorded(
            db,
            sql,
            tenant_id=tenant_id or definition.tenant_id,
            executed_by=user_id,
            parameters=parameters,
            report_definition_id=definition.id,
        )

        if definition.report_type != ReportType.CUSTOM.value and definition.tenant_id:
            await SnapshotService.create_snapshot(db, definition.tenant_id, definition.id, execution_id, rows)

        columns = definition.columns if definition.columns else derive_columns(keys, rows)
        return ReportExecutionResult(
            execution_id=execution_id,
            data=make_json_serializable(rows),
            row_count=len(rows),
            execution_time_ms=elapsed_ms,
            columns=columns,
        )

    @staticmethod
    async def execute_custom_report(
        db: AsyncSession,
        tenant_schema: str,
        tenant_id: UUID,
        custom_report_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> ReportExecutionResult:
        """
        Load a custom report visible to ``user_id``, compile it for
        ``tenant_schema`` and run it.
        """
        custom_report = await CustomReportService.get_or_raise(db, custom_report_id, tenant_id, user_id)
        sql = compile_custom_report(tenant_schema, CustomReportService.to_spec(custom_report))
        logger.info(f"Executing custom report {custom_report_id} on schema {tenant_schema}")

        execution_id, rows, keys, elapsed_ms = await ReportService._run_recorded(
            db,
            sql,
            tenant_id=tenant_id,
            executed_by=user_id,
            parameters={},
            custom_report_id=custom_report_id,
        )
        return ReportExecutionResult(
            execution_id=execution_id,
            data=make_json_serializable(rows),
            row_count=len(rows),
            execution_time_ms=elapsed_ms,
            columns=derive_columns(keys, rows),
        )

    @staticmethod
    async def get_execution(
        db: AsyncSession,
        execution_id: UUID,
        tenant_id: Optional[UUID] = None,
    ) -> ReportExecution:
        query = select(ReportExecution).where(ReportExecution.id == execution_id)
        if tenant_id:
            query = query.where(ReportExecution.tenant_id == tenant_id)
        result = await db.execute(query)
        execution = result.scalars().first()
        if execution is None:
            raise ExecutionNotFoundError(f"Report execution not found: {execution_id}")
        return execution

    @staticmethod
    async def list_executions(
        db: AsyncSession,
        tenant_id: UUID,
        report_definition_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ReportExecution]:
        logger.debug(f"Listing executions for tenant {tenant_id}, skip={skip}, limit={limit}")
        query = select(ReportExecution).where(ReportExecution.tenant_id == tenant_id)
        if report_definition_id:
            query = query.where(ReportExecution.report_definition_id == report_definition_id)
        result = await db.execute(
            query.order_by(ReportExecution.started_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def export_execution(
        db: AsyncSession,
        result: ReportExecutionResult,
        export_format: str,
        blob_store: BlobStore,
        tenant_id: UUID,
    ) -> str:
        """
        Store an execution result as a file and record its URL.

        Returns:
            URL of the stored export
        """
        columns = [col.model_dump() for col in result.columns]
        payload, extension, content_type = render_export(result.data, columns, export_format)
        key = f"reports/{tenant_id}/{result.execution_id}.{extension}"
        url = await blob_store.put(key, payload, content_type)

        await db.execute(
            update(ReportExecution)
            .where(ReportExecution.id == result.execution_id)
            .values(export_url=url)
        )
        await db.commit()
        logger.info(f"Exported execution {result.execution_id} as {export_format} to {url}")
        return url
