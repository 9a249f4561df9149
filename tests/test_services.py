"""
Tests for service layer.

These run against PostgreSQL and are skipped when it is unavailable.
"""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import MemoryTableCache
from app.core.exceptions import (
    CustomReportNotFoundError,
    InvalidReportSpecError,
    QueryExecutionError,
    TenantNotFoundError,
    TenantNotReadyError,
)
from app.core.storage import LocalBlobStore
from app.db.tenant import tenant_connection, tenant_session
from app.models.report import ExecutionStatus, ReportExecution, ReportSnapshot
from app.models.scheduled_report import ScheduledReport
from app.models.tenant import Tenant, TenantStatus
from app.schemas.report import CustomReportCreate, CustomReportUpdate, ReportDefinitionCreate
from app.schemas.schedule import ScheduledReportCreate
from app.services.custom_report import CustomReportService
from app.services.report import ReportService
from app.services.schedule import ScheduledReportService
from app.services.snapshot import SnapshotService
from app.services.tenant import TenantService

FEES_TEMPLATE = (
    "SELECT status, SUM(amount) AS total, COUNT(*) AS invoices "
    "FROM {{schema}}.invoices WHERE status = {{status}} GROUP BY status"
)


async def _seed_invoices(engine, schema_name: str) -> None:
    async with tenant_connection(engine, schema_name) as conn:
        await conn.exec_driver_sql(
            "INSERT INTO invoices (amount, status) VALUES "
            "(100.00, 'paid'), (50.50, 'paid'), (75.00, 'pending')"
        )


async def _fees_definition(db: AsyncSession, tenant: Tenant, template: str = FEES_TEMPLATE):
    return await ReportService.create_definition(
        db,
        ReportDefinitionCreate(
            tenant_id=tenant.id,
            name="Fees collected",
            report_type="fees",
            data_source="invoices",
            query_template=template,
        ),
    )


@pytest.mark.asyncio
async def test_provision_creates_ready_tenant(db_session: AsyncSession, tenant_a: Tenant):
    """Test TenantService.provision creates the schema and its tables."""
    cache = MemoryTableCache()

    assert tenant_a.status == TenantStatus.READY.value
    assert await TenantService.resolve_schema(db_session, tenant_a.id) == tenant_a.schema_name
    assert await TenantService.table_exists(db_session, tenant_a.schema_name, "students", cache)
    assert not await TenantService.table_exists(db_session, tenant_a.schema_name, "payroll", cache)
    assert await cache.get(f"{tenant_a.schema_name}.students") is True
    assert await cache.get(f"{tenant_a.schema_name}.payroll") is False


@pytest.mark.asyncio
async def test_resolve_schema_errors(db_session: AsyncSession):
    """Test unknown and unprovisioned tenants cannot be resolved."""
    pending = Tenant(name="Pending School", schema_name="tenant_pending", status=TenantStatus.PENDING.value)
    db_session.add(pending)
    await db_session.commit()

    with pytest.raises(TenantNotReadyError):
        await TenantService.resolve_schema(db_session, pending.id)

    missing_id = pending.id
    await db_session.delete(pending)
    await db_session.commit()
    with pytest.raises(TenantNotFoundError):
        await TenantService.resolve_schema(db_session, missing_id)


@pytest.mark.asyncio
async def test_execute_report_records_completed_run(pg_engine, db_session: AsyncSession, tenant_a: Tenant):
    """Test templated execution returns rows, records the run and snapshots it."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    definition = await _fees_definition(db_session, tenant_a)

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        result = await ReportService.execute_report(
            tenant_db, tenant_a.schema_name, definition, {"status": "paid"}, tenant_a.id
        )

    assert result.row_count == 1
    assert result.data[0]["status"] == "paid"
    assert result.data[0]["total"] == 150.5
    assert [col.name for col in result.columns] == ["status", "total", "invoices"]

    execution = (
        await db_session.execute(select(ReportExecution).where(ReportExecution.id == result.execution_id))
    ).scalar_one()
    assert execution.status == ExecutionStatus.COMPLETED.value
    assert execution.row_count == 1
    assert execution.tenant_id == tenant_a.id
    assert execution.parameters == {"status": "paid"}
    assert execution.completed_at is not None

    snapshots = (
        await db_session.execute(select(ReportSnapshot).where(ReportSnapshot.report_definition_id == definition.id))
    ).scalars().all()
    assert len(snapshots) == 1
    assert snapshots[0].summary_metrics["row_count"] == 1
    assert snapshots[0].summary_metrics["total"]["sum"] == 150.5


@pytest.mark.asyncio
async def test_execute_report_records_failed_run(pg_engine, db_session: AsyncSession, tenant_a: Tenant):
    """Test a rejected query is recorded as failed and re-raised."""
    definition = await _fees_definition(db_session, tenant_a, "SELECT * FROM {{schema}}.no_such_table")

    with pytest.raises(QueryExecutionError) as exc_info:
        async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
            await ReportService.execute_report(tenant_db, tenant_a.schema_name, definition, {}, tenant_a.id)

    execution = (
        await db_session.execute(
            select(ReportExecution).where(ReportExecution.id == exc_info.value.execution_id)
        )
    ).scalar_one()
    assert execution.status == ExecutionStatus.FAILED.value
    assert "no_such_table" in execution.error_message
    assert execution.execution_time_ms is not None

    snapshots = (
        await db_session.execute(select(ReportSnapshot).where(ReportSnapshot.report_definition_id == definition.id))
    ).scalars().all()
    assert snapshots == []


@pytest.mark.asyncio
async def test_custom_report_create_and_execute(pg_engine, db_session: AsyncSession, tenant_a: Tenant):
    """Test a custom report is validated, compiled and run without snapshotting."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    report_in = CustomReportCreate(
        name="Paid invoices",
        data_sources=["invoices"],
        selected_columns=[{"table": "invoices", "column": "amount", "aggregate": "sum", "alias": "total"}],
        filters=[{"column": "status", "operator": "=", "value": "paid"}],
    )

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        custom_report = await CustomReportService.create(
            tenant_db, tenant_a.schema_name, tenant_a.id, report_in, cache=MemoryTableCache()
        )
        result = await ReportService.execute_custom_report(
            tenant_db, tenant_a.schema_name, tenant_a.id, custom_report.id
        )

    assert result.data == [{"total": 150.5}]
    assert result.columns[0].name == "total"

    execution = (
        await db_session.execute(select(ReportExecution).where(ReportExecution.id == result.execution_id))
    ).scalar_one()
    assert execution.custom_report_id == custom_report.id
    assert execution.report_definition_id is None
    assert (await db_session.execute(select(ReportSnapshot))).scalars().all() == []


@pytest.mark.asyncio
async def test_custom_report_with_unknown_table_rejected(pg_engine, tenant_a: Tenant):
    """Test custom reports over tables the tenant lacks are refused."""
    report_in = CustomReportCreate(
        name="Payroll",
        data_sources=["payroll"],
        selected_columns=[{"table": "payroll", "column": "salary"}],
    )

    with pytest.raises(InvalidReportSpecError):
        async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
            await CustomReportService.create(tenant_db, tenant_a.schema_name, tenant_a.id, report_in)


@pytest.mark.asyncio
async def test_private_custom_report_hidden_from_other_users(pg_engine, tenant_a: Tenant):
    """Test another user can neither run nor change a private report."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    owner, other = uuid.uuid4(), uuid.uuid4()
    report_in = CustomReportCreate(
        name="My invoices",
        data_sources=["invoices"],
        selected_columns=[{"table": "invoices", "column": "amount"}],
    )

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        custom_report = await CustomReportService.create(
            tenant_db, tenant_a.schema_name, tenant_a.id, report_in, user_id=owner
        )

        with pytest.raises(CustomReportNotFoundError):
            await ReportService.execute_custom_report(
                tenant_db, tenant_a.schema_name, tenant_a.id, custom_report.id, user_id=other
            )
        with pytest.raises(CustomReportNotFoundError):
            await CustomReportService.delete(tenant_db, tenant_a.id, custom_report.id, user_id=other)

        result = await ReportService.execute_custom_report(
            tenant_db, tenant_a.schema_name, tenant_a.id, custom_report.id, user_id=owner
        )

    assert result.row_count == 3


@pytest.mark.asyncio
async def test_shared_custom_report_runs_but_only_owner_edits(pg_engine, tenant_a: Tenant):
    """Test a shared report is executable by others but stays owned by its author."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    owner, other = uuid.uuid4(), uuid.uuid4()
    report_in = CustomReportCreate(
        name="Shared invoices",
        data_sources=["invoices"],
        selected_columns=[{"table": "invoices", "column": "amount"}],
        is_shared=True,
    )

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        custom_report = await CustomReportService.create(
            tenant_db, tenant_a.schema_name, tenant_a.id, report_in, user_id=owner
        )

        result = await ReportService.execute_custom_report(
            tenant_db, tenant_a.schema_name, tenant_a.id, custom_report.id, user_id=other
        )
        assert result.row_count == 3

        with pytest.raises(CustomReportNotFoundError):
            await CustomReportService.update(
                tenant_db,
                tenant_a.schema_name,
                tenant_a.id,
                custom_report.id,
                CustomReportUpdate(name="Hijacked"),
                user_id=other,
            )
        with pytest.raises(CustomReportNotFoundError):
            await CustomReportService.delete(tenant_db, tenant_a.id, custom_report.id, user_id=other)

        updated = await CustomReportService.update(
            tenant_db,
            tenant_a.schema_name,
            tenant_a.id,
            custom_report.id,
            CustomReportUpdate(name="Renamed"),
            user_id=owner,
        )
        assert updated.name == "Renamed"

        await CustomReportService.delete(tenant_db, tenant_a.id, custom_report.id, user_id=owner)
        assert await CustomReportService.get(tenant_db, custom_report.id, tenant_a.id) is None


@pytest.mark.asyncio
async def test_snapshot_upsert_keeps_one_row_per_day(db_session: AsyncSession, tenant_a: Tenant):
    """Test a second snapshot on the same day replaces the first."""
    definition = await _fees_definition(db_session, tenant_a)

    await SnapshotService.create_snapshot(db_session, tenant_a.id, definition.id, None, [{"total": 1}])
    await SnapshotService.create_snapshot(db_session, tenant_a.id, definition.id, None, [{"total": 2}, {"total": 3}])

    snapshots = (
        await db_session.execute(select(ReportSnapshot).where(ReportSnapshot.report_definition_id == definition.id))
    ).scalars().all()
    assert len(snapshots) == 1
    assert snapshots[0].data == [{"total": 2}, {"total": 3}]
    assert snapshots[0].summary_metrics["row_count"] == 2


@pytest.mark.asyncio
async def test_compare_without_history(db_session: AsyncSession, tenant_a: Tenant):
    """Test comparison on a report with no snapshots degrades gracefully."""
    definition = await _fees_definition(db_session, tenant_a)

    comparison = await SnapshotService.compare_with_history(
        db_session, tenant_a.id, definition.id, [{"total": 10}]
    )

    assert comparison["previous"] == {"row_count": 0}
    assert comparison["change"] == {}
    assert comparison["current"]["row_count"] == 1


@pytest.mark.asyncio
async def test_trend_and_comparison_use_earlier_snapshots(db_session: AsyncSession, tenant_a: Tenant):
    """Test trends are ascending and comparison ignores today's snapshot."""
    definition = await _fees_definition(db_session, tenant_a)
    today = date.today()

    await SnapshotService.create_snapshot(
        db_session, tenant_a.id, definition.id, None, [{"total": 100}], snapshot_date=today - timedelta(days=2)
    )
    await SnapshotService.create_snapshot(
        db_session, tenant_a.id, definition.id, None, [{"total": 80}], snapshot_date=today - timedelta(days=1)
    )
    await SnapshotService.create_snapshot(db_session, tenant_a.id, definition.id, None, [{"total": 120}])
    await SnapshotService.create_snapshot(
        db_session, tenant_a.id, definition.id, None, [{"total": 1}], snapshot_date=today - timedelta(days=60)
    )

    trend = await SnapshotService.get_historical_trend(db_session, tenant_a.id, definition.id, days=30)
    assert [point["date"] for point in trend] == [
        today - timedelta(days=2),
        today - timedelta(days=1),
        today,
    ]

    comparison = await SnapshotService.compare_with_history(
        db_session, tenant_a.id, definition.id, [{"total": 120}]
    )
    assert comparison["change"]["total"] == {"absolute": 40.0, "percentage": 50.0}
    assert comparison["change"]["row_count"] == {"absolute": 0.0, "percentage": 0.0}


@pytest.mark.asyncio
async def test_export_execution_records_url(pg_engine, db_session: AsyncSession, tenant_a: Tenant, tmp_path):
    """Test exporting stores the file and records its URL on the execution."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    definition = await _fees_definition(db_session, tenant_a)
    store = LocalBlobStore(str(tmp_path), "/exports")

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        result = await ReportService.execute_report(
            tenant_db, tenant_a.schema_name, definition, {"status": "paid"}, tenant_a.id
        )
        url = await ReportService.export_execution(tenant_db, result, "csv", store, tenant_a.id)

    assert url == f"/exports/reports/{tenant_a.id}/{result.execution_id}.csv"
    assert (tmp_path / "reports" / str(tenant_a.id) / f"{result.execution_id}.csv").exists()

    execution = await ReportService.get_execution(db_session, result.execution_id, tenant_a.id)
    assert execution.export_url == url


@pytest.mark.asyncio
async def test_process_due_reports(pg_engine, db_session: AsyncSession, tenant_a: Tenant, tmp_path):
    """Test due schedules run, export and advance while failures are isolated."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)
    good = await _fees_definition(db_session, tenant_a)
    bad = await _fees_definition(db_session, tenant_a, "SELECT * FROM {{schema}}.no_such_table")

    scheduled_ids = []
    for definition in (bad, good):
        scheduled = await ScheduledReportService.create(
            db_session,
            tenant_a.id,
            ScheduledReportCreate(
                report_definition_id=definition.id,
                name=f"Nightly {definition.id}",
                schedule_type="daily",
                schedule_config={"time": "06:00"},
                parameters={"status": "paid"},
                export_format="json",
            ),
        )
        assert scheduled.next_run_at > datetime.now(timezone.utc)
        scheduled_ids.append(scheduled.id)

    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    await db_session.execute(
        update(ScheduledReport).where(ScheduledReport.id.in_(scheduled_ids)).values(next_run_at=past)
    )
    await db_session.commit()

    results = await ScheduledReportService.process_due_reports(pg_engine, LocalBlobStore(str(tmp_path)))

    outcomes = {r.id: r for r in results}
    assert outcomes[scheduled_ids[0]].status == "failed"
    assert outcomes[scheduled_ids[0]].execution_id is not None
    assert outcomes[scheduled_ids[1]].status == "success"

    db_session.expire_all()
    rows = (
        await db_session.execute(select(ScheduledReport).where(ScheduledReport.id.in_(scheduled_ids)))
    ).scalars().all()
    for row in rows:
        assert row.last_run_at is not None
        assert row.next_run_at > datetime.now(timezone.utc)
    assert await ScheduledReportService.get_ready_to_run(db_session) == []


@pytest.mark.asyncio
async def test_tenant_session_sees_unqualified_tables(pg_engine, tenant_a: Tenant):
    """Test tenant-scoped sessions resolve bare table names in the tenant schema."""
    await _seed_invoices(pg_engine, tenant_a.schema_name)

    async with tenant_session(pg_engine, tenant_a.schema_name) as tenant_db:
        count = (await tenant_db.execute(text("SELECT COUNT(*) FROM invoices"))).scalar()

    assert count == 3
