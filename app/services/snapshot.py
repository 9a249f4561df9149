"""
Service layer for report snapshots and trends.

One snapshot is kept per (tenant, report definition, day); re-running a
report on the same day replaces that day's snapshot.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import logger
from app.models.report import ReportSnapshot
from app.utils import make_json_serializable


def is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def summarize_rows(rows: Sequence[Mapping[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build summary metrics for a result set.

    Returns ``row_count``, ``timestamp`` and a ``{sum, avg, min, max}``
    entry for every column whose first-row value is numeric.
    """
    metrics: Dict[str, Any] = {
        "row_count": len(rows),
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
    if not rows:
        return metrics

    for key, first_value in rows[0].items():
        if not is_numeric(first_value):
            continue
        values = [float(row[key]) for row in rows if is_numeric(row.get(key))]
        total = sum(values)
        metrics[key] = {
            "sum": total,
            "avg": total / len(values),
            "min": min(values),
            "max": max(values),
        }
    return metrics


def _change(current: float, previous: float) -> Dict[str, float]:
    absolute = current - previous
    percentage = 0.0 if previous == 0 else absolute / previous * 100
    return {"absolute": absolute, "percentage": percentage}


def compare_metrics(current: Mapping[str, Any], previous: Mapping[str, Any]) -> Dict[str, Dict[str, float]]:
    """Absolute and percentage change for every metric present in both summaries."""
    change: Dict[str, Dict[str, float]] = {}
    for key, current_value in current.items():
        if key == "timestamp" or key not in previous:
            continue
        previous_value = previous[key]
        if isinstance(current_value, Mapping) and isinstance(previous_value, Mapping):
            if "sum" in current_value and "sum" in previous_value:
                change[key] = _change(float(current_value["sum"]), float(previous_value["sum"]))
        elif is_numeric(current_value) and is_numeric(previous_value):
            change[key] = _change(float(current_value), float(previous_value))
    return change


class SnapshotService:
    """Service class for daily snapshots and trend comparison."""

    @staticmethod
    async def create_snapshot(
        db: AsyncSession,
        tenant_id: UUID,
        report_definition_id: UUID,
        execution_id: Optional[UUID],
        rows: Sequence[Mapping[str, Any]],
        snapshot_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Upsert today's snapshot for a report.

        Returns:
            The summary metrics that were stored
        """
        snapshot_date = snapshot_date or date.today()
        data = make_json_serializable([dict(row) for row in rows])
        summary_metrics = summarize_rows(data)

        statement = insert(ReportSnapshot).values(
            tenant_id=tenant_id,
            report_definition_id=report_definition_id,
            execution_id=execution_id,
            snapshot_date=snapshot_date,
            data=data,
            summary_metrics=summary_metrics,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[
                ReportSnapshot.tenant_id,
                ReportSnapshot.report_definition_id,
                ReportSnapshot.snapshot_date,
            ],
            set_={
                "execution_id": statement.excluded.execution_id,
                "data": statement.excluded.data,
                "summary_metrics": statement.excluded.summary_metrics,
            },
        )
        await db.execute(statement)
        await db.commit()

        logger.debug(f"Snapshot stored for report {report_definition_id} on {snapshot_date}")
        return summary_metrics

    @staticmethod
    async def get_historical_trend(
        db: AsyncSession,
        tenant_id: UUID,
        report_definition_id: UUID,
        days: int = 30,
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Snapshots from the last ``days`` days, oldest first."""
        cutoff = (today or date.today()) - timedelta(days=days)
        result = await db.execute(
            select(ReportSnapshot)
            .where(
                ReportSnapshot.tenant_id == tenant_id,
                ReportSnapshot.report_definition_id == report_definition_id,
                ReportSnapshot.snapshot_date >= cutoff,
            )
            .order_by(ReportSnapshot.snapshot_date.asc())
        )
        return [
            {
                "date": snapshot.snapshot_date,
                "metrics": snapshot.summary_metrics or {},
                "data": snapshot.data or [],
            }
            for snapshot in result.scalars().all()
        ]

    @staticmethod
    async def compare_with_history(
        db: AsyncSession,
        tenant_id: UUID,
        report_definition_id: UUID,
        current_rows: Sequence[Mapping[str, Any]],
        comparison_days: int = 7,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Compare a result set with the most recent earlier snapshot.

        Only snapshots from the last ``comparison_days`` days and before
        ``today`` count, so a snapshot written by the current run is never
        compared with itself.

        A report without snapshots yields an empty change set instead of
        failing.
        """
        today = today or date.today()
        current = summarize_rows(make_json_serializable([dict(row) for row in current_rows]))
        trend = await SnapshotService.get_historical_trend(
            db, tenant_id, report_definition_id, comparison_days, today=today
        )
        trend = [point for point in trend if point["date"] < today]

        if not trend:
            logger.debug(f"No snapshots for report {report_definition_id}; nothing to compare")
            return {"current": current, "previous": {"row_count": 0}, "change": {}}

        previous = trend[-1]["metrics"]
        return {
            "current": current,
            "previous": previous,
            "change": compare_metrics(current, previous),
        }
