"""
Report models.

This module defines the SQLAlchemy models for report definitions,
executions and daily snapshots. Execution results are never written back
into tenant schemas; only their metadata and summaries are stored here.
"""

from enum import Enum
import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Text, JSON, Boolean, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import Base


class ReportType(str, Enum):
    ATTENDANCE = "attendance"
    GRADES = "grades"
    FEES = "fees"
    USERS = "users"
    ANALYTICS = "analytics"
    CUSTOM = "custom"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportDefinition(Base):
    """
    Administrator-authored, reusable report.

    ``query_template`` may contain ``{{schema}}`` and ``{{param}}``
    placeholders. A definition with no tenant is available platform-wide.
    Definitions are deactivated, never deleted, while executions reference them.
    """

    __tablename__ = "report_definitions"

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("shared.tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    report_type = Column(String(30), nullable=False)
    data_source = Column(String(100), nullable=False)
    query_template = Column(Text, nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)
    columns = Column(JSON, nullable=False, default=list)
    filters = Column(JSON, nullable=False, default=dict)
    role_permissions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    executions = relationship("ReportExecution", back_populates="report_definition")

    def __repr__(self) -> str:
        return f"<ReportDefinition(id={self.id}, name='{self.name}', type='{self.report_type}')>"


class ReportExecution(Base):
    """
    Audit record of one report run.

    Created with status ``running`` and moved exactly once to ``completed``
    or ``failed``.
    """

    __tablename__ = "report_executions"

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    report_definition_id = Column(UUID(as_uuid=True), ForeignKey("shared.report_definitions.id"), nullable=True, index=True)
    custom_report_id = Column(UUID(as_uuid=True), ForeignKey("shared.custom_reports.id", ondelete="SET NULL"), nullable=True, index=True)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("shared.tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    executed_by = Column(UUID(as_uuid=True), nullable=True)
    parameters = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default=ExecutionStatus.RUNNING.value)
    row_count = Column(Integer, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    export_url = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    report_definition = relationship("ReportDefinition", back_populates="executions")

    def __repr__(self) -> str:
        return f"<ReportExecution(id={self.id}, status='{self.status}', rows={self.row_count})>"


class ReportSnapshot(Base):
    """Latest-of-day summary of a report's output for one tenant."""

    __tablename__ = "report_snapshots"
    __table_args__ = (
        UniqueConstraint("tenant_id", "report_definition_id", "snapshot_date", name="uq_report_snapshot_day"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("shared.tenants.id", ondelete="CASCADE"), nullable=False)
    report_definition_id = Column(UUID(as_uuid=True), ForeignKey("shared.report_definitions.id"), nullable=False)
    execution_id = Column(UUID(as_uuid=True), ForeignKey("shared.report_executions.id"), nullable=True)
    snapshot_date = Column(Date, nullable=False)
    data = Column(JSON, nullable=False, default=list)
    summary_metrics = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<ReportSnapshot(report={self.report_definition_id}, date={self.snapshot_date})>"
