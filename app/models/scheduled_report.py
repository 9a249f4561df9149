"""
Scheduled report model.

``next_run_at`` is computed by the scheduling resolver whenever the
schedule changes and after every run; an external trigger selects rows
whose ``next_run_at`` has passed.
"""

import uuid

from sqlalchemy import Column, String, DateTime, JSON, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import Base


class ScheduledReport(Base):
    __tablename__ = "scheduled_reports"

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("shared.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    report_definition_id = Column(UUID(as_uuid=True), ForeignKey("shared.report_definitions.id"), nullable=False)
    name = Column(String(200), nullable=False)
    schedule_type = Column(String(20), nullable=False)
    schedule_config = Column(JSON, nullable=False, default=dict)
    parameters = Column(JSON, nullable=False, default=dict)
    export_format = Column(String(10), nullable=False, default="csv")
    recipients = Column(JSON, nullable=False, default=list)
    next_run_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<ScheduledReport(id={self.id}, type='{self.schedule_type}', next_run_at={self.next_run_at})>"
