"""
Custom report model.

Stores end-user authored, declarative report specifications that are
compiled to SQL on demand.
"""

import uuid

from sqlalchemy import Column, String, DateTime, Text, JSON, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import Base


class CustomReport(Base):
    __tablename__ = "custom_reports"

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("shared.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    data_sources = Column(JSON, nullable=False, default=list)
    joins = Column(JSON, nullable=False, default=list)
    selected_columns = Column(JSON, nullable=False, default=list)
    filters = Column(JSON, nullable=False, default=list)
    group_by = Column(JSON, nullable=False, default=list)
    order_by = Column(JSON, nullable=False, default=list)
    visualization_type = Column(String(20), nullable=False, default="table")
    role_permissions = Column(JSON, nullable=False, default=list)
    is_shared = Column(Boolean, nullable=False, default=False)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CustomReport(id={self.id}, name='{self.name}', tenant={self.tenant_id})>"
