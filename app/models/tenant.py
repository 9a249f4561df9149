"""
Tenant model for the school administration platform.

A tenant is one school. Its relational data lives in a dedicated schema
named by ``schema_name``; this row in the shared schema is the directory
entry that maps a tenant id to that schema.
"""

from enum import Enum
import uuid

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.models.base import Base


class TenantStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    SUSPENDED = "suspended"


class Tenant(Base):
    """Tenant (school) directory entry."""

    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, nullable=False, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    domain = Column(String(255), nullable=True, unique=True)
    schema_name = Column(String(63), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=TenantStatus.PENDING.value)
    preparation_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', schema='{self.schema_name}', status='{self.status}')>"
