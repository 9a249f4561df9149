"""
Pydantic schemas for tenants.
"""

from typing import Optional
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    domain: Optional[str] = None
    schema_name: Optional[str] = Field(None, pattern=r"^[A-Za-z0-9_]+$", max_length=63)


class Tenant(BaseModel):
    id: UUID
    name: str
    domain: Optional[str] = None
    schema_name: str
    status: str
    preparation_error: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TenantContext(BaseModel):
    """Per-request tenant scope resolved upstream of the reporting core."""

    tenant_id: UUID
    schema_name: str
