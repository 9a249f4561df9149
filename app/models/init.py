"""
Models package initialization.

This module imports all models to ensure they are registered with SQLAlchemy.
"""

from app.models.base import Base, SHARED_SCHEMA

from app.models.tenant import Tenant, TenantStatus
from app.models.report import ReportDefinition, ReportExecution, ReportSnapshot, ReportType, ExecutionStatus
from app.models.custom_report import CustomReport
from app.models.scheduled_report import ScheduledReport


__all__ = [
    "Base",
    "SHARED_SCHEMA",
    "Tenant",
    "TenantStatus",
    "ReportDefinition",
    "ReportExecution",
    "ReportSnapshot",
    "ReportType",
    "ExecutionStatus",
    "CustomReport",
    "ScheduledReport",
]
