"""
Services package initialization.

This module imports all services to make them available from a single import point.
"""

from app.services.tenant import TenantService
from app.services.custom_report import CustomReportService
from app.services.report import ReportService
from app.services.snapshot import SnapshotService
from app.services.schedule import ScheduledReportService

__all__ = [
    "TenantService",
    "CustomReportService",
    "ReportService",
    "SnapshotService",
    "ScheduledReportService",
]
