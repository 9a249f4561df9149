"""
Pydantic schemas for scheduled reports.
"""

from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ScheduleType = Literal["daily", "weekly", "monthly", "custom"]


class ScheduleConfig(BaseModel):
    cron: Optional[str] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    time: Optional[str] = Field(None, pattern=r"^\d{1,2}:\d{2}$")


class ScheduledReportCreate(BaseModel):
    report_definition_id: UUID
    name: str = Field(..., min_length=1)
    schedule_type: ScheduleType
    schedule_config: ScheduleConfig = Field(default_factory=ScheduleConfig)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    export_format: Literal["csv", "pdf", "excel", "json"] = "csv"
    recipients: List[str] = Field(default_factory=list)


class ScheduledReportUpdate(BaseModel):
    name: Optional[str] = None
    schedule_type: Optional[ScheduleType] = None
    schedule_config: Optional[ScheduleConfig] = None
    parameters: Optional[Dict[str, Any]] = None
    export_format: Optional[Literal["csv", "pdf", "excel", "json"]] = None
    recipients: Optional[List[str]] = None
    is_active: Optional[bool] = None


class ScheduledReport(BaseModel):
    id: UUID
    tenant_id: UUID
    report_definition_id: UUID
    name: str
    schedule_type: str
    schedule_config: Dict[str, Any]
    parameters: Dict[str, Any]
    export_format: str
    recipients: List[str]
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ScheduledRunResult(BaseModel):
    id: UUID
    status: Literal["success", "failed"]
    execution_id: Optional[UUID] = None
    error: Optional[str] = None
