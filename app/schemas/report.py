"""
Pydantic schemas for reports.

This module defines the request and response schemas for report definitions,
custom report specifications, executions and trend comparison.
"""

from typing import Dict, Any, Optional, List, Literal
from datetime import datetime, date
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

AggregateFunction = Literal["sum", "avg", "count", "min", "max"]
JoinType = Literal["inner", "left", "right", "full"]
FilterOperator = Literal["=", "!=", ">", "<", ">=", "<=", "LIKE", "IN", "BETWEEN"]
SortDirection = Literal["ASC", "DESC"]
VisualizationType = Literal["table", "bar", "line", "pie", "area"]
ExportFormat = Literal["csv", "pdf", "excel", "json"]


class ReportColumn(BaseModel):
    """Declared output column of a report."""

    name: str
    type: str
    label: str


class SelectedColumn(BaseModel):
    table: str
    column: str
    alias: Optional[str] = None
    aggregate: Optional[AggregateFunction] = None


class JoinSpec(BaseModel):
    """
    Join clause of a custom report.

    ``on`` arrives as a plain string. The compiler only splices it into a
    query once ``CustomReportService.authorize_joins`` has wrapped it in a
    ``TrustedSqlFragment`` for a report manager.
    """

    type: JoinType
    table: str
    on: str


class FilterSpec(BaseModel):
    column: str
    operator: FilterOperator
    value: Any = None


class OrderSpec(BaseModel):
    column: str
    direction: SortDirection = "ASC"


class CustomReportSpec(BaseModel):
    """Declarative report specification compiled to SQL on demand."""

    data_sources: List[str]
    joins: List[JoinSpec] = Field(default_factory=list)
    selected_columns: List[SelectedColumn]
    filters: List[FilterSpec] = Field(default_factory=list)
    group_by: List[str] = Field(default_factory=list)
    order_by: List[OrderSpec] = Field(default_factory=list)


class CustomReportCreate(CustomReportSpec):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    visualization_type: VisualizationType = "table"
    role_permissions: List[str] = Field(default_factory=list)
    is_shared: bool = False


class CustomReportUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    selected_columns: Optional[List[SelectedColumn]] = None
    filters: Optional[List[FilterSpec]] = None
    group_by: Optional[List[str]] = None
    order_by: Optional[List[OrderSpec]] = None
    visualization_type: Optional[VisualizationType] = None
    is_shared: Optional[bool] = None


class CustomReport(CustomReportSpec):
    id: UUID
    tenant_id: UUID
    name: str
    description: Optional[str] = None
    visualization_type: str
    role_permissions: List[str] = Field(default_factory=list)
    is_shared: bool
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReportDefinitionCreate(BaseModel):
    """Schema for creating a report definition."""

    tenant_id: Optional[UUID] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    report_type: Literal["attendance", "grades", "fees", "users", "analytics", "custom"]
    data_source: str
    query_template: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    columns: List[ReportColumn] = Field(default_factory=list)
    filters: Dict[str, Any] = Field(default_factory=dict)
    role_permissions: List[str] = Field(default_factory=list)


class ReportDefinition(BaseModel):
    """Schema for report definition response data."""

    id: UUID
    tenant_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    report_type: str
    data_source: str
    query_template: str
    parameters: Dict[str, Any]
    columns: List[ReportColumn]
    filters: Dict[str, Any]
    role_permissions: List[str]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ExecuteReportRequest(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)
    export_format: Optional[ExportFormat] = None


class CompareReportRequest(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)
    comparison_days: int = Field(7, ge=1, le=365)


class ReportExecutionResult(BaseModel):
    """Outcome of a report run, as read by export collaborators."""

    execution_id: UUID
    data: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: int
    columns: List[ReportColumn]
    export_url: Optional[str] = None


class ReportExecution(BaseModel):
    id: UUID
    report_definition_id: Optional[UUID] = None
    custom_report_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    executed_by: Optional[UUID] = None
    parameters: Dict[str, Any]
    status: str
    row_count: Optional[int] = None
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    export_url: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TrendPoint(BaseModel):
    date: date
    metrics: Dict[str, Any]
    data: List[Dict[str, Any]]


class MetricChange(BaseModel):
    absolute: float
    percentage: float


class ReportComparison(BaseModel):
    current: Dict[str, Any]
    previous: Dict[str, Any]
    change: Dict[str, MetricChange]
