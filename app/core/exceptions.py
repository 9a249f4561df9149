"""
Domain exceptions for the reporting core.

Client-input errors subclass ValueError, so routers catching ValueError map
them to 400.
"""


class InvalidIdentifierError(ValueError):
    """A schema, table, column or alias name is not a safe bare identifier."""

    def __init__(self, name: object):
        self.name = name
        super().__init__(f"Invalid identifier: {name!r}")


class InvalidReportSpecError(ValueError):
    """A custom report specification cannot be compiled."""


class MissingDataSourceError(InvalidReportSpecError):
    """A custom report specification names no data source."""

    def __init__(self, message: str = "At least one data source is required"):
        super().__init__(message)


class InvalidScheduleError(ValueError):
    """A schedule type or schedule configuration cannot be resolved."""


class UnsupportedExportFormatError(ValueError):
    """The requested export format has no renderer."""


class InvalidReportParameterError(ValueError):
    """A report parameter has no SQL literal form."""


class QueryExecutionError(RuntimeError):
    """The database rejected a compiled or templated report query."""

    def __init__(self, message: str, execution_id=None):
        self.execution_id = execution_id
        super().__init__(message)


class ConnectionLifecycleError(RuntimeError):
    """Setting or restoring a connection's search path failed."""


class NotFoundError(LookupError):
    """Base class for missing shared-schema records."""


class TenantNotFoundError(NotFoundError):
    pass


class TenantNotReadyError(RuntimeError):
    """The tenant exists but its schema is not provisioned."""


class ReportDefinitionNotFoundError(NotFoundError):
    pass


class CustomReportNotFoundError(NotFoundError):
    pass


class ExecutionNotFoundError(NotFoundError):
    pass


class ScheduledReportNotFoundError(NotFoundError):
    pass


class PermissionDeniedError(PermissionError):
    """The caller's role may not run the requested report or author its SQL."""
