"""
Reporting Errors

Exception hierarchy shared by the aggregation, rendering, generation,
scheduling and delivery components.
"""

from typing import Optional


class ReportingError(Exception):
    """Base class for all reporting errors"""


class SourceNotFound(ReportingError):
    """Requested data source is not registered"""

    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"Unknown data source: {source_name}")


class SectionDataError(ReportingError):
    """Data source failed while resolving a section"""

    def __init__(self, message: str, source_name: Optional[str] = None):
        self.source_name = source_name
        super().__init__(message)


class TemplateNotFound(ReportingError):
    """Template does not exist or is inactive"""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class InvalidTemplateError(ReportingError, ValueError):
    """Template structure is invalid"""


class RenderError(ReportingError):
    """Export backend could not produce an artifact"""

    def __init__(self, export_format: str, message: str):
        self.export_format = export_format
        super().__init__(f"Failed to render {export_format} export: {message}")


class DeliveryError(ReportingError):
    """Delivery to a single recipient failed"""

    def __init__(self, recipient: str, message: str):
        self.recipient = recipient
        super().__init__(f"Delivery to {recipient} failed: {message}")


class ScheduleExecutionTimeout(ReportingError):
    """Scheduled execution exceeded its time budget"""

    def __init__(self, schedule_id: str, timeout_seconds: float):
        self.schedule_id = schedule_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Scheduled report {schedule_id} did not finish within {timeout_seconds:g}s"
        )


class ScheduleNotFound(ReportingError):
    """Scheduled report does not exist"""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Scheduled report not found: {schedule_id}")


class InvalidScheduleError(ReportingError, ValueError):
    """Scheduled report definition is invalid"""


class ReportNotFound(ReportingError):
    """Generated report does not exist"""

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}")


class ExecutionNotFound(ReportingError):
    """Schedule execution record does not exist"""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")
