"""
Analytics Reports

Report generation and scheduling engine for team, player and training
analytics including:
- Template based reports built from named data sources
- Multi-format export (PDF, Excel, CSV, HTML)
- Generation progress tracking
- Cron scheduled reporting with email delivery

Components:
- DataAggregator: Named data sources over team, player and training records
- SectionProcessor: Turns template sections into rendered content
- ExportRenderer: Format backends sharing one content model
- ReportGenerator: Generation pipeline and progress stages
- ReportScheduler: Scheduled execution and bookkeeping
- ReportDelivery: Email delivery of generated artifacts
- ReportingService: Facade used by the REST API
"""

from .data_sources import DataAggregator, DataSourceConfig, InMemoryRecordStore, RecordStore

from .delivery import DeliveryReport, EmailTemplateRenderer, ReportArtifact, ReportDelivery

from .email_sender import EmailAttachment, EmailConfig, EmailMessage, EmailSender, SmtpEmailSender

from .exceptions import (
    DeliveryError,
    ExecutionNotFound,
    InvalidScheduleError,
    InvalidTemplateError,
    RenderError,
    ReportingError,
    ReportNotFound,
    ScheduleExecutionTimeout,
    ScheduleNotFound,
    SectionDataError,
    SourceNotFound,
    TemplateNotFound,
)

from .export_renderer import ExportRenderer, ExportResult

from .models import (
    DateRange,
    DeliveryOptions,
    ExecutionStatus,
    ExportFormat,
    GeneratedReport,
    Recipient,
    ReportFilters,
    ReportStatus,
    ReportTemplate,
    ReportType,
    ScheduledReport,
    ScheduleExecution,
    ScheduleFrequency,
    SectionType,
    TemplateSection,
)

from .progress import GenerationProgress, GenerationStage, InMemoryProgressStore, ProgressStore

from .report_generator import ReportGenerator

from .scheduler import ReportScheduler

from .section_processor import SectionProcessor

from .service import ReportingService

__all__ = [
    # Data
    "DataAggregator",
    "DataSourceConfig",
    "InMemoryRecordStore",
    "RecordStore",
    # Pipeline
    "SectionProcessor",
    "ExportRenderer",
    "ExportResult",
    "ReportGenerator",
    "GenerationProgress",
    "GenerationStage",
    "InMemoryProgressStore",
    "ProgressStore",
    # Scheduling and delivery
    "ReportScheduler",
    "ReportDelivery",
    "DeliveryReport",
    "EmailTemplateRenderer",
    "ReportArtifact",
    "EmailAttachment",
    "EmailConfig",
    "EmailMessage",
    "EmailSender",
    "SmtpEmailSender",
    # Service
    "ReportingService",
    # Models
    "DateRange",
    "DeliveryOptions",
    "ExecutionStatus",
    "ExportFormat",
    "GeneratedReport",
    "Recipient",
    "ReportFilters",
    "ReportStatus",
    "ReportTemplate",
    "ReportType",
    "ScheduledReport",
    "ScheduleExecution",
    "ScheduleFrequency",
    "SectionType",
    "TemplateSection",
    # Errors
    "ReportingError",
    "SourceNotFound",
    "SectionDataError",
    "TemplateNotFound",
    "InvalidTemplateError",
    "RenderError",
    "DeliveryError",
    "ScheduleExecutionTimeout",
    "ScheduleNotFound",
    "InvalidScheduleError",
    "ReportNotFound",
    "ExecutionNotFound",
]

__version__ = "1.0.0"
