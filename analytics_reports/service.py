"""
Reporting Service

Composition root wiring the data aggregator, section processor, export
renderer, generator, scheduler and delivery together, and the single facade
the REST API talks to.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from .chart_renderer import ChartRenderer
from .config import Settings
from .data_sources import DataAggregator, InMemoryRecordStore, RecordStore
from .delivery import ReportDelivery
from .email_sender import EmailConfig, EmailSender, SmtpEmailSender
from .export_renderer import ExportRenderer
from .models import (
    DeliveryOptions,
    ExportFormat,
    GeneratedReport,
    ReportFilters,
    ReportTemplate,
    ReportType,
    ScheduleExecution,
    ScheduledReport,
    ScheduleFrequency,
    utc_now,
)
from .progress import GenerationProgress, InMemoryProgressStore, ProgressStore
from .report_generator import ReportGenerator, ReportPage
from .repositories import (
    GeneratedReportRepository,
    InMemoryGeneratedReportRepository,
    InMemoryScheduledReportRepository,
    InMemoryTemplateRepository,
    JsonScheduledReportRepository,
    LocalReportStorage,
    ReportStorage,
    ScheduledReportRepository,
    TemplateRepository,
)
from .scheduler import ReportScheduler
from .section_processor import SectionProcessor
from .system_templates import build_system_templates

logger = structlog.get_logger()


class ReportingService:
    """Facade over report generation and scheduling"""

    def __init__(
        self,
        settings: Settings,
        templates: TemplateRepository,
        reports: GeneratedReportRepository,
        schedules: ScheduledReportRepository,
        storage: ReportStorage,
        record_store: RecordStore,
        email_sender: EmailSender,
        progress_store: Optional[ProgressStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.templates = templates
        self.reports = reports
        self.schedules = schedules
        self.storage = storage
        self.email_sender = email_sender
        self.progress_store = progress_store or InMemoryProgressStore(settings.PROGRESS_TTL_SECONDS)

        self.aggregator = DataAggregator(record_store)
        chart_renderer = ChartRenderer() if settings.ENABLE_CHART_IMAGES else None
        self.export_renderer = ExportRenderer(storage, chart_renderer=chart_renderer, clock=clock)
        self.generator = ReportGenerator(
            templates=templates,
            reports=reports,
            section_processor=SectionProcessor(self.aggregator, settings.TABLE_MAX_ROWS, clock),
            export_renderer=self.export_renderer,
            progress_store=self.progress_store,
            report_expiry_days=settings.REPORT_EXPIRY_DAYS,
            generation_timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
            clock=clock,
        )
        self.delivery = ReportDelivery(email_sender)
        self.scheduler = ReportScheduler(
            schedules=schedules,
            generator=self.generator,
            delivery=self.delivery,
            templates=templates,
            tick_seconds=settings.SCHEDULER_TICK_SECONDS,
            execution_timeout_seconds=settings.SCHEDULE_EXECUTION_TIMEOUT_SECONDS,
            default_hour=settings.DEFAULT_SCHEDULE_HOUR,
            history_limit=settings.EXECUTION_HISTORY_LIMIT,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReportingService":
        """Build the service with file-backed storage from settings"""
        templates = InMemoryTemplateRepository(build_system_templates())
        if settings.TEMPLATES_DIR:
            loaded = templates.load_directory(settings.TEMPLATES_DIR)
            logger.info("custom_templates_loaded", count=loaded, directory=settings.TEMPLATES_DIR)

        if settings.RECORDS_FILE:
            record_store = InMemoryRecordStore.from_json_file(settings.RECORDS_FILE)
        else:
            record_store = InMemoryRecordStore()

        if settings.SCHEDULES_DIR:
            schedules = JsonScheduledReportRepository(settings.SCHEDULES_DIR)
        else:
            schedules = InMemoryScheduledReportRepository()

        return cls(
            settings=settings,
            templates=templates,
            reports=InMemoryGeneratedReportRepository(),
            schedules=schedules,
            storage=LocalReportStorage(settings.EXPORT_DIR, settings.DOWNLOAD_URL_PREFIX),
            record_store=record_store,
            email_sender=SmtpEmailSender(EmailConfig.from_settings(settings)),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.scheduler.wait_for_executions()
        await self.generator.wait_for_pending()

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_report(
        self,
        template_id: str,
        export_format: ExportFormat,
        requester_id: str,
        filters: Optional[ReportFilters] = None,
        name: Optional[str] = None,
        description: str = "",
        organization_id: Optional[str] = None,
    ) -> str:
        return await self.generator.generate_report(
            template_id=template_id,
            export_format=export_format,
            requester_id=requester_id,
            filters=filters,
            name=name,
            description=description,
            organization_id=organization_id,
        )

    async def get_generation_progress(self, report_id: str) -> Optional[GenerationProgress]:
        return await self.generator.get_generation_progress(report_id)

    async def get_generated_report(self, report_id: str) -> GeneratedReport:
        return await self.generator.get_generated_report(report_id)

    async def get_generated_reports(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ReportPage:
        return await self.generator.get_generated_reports(user_id, organization_id, limit, offset)

    def get_generation_statistics(self) -> Dict[str, Any]:
        return self.generator.get_generation_statistics()

    # =========================================================================
    # Templates and data sources
    # =========================================================================

    async def search_templates(
        self,
        query: Optional[str] = None,
        report_type: Optional[ReportType] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> List[ReportTemplate]:
        return await self.templates.search(query, report_type, category, tags)

    def list_data_sources(self) -> List[Dict[str, Any]]:
        return [config.to_dict() for config in self.aggregator.list_data_sources()]

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def create_scheduled_report(
        self,
        name: str,
        template_id: str,
        frequency: ScheduleFrequency,
        formats: List[ExportFormat],
        created_by: str,
        filters: Optional[ReportFilters] = None,
        cron_expression: Optional[str] = None,
        delivery: Optional[DeliveryOptions] = None,
        description: str = "",
        organization_id: Optional[str] = None,
    ) -> ScheduledReport:
        return await self.scheduler.create_scheduled_report(
            name=name,
            template_id=template_id,
            frequency=frequency,
            formats=formats,
            created_by=created_by,
            filters=filters,
            cron_expression=cron_expression,
            delivery=delivery,
            description=description,
            organization_id=organization_id,
        )

    async def update_scheduled_report(self, schedule_id: str, **changes: Any) -> ScheduledReport:
        return await self.scheduler.update_scheduled_report(schedule_id, **changes)

    async def delete_scheduled_report(self, schedule_id: str) -> None:
        await self.scheduler.delete_scheduled_report(schedule_id)

    async def toggle_scheduled_report(self, schedule_id: str) -> ScheduledReport:
        return await self.scheduler.toggle_scheduled_report(schedule_id)

    async def get_scheduled_report(self, schedule_id: str) -> ScheduledReport:
        return await self.scheduler.get_scheduled_report(schedule_id)

    async def list_scheduled_reports(self, user_id: str) -> List[ScheduledReport]:
        return await self.scheduler.list_scheduled_reports(user_id)

    async def execute_scheduled_report(self, schedule_id: str) -> str:
        return await self.scheduler.execute_scheduled_report(schedule_id)

    def get_execution_status(self, execution_id: str) -> ScheduleExecution:
        return self.scheduler.get_execution_status(execution_id)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def expire_reports(self) -> int:
        return await self.generator.expire_reports()

    def purge_progress(self) -> int:
        return self.progress_store.purge_expired()
