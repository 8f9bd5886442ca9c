"""
Report Generator

Orchestrates one report generation: template lookup, section data fetching,
section processing, export rendering and persistence, recording progress at
every stage. The generator is the only component that sets a generated
report's terminal status.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from .exceptions import ReportNotFound, TemplateNotFound
from .export_renderer import ExportRenderer
from .models import (
    ExportFormat,
    GeneratedReport,
    GenerationMetadata,
    ReportFilters,
    ReportStatus,
    TemplateSection,
    utc_now,
)
from .progress import GenerationProgress, GenerationStage, ProgressStore, ProgressTracker
from .repositories import GeneratedReportRepository, TemplateRepository
from .section_processor import SectionProcessor

logger = structlog.get_logger()


@dataclass
class ReportPage:
    items: List[GeneratedReport]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [report.to_dict() for report in self.items],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


class ReportGenerator:
    """
    Report generation orchestrator.

    Stages: pending -> initializing -> fetching_data -> processing_sections
    -> generating_export -> saving -> completed, with failed reachable from
    every non-terminal stage. generate_report() runs the pipeline in the
    background and returns the report id immediately; generate_and_wait()
    awaits it, bounded by the generation timeout.
    """

    def __init__(
        self,
        templates: TemplateRepository,
        reports: GeneratedReportRepository,
        section_processor: SectionProcessor,
        export_renderer: ExportRenderer,
        progress_store: ProgressStore,
        report_expiry_days: int = 30,
        generation_timeout_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.templates = templates
        self.reports = reports
        self.section_processor = section_processor
        self.export_renderer = export_renderer
        self.progress_store = progress_store
        self.report_expiry_days = report_expiry_days
        self.generation_timeout_seconds = generation_timeout_seconds
        self.clock = clock

        self._tasks: Set[asyncio.Task] = set()

        # Generation statistics
        self.generation_stats = {
            "total_reports": 0,
            "completed": 0,
            "failed": 0,
            "by_format": {},
            "by_template": {},
            "average_generation_time": 0.0,
        }

    # =========================================================================
    # Public operations
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
        scheduled_report_id: Optional[str] = None,
    ) -> str:
        """Start a generation in the background and return the report id"""
        report = await self._create_report(
            template_id, export_format, requester_id, filters, name,
            description, organization_id, scheduled_report_id,
        )
        tracker = ProgressTracker(self.progress_store, report.report_id)

        task = asyncio.create_task(self._run_bounded(report, tracker))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return report.report_id

    async def generate_and_wait(
        self,
        template_id: str,
        export_format: ExportFormat,
        requester_id: str,
        filters: Optional[ReportFilters] = None,
        name: Optional[str] = None,
        description: str = "",
        organization_id: Optional[str] = None,
        scheduled_report_id: Optional[str] = None,
    ) -> GeneratedReport:
        """Generate a report and return its final record"""
        report = await self._create_report(
            template_id, export_format, requester_id, filters, name,
            description, organization_id, scheduled_report_id,
        )
        tracker = ProgressTracker(self.progress_store, report.report_id)
        await self._run_bounded(report, tracker)
        return report

    async def wait_for_pending(self) -> None:
        """Wait for every background generation to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_generation_progress(self, report_id: str) -> Optional[GenerationProgress]:
        progress = self.progress_store.get(report_id)
        if progress is not None:
            return progress

        # progress records are garbage collected; fall back to the report itself
        report = await self.reports.get(report_id)
        if report is None:
            return None
        if report.status == ReportStatus.COMPLETED or report.status == ReportStatus.EXPIRED:
            return GenerationProgress(
                report_id=report_id,
                status=GenerationStage.COMPLETED,
                progress=100,
                message="Report generated successfully",
                started_at=report.created_at,
                updated_at=report.completed_at or report.created_at,
            )
        if report.status == ReportStatus.FAILED:
            return GenerationProgress(
                report_id=report_id,
                status=GenerationStage.FAILED,
                message="Report generation failed",
                error=report.error_message,
                started_at=report.created_at,
                updated_at=report.completed_at or report.created_at,
            )
        return None

    async def get_generated_report(self, report_id: str) -> GeneratedReport:
        report = await self.reports.get(report_id)
        if report is None:
            raise ReportNotFound(report_id)
        return report

    async def get_generated_reports(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ReportPage:
        items, total = await self.reports.list_for_user(user_id, organization_id, limit, offset)
        return ReportPage(items=items, total=total, limit=limit, offset=offset)

    async def expire_reports(self) -> int:
        """Mark completed reports past their expiry as expired"""
        now = self.clock()
        expired = await self.reports.list_expirable(now)
        for report in expired:
            report.status = ReportStatus.EXPIRED
            await self.reports.save(report)
        if expired:
            logger.info("reports_expired", count=len(expired))
        return len(expired)

    def get_generation_statistics(self) -> Dict[str, Any]:
        return dict(self.generation_stats)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _create_report(
        self,
        template_id: str,
        export_format: ExportFormat,
        requester_id: str,
        filters: Optional[ReportFilters],
        name: Optional[str],
        description: str,
        organization_id: Optional[str],
        scheduled_report_id: Optional[str],
    ) -> GeneratedReport:
        created_at = self.clock()
        report = GeneratedReport(
            report_id=str(uuid.uuid4()),
            name=name or "",
            description=description,
            template_id=template_id,
            format=export_format,
            generated_by=requester_id,
            filters=filters or ReportFilters(),
            organization_id=organization_id,
            scheduled_report_id=scheduled_report_id,
            created_at=created_at,
            expires_at=created_at + timedelta(days=self.report_expiry_days),
        )
        await self.reports.save(report)
        self.generation_stats["total_reports"] += 1
        return report

    async def _run_bounded(self, report: GeneratedReport, tracker: ProgressTracker) -> None:
        try:
            await asyncio.wait_for(
                self._run_pipeline(report, tracker),
                timeout=self.generation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "report_generation_timeout",
                report_id=report.report_id,
                timeout=self.generation_timeout_seconds,
            )
            await self._fail(
                report,
                tracker,
                f"Report generation timed out after {self.generation_timeout_seconds:g}s",
            )
        except asyncio.CancelledError:
            # enclosing execution time limit or shutdown
            logger.warning(
                "report_generation_cancelled",
                report_id=report.report_id,
                stage=tracker.stage.value,
            )
            if not tracker.stage.is_terminal:
                await self._fail(report, tracker, "Report generation was cancelled")
            raise

    async def _run_pipeline(self, report: GeneratedReport, tracker: ProgressTracker) -> None:
        started = time.perf_counter()
        logger.info(
            "report_generation_started",
            report_id=report.report_id,
            template_id=report.template_id,
            format=report.format.value,
        )

        try:
            tracker.advance(GenerationStage.INITIALIZING, 5, "Loading template")
            report.status = ReportStatus.GENERATING
            await self.reports.save(report)

            template = await self.templates.get(report.template_id)
            if template is None:
                raise TemplateNotFound(report.template_id)
            template.validate()
            if not report.name:
                report.name = template.name

            bound_sections = [s for s in template.sections if s.data_source]
            tracker.advance(GenerationStage.FETCHING_DATA, 15, "Fetching section data")
            fetched_count = {"n": 0}

            def on_section(section: TemplateSection) -> None:
                fetched_count["n"] += 1
                percent = 15 + int(40 * (fetched_count["n"] - 1) / max(len(bound_sections), 1))
                tracker.advance(
                    GenerationStage.FETCHING_DATA,
                    percent,
                    f"Fetching data for {section.title or section.section_id}",
                    current_section=section.section_id,
                )

            fetched = await self.section_processor.fetch_section_data(
                template, report.filters, on_section
            )

            tracker.advance(GenerationStage.PROCESSING_SECTIONS, 60, "Processing sections")
            sections = self.section_processor.process_sections(template, fetched, report.filters)

            tracker.advance(
                GenerationStage.GENERATING_EXPORT, 75, f"Generating {report.format.value} export"
            )
            effective_filters = template.default_filters.merge(report.filters).resolve(self.clock())
            document = self.export_renderer.render_document(
                template, sections, effective_filters, report.format
            )

            tracker.advance(GenerationStage.SAVING, 90, "Saving report")
            result = await self.export_renderer.save(document, report.name)

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            report.file_path = result.storage_path
            report.download_url = result.download_url
            report.sections = [s.to_dict() for s in sections]
            report.metadata = GenerationMetadata(
                file_size=result.metadata.file_size,
                page_count=result.metadata.page_count,
                sheet_count=result.metadata.sheet_count,
                generation_time_ms=elapsed_ms,
                data_point_count=sum(entry.record_count for entry in fetched.values()),
                section_error_count=sum(1 for s in sections if s.error is not None),
            )
            report.status = ReportStatus.COMPLETED
            report.completed_at = self.clock()
            await self.reports.save(report)

            tracker.advance(GenerationStage.COMPLETED, 100, "Report generated successfully")
            self._update_generation_stats(report, elapsed_ms)

            logger.info(
                "report_generation_completed",
                report_id=report.report_id,
                duration_ms=elapsed_ms,
                file_size=report.metadata.file_size,
                section_errors=report.metadata.section_error_count,
            )

        except Exception as e:
            logger.error(
                "report_generation_failed",
                report_id=report.report_id,
                stage=tracker.stage.value,
                error=str(e),
                exc_info=True,
            )
            await self._fail(report, tracker, str(e))

    async def _fail(self, report: GeneratedReport, tracker: ProgressTracker, error: str) -> None:
        report.status = ReportStatus.FAILED
        report.error_message = error
        report.completed_at = self.clock()
        await self.reports.save(report)
        tracker.fail(error)
        self.generation_stats["failed"] += 1

    def _update_generation_stats(self, report: GeneratedReport, elapsed_ms: int) -> None:
        stats = self.generation_stats
        stats["completed"] += 1
        stats["by_format"][report.format.value] = stats["by_format"].get(report.format.value, 0) + 1
        stats["by_template"][report.template_id] = stats["by_template"].get(report.template_id, 0) + 1

        # Running average over completed reports
        seconds = elapsed_ms / 1000
        completed = stats["completed"]
        stats["average_generation_time"] += (seconds - stats["average_generation_time"]) / completed
