"""
Report Scheduler

Cron-driven execution of scheduled reports. A single asyncio loop checks for
due schedules; each due schedule runs as its own task, at most one at a time
per schedule, generating every requested format before delivering the
results.
"""

import asyncio
import dataclasses
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import structlog
from croniter import croniter

from .delivery import DeliveryReport, ReportArtifact, ReportDelivery
from .exceptions import (
    DeliveryError,
    ExecutionNotFound,
    InvalidScheduleError,
    ScheduleExecutionTimeout,
    ScheduleNotFound,
    TemplateNotFound,
)
from .models import (
    DatePreset,
    DeliveryOptions,
    DeliveryStatus,
    ExecutionStatus,
    ExportFormat,
    ReportFilters,
    ReportStatus,
    ScheduleExecution,
    ScheduledReport,
    ScheduleFrequency,
    utc_now,
)
from .report_generator import ReportGenerator
from .repositories import ScheduledReportRepository, TemplateRepository

logger = structlog.get_logger()

FREQUENCY_CRONS = {
    ScheduleFrequency.DAILY: "0 {hour} * * *",
    ScheduleFrequency.WEEKLY: "0 {hour} * * 1",
    ScheduleFrequency.MONTHLY: "0 {hour} 1 * *",
    ScheduleFrequency.QUARTERLY: "0 {hour} 1 1,4,7,10 *",
}

UPDATABLE_FIELDS = (
    "name", "description", "template_id", "filters", "frequency",
    "cron_expression", "formats", "delivery", "active",
)
NULLABLE_FIELDS = ("cron_expression",)


def cron_expression_for(
    frequency: ScheduleFrequency,
    cron_expression: Optional[str] = None,
    default_hour: int = 8,
) -> str:
    """Cron expression (UTC) for a schedule frequency"""
    if frequency == ScheduleFrequency.CUSTOM:
        if not cron_expression or not croniter.is_valid(cron_expression):
            raise InvalidScheduleError(f"Invalid cron expression: {cron_expression!r}")
        return cron_expression
    return FREQUENCY_CRONS[frequency].format(hour=default_hour)


def compute_next_run(cron_expression: str, from_time: datetime) -> datetime:
    """First cron occurrence strictly after from_time"""
    return croniter(cron_expression, from_time).get_next(datetime)


class ReportScheduler:
    """
    Scheduled report management and execution.

    Bookkeeping after every attempt: last_run is stamped, run_count grows when
    at least one artifact was produced, failure_count grows when the run was
    not a clean success, and next_run is always recomputed.
    """

    def __init__(
        self,
        schedules: ScheduledReportRepository,
        generator: ReportGenerator,
        delivery: ReportDelivery,
        templates: Optional[TemplateRepository] = None,
        tick_seconds: float = 60.0,
        execution_timeout_seconds: float = 900.0,
        default_hour: int = 8,
        history_limit: int = 1000,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.schedules = schedules
        self.generator = generator
        self.delivery = delivery
        self.templates = templates
        self.tick_seconds = min(tick_seconds, 60.0)
        self.execution_timeout_seconds = execution_timeout_seconds
        self.default_hour = default_hour
        self.history_limit = history_limit
        self.clock = clock

        self._in_flight: Dict[str, ScheduleExecution] = {}
        self._executions: Dict[str, ScheduleExecution] = {}
        self._tasks: Set[asyncio.Task] = set()

        # Scheduler state
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Schedule management
    # =========================================================================

    def next_run_for(self, scheduled_report: ScheduledReport, from_time: Optional[datetime] = None) -> datetime:
        cron = cron_expression_for(
            scheduled_report.frequency, scheduled_report.cron_expression, self.default_hour
        )
        return compute_next_run(cron, from_time or self.clock())

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
        active: bool = True,
    ) -> ScheduledReport:
        """Create a scheduled report and compute its first run"""
        if self.templates is not None and await self.templates.get(template_id) is None:
            raise TemplateNotFound(template_id)

        now = self.clock()
        scheduled_report = ScheduledReport(
            schedule_id=str(uuid.uuid4()),
            name=name,
            description=description,
            template_id=template_id,
            frequency=frequency,
            cron_expression=cron_expression,
            formats=list(formats),
            filters=filters or ReportFilters(),
            delivery=delivery or DeliveryOptions(),
            active=active,
            created_by=created_by,
            organization_id=organization_id,
            created_at=now,
            updated_at=now,
        )
        scheduled_report.validate()
        scheduled_report.next_run = self.next_run_for(scheduled_report, now)

        await self.schedules.save(scheduled_report)
        logger.info(
            "scheduled_report_created",
            schedule_id=scheduled_report.schedule_id,
            frequency=frequency.value,
            next_run=scheduled_report.next_run.isoformat(),
        )
        return scheduled_report

    async def get_scheduled_report(self, schedule_id: str) -> ScheduledReport:
        scheduled_report = await self.schedules.get(schedule_id)
        if scheduled_report is None:
            raise ScheduleNotFound(schedule_id)
        return scheduled_report

    async def update_scheduled_report(self, schedule_id: str, **changes: Any) -> ScheduledReport:
        """Apply field changes; next_run is recomputed when the timing changed"""
        scheduled_report = await self.get_scheduled_report(schedule_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise InvalidScheduleError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        nulls = [name for name, value in changes.items() if value is None and name not in NULLABLE_FIELDS]
        if nulls:
            raise InvalidScheduleError(f"Fields cannot be null: {', '.join(sorted(nulls))}")
        if "template_id" in changes and self.templates is not None:
            if await self.templates.get(changes["template_id"]) is None:
                raise TemplateNotFound(changes["template_id"])

        timing_changed = any(
            name in changes and changes[name] != getattr(scheduled_report, name)
            for name in ("frequency", "cron_expression", "active")
        )
        # validated on a copy so a rejected update leaves the stored schedule untouched
        scheduled_report = dataclasses.replace(scheduled_report, **changes)
        scheduled_report.validate()

        now = self.clock()
        if timing_changed and scheduled_report.active:
            scheduled_report.next_run = self.next_run_for(scheduled_report, now)
        scheduled_report.updated_at = now

        await self.schedules.save(scheduled_report)
        logger.info("scheduled_report_updated", schedule_id=schedule_id, fields=sorted(changes))
        return scheduled_report

    async def toggle_scheduled_report(self, schedule_id: str) -> ScheduledReport:
        scheduled_report = await self.get_scheduled_report(schedule_id)
        return await self.update_scheduled_report(schedule_id, active=not scheduled_report.active)

    async def delete_scheduled_report(self, schedule_id: str) -> None:
        if not await self.schedules.delete(schedule_id):
            raise ScheduleNotFound(schedule_id)
        logger.info("scheduled_report_deleted", schedule_id=schedule_id)

    async def list_scheduled_reports(self, user_id: str) -> List[ScheduledReport]:
        return await self.schedules.list_for_user(user_id)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute_scheduled_report(self, schedule_id: str) -> str:
        """Run a schedule now; returns the execution id"""
        scheduled_report = await self.get_scheduled_report(schedule_id)
        return self._trigger(scheduled_report, manual=True)

    def get_execution_status(self, execution_id: str) -> ScheduleExecution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    def list_executions(self, schedule_id: str, limit: int = 10) -> List[ScheduleExecution]:
        executions = [e for e in self._executions.values() if e.schedule_id == schedule_id]
        return executions[-limit:]

    def is_running(self, schedule_id: str) -> bool:
        return schedule_id in self._in_flight

    async def tick(self) -> List[str]:
        """Trigger every active schedule whose next run is due"""
        now = self.clock()
        started = []
        for scheduled_report in await self.schedules.list_all():
            if (scheduled_report.active
                    and scheduled_report.next_run is not None
                    and scheduled_report.next_run <= now):
                started.append(self._trigger(scheduled_report))
        return started

    async def wait_for_executions(self) -> None:
        """Wait for every running execution to finish"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _trigger(self, scheduled_report: ScheduledReport, manual: bool = False) -> str:
        # check and claim happen without an intervening await
        running = self._in_flight.get(scheduled_report.schedule_id)
        if running is not None:
            logger.info(
                "execution_already_running",
                schedule_id=scheduled_report.schedule_id,
                execution_id=running.execution_id,
            )
            return running.execution_id

        execution = ScheduleExecution(
            execution_id=str(uuid.uuid4()),
            schedule_id=scheduled_report.schedule_id,
            started_at=self.clock(),
            manual=manual,
        )
        self._in_flight[scheduled_report.schedule_id] = execution
        self._record_execution(execution)

        task = asyncio.create_task(self._run_execution(scheduled_report, execution))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return execution.execution_id

    def _record_execution(self, execution: ScheduleExecution) -> None:
        self._executions[execution.execution_id] = execution

        # Keep only the most recent executions
        while len(self._executions) > self.history_limit:
            oldest_id = next(iter(self._executions))
            if self._executions[oldest_id].status.is_terminal:
                del self._executions[oldest_id]
            else:
                break

    async def _run_execution(self, scheduled_report: ScheduledReport, execution: ScheduleExecution) -> None:
        logger.info(
            "scheduled_execution_started",
            schedule_id=scheduled_report.schedule_id,
            execution_id=execution.execution_id,
            manual=execution.manual,
        )
        try:
            await asyncio.wait_for(
                self._execute(scheduled_report, execution),
                timeout=self.execution_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = ScheduleExecutionTimeout(scheduled_report.schedule_id, self.execution_timeout_seconds)
            logger.error("scheduled_execution_timeout", schedule_id=scheduled_report.schedule_id)
            execution.status = ExecutionStatus.FAILED
            execution.error_message = str(error)
        except Exception as e:
            logger.error(
                "scheduled_execution_failed",
                schedule_id=scheduled_report.schedule_id,
                execution_id=execution.execution_id,
                error=str(e),
                exc_info=True,
            )
            execution.status = ExecutionStatus.FAILED
            execution.error_message = str(e)
        finally:
            execution.completed_at = self.clock()
            execution.execution_time_seconds = (
                execution.completed_at - execution.started_at
            ).total_seconds()
            try:
                await self._update_bookkeeping(scheduled_report, execution)
            except Exception as e:
                logger.error(
                    "schedule_bookkeeping_failed",
                    schedule_id=scheduled_report.schedule_id,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._in_flight.pop(scheduled_report.schedule_id, None)

        logger.info(
            "scheduled_execution_finished",
            schedule_id=scheduled_report.schedule_id,
            execution_id=execution.execution_id,
            status=execution.status.value,
            delivery_status=execution.delivery_status.value,
        )

    async def _execute(self, scheduled_report: ScheduledReport, execution: ScheduleExecution) -> None:
        execution.status = ExecutionStatus.GENERATING
        run_date = self.clock()
        filters = self._effective_filters(scheduled_report.filters)

        report_type = "report"
        if self.templates is not None:
            template = await self.templates.get(scheduled_report.template_id)
            if template is not None:
                report_type = template.report_type.value.replace("-", " ")

        artifacts = []
        for export_format in scheduled_report.formats:
            report = await self.generator.generate_and_wait(
                template_id=scheduled_report.template_id,
                export_format=export_format,
                requester_id=scheduled_report.created_by,
                filters=filters,
                name=scheduled_report.name,
                description=scheduled_report.description,
                organization_id=scheduled_report.organization_id,
                scheduled_report_id=scheduled_report.schedule_id,
            )
            execution.report_ids[export_format.value] = report.report_id

            if report.status == ReportStatus.COMPLETED:
                artifacts.append(ReportArtifact(
                    format=export_format,
                    file_path=report.file_path,
                    report_id=report.report_id,
                    download_url=report.download_url,
                ))
                execution.degraded_sections = max(
                    execution.degraded_sections, report.metadata.section_error_count
                )
            else:
                execution.format_errors[export_format.value] = (
                    report.error_message or "Report generation failed"
                )

        if not artifacts:
            execution.status = ExecutionStatus.FAILED
            execution.error_message = "; ".join(
                f"{fmt}: {error}" for fmt, error in execution.format_errors.items()
            )
            await self._notify_failure(scheduled_report, execution.error_message, run_date)
            return

        execution.status = ExecutionStatus.DELIVERING
        delivery_report = await self._deliver(scheduled_report, artifacts, run_date, report_type)
        execution.delivery_status = delivery_report.status
        execution.delivery_results = [r.to_dict() for r in delivery_report.results]

        if execution.format_errors:
            execution.status = ExecutionStatus.PARTIAL_FAILURE
            execution.error_message = "; ".join(
                f"{fmt}: {error}" for fmt, error in execution.format_errors.items()
            )
        elif execution.degraded_sections:
            execution.status = ExecutionStatus.COMPLETED_WITH_ERRORS
            execution.error_message = f"{execution.degraded_sections} section(s) could not load data"
        else:
            execution.status = ExecutionStatus.COMPLETED

    def _effective_filters(self, filters: ReportFilters) -> ReportFilters:
        """Scheduled runs without a period cover the last 30 days"""
        if filters.date_range is None and filters.date_preset is None:
            filters = filters.merge(ReportFilters(date_preset=DatePreset.LAST_30_DAYS))
        return filters.resolve(self.clock())

    async def _deliver(
        self,
        scheduled_report: ScheduledReport,
        artifacts: List[ReportArtifact],
        run_date: datetime,
        report_type: str,
    ) -> DeliveryReport:
        try:
            return await self.delivery.deliver(scheduled_report, artifacts, run_date, report_type)
        except (OSError, DeliveryError) as e:
            logger.error("delivery_failed", schedule_id=scheduled_report.schedule_id, error=str(e))
            return DeliveryReport(status=DeliveryStatus.FAILED)

    async def _notify_failure(self, scheduled_report: ScheduledReport, error: str, run_date: datetime) -> None:
        if not scheduled_report.delivery.recipients:
            return
        report = await self.delivery.notify_failure(scheduled_report, error, run_date)
        logger.info(
            "failure_notification_sent",
            schedule_id=scheduled_report.schedule_id,
            status=report.status.value,
        )

    async def _update_bookkeeping(self, scheduled_report: ScheduledReport, execution: ScheduleExecution) -> None:
        current = await self.schedules.get(scheduled_report.schedule_id)
        if current is None:
            logger.info("schedule_removed_during_execution", schedule_id=scheduled_report.schedule_id)
            return

        now = self.clock()
        current.last_run = execution.started_at
        current.last_status = execution.status
        current.last_delivery_status = execution.delivery_status
        if execution.status != ExecutionStatus.FAILED:
            current.run_count += 1
        if execution.status == ExecutionStatus.COMPLETED:
            current.last_error = None
        else:
            current.failure_count += 1
            current.last_error = execution.error_message
        current.next_run = self.next_run_for(current, now)
        current.updated_at = now
        await self.schedules.save(current)

    # =========================================================================
    # Loop
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start the scheduler loop on the running event loop"""
        if self.running:
            logger.warning("scheduler_already_running")
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("report_scheduler_started", tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        """Stop the loop; executions already running are allowed to finish"""
        if not self.running:
            return
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None
        logger.info("report_scheduler_stopped", in_flight=len(self._in_flight))

    async def run_maintenance(self) -> None:
        """Expire old reports and drop finished progress entries"""
        await self.generator.expire_reports()
        purged = self.generator.progress_store.purge_expired()
        if purged:
            logger.debug("progress_entries_purged", count=purged)

    async def _scheduler_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("scheduler_tick_failed", error=str(e), exc_info=True)

            try:
                await self.run_maintenance()
            except Exception as e:
                logger.error("scheduler_maintenance_failed", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
