"""
Analytics Reports REST API

Provides endpoints for:
- Generating reports and polling their progress
- Listing and downloading generated reports
- Managing and executing scheduled reports
- Discovering templates and data sources
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from .exceptions import (
    ExecutionNotFound,
    ReportingError,
    ReportNotFound,
    ScheduleNotFound,
    TemplateNotFound,
)
from .models import (
    DeliveryOptions,
    ExportFormat,
    ReportFilters,
    ReportStatus,
    ReportType,
    ScheduleFrequency,
)
from .service import ReportingService

reports_router = APIRouter(prefix="/api/reports", tags=["reports"])

NOT_FOUND_ERRORS = (ReportNotFound, ScheduleNotFound, TemplateNotFound, ExecutionNotFound)


def get_service(request: Request) -> ReportingService:
    return request.app.state.reporting_service


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, NOT_FOUND_ERRORS):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


# ============================================================================
# Request/Response Models
# ============================================================================

class RecipientModel(BaseModel):
    email: str
    name: Optional[str] = None
    role: Optional[str] = None


class DeliveryModel(BaseModel):
    """Delivery settings of a scheduled report"""
    method: str = "email"
    recipients: List[RecipientModel] = Field(default_factory=list)
    subject_template: Optional[str] = None
    message_template: Optional[str] = None
    attachment_name_template: Optional[str] = None

    def to_options(self) -> DeliveryOptions:
        return DeliveryOptions.from_dict(self.model_dump())


class GenerateReportRequest(BaseModel):
    """Request to generate a report"""
    template_id: str
    format: str = "pdf"
    requester_id: str
    filters: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    description: str = ""
    organization_id: Optional[str] = None


class GenerateReportResponse(BaseModel):
    report_id: str
    status: str


class ProgressResponse(BaseModel):
    """Generation progress"""
    report_id: str
    status: str
    progress: int
    message: str
    current_section: Optional[str] = None
    error: Optional[str] = None


class CreateScheduledReportRequest(BaseModel):
    """Request to create a scheduled report"""
    name: str
    template_id: str
    frequency: str
    formats: List[str]
    created_by: str
    filters: Optional[Dict[str, Any]] = None
    cron_expression: Optional[str] = None
    delivery: Optional[DeliveryModel] = None
    description: str = ""
    organization_id: Optional[str] = None


class UpdateScheduledReportRequest(BaseModel):
    """Partial update of a scheduled report; omitted fields are unchanged"""
    name: Optional[str] = None
    description: Optional[str] = None
    template_id: Optional[str] = None
    frequency: Optional[str] = None
    cron_expression: Optional[str] = None
    formats: Optional[List[str]] = None
    filters: Optional[Dict[str, Any]] = None
    delivery: Optional[DeliveryModel] = None
    active: Optional[bool] = None

    def to_changes(self) -> Dict[str, Any]:
        # explicit nulls are passed through and rejected by the scheduler where not allowed
        changes = self.model_dump(exclude_unset=True)
        if changes.get("frequency") is not None:
            changes["frequency"] = ScheduleFrequency(changes["frequency"])
        if changes.get("formats") is not None:
            changes["formats"] = [ExportFormat(f) for f in changes["formats"]]
        if changes.get("filters") is not None:
            changes["filters"] = ReportFilters.from_dict(changes["filters"])
        if changes.get("delivery") is not None:
            changes["delivery"] = DeliveryOptions.from_dict(changes["delivery"])
        return changes


class ExecuteResponse(BaseModel):
    schedule_id: str
    execution_id: str


# ============================================================================
# Generation endpoints
# ============================================================================

@reports_router.post("/generate", response_model=GenerateReportResponse, status_code=202)
async def generate_report(request: GenerateReportRequest, service: ReportingService = Depends(get_service)):
    """Start generating a report; poll /progress/{report_id} for its state"""
    try:
        report_id = await service.generate_report(
            template_id=request.template_id,
            export_format=ExportFormat(request.format),
            requester_id=request.requester_id,
            filters=ReportFilters.from_dict(request.filters),
            name=request.name,
            description=request.description,
            organization_id=request.organization_id,
        )
    except (ReportingError, ValueError, KeyError) as e:
        raise _http_error(e)
    return GenerateReportResponse(report_id=report_id, status=ReportStatus.PENDING.value)


@reports_router.get("/progress/{report_id}", response_model=ProgressResponse)
async def get_generation_progress(report_id: str, service: ReportingService = Depends(get_service)):
    progress = await service.get_generation_progress(report_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No progress for report {report_id}")
    return ProgressResponse(
        report_id=progress.report_id,
        status=progress.status.value,
        progress=progress.progress,
        message=progress.message,
        current_section=progress.current_section,
        error=progress.error,
    )


@reports_router.get("/generated")
async def list_generated_reports(
    user_id: str,
    organization_id: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    service: ReportingService = Depends(get_service),
):
    page = await service.get_generated_reports(user_id, organization_id, limit, offset)
    return page.to_dict()


@reports_router.get("/generated/{report_id}")
async def get_generated_report(report_id: str, service: ReportingService = Depends(get_service)):
    try:
        report = await service.get_generated_report(report_id)
    except ReportNotFound as e:
        raise _http_error(e)
    return report.to_dict()


@reports_router.get("/generated/{report_id}/download")
async def download_report(report_id: str, service: ReportingService = Depends(get_service)):
    """Stream a completed report artifact"""
    try:
        report = await service.get_generated_report(report_id)
    except ReportNotFound as e:
        raise _http_error(e)

    if report.status == ReportStatus.EXPIRED:
        raise HTTPException(status_code=410, detail="Report has expired")
    if report.status != ReportStatus.COMPLETED or not report.file_path:
        raise HTTPException(status_code=409, detail=f"Report is {report.status.value}")

    path = Path(report.file_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="Report file is no longer available")
    return FileResponse(path, media_type=report.format.content_type, filename=path.name)


@reports_router.get("/statistics")
async def get_generation_statistics(service: ReportingService = Depends(get_service)):
    return service.get_generation_statistics()


# ============================================================================
# Discovery endpoints
# ============================================================================

@reports_router.get("/templates")
async def search_templates(
    query: Optional[str] = None,
    report_type: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[List[str]] = Query(default=None),
    service: ReportingService = Depends(get_service),
):
    try:
        parsed_type = ReportType(report_type) if report_type else None
    except ValueError as e:
        raise _http_error(e)
    templates = await service.search_templates(query, parsed_type, category, tags)
    return [template.to_dict() for template in templates]


@reports_router.get("/data-sources")
async def list_data_sources(service: ReportingService = Depends(get_service)):
    return service.list_data_sources()


# ============================================================================
# Scheduling endpoints
# ============================================================================

@reports_router.post("/scheduled", status_code=201)
async def create_scheduled_report(
    request: CreateScheduledReportRequest,
    service: ReportingService = Depends(get_service),
):
    try:
        scheduled_report = await service.create_scheduled_report(
            name=request.name,
            template_id=request.template_id,
            frequency=ScheduleFrequency(request.frequency),
            formats=[ExportFormat(f) for f in request.formats],
            created_by=request.created_by,
            filters=ReportFilters.from_dict(request.filters),
            cron_expression=request.cron_expression,
            delivery=request.delivery.to_options() if request.delivery else None,
            description=request.description,
            organization_id=request.organization_id,
        )
    except (ReportingError, ValueError, KeyError) as e:
        raise _http_error(e)
    return scheduled_report.to_dict()


@reports_router.get("/scheduled")
async def list_scheduled_reports(user_id: str, service: ReportingService = Depends(get_service)):
    return [s.to_dict() for s in await service.list_scheduled_reports(user_id)]


@reports_router.get("/scheduled/{schedule_id}")
async def get_scheduled_report(schedule_id: str, service: ReportingService = Depends(get_service)):
    try:
        scheduled_report = await service.get_scheduled_report(schedule_id)
    except ScheduleNotFound as e:
        raise _http_error(e)
    return scheduled_report.to_dict()


@reports_router.patch("/scheduled/{schedule_id}")
async def update_scheduled_report(
    schedule_id: str,
    request: UpdateScheduledReportRequest,
    service: ReportingService = Depends(get_service),
):
    try:
        scheduled_report = await service.update_scheduled_report(schedule_id, **request.to_changes())
    except (ReportingError, ValueError, KeyError) as e:
        raise _http_error(e)
    return scheduled_report.to_dict()


@reports_router.delete("/scheduled/{schedule_id}")
async def delete_scheduled_report(schedule_id: str, service: ReportingService = Depends(get_service)):
    try:
        await service.delete_scheduled_report(schedule_id)
    except ScheduleNotFound as e:
        raise _http_error(e)
    return {"success": True, "schedule_id": schedule_id}


@reports_router.post("/scheduled/{schedule_id}/toggle")
async def toggle_scheduled_report(schedule_id: str, service: ReportingService = Depends(get_service)):
    try:
        scheduled_report = await service.toggle_scheduled_report(schedule_id)
    except ScheduleNotFound as e:
        raise _http_error(e)
    return scheduled_report.to_dict()


@reports_router.post("/scheduled/{schedule_id}/execute", response_model=ExecuteResponse, status_code=202)
async def execute_scheduled_report(schedule_id: str, service: ReportingService = Depends(get_service)):
    """Run a scheduled report now"""
    try:
        execution_id = await service.execute_scheduled_report(schedule_id)
    except ScheduleNotFound as e:
        raise _http_error(e)
    return ExecuteResponse(schedule_id=schedule_id, execution_id=execution_id)


@reports_router.get("/executions/{execution_id}")
async def get_execution_status(execution_id: str, service: ReportingService = Depends(get_service)):
    try:
        execution = service.get_execution_status(execution_id)
    except ExecutionNotFound as e:
        raise _http_error(e)
    return execution.to_dict()
