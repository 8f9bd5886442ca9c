"""
Persistence interfaces and their in-memory / file implementations
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog
import yaml

from .models import GeneratedReport, ReportStatus, ReportTemplate, ReportType, ScheduledReport

logger = structlog.get_logger()

_SAFE_FILE_NAME = re.compile(r"^[\w.\-]+$")


# =============================================================================
# Artifact storage
# =============================================================================

@dataclass
class StoredArtifact:
    storage_path: str
    download_url: str


class ReportStorage(ABC):
    """Where rendered artifacts are written"""

    @abstractmethod
    async def save(self, file_name: str, payload: bytes) -> StoredArtifact:
        ...

    @abstractmethod
    def resolve(self, file_name: str) -> Path:
        ...


class LocalReportStorage(ReportStorage):
    """Artifacts on the local filesystem, served under a URL prefix"""

    def __init__(self, export_dir: Union[str, Path], url_prefix: str = "/api/exports"):
        self.export_dir = Path(export_dir)
        self.export_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")

    async def save(self, file_name: str, payload: bytes) -> StoredArtifact:
        path = self.resolve(file_name)
        path.write_bytes(payload)
        logger.info("artifact_saved", path=str(path), size=len(payload))
        return StoredArtifact(storage_path=str(path), download_url=f"{self.url_prefix}/{file_name}")

    def resolve(self, file_name: str) -> Path:
        if not _SAFE_FILE_NAME.match(file_name) or file_name.startswith("."):
            raise ValueError(f"Invalid artifact name: {file_name}")
        return self.export_dir / file_name


# =============================================================================
# Templates
# =============================================================================

class TemplateRepository(ABC):

    @abstractmethod
    async def get(self, template_id: str) -> Optional[ReportTemplate]:
        """Active template by id"""

    @abstractmethod
    async def save(self, template: ReportTemplate) -> None:
        ...

    @abstractmethod
    async def deactivate(self, template_id: str) -> bool:
        ...

    @abstractmethod
    async def search(
        self,
        query: Optional[str] = None,
        report_type: Optional[ReportType] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        public_only: bool = False,
    ) -> List[ReportTemplate]:
        ...


class InMemoryTemplateRepository(TemplateRepository):
    """Templates held in memory, optionally loaded from YAML/JSON files"""

    def __init__(self, templates: Optional[List[ReportTemplate]] = None):
        self._templates: Dict[str, ReportTemplate] = {}
        for template in templates or []:
            template.validate()
            self._templates[template.template_id] = template

    def load_directory(self, directory: Union[str, Path]) -> int:
        """Load *.yaml, *.yml and *.json template files"""
        loaded = 0
        for path in sorted(Path(directory).glob("*")):
            if path.suffix not in (".yaml", ".yml", ".json"):
                continue
            with open(path, "r") as f:
                data = yaml.safe_load(f) if path.suffix != ".json" else json.load(f)
            template = ReportTemplate.from_dict(data)
            self._templates[template.template_id] = template
            loaded += 1
            logger.info("template_loaded", template_id=template.template_id, path=str(path))
        return loaded

    async def get(self, template_id: str) -> Optional[ReportTemplate]:
        template = self._templates.get(template_id)
        if template is None or not template.is_active:
            return None
        return template

    async def save(self, template: ReportTemplate) -> None:
        template.validate()
        existing = self._templates.get(template.template_id)
        if existing is not None and existing.is_system:
            raise ValueError(f"System template {template.template_id} cannot be modified")
        self._templates[template.template_id] = template

    async def deactivate(self, template_id: str) -> bool:
        template = self._templates.get(template_id)
        if template is None or template.is_system:
            return False
        template.is_active = False
        return True

    async def search(
        self,
        query: Optional[str] = None,
        report_type: Optional[ReportType] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        public_only: bool = False,
    ) -> List[ReportTemplate]:
        results = []
        for template in self._templates.values():
            if not template.is_active:
                continue
            if query and query.lower() not in f"{template.name} {template.description}".lower():
                continue
            if report_type and template.report_type != report_type:
                continue
            if category and template.category != category:
                continue
            if tags and not set(tags) & set(template.metadata.tags):
                continue
            if public_only and not (template.metadata.is_public or template.is_system):
                continue
            results.append(template)
        return sorted(results, key=lambda t: t.name)


# =============================================================================
# Generated reports
# =============================================================================

class GeneratedReportRepository(ABC):

    @abstractmethod
    async def save(self, report: GeneratedReport) -> None:
        ...

    @abstractmethod
    async def get(self, report_id: str) -> Optional[GeneratedReport]:
        ...

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[GeneratedReport], int]:
        """Newest first page of reports plus the total count"""

    @abstractmethod
    async def list_expirable(self, now: datetime) -> List[GeneratedReport]:
        ...


class InMemoryGeneratedReportRepository(GeneratedReportRepository):

    def __init__(self):
        self._reports: Dict[str, GeneratedReport] = {}

    async def save(self, report: GeneratedReport) -> None:
        self._reports[report.report_id] = report

    async def get(self, report_id: str) -> Optional[GeneratedReport]:
        return self._reports.get(report_id)

    async def list_for_user(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[GeneratedReport], int]:
        matching = [
            report for report in self._reports.values()
            if report.generated_by == user_id
            and (organization_id is None or report.organization_id == organization_id)
        ]
        matching.sort(key=lambda r: r.created_at, reverse=True)
        return matching[offset:offset + limit], len(matching)

    async def list_expirable(self, now: datetime) -> List[GeneratedReport]:
        return [
            report for report in self._reports.values()
            if report.status == ReportStatus.COMPLETED and report.is_expired(now)
        ]


# =============================================================================
# Scheduled reports
# =============================================================================

class ScheduledReportRepository(ABC):

    @abstractmethod
    async def save(self, scheduled_report: ScheduledReport) -> None:
        ...

    @abstractmethod
    async def get(self, schedule_id: str) -> Optional[ScheduledReport]:
        ...

    @abstractmethod
    async def delete(self, schedule_id: str) -> bool:
        ...

    @abstractmethod
    async def list_all(self) -> List[ScheduledReport]:
        ...

    async def list_for_user(self, user_id: str) -> List[ScheduledReport]:
        schedules = await self.list_all()
        return sorted(
            (s for s in schedules if s.created_by == user_id),
            key=lambda s: s.created_at,
            reverse=True,
        )


class InMemoryScheduledReportRepository(ScheduledReportRepository):

    def __init__(self):
        self._schedules: Dict[str, ScheduledReport] = {}

    async def save(self, scheduled_report: ScheduledReport) -> None:
        self._schedules[scheduled_report.schedule_id] = scheduled_report

    async def get(self, schedule_id: str) -> Optional[ScheduledReport]:
        return self._schedules.get(schedule_id)

    async def delete(self, schedule_id: str) -> bool:
        return self._schedules.pop(schedule_id, None) is not None

    async def list_all(self) -> List[ScheduledReport]:
        return list(self._schedules.values())


class JsonScheduledReportRepository(InMemoryScheduledReportRepository):
    """Scheduled reports persisted as one JSON file each"""

    def __init__(self, schedules_dir: Union[str, Path]):
        super().__init__()
        self.schedules_dir = Path(schedules_dir)
        self.schedules_dir.mkdir(parents=True, exist_ok=True)
        self._load_schedules()

    def _load_schedules(self) -> None:
        for schedule_file in self.schedules_dir.glob("*.json"):
            try:
                with open(schedule_file, "r") as f:
                    scheduled_report = ScheduledReport.from_dict(json.load(f))
            except (OSError, ValueError, KeyError) as e:
                logger.error("schedule_load_failed", path=str(schedule_file), error=str(e))
                continue
            self._schedules[scheduled_report.schedule_id] = scheduled_report
            logger.info("schedule_loaded", schedule_id=scheduled_report.schedule_id)

    async def save(self, scheduled_report: ScheduledReport) -> None:
        await super().save(scheduled_report)
        schedule_file = self.schedules_dir / f"{scheduled_report.schedule_id}.json"
        with open(schedule_file, "w") as f:
            json.dump(scheduled_report.to_dict(), f, indent=2, default=str)

    async def delete(self, schedule_id: str) -> bool:
        removed = await super().delete(schedule_id)
        schedule_file = self.schedules_dir / f"{schedule_id}.json"
        if schedule_file.exists():
            schedule_file.unlink()
        return removed
