"""
Report Models

Templates, filters, generated reports, scheduled reports and execution
records used across the generation and scheduling pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .exceptions import InvalidScheduleError, InvalidTemplateError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings or datetimes into aware UTC datetimes"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _months_before(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    # clamp to the last valid day of the target month
    day = moment.day
    while day > 28:
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return moment.replace(year=year, month=month, day=day)


# =============================================================================
# Enumerations
# =============================================================================

class ReportType(Enum):
    """Types of reports available"""
    TEAM_PERFORMANCE = "team-performance"
    PLAYER_PROGRESS = "player-progress"
    WORKOUT_EFFECTIVENESS = "workout-effectiveness"
    MEDICAL = "medical"
    ATTENDANCE = "attendance"
    CUSTOM_KPI = "custom-kpi"
    EXECUTIVE_SUMMARY = "executive-summary"
    CUSTOM = "custom"


class SectionType(Enum):
    """Report section types"""
    TEXT = "text"
    CHART = "chart"
    TABLE = "table"
    IMAGE = "image"
    METRIC = "metric"
    DIVIDER = "divider"


class ExportFormat(Enum):
    """Available export formats"""
    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"
    HTML = "html"

    @property
    def extension(self) -> str:
        return _FORMAT_EXTENSIONS[self]

    @property
    def content_type(self) -> str:
        return _FORMAT_CONTENT_TYPES[self]


_FORMAT_EXTENSIONS = {
    ExportFormat.PDF: "pdf",
    ExportFormat.EXCEL: "xlsx",
    ExportFormat.CSV: "csv",
    ExportFormat.HTML: "html",
}

_FORMAT_CONTENT_TYPES = {
    ExportFormat.PDF: "application/pdf",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.CSV: "text/csv",
    ExportFormat.HTML: "text/html",
}


class ReportStatus(Enum):
    """Generated report lifecycle"""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class ScheduleFrequency(Enum):
    """Schedule frequency options"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    CUSTOM = "custom"


class DeliveryMethod(Enum):
    """Report delivery methods"""
    EMAIL = "email"
    DOWNLOAD = "download"
    BOTH = "both"

    @property
    def includes_email(self) -> bool:
        return self in (DeliveryMethod.EMAIL, DeliveryMethod.BOTH)


class FilterOperator(Enum):
    """Custom filter predicate operators"""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"


class DatePreset(Enum):
    """Relative date ranges resolved at generation time"""
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_QUARTER = "last_quarter"
    CUSTOM = "custom"


class PageFormat(Enum):
    A4 = "a4"
    LETTER = "letter"
    LEGAL = "legal"


class Orientation(Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class ExecutionStatus(Enum):
    """Scheduled execution lifecycle"""
    PENDING = "pending"
    GENERATING = "generating"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self not in (
            ExecutionStatus.PENDING,
            ExecutionStatus.GENERATING,
            ExecutionStatus.DELIVERING,
        )


class DeliveryStatus(Enum):
    """Outcome of the delivery step, tracked apart from generation"""
    NOT_REQUESTED = "not_requested"
    NO_RECIPIENTS = "no_recipients"
    DELIVERED = "delivered"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# Filters
# =============================================================================

ENTITY_FILTER_FIELDS = ("teams", "players", "workout_types", "categories")


@dataclass
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self):
        self.start = parse_datetime(self.start)
        self.end = parse_datetime(self.end)
        if self.start > self.end:
            raise ValueError("date range start must not be after end")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def describe(self) -> str:
        return f"{self.start.strftime('%Y-%m-%d')} - {self.end.strftime('%Y-%m-%d')}"

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DateRange":
        return cls(start=data["start"], end=data["end"])


@dataclass
class CustomFilter:
    """Single field predicate"""
    field: str
    operator: FilterOperator
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomFilter":
        return cls(
            field=data["field"],
            operator=FilterOperator(data["operator"]),
            value=data.get("value"),
        )


@dataclass
class ReportFilters:
    """
    Filters applied to data source queries.

    All populated criteria combine with logical AND. Entity lists restrict
    rows to the listed ids when the data source carries the matching field.
    """
    date_range: Optional[DateRange] = None
    date_preset: Optional[DatePreset] = None
    teams: List[str] = field(default_factory=list)
    players: List[str] = field(default_factory=list)
    workout_types: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    custom_filters: List[CustomFilter] = field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            self.date_range is None
            and self.date_preset is None
            and not any(getattr(self, name) for name in ENTITY_FILTER_FIELDS)
            and not self.custom_filters
        )

    def copy(self) -> "ReportFilters":
        return ReportFilters(
            date_range=self.date_range,
            date_preset=self.date_preset,
            teams=list(self.teams),
            players=list(self.players),
            workout_types=list(self.workout_types),
            categories=list(self.categories),
            custom_filters=list(self.custom_filters),
        )

    def merge(self, *overrides: Optional["ReportFilters"]) -> "ReportFilters":
        """Layer overrides on top of these filters, later overrides win"""
        merged = self.copy()
        for override in overrides:
            if override is None:
                continue
            # a period given by an override replaces the whole inherited period
            if override.date_preset is not None:
                merged.date_preset = override.date_preset
                merged.date_range = None
            if override.date_range is not None:
                merged.date_range = override.date_range
                if merged.date_preset != DatePreset.CUSTOM:
                    merged.date_preset = None
            for name in ENTITY_FILTER_FIELDS:
                values = getattr(override, name)
                if values:
                    setattr(merged, name, list(values))
            merged.custom_filters.extend(override.custom_filters)
        return merged

    def resolve(self, now: Optional[datetime] = None) -> "ReportFilters":
        """Turn a relative date preset into a concrete date range"""
        if self.date_preset is None or self.date_preset == DatePreset.CUSTOM:
            return self
        now = now or utc_now()
        if self.date_preset == DatePreset.LAST_7_DAYS:
            start = now - timedelta(days=7)
        elif self.date_preset == DatePreset.LAST_30_DAYS:
            start = now - timedelta(days=30)
        else:
            start = _months_before(now, 3)
        resolved = self.copy()
        resolved.date_range = DateRange(start=start, end=now)
        resolved.date_preset = None
        return resolved

    def describe(self) -> Optional[str]:
        """Human readable summary shown under the report title"""
        parts = []
        if self.date_range:
            parts.append(f"Period: {self.date_range.describe()}")
        elif self.date_preset and self.date_preset != DatePreset.CUSTOM:
            parts.append(f"Period: {self.date_preset.value.replace('_', ' ')}")
        labels = {
            "teams": "Teams",
            "players": "Players",
            "workout_types": "Workout types",
            "categories": "Categories",
        }
        for name in ENTITY_FILTER_FIELDS:
            values = getattr(self, name)
            if values:
                parts.append(f"{labels[name]}: {', '.join(str(v) for v in values)}")
        for custom in self.custom_filters:
            parts.append(f"{custom.field} {custom.operator.value} {custom.value}")
        return "; ".join(parts) if parts else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "date_preset": self.date_preset.value if self.date_preset else None,
            "teams": list(self.teams),
            "players": list(self.players),
            "workout_types": list(self.workout_types),
            "categories": list(self.categories),
            "custom_filters": [f.to_dict() for f in self.custom_filters],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReportFilters":
        if not data:
            return cls()
        return cls(
            date_range=DateRange.from_dict(data["date_range"]) if data.get("date_range") else None,
            date_preset=DatePreset(data["date_preset"]) if data.get("date_preset") else None,
            teams=list(data.get("teams") or []),
            players=list(data.get("players") or []),
            workout_types=list(data.get("workout_types") or []),
            categories=list(data.get("categories") or []),
            custom_filters=[CustomFilter.from_dict(f) for f in data.get("custom_filters") or []],
        )


# =============================================================================
# Templates
# =============================================================================

@dataclass
class LayoutMargins:
    top: float = 50
    bottom: float = 50
    left: float = 50
    right: float = 50

    def to_dict(self) -> Dict[str, float]:
        return {"top": self.top, "bottom": self.bottom, "left": self.left, "right": self.right}


@dataclass
class HeaderFooter:
    enabled: bool = True
    content: str = ""
    height: float = 30
    show_page_numbers: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "content": self.content,
            "height": self.height,
            "show_page_numbers": self.show_page_numbers,
        }


@dataclass
class Theme:
    primary_color: str = "#4F46E5"
    secondary_color: str = "#6B7280"
    font_family: str = "Helvetica"
    font_size: int = 12

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
            "font_family": self.font_family,
            "font_size": self.font_size,
        }


@dataclass
class Layout:
    """Page layout and visual theme"""
    orientation: Orientation = Orientation.PORTRAIT
    page_format: PageFormat = PageFormat.A4
    margins: LayoutMargins = field(default_factory=LayoutMargins)
    header: Optional[HeaderFooter] = None
    footer: Optional[HeaderFooter] = None
    theme: Theme = field(default_factory=Theme)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orientation": self.orientation.value,
            "page_format": self.page_format.value,
            "margins": self.margins.to_dict(),
            "header": self.header.to_dict() if self.header else None,
            "footer": self.footer.to_dict() if self.footer else None,
            "theme": self.theme.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Layout":
        if not data:
            return cls()
        return cls(
            orientation=Orientation(data.get("orientation", "portrait")),
            page_format=PageFormat(data.get("page_format", "a4")),
            margins=LayoutMargins(**data.get("margins", {})),
            header=HeaderFooter(**data["header"]) if data.get("header") else None,
            footer=HeaderFooter(**data["footer"]) if data.get("footer") else None,
            theme=Theme(**data.get("theme", {})),
        )


@dataclass
class TemplatePermissions:
    view: Set[str] = field(default_factory=set)
    edit: Set[str] = field(default_factory=set)
    admin: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "view": sorted(self.view),
            "edit": sorted(self.edit),
            "admin": sorted(self.admin),
        }


@dataclass
class TemplateMetadata:
    author: str = ""
    tags: List[str] = field(default_factory=list)
    category: str = "general"
    permissions: TemplatePermissions = field(default_factory=TemplatePermissions)
    is_public: bool = False
    version: str = "1.0.0"
    last_modified: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author,
            "tags": list(self.tags),
            "category": self.category,
            "permissions": self.permissions.to_dict(),
            "is_public": self.is_public,
            "version": self.version,
            "last_modified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TemplateMetadata":
        if not data:
            return cls()
        permissions = data.get("permissions") or {}
        return cls(
            author=data.get("author", ""),
            tags=list(data.get("tags") or []),
            category=data.get("category", "general"),
            permissions=TemplatePermissions(
                view=set(permissions.get("view") or []),
                edit=set(permissions.get("edit") or []),
                admin=set(permissions.get("admin") or []),
            ),
            is_public=data.get("is_public", False),
            version=data.get("version", "1.0.0"),
            last_modified=parse_datetime(data.get("last_modified")) or utc_now(),
        )


@dataclass
class TemplateSection:
    """Individual section definition within a template"""
    section_id: str
    type: SectionType
    order: int
    title: Optional[str] = None
    content: Any = None
    config: Dict[str, Any] = field(default_factory=dict)
    data_source: Optional[str] = None
    filters: Optional[ReportFilters] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "type": self.type.value,
            "order": self.order,
            "title": self.title,
            "content": self.content,
            "config": dict(self.config),
            "data_source": self.data_source,
            "filters": self.filters.to_dict() if self.filters else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateSection":
        return cls(
            section_id=data["section_id"],
            type=SectionType(data["type"]),
            order=int(data["order"]),
            title=data.get("title"),
            content=data.get("content"),
            config=dict(data.get("config") or {}),
            data_source=data.get("data_source"),
            filters=ReportFilters.from_dict(data["filters"]) if data.get("filters") else None,
        )


@dataclass
class ReportTemplate:
    """Report template definition"""
    template_id: str
    name: str
    report_type: ReportType
    sections: List[TemplateSection] = field(default_factory=list)
    description: str = ""
    category: str = "general"
    layout: Layout = field(default_factory=Layout)
    default_filters: ReportFilters = field(default_factory=ReportFilters)
    metadata: TemplateMetadata = field(default_factory=TemplateMetadata)
    created_by: str = "system"
    is_system: bool = False
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def validate(self) -> None:
        """Raise InvalidTemplateError when section orders collide"""
        seen = {}
        for section in self.sections:
            if section.order in seen:
                raise InvalidTemplateError(
                    f"Template {self.template_id}: sections '{seen[section.order]}' and "
                    f"'{section.section_id}' share order {section.order}"
                )
            seen[section.order] = section.section_id

    def ordered_sections(self) -> List[TemplateSection]:
        return sorted(self.sections, key=lambda s: s.order)

    def bump_version(self, part: str = "patch") -> str:
        """Increase the semantic version after an update"""
        major, minor, patch = (int(p) for p in self.metadata.version.split("."))
        if part == "major":
            major, minor, patch = major + 1, 0, 0
        elif part == "minor":
            minor, patch = minor + 1, 0
        elif part == "patch":
            patch += 1
        else:
            raise ValueError(f"Unknown version part: {part}")

        self.metadata.version = f"{major}.{minor}.{patch}"
        self.metadata.last_modified = utc_now()
        self.updated_at = self.metadata.last_modified
        return self.metadata.version

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "report_type": self.report_type.value,
            "category": self.category,
            "sections": [s.to_dict() for s in self.ordered_sections()],
            "layout": self.layout.to_dict(),
            "default_filters": self.default_filters.to_dict(),
            "metadata": self.metadata.to_dict(),
            "created_by": self.created_by,
            "is_system": self.is_system,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportTemplate":
        template = cls(
            template_id=data["template_id"],
            name=data["name"],
            report_type=ReportType(data.get("report_type", "custom")),
            sections=[TemplateSection.from_dict(s) for s in data.get("sections") or []],
            description=data.get("description", ""),
            category=data.get("category", "general"),
            layout=Layout.from_dict(data.get("layout")),
            default_filters=ReportFilters.from_dict(data.get("default_filters")),
            metadata=TemplateMetadata.from_dict(data.get("metadata")),
            created_by=data.get("created_by", "system"),
            is_system=data.get("is_system", False),
            is_active=data.get("is_active", True),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
        )
        template.validate()
        return template


# =============================================================================
# Generated reports
# =============================================================================

@dataclass
class GenerationMetadata:
    file_size: int = 0
    page_count: Optional[int] = None
    sheet_count: Optional[int] = None
    generation_time_ms: int = 0
    data_point_count: int = 0
    section_error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_size": self.file_size,
            "page_count": self.page_count,
            "sheet_count": self.sheet_count,
            "generation_time_ms": self.generation_time_ms,
            "data_point_count": self.data_point_count,
            "section_error_count": self.section_error_count,
        }


@dataclass
class GeneratedReport:
    """One generation attempt and its artifact"""
    report_id: str
    name: str
    template_id: str
    format: ExportFormat
    generated_by: str
    filters: ReportFilters = field(default_factory=ReportFilters)
    description: str = ""
    organization_id: Optional[str] = None
    scheduled_report_id: Optional[str] = None
    status: ReportStatus = ReportStatus.PENDING
    sections: List[Dict[str, Any]] = field(default_factory=list)
    file_path: Optional[str] = None
    download_url: Optional[str] = None
    error_message: Optional[str] = None
    metadata: GenerationMetadata = field(default_factory=GenerationMetadata)
    created_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "name": self.name,
            "description": self.description,
            "template_id": self.template_id,
            "format": self.format.value,
            "generated_by": self.generated_by,
            "organization_id": self.organization_id,
            "scheduled_report_id": self.scheduled_report_id,
            "filters": self.filters.to_dict(),
            "status": self.status.value,
            "sections": self.sections,
            "file_path": self.file_path,
            "download_url": self.download_url,
            "error_message": self.error_message,
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "expires_at": _iso(self.expires_at),
        }


# =============================================================================
# Scheduled reports
# =============================================================================

@dataclass
class Recipient:
    email: str
    name: Optional[str] = None
    role: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "name": self.name, "role": self.role}


@dataclass
class DeliveryOptions:
    """How generated artifacts reach their recipients"""
    method: DeliveryMethod = DeliveryMethod.EMAIL
    recipients: List[Recipient] = field(default_factory=list)
    subject_template: Optional[str] = None
    message_template: Optional[str] = None
    attachment_name_template: Optional[str] = None

    def validate(self) -> None:
        for recipient in self.recipients:
            if "@" not in recipient.email:
                raise InvalidScheduleError(f"Invalid recipient email: {recipient.email}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "recipients": [r.to_dict() for r in self.recipients],
            "subject_template": self.subject_template,
            "message_template": self.message_template,
            "attachment_name_template": self.attachment_name_template,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DeliveryOptions":
        if not data:
            return cls()
        return cls(
            method=DeliveryMethod(data.get("method", "email")),
            recipients=[Recipient(**r) for r in data.get("recipients") or []],
            subject_template=data.get("subject_template"),
            message_template=data.get("message_template"),
            attachment_name_template=data.get("attachment_name_template"),
        )


@dataclass
class ScheduledReport:
    """Recurring report definition with run bookkeeping"""
    schedule_id: str
    name: str
    template_id: str
    frequency: ScheduleFrequency
    formats: List[ExportFormat]
    created_by: str
    description: str = ""
    filters: ReportFilters = field(default_factory=ReportFilters)
    cron_expression: Optional[str] = None
    delivery: DeliveryOptions = field(default_factory=DeliveryOptions)
    active: bool = True
    organization_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    run_count: int = 0
    failure_count: int = 0
    last_status: Optional[ExecutionStatus] = None
    last_error: Optional[str] = None
    last_delivery_status: Optional[DeliveryStatus] = None

    def validate(self) -> None:
        if not self.name:
            raise InvalidScheduleError("Scheduled report name is required")
        if not self.formats:
            raise InvalidScheduleError("At least one export format is required")
        if self.frequency == ScheduleFrequency.CUSTOM and not self.cron_expression:
            raise InvalidScheduleError("Custom schedules require a cron expression")
        self.delivery.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "name": self.name,
            "description": self.description,
            "template_id": self.template_id,
            "frequency": self.frequency.value,
            "cron_expression": self.cron_expression,
            "formats": [f.value for f in self.formats],
            "filters": self.filters.to_dict(),
            "delivery": self.delivery.to_dict(),
            "active": self.active,
            "created_by": self.created_by,
            "organization_id": self.organization_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "next_run": _iso(self.next_run),
            "last_run": _iso(self.last_run),
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
            "last_delivery_status": (
                self.last_delivery_status.value if self.last_delivery_status else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduledReport":
        return cls(
            schedule_id=data["schedule_id"],
            name=data["name"],
            description=data.get("description", ""),
            template_id=data["template_id"],
            frequency=ScheduleFrequency(data["frequency"]),
            cron_expression=data.get("cron_expression"),
            formats=[ExportFormat(f) for f in data.get("formats") or []],
            filters=ReportFilters.from_dict(data.get("filters")),
            delivery=DeliveryOptions.from_dict(data.get("delivery")),
            active=data.get("active", True),
            created_by=data["created_by"],
            organization_id=data.get("organization_id"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            next_run=parse_datetime(data.get("next_run")),
            last_run=parse_datetime(data.get("last_run")),
            run_count=data.get("run_count", 0),
            failure_count=data.get("failure_count", 0),
            last_status=ExecutionStatus(data["last_status"]) if data.get("last_status") else None,
            last_error=data.get("last_error"),
            last_delivery_status=(
                DeliveryStatus(data["last_delivery_status"])
                if data.get("last_delivery_status") else None
            ),
        )


@dataclass
class ScheduleExecution:
    """Record of one scheduled execution"""
    execution_id: str
    schedule_id: str
    started_at: datetime = field(default_factory=utc_now)
    status: ExecutionStatus = ExecutionStatus.PENDING
    completed_at: Optional[datetime] = None
    report_ids: Dict[str, str] = field(default_factory=dict)
    format_errors: Dict[str, str] = field(default_factory=dict)
    degraded_sections: int = 0
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_REQUESTED
    delivery_results: List[Dict[str, Any]] = field(default_factory=list)
    error_message: Optional[str] = None
    execution_time_seconds: Optional[float] = None
    manual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "schedule_id": self.schedule_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "report_ids": dict(self.report_ids),
            "format_errors": dict(self.format_errors),
            "degraded_sections": self.degraded_sections,
            "delivery_status": self.delivery_status.value,
            "delivery_results": list(self.delivery_results),
            "error_message": self.error_message,
            "execution_time_seconds": self.execution_time_seconds,
            "manual": self.manual,
        }
