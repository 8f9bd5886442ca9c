"""
Section Processor

Resolves template sections into typed content. Data fetching is the only
asynchronous step; per-type processing is pure and deterministic.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import structlog

from .data_sources import DataAggregator, SourceData
from .exceptions import SectionDataError, SourceNotFound
from .formatting import format_value
from .models import ReportFilters, ReportTemplate, SectionType, TemplateSection, parse_datetime, utc_now
from .section_content import (
    ChartContent,
    DividerContent,
    ImageContent,
    MetricContent,
    MetricTrend,
    ProcessedSection,
    SectionContent,
    SectionError,
    TableContent,
    TextContent,
)

logger = structlog.get_logger()

VARIABLE_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")
AGGREGATIONS = ("sum", "avg", "count", "max", "min")
AXIS_CHARTS = ("line", "bar", "area")
RADIAL_CHARTS = ("pie", "doughnut")
DEFAULT_TABLE_MAX_ROWS = 100

_MISSING = object()


@dataclass
class SectionData:
    """Fetch outcome for one data-bound section"""
    section_id: str
    source: str
    data: Optional[SourceData] = None
    error: Optional[SectionError] = None

    @property
    def record_count(self) -> int:
        if self.error is not None or self.data is None:
            return 0
        if isinstance(self.data, list):
            return len(self.data)
        return 1


# =============================================================================
# Helpers
# =============================================================================

def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _clean_number(value: float, precision: int = 2) -> Any:
    rounded = round(float(value), precision)
    return int(rounded) if rounded.is_integer() else rounded


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dotted path through dicts and list indexes"""
    current = data
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _as_records(section: TemplateSection, data: SourceData) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        return [
            {"label": key, "value": value}
            for key, value in data.items()
            if not isinstance(value, (dict, list))
        ]
    if not all(isinstance(row, dict) for row in data):
        raise SectionDataError(
            f"Section '{section.section_id}' expected row records from {section.data_source}",
            section.data_source,
        )
    return data


def _label(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_value(value)
    return value


# =============================================================================
# Text
# =============================================================================

def substitute_variables(
    text: str,
    context: Dict[str, Any],
    section_data: Any = None,
    data_map: Optional[Dict[str, Any]] = None,
) -> str:
    """Replace {{variable}} tokens; unresolved names render as [variable]"""

    def replace(match):
        name = match.group(1)
        if name in context:
            return format_value(context[name])
        for scope in (section_data, data_map):
            if scope is None:
                continue
            value = lookup_path(scope, name)
            if value is not _MISSING:
                return format_value(value)
        return f"[{name}]"

    return VARIABLE_PATTERN.sub(replace, text)


def build_variable_context(
    filters: ReportFilters,
    fetched: Dict[str, SectionData],
    now: datetime,
) -> Dict[str, Any]:
    """Well-known variables available to every text section"""
    team_ids, player_ids = set(), set()
    for entry in fetched.values():
        if isinstance(entry.data, list):
            for row in entry.data:
                if isinstance(row, dict):
                    if row.get("team_id") is not None:
                        team_ids.add(row["team_id"])
                    if row.get("player_id") is not None:
                        player_ids.add(row["player_id"])

    return {
        "current_date": now.strftime("%Y-%m-%d"),
        "date_range": filters.date_range.describe() if filters.date_range else "All time",
        "team_count": len(filters.teams) if filters.teams else len(team_ids),
        "player_count": len(filters.players) if filters.players else len(player_ids),
    }


def process_text(
    section: TemplateSection,
    data: Optional[SourceData],
    context: Dict[str, Any],
    data_map: Dict[str, Any],
) -> TextContent:
    if isinstance(section.content, str):
        text = section.content
    elif isinstance(section.content, dict):
        text = str(section.content.get("text", ""))
    elif isinstance(data, str):
        text = data
    else:
        text = ""
    return TextContent(text=substitute_variables(text, context, data, data_map))


# =============================================================================
# Metric
# =============================================================================

def aggregate(rows: List[Dict[str, Any]], field_name: str, aggregation: str) -> float:
    """Reduce a numeric field across rows"""
    if aggregation not in AGGREGATIONS:
        raise SectionDataError(f"Unsupported aggregation: {aggregation}")

    if aggregation == "count":
        return len([row for row in rows if row.get(field_name) is not None])

    series = pd.to_numeric(
        pd.Series([row.get(field_name) for row in rows], dtype=object),
        errors="coerce",
    ).dropna()
    if series.empty:
        return 0

    if aggregation == "sum":
        return float(series.sum())
    if aggregation == "avg":
        return float(series.mean())
    if aggregation == "max":
        return float(series.max())
    return float(series.min())


def compute_trend(
    rows: List[Dict[str, Any]],
    field_name: str,
    date_field: str = "date",
) -> Optional[MetricTrend]:
    """Compare the two chronologically last data points"""
    points = []
    for row in rows:
        value = _to_number(row.get(field_name))
        if value is not None:
            points.append((row.get(date_field), value))
    if len(points) < 2:
        return None

    if all(moment is not None for moment, _ in points):
        points.sort(key=lambda point: parse_datetime(point[0]))

    previous, current = points[-2][1], points[-1][1]
    if previous == 0:
        return MetricTrend(direction="stable", percentage=0.0, current=current, previous=previous)

    change = (current - previous) / abs(previous) * 100
    if change > 0:
        direction = "up"
    elif change < 0:
        direction = "down"
    else:
        direction = "stable"
    return MetricTrend(
        direction=direction,
        percentage=round(change, 2),
        current=current,
        previous=previous,
    )


def process_metric(section: TemplateSection, data: Optional[SourceData]) -> MetricContent:
    config = section.config
    field_name = config.get("field", "value")
    label = config.get("label") or section.title or field_name
    unit = config.get("unit")
    precision = int(config.get("precision", 2))

    if data is None:
        content = section.content if isinstance(section.content, dict) else {"value": section.content}
        return MetricContent(
            value=content.get("value"),
            label=content.get("label", label),
            unit=content.get("unit", unit),
        )

    if isinstance(data, dict):
        value = lookup_path(data, field_name)
        if value is _MISSING:
            raise SectionDataError(
                f"Field '{field_name}' not present in {section.data_source}", section.data_source
            )
        return MetricContent(value=value, label=label, field=field_name, unit=unit)

    aggregation = config.get("aggregation", "avg")
    rows = _as_records(section, data)
    value = aggregate(rows, field_name, aggregation)

    trend = None
    if config.get("show_trend", True):
        trend = compute_trend(rows, field_name, config.get("date_field", "date"))

    return MetricContent(
        value=_clean_number(value, precision),
        label=label,
        aggregation=aggregation,
        field=field_name,
        unit=unit,
        trend=trend,
    )


# =============================================================================
# Table
# =============================================================================

def summarize_columns(
    records: List[Dict[str, Any]], headers: List[str]
) -> Dict[str, Dict[str, float]]:
    """Summary statistics for every numeric column"""
    if not records:
        return {}

    df = pd.DataFrame([{h: record.get(h) for h in headers} for record in records], dtype=object)
    summary = {}
    for header in headers:
        column = df[header]
        present = column.dropna()
        if present.empty or any(isinstance(v, bool) for v in present):
            continue
        numeric = pd.to_numeric(present, errors="coerce")
        if numeric.isna().any():
            continue
        summary[header] = {
            "sum": _clean_number(numeric.sum()),
            "avg": _clean_number(numeric.mean()),
            "min": _clean_number(numeric.min()),
            "max": _clean_number(numeric.max()),
            "count": int(numeric.count()),
        }
    return summary


def process_table(
    section: TemplateSection,
    data: Optional[SourceData],
    default_max_rows: int = DEFAULT_TABLE_MAX_ROWS,
) -> TableContent:
    config = section.config
    max_rows = int(config.get("max_rows", default_max_rows))

    if data is None:
        content = section.content or {}
        headers = list(content.get("headers", []))
        rows = [list(r) for r in content.get("rows", [])]
        return TableContent(
            headers=headers,
            rows=rows[:max_rows],
            total_rows=len(rows),
            truncated=len(rows) > max_rows,
        )

    if isinstance(data, dict):
        records = [
            {"metric": key, "value": value}
            for key, value in data.items()
            if not isinstance(value, (dict, list))
        ]
    else:
        records = _as_records(section, data)

    headers = list(config.get("columns") or (list(records[0].keys()) if records else []))
    rows = [[record.get(h) for h in headers] for record in records[:max_rows]]
    summary = summarize_columns(records, headers) if config.get("show_summary") else None

    return TableContent(
        headers=headers,
        rows=rows,
        summary=summary,
        total_rows=len(records),
        truncated=len(records) > max_rows,
    )


# =============================================================================
# Chart
# =============================================================================

def process_chart(section: TemplateSection, data: Optional[SourceData]) -> ChartContent:
    config = section.config
    kind = config.get("chart_type", "bar")

    if data is None:
        content = section.content or {}
        return ChartContent(
            kind=content.get("kind", kind),
            labels=list(content.get("labels", [])),
            datasets=list(content.get("datasets", [])),
        )

    if kind not in AXIS_CHARTS + RADIAL_CHARTS:
        raise SectionDataError(f"Unsupported chart type: {kind}", section.data_source)

    records = _as_records(section, data)
    from_dict = isinstance(data, dict)

    if kind in RADIAL_CHARTS:
        label_field = "label" if from_dict else config.get("label_field", "label")
        value_field = "value" if from_dict else config.get("value_field", "value")
        return ChartContent(
            kind=kind,
            labels=[_label(row.get(label_field)) for row in records],
            datasets=[{
                "label": section.title or value_field,
                "data": [_to_number(row.get(value_field)) for row in records],
            }],
        )

    x_field = "label" if from_dict else config.get("x_field", "date")
    y_fields = ["value"] if from_dict else (config.get("y_fields") or [config.get("y_field", "value")])
    return ChartContent(
        kind=kind,
        labels=[_label(row.get(x_field)) for row in records],
        datasets=[
            {"label": y, "data": [_to_number(row.get(y)) for row in records]}
            for y in y_fields
        ],
        x_label=config.get("x_label", x_field),
        y_label=config.get("y_label", y_fields[0] if len(y_fields) == 1 else None),
    )


def process_image(section: TemplateSection) -> ImageContent:
    if isinstance(section.content, dict):
        return ImageContent(
            source=section.content.get("source") or section.content.get("url"),
            caption=section.content.get("caption"),
        )
    return ImageContent(source=section.content, caption=section.title)


# =============================================================================
# Processor
# =============================================================================

class SectionProcessor:
    """
    Turns template sections into ProcessedSection values.

    fetch_section_data() asks the aggregator for every data-bound section and
    keeps failures as SectionError values; process_sections() then produces
    content for every section in template order.
    """

    def __init__(
        self,
        aggregator: DataAggregator,
        table_max_rows: int = DEFAULT_TABLE_MAX_ROWS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.aggregator = aggregator
        self.table_max_rows = table_max_rows
        self.clock = clock

    async def fetch_section_data(
        self,
        template: ReportTemplate,
        request_filters: Optional[ReportFilters] = None,
        on_section: Optional[Callable[[TemplateSection], None]] = None,
    ) -> Dict[str, SectionData]:
        fetched: Dict[str, SectionData] = {}

        for section in template.ordered_sections():
            if not section.data_source:
                continue
            if on_section is not None:
                on_section(section)

            filters = template.default_filters.merge(section.filters, request_filters).resolve(self.clock())
            entry = SectionData(section_id=section.section_id, source=section.data_source)
            try:
                entry.data = await self.aggregator.fetch(section.data_source, filters)
            except SourceNotFound as e:
                logger.warning(
                    "section_source_not_found",
                    section_id=section.section_id,
                    source=section.data_source,
                )
                entry.error = SectionError("source_not_found", str(e), section.data_source)
            except Exception as e:
                logger.warning(
                    "section_data_failed",
                    section_id=section.section_id,
                    source=section.data_source,
                    error=str(e),
                )
                error = SectionDataError(str(e), section.data_source)
                entry.error = SectionError("section_data_error", str(error), section.data_source)
            fetched[section.section_id] = entry

        return fetched

    def process_sections(
        self,
        template: ReportTemplate,
        fetched: Dict[str, SectionData],
        request_filters: Optional[ReportFilters] = None,
    ) -> List[ProcessedSection]:
        filters = template.default_filters.merge(request_filters).resolve(self.clock())
        context = build_variable_context(filters, fetched, self.clock())
        data_map = {
            entry.source: entry.data
            for entry in fetched.values()
            if entry.error is None
        }
        return [
            self.process_section(section, fetched.get(section.section_id), context, data_map)
            for section in template.ordered_sections()
        ]

    def process_section(
        self,
        section: TemplateSection,
        section_data: Optional[SectionData],
        context: Dict[str, Any],
        data_map: Dict[str, Any],
    ) -> ProcessedSection:
        processed = ProcessedSection(
            section_id=section.section_id,
            type=section.type,
            order=section.order,
            title=section.title,
        )

        if section_data is not None and section_data.error is not None:
            processed.error = section_data.error
            return processed

        data = section_data.data if section_data is not None else None
        processed.data_points = section_data.record_count if section_data is not None else 0
        try:
            processed.content = self._build_content(section, data, context, data_map)
        except SectionDataError as e:
            processed.error = SectionError("section_data_error", str(e), section.data_source)
        except Exception as e:
            logger.warning(
                "section_processing_failed",
                section_id=section.section_id,
                section_type=section.type.value,
                error=str(e),
                exc_info=True,
            )
            processed.error = SectionError("section_processing_error", str(e), section.data_source)
        return processed

    def _build_content(
        self,
        section: TemplateSection,
        data: Optional[SourceData],
        context: Dict[str, Any],
        data_map: Dict[str, Any],
    ) -> SectionContent:
        if section.type == SectionType.TEXT:
            return process_text(section, data, context, data_map)
        if section.type == SectionType.METRIC:
            return process_metric(section, data)
        if section.type == SectionType.TABLE:
            return process_table(section, data, self.table_max_rows)
        if section.type == SectionType.CHART:
            return process_chart(section, data)
        if section.type == SectionType.IMAGE:
            return process_image(section)
        return DividerContent()
