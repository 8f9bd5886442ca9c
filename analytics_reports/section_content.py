"""
Section Content

Typed content produced by the section processor. Every processed section
holds either one content variant or a SectionError; errors stay values until
an export backend turns them into display text.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .models import SectionType


@dataclass
class TextContent:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text}


@dataclass
class MetricTrend:
    direction: str  # up, down or stable
    percentage: float
    current: Optional[float] = None
    previous: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "percentage": self.percentage,
            "current": self.current,
            "previous": self.previous,
        }


@dataclass
class MetricContent:
    value: Any
    label: str
    aggregation: Optional[str] = None
    field: Optional[str] = None
    unit: Optional[str] = None
    trend: Optional[MetricTrend] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "aggregation": self.aggregation,
            "field": self.field,
            "unit": self.unit,
            "trend": self.trend.to_dict() if self.trend else None,
        }


@dataclass
class TableContent:
    headers: List[str]
    rows: List[List[Any]]
    summary: Optional[Dict[str, Dict[str, float]]] = None
    total_rows: int = 0
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headers": list(self.headers),
            "rows": [list(r) for r in self.rows],
            "summary": self.summary,
            "total_rows": self.total_rows,
            "truncated": self.truncated,
        }


@dataclass
class ChartContent:
    kind: str
    labels: List[Any] = field(default_factory=list)
    datasets: List[Dict[str, Any]] = field(default_factory=list)
    x_label: Optional[str] = None
    y_label: Optional[str] = None
    image_png: Optional[bytes] = None  # set when rasterized for embedding

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "data": {"labels": list(self.labels), "datasets": list(self.datasets)},
            "x_label": self.x_label,
            "y_label": self.y_label,
        }


@dataclass
class ImageContent:
    source: Optional[str] = None
    caption: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "caption": self.caption}


@dataclass
class DividerContent:

    def to_dict(self) -> Dict[str, Any]:
        return {}


SectionContent = Union[
    TextContent, MetricContent, TableContent, ChartContent, ImageContent, DividerContent
]


@dataclass
class SectionError:
    """Section-level failure kept as a value"""
    kind: str  # source_not_found, section_data_error or section_processing_error
    message: str
    source: Optional[str] = None

    def display(self) -> str:
        return f"Error loading data: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "source": self.source}


@dataclass
class ProcessedSection:
    """Section ready for rendering"""
    section_id: str
    type: SectionType
    order: int
    title: Optional[str] = None
    content: Optional[SectionContent] = None
    error: Optional[SectionError] = None
    data_points: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "type": self.type.value,
            "order": self.order,
            "title": self.title,
            # errors are stored in flattened form on the report record
            "content": self.error.display() if self.error else (
                self.content.to_dict() if self.content is not None else None
            ),
            "error": self.error.to_dict() if self.error else None,
        }
