"""
Display formatting shared by the section processor and every export backend
"""

import json
from datetime import date, datetime
from typing import Any, Optional

from .section_content import ChartContent, ImageContent, MetricContent, MetricTrend

TREND_SYMBOLS = {"up": "▲", "down": "▼", "stable": "▬"}


def format_value(value: Any) -> str:
    """Render a scalar for text output"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.2f}".rstrip("0").rstrip(".")
    if isinstance(value, datetime):
        if value.hour or value.minute or value.second:
            return value.strftime("%Y-%m-%d %H:%M")
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def format_metric_value(metric: MetricContent) -> str:
    text = format_value(metric.value)
    if metric.unit == "%":
        return f"{text}%"
    if metric.unit:
        return f"{text} {metric.unit}"
    return text


def format_trend(trend: Optional[MetricTrend]) -> str:
    if trend is None:
        return ""
    return f"{trend.direction} {format_value(trend.percentage)}%"


def chart_placeholder(title: Optional[str], chart: ChartContent) -> str:
    return f"[Chart: {title or chart.kind}]"


def image_placeholder(image: ImageContent) -> str:
    return f"[Image: {image.caption or image.source or 'image'}]"
