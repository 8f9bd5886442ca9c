"""
Chart Renderer

Rasterizes chart section content to PNG bytes with matplotlib so the PDF,
Excel and HTML backends can embed real charts instead of placeholders.
"""

from io import BytesIO
from typing import List, Optional

from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
import numpy as np
import structlog

from .models import Theme
from .section_content import ChartContent

logger = structlog.get_logger()

DEFAULT_PALETTE = ["#4F46E5", "#10B981", "#F59E0B", "#EF4444", "#6B7280", "#8B5CF6"]


class ChartRenderer:
    """Matplotlib-based chart rasterizer"""

    def __init__(
        self,
        width: float = 8.0,
        height: float = 4.5,
        dpi: int = 100,
    ):
        self.width = width
        self.height = height
        self.dpi = dpi

    def palette(self, theme: Optional[Theme] = None) -> List[str]:
        if theme is None:
            return list(DEFAULT_PALETTE)
        return [theme.primary_color, theme.secondary_color] + DEFAULT_PALETTE[1:]

    def render_png(
        self,
        chart: ChartContent,
        title: Optional[str] = None,
        theme: Optional[Theme] = None,
    ) -> bytes:
        """Draw the chart and return it as PNG bytes"""
        colors = self.palette(theme)
        # a figure of its own, outside pyplot's global state
        fig = Figure(figsize=(self.width, self.height), dpi=self.dpi)
        FigureCanvasAgg(fig)
        ax = fig.add_subplot(111)
        labels = [str(label) for label in chart.labels]

        if chart.kind in ("pie", "doughnut"):
            values = [v or 0 for v in chart.datasets[0]["data"]] if chart.datasets else []
            wedge_props = {"width": 0.4} if chart.kind == "doughnut" else None
            ax.pie(
                values,
                labels=labels,
                colors=colors[:len(values)] if len(values) <= len(colors) else None,
                autopct="%1.1f%%",
                wedgeprops=wedge_props,
            )
            ax.axis("equal")
        elif chart.kind == "bar":
            positions = np.arange(len(labels))
            width = 0.8 / max(len(chart.datasets), 1)
            for i, dataset in enumerate(chart.datasets):
                ax.bar(
                    positions + i * width,
                    [v or 0 for v in dataset["data"]],
                    width=width,
                    label=dataset.get("label"),
                    color=colors[i % len(colors)],
                    alpha=0.85,
                )
            ax.set_xticks(positions + width * (len(chart.datasets) - 1) / 2)
            ax.set_xticklabels(labels, rotation=45, ha="right")
        else:
            for i, dataset in enumerate(chart.datasets):
                values = [np.nan if v is None else v for v in dataset["data"]]
                ax.plot(
                    labels,
                    values,
                    label=dataset.get("label"),
                    color=colors[i % len(colors)],
                    linewidth=2,
                    marker="o",
                    markersize=4,
                )
                if chart.kind == "area":
                    ax.fill_between(labels, values, alpha=0.2, color=colors[i % len(colors)])
            ax.tick_params(axis="x", rotation=45)

        if chart.kind not in ("pie", "doughnut"):
            if chart.x_label:
                ax.set_xlabel(chart.x_label)
            if chart.y_label:
                ax.set_ylabel(chart.y_label)
            ax.grid(True, alpha=0.3)
            if len(chart.datasets) > 1:
                ax.legend()

        if title:
            ax.set_title(title, fontsize=14, fontweight="bold")
        fig.tight_layout()

        buffer = BytesIO()
        fig.savefig(buffer, format="png", dpi=self.dpi, bbox_inches="tight")
        png = buffer.getvalue()

        logger.debug("chart_rendered", kind=chart.kind, size=len(png))
        return png
