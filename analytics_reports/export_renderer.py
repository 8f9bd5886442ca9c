"""
Export Renderer

Serializes processed sections into PDF, Excel, CSV or HTML and writes the
artifact through the configured storage. All backends draw on the same
formatting helpers so a report carries identical logical content in every
format.
"""

import base64
import csv
import io
import json
import math
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from xml.sax.saxutils import escape

import structlog
from jinja2 import Environment, select_autoescape
from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, LEGAL, letter, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import HRFlowable, Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .chart_renderer import ChartRenderer
from .exceptions import RenderError
from .formatting import chart_placeholder, format_metric_value, format_trend, format_value, image_placeholder, TREND_SYMBOLS
from .models import ExportFormat, Orientation, PageFormat, ReportFilters, ReportTemplate, utc_now
from .repositories import ReportStorage
from .section_content import (
    ChartContent,
    DividerContent,
    ImageContent,
    MetricContent,
    ProcessedSection,
    TableContent,
    TextContent,
)

logger = structlog.get_logger()

PAGE_SIZES = {
    PageFormat.A4: A4,
    PageFormat.LETTER: letter,
    PageFormat.LEGAL: LEGAL,
}

PDF_FONTS = {
    "helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique"),
    "arial": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique"),
    "times": ("Times-Roman", "Times-Bold", "Times-Italic"),
    "times new roman": ("Times-Roman", "Times-Bold", "Times-Italic"),
    "courier": ("Courier", "Courier-Bold", "Courier-Oblique"),
}

EXCEL_ALT_ROW_FILL = "FFF9FAFB"
EXCEL_ERROR_COLOR = "FFDC2626"


@dataclass
class ExportMetadata:
    format: ExportFormat
    content_type: str
    file_size: int
    page_count: Optional[int] = None
    sheet_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": self.format.value,
            "content_type": self.content_type,
            "file_size": self.file_size,
            "page_count": self.page_count,
            "sheet_count": self.sheet_count,
        }


@dataclass
class RenderedDocument:
    """Artifact bytes before they are stored"""
    payload: bytes
    metadata: ExportMetadata


@dataclass
class ExportResult:
    payload: bytes
    file_name: str
    storage_path: str
    download_url: str
    metadata: ExportMetadata


def build_file_name(name: str, export_format: ExportFormat, now: datetime) -> str:
    safe_name = re.sub(r"[^\w\-]+", "_", name).strip("_") or "report"
    return f"{safe_name}_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}.{export_format.extension}"


def summary_lines(table: TableContent) -> List[str]:
    lines = []
    for column, stats in (table.summary or {}).items():
        lines.append(
            f"Summary - {column}: sum {format_value(stats['sum'])}, avg {format_value(stats['avg'])}, "
            f"min {format_value(stats['min'])}, max {format_value(stats['max'])}"
        )
    return lines


def truncation_note(table: TableContent) -> Optional[str]:
    if not table.truncated:
        return None
    return f"Showing {len(table.rows)} of {table.total_rows} rows"


def _hex_to_argb(color: str) -> str:
    return "FF" + color.lstrip("#").upper()


def _excel_value(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if value is None or isinstance(value, (str, int, float, bool, datetime)):
        return value
    return str(value)


def _as_text(cell):
    # strings stay literal text, "=..." must not become a live formula
    if isinstance(cell.value, str):
        cell.data_type = "s"
    return cell


def _local_file(source: Optional[str]) -> Optional[Path]:
    if not source or "://" in source:
        return None
    path = Path(source)
    return path if path.is_file() else None


HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>{{ title }}</title>
    <style>
        body {
            font-family: {{ theme.font_family }}, sans-serif;
            font-size: {{ theme.font_size }}pt;
            margin: 40px;
            color: #1F2937;
            line-height: 1.5;
        }
        .header {
            color: {{ theme.primary_color }};
            border-bottom: 3px solid {{ theme.primary_color }};
            padding-bottom: 10px;
            margin-bottom: 30px;
        }
        .muted { color: {{ theme.secondary_color }}; font-style: italic; }
        .section { margin-bottom: 28px; }
        .section-title { color: {{ theme.primary_color }}; font-size: 1.3em; }
        .text { white-space: pre-wrap; }
        .metric-value { font-size: 2em; font-weight: bold; color: {{ theme.primary_color }}; }
        .trend-up { color: #059669; }
        .trend-down { color: #DC2626; }
        .trend-stable { color: {{ theme.secondary_color }}; }
        table { border-collapse: collapse; width: 100%; }
        th { background-color: {{ theme.primary_color }}; color: #FFFFFF; text-align: left; }
        th, td { border: 1px solid #E5E7EB; padding: 6px 8px; }
        tr.data-row:nth-child(even) { background-color: #F9FAFB; }
        .chart img, .image img { max-width: 100%; height: auto; }
        .error { color: #DC2626; }
    </style>
</head>
<body>
    <div class="header">
        <h1>{{ title }}</h1>
        {% if description %}<p class="muted">{{ description }}</p>{% endif %}
        {% if filter_description %}<p class="muted">{{ filter_description }}</p>{% endif %}
        <p class="muted">Generated on {{ generated_at }}</p>
    </div>
    {% for section in sections %}
    <div class="section section-{{ section.kind }}">
        {% if section.title %}<h2 class="section-title">{{ section.title }}</h2>{% endif %}
        {% if section.kind == "error" %}
        <p class="error">{{ section.error }}</p>
        {% elif section.kind == "text" %}
        <div class="text">{{ section.text }}</div>
        {% elif section.kind == "metric" %}
        <div class="metric">
            <div class="metric-label">{{ section.label }}</div>
            <div class="metric-value">{{ section.value }}</div>
            {% if section.trend %}<div class="trend-{{ section.trend_direction }}">{{ section.trend_symbol }} {{ section.trend }}</div>{% endif %}
        </div>
        {% elif section.kind == "table" %}
        <table>
            <thead><tr>{% for header in section.headers %}<th>{{ header }}</th>{% endfor %}</tr></thead>
            <tbody>
            {% for row in section.rows %}
                <tr class="data-row">{% for cell in row %}<td>{{ cell }}</td>{% endfor %}</tr>
            {% endfor %}
            </tbody>
        </table>
        {% for line in section.notes %}<p class="muted">{{ line }}</p>{% endfor %}
        {% elif section.kind == "chart" %}
        <div class="chart">
            {% if section.image_data %}<img src="data:image/png;base64,{{ section.image_data }}" alt="{{ section.placeholder }}">
            {% else %}<p class="muted">{{ section.placeholder }}</p>{% endif %}
        </div>
        {% elif section.kind == "image" %}
        <div class="image">
            {% if section.source %}<img src="{{ section.source }}" alt="{{ section.placeholder }}">{% endif %}
            <p class="muted">{{ section.placeholder }}</p>
        </div>
        {% elif section.kind == "divider" %}
        <hr>
        {% endif %}
    </div>
    {% endfor %}
</body>
</html>
"""


class ExportRenderer:
    """
    Multi-format report renderer.

    When a ChartRenderer is supplied, chart sections are rasterized before
    rendering and embedded as images in PDF, Excel and HTML output; otherwise
    they render as text placeholders.
    """

    def __init__(
        self,
        storage: ReportStorage,
        chart_renderer: Optional[ChartRenderer] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.chart_renderer = chart_renderer
        self.clock = clock
        self._html_env = Environment(autoescape=select_autoescape(default_for_string=True, default=True))
        self._html_template = self._html_env.from_string(HTML_TEMPLATE)

    async def render(
        self,
        template: ReportTemplate,
        sections: List[ProcessedSection],
        filters: ReportFilters,
        export_format: ExportFormat,
        name: Optional[str] = None,
    ) -> ExportResult:
        """Render and store an artifact"""
        document = self.render_document(template, sections, filters, export_format)
        return await self.save(document, name or template.name)

    async def save(self, document: RenderedDocument, name: str) -> ExportResult:
        file_name = build_file_name(name, document.metadata.format, self.clock())
        artifact = await self.storage.save(file_name, document.payload)
        return ExportResult(
            payload=document.payload,
            file_name=file_name,
            storage_path=artifact.storage_path,
            download_url=artifact.download_url,
            metadata=document.metadata,
        )

    def render_document(
        self,
        template: ReportTemplate,
        sections: List[ProcessedSection],
        filters: ReportFilters,
        export_format: ExportFormat,
    ) -> RenderedDocument:
        """Produce artifact bytes in the requested format"""
        ordered = sorted(sections, key=lambda s: s.order)
        if self.chart_renderer is not None and export_format != ExportFormat.CSV:
            ordered = self._rasterize_charts(template, ordered)

        page_count = sheet_count = None
        try:
            if export_format == ExportFormat.PDF:
                payload, page_count = self.render_pdf(template, ordered, filters)
            elif export_format == ExportFormat.EXCEL:
                payload, sheet_count = self.render_excel(template, ordered, filters)
            elif export_format == ExportFormat.CSV:
                payload = self.render_csv(template, ordered, filters)
            elif export_format == ExportFormat.HTML:
                payload = self.render_html(template, ordered, filters)
            else:
                raise RenderError(str(export_format), "unsupported format")
        except RenderError:
            raise
        except Exception as e:
            logger.error("render_failed", format=export_format.value, error=str(e), exc_info=True)
            raise RenderError(export_format.value, str(e)) from e

        return RenderedDocument(
            payload=payload,
            metadata=ExportMetadata(
                format=export_format,
                content_type=export_format.content_type,
                file_size=len(payload),
                page_count=page_count,
                sheet_count=sheet_count,
            ),
        )

    def _rasterize_charts(
        self, template: ReportTemplate, sections: List[ProcessedSection]
    ) -> List[ProcessedSection]:
        """Copies of the sections with chart images attached; the inputs are left as they are"""
        rendered = []
        for section in sections:
            if isinstance(section.content, ChartContent) and section.content.image_png is None:
                try:
                    png = self.chart_renderer.render_png(
                        section.content, section.title, template.layout.theme
                    )
                except (ValueError, TypeError) as e:
                    logger.warning("chart_rasterize_failed", section_id=section.section_id, error=str(e))
                else:
                    section = replace(section, content=replace(section.content, image_png=png))
            rendered.append(section)
        return rendered

    # =========================================================================
    # CSV
    # =========================================================================

    def render_csv(
        self, template: ReportTemplate, sections: List[ProcessedSection], filters: ReportFilters
    ) -> bytes:
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")

        writer.writerow([template.name])
        filter_description = filters.describe()
        if filter_description:
            writer.writerow([filter_description])
        writer.writerow([])

        for section in sections:
            if section.title:
                writer.writerow([section.title])

            content = section.content
            if section.error is not None:
                writer.writerow([section.error.display()])
            elif isinstance(content, TextContent):
                writer.writerow([content.text])
            elif isinstance(content, MetricContent):
                row = [content.label, format_metric_value(content)]
                if content.trend:
                    row.append(format_trend(content.trend))
                writer.writerow(row)
            elif isinstance(content, TableContent):
                writer.writerow(content.headers)
                for data_row in content.rows:
                    writer.writerow([format_value(v) for v in data_row])
                for line in summary_lines(content) + [truncation_note(content)]:
                    if line:
                        writer.writerow([line])
            elif isinstance(content, ChartContent):
                writer.writerow([chart_placeholder(section.title, content)])
            elif isinstance(content, ImageContent):
                writer.writerow([image_placeholder(content)])
            elif isinstance(content, DividerContent):
                writer.writerow(["---"])
            writer.writerow([])

        return buffer.getvalue().encode("utf-8")

    # =========================================================================
    # HTML
    # =========================================================================

    def _html_section(self, section: ProcessedSection) -> Dict[str, Any]:
        view: Dict[str, Any] = {"title": section.title}
        content = section.content

        if section.error is not None:
            view.update(kind="error", error=section.error.display())
        elif isinstance(content, TextContent):
            view.update(kind="text", text=content.text)
        elif isinstance(content, MetricContent):
            view.update(
                kind="metric",
                label=content.label,
                value=format_metric_value(content),
                trend=format_trend(content.trend),
                trend_direction=content.trend.direction if content.trend else None,
                trend_symbol=TREND_SYMBOLS.get(content.trend.direction, "") if content.trend else "",
            )
        elif isinstance(content, TableContent):
            notes = summary_lines(content)
            note = truncation_note(content)
            if note:
                notes.append(note)
            view.update(
                kind="table",
                headers=content.headers,
                rows=[[format_value(v) for v in row] for row in content.rows],
                notes=notes,
            )
        elif isinstance(content, ChartContent):
            image_data = None
            if content.image_png:
                image_data = base64.b64encode(content.image_png).decode()
            view.update(
                kind="chart",
                placeholder=chart_placeholder(section.title, content),
                image_data=image_data,
            )
        elif isinstance(content, ImageContent):
            view.update(kind="image", source=content.source, placeholder=image_placeholder(content))
        else:
            view.update(kind="divider")
        return view

    def render_html(
        self, template: ReportTemplate, sections: List[ProcessedSection], filters: ReportFilters
    ) -> bytes:
        html = self._html_template.render(
            title=template.name,
            description=template.description,
            filter_description=filters.describe(),
            generated_at=self.clock().strftime("%Y-%m-%d %H:%M UTC"),
            theme=template.layout.theme,
            sections=[self._html_section(s) for s in sections],
        )
        return html.encode("utf-8")

    # =========================================================================
    # PDF
    # =========================================================================

    def render_pdf(
        self, template: ReportTemplate, sections: List[ProcessedSection], filters: ReportFilters
    ) -> Tuple[bytes, int]:
        layout = template.layout
        theme = layout.theme
        margins = layout.margins

        page_size = PAGE_SIZES[layout.page_format]
        if layout.orientation == Orientation.LANDSCAPE:
            page_size = landscape(page_size)
        page_width, page_height = page_size

        header = layout.header if layout.header and layout.header.enabled else None
        footer = layout.footer if layout.footer and layout.footer.enabled else None
        header_height = header.height if header else 0
        footer_height = footer.height if footer else 0

        regular, bold, italic = PDF_FONTS.get(theme.font_family.lower(), PDF_FONTS["helvetica"])
        primary = colors.HexColor(theme.primary_color)
        secondary = colors.HexColor(theme.secondary_color)

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "ReportTitle", parent=styles["Title"], fontName=bold,
            fontSize=theme.font_size + 10, leading=theme.font_size + 14, textColor=primary,
        )
        heading_style = ParagraphStyle(
            "SectionTitle", parent=styles["Heading2"], fontName=bold,
            fontSize=theme.font_size + 3, textColor=primary, spaceBefore=6,
        )
        body_style = ParagraphStyle(
            "ReportBody", parent=styles["BodyText"], fontName=regular,
            fontSize=theme.font_size, leading=theme.font_size * 1.35,
        )
        muted_style = ParagraphStyle(
            "Muted", parent=body_style, fontName=italic, textColor=secondary,
        )
        error_style = ParagraphStyle(
            "SectionError", parent=body_style, textColor=colors.HexColor("#DC2626"),
        )
        metric_style = ParagraphStyle(
            "MetricValue", parent=body_style, fontName=bold,
            fontSize=theme.font_size + 8, leading=theme.font_size + 12, textColor=primary,
        )

        available_width = page_width - margins.left - margins.right

        story = [Paragraph(escape(template.name), title_style)]
        if template.description:
            story.append(Paragraph(escape(template.description), muted_style))
        filter_description = filters.describe()
        if filter_description:
            story.append(Paragraph(escape(filter_description), muted_style))
        story.append(Spacer(1, 12))

        for section in sections:
            if section.title:
                story.append(Paragraph(escape(section.title), heading_style))

            content = section.content
            if section.error is not None:
                story.append(Paragraph(escape(section.error.display()), error_style))
            elif isinstance(content, TextContent):
                story.append(Paragraph(escape(content.text).replace("\n", "<br/>"), body_style))
            elif isinstance(content, MetricContent):
                story.append(Paragraph(escape(content.label), muted_style))
                story.append(Paragraph(escape(format_metric_value(content)), metric_style))
                if content.trend:
                    story.append(Paragraph(escape(format_trend(content.trend)), body_style))
            elif isinstance(content, TableContent):
                story.extend(self._pdf_table(content, available_width, primary, regular, bold))
                for line in summary_lines(content) + [truncation_note(content)]:
                    if line:
                        story.append(Paragraph(escape(line), muted_style))
            elif isinstance(content, ChartContent):
                if content.image_png:
                    story.append(Image(io.BytesIO(content.image_png), width=available_width,
                                       height=available_width * 0.5625))
                else:
                    story.append(Paragraph(escape(chart_placeholder(section.title, content)), muted_style))
            elif isinstance(content, ImageContent):
                local = _local_file(content.source)
                if local is not None:
                    story.append(Image(str(local), width=available_width * 0.6,
                                       height=available_width * 0.6 * 0.75))
                story.append(Paragraph(escape(image_placeholder(content)), muted_style))
            elif isinstance(content, DividerContent):
                story.append(HRFlowable(width="100%", color=secondary, thickness=0.5))
            story.append(Spacer(1, 10))

        pages = {"count": 0}

        def decorate_page(canvas, doc):
            page_number = canvas.getPageNumber()
            pages["count"] = max(pages["count"], page_number)
            canvas.saveState()
            canvas.setFont(regular, 9)
            canvas.setFillColor(secondary)
            if header is not None and header.content:
                canvas.drawString(margins.left, page_height - margins.top - 10, header.content)
            if footer is not None:
                footer_y = margins.bottom + footer_height / 2 - 4
                if footer.content:
                    canvas.drawString(margins.left, footer_y, footer.content)
                if footer.show_page_numbers:
                    canvas.drawRightString(page_width - margins.right, footer_y, f"Page {page_number}")
            canvas.restoreState()

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=page_size,
            leftMargin=margins.left,
            rightMargin=margins.right,
            topMargin=margins.top + header_height,
            bottomMargin=margins.bottom + footer_height,
            title=template.name,
        )
        doc.build(story, onFirstPage=decorate_page, onLaterPages=decorate_page)
        return buffer.getvalue(), pages["count"]

    def _pdf_table(self, table: TableContent, width: float, primary, regular: str, bold: str) -> list:
        if not table.headers:
            return []
        data = [list(table.headers)] + [[format_value(v) for v in row] for row in table.rows]
        column_width = width / len(table.headers)
        pdf_table = Table(data, colWidths=[column_width] * len(table.headers), repeatRows=1, hAlign="LEFT")
        pdf_table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), primary),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), bold),
            ("FONTNAME", (0, 1), (-1, -1), regular),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#E5E7EB")),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F9FAFB")]),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        return [pdf_table]

    # =========================================================================
    # Excel
    # =========================================================================

    def render_excel(
        self, template: ReportTemplate, sections: List[ProcessedSection], filters: ReportFilters
    ) -> Tuple[bytes, int]:
        theme = template.layout.theme
        primary = _hex_to_argb(theme.primary_color)
        secondary = _hex_to_argb(theme.secondary_color)
        thin = Side(style="thin", color="FFE5E7EB")
        border = Border(left=thin, right=thin, top=thin, bottom=thin)

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Report"

        title = _as_text(sheet.cell(row=1, column=1, value=template.name))
        title.font = Font(bold=True, size=16, color=primary)
        sheet.merge_cells("A1:E1")
        row = 2

        for line in (template.description, filters.describe()):
            if line:
                cell = _as_text(sheet.cell(row=row, column=1, value=line))
                cell.font = Font(italic=True, color=secondary)
                sheet.merge_cells(start_row=row, start_column=1, end_row=row, end_column=5)
                row += 1
        row += 1

        widths: Dict[int, int] = {}

        def put(r: int, c: int, value: Any):
            cell = _as_text(sheet.cell(row=r, column=c, value=_excel_value(value)))
            widths[c] = max(widths.get(c, 0), len(format_value(value)))
            return cell

        for section in sections:
            if section.title:
                put(row, 1, section.title).font = Font(bold=True, size=13, color=primary)
                row += 1

            content = section.content
            if section.error is not None:
                put(row, 1, section.error.display()).font = Font(italic=True, color=EXCEL_ERROR_COLOR)
                row += 1
            elif isinstance(content, TextContent):
                for line in content.text.split("\n"):
                    put(row, 1, line)
                    row += 1
            elif isinstance(content, MetricContent):
                put(row, 1, content.label).font = Font(bold=True)
                put(row, 2, content.value).font = Font(bold=True, size=14, color=primary)
                if content.unit:
                    put(row, 3, content.unit)
                if content.trend:
                    put(row, 4, format_trend(content.trend))
                row += 1
            elif isinstance(content, TableContent):
                for col, header in enumerate(content.headers, start=1):
                    cell = put(row, col, header)
                    cell.font = Font(bold=True, color="FFFFFFFF")
                    cell.fill = PatternFill(start_color=primary, end_color=primary, fill_type="solid")
                    cell.border = border
                row += 1
                for index, data_row in enumerate(content.rows):
                    for col, value in enumerate(data_row, start=1):
                        cell = put(row, col, value)
                        cell.border = border
                        if index % 2 == 1:
                            cell.fill = PatternFill(
                                start_color=EXCEL_ALT_ROW_FILL, end_color=EXCEL_ALT_ROW_FILL, fill_type="solid"
                            )
                    row += 1
                for line in summary_lines(content) + [truncation_note(content)]:
                    if line:
                        put(row, 1, line).font = Font(italic=True, color=secondary)
                        row += 1
            elif isinstance(content, ChartContent):
                if content.image_png:
                    image = XLImage(io.BytesIO(content.image_png))
                    image.anchor = f"A{row}"
                    sheet.add_image(image)
                    row += math.ceil(image.height / 20) + 1
                else:
                    put(row, 1, chart_placeholder(section.title, content)).font = Font(italic=True, color=secondary)
                    row += 1
            elif isinstance(content, ImageContent):
                local = _local_file(content.source)
                if local is not None:
                    image = XLImage(str(local))
                    image.anchor = f"A{row}"
                    sheet.add_image(image)
                    row += math.ceil(image.height / 20) + 1
                put(row, 1, image_placeholder(content)).font = Font(italic=True, color=secondary)
                row += 1
            row += 1

        for col, width in widths.items():
            sheet.column_dimensions[get_column_letter(col)].width = min(max(width + 2, 10), 60)

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue(), len(workbook.worksheets)
