"""
Unit Tests for the Export Renderer

Tests:
- CSV layout and quoting
- Content equivalence between CSV and HTML
- PDF and Excel artifacts
- Artifact storage and file naming
- Chart embedding when a chart renderer is configured
"""

import csv
import io
import re
import pytest
from datetime import datetime, timezone

from openpyxl import load_workbook

from analytics_reports.chart_renderer import ChartRenderer
from analytics_reports.export_renderer import ExportRenderer, build_file_name
from analytics_reports.models import DateRange, ExportFormat, ReportFilters, SectionType
from analytics_reports.section_content import (
    ChartContent,
    DividerContent,
    MetricContent,
    MetricTrend,
    ProcessedSection,
    SectionError,
    TableContent,
    TextContent,
)


@pytest.fixture
def report_template(make_template):
    return make_template([], template_id="tpl-export", name="Weekly Team Report",
                         description="Team figures")


@pytest.fixture
def processed_sections():
    return [
        ProcessedSection("intro", SectionType.TEXT, 1, title="Summary",
                         content=TextContent('Goals, assists and "shots"\nacross all games')),
        ProcessedSection("score", SectionType.METRIC, 2, title="Average Score",
                         content=MetricContent(value=85, label="Average Score", aggregation="avg",
                                               trend=MetricTrend("up", 12.5, 90, 80))),
        ProcessedSection("table", SectionType.TABLE, 3, title="Players",
                         content=TableContent(headers=["player", "score"],
                                              rows=[["Anna", 78], ["Ola", 81.5], ["Eva", None]],
                                              total_rows=3)),
        ProcessedSection("trend", SectionType.CHART, 4, title="Trend",
                         content=ChartContent(kind="line", labels=["a", "b"],
                                              datasets=[{"label": "score", "data": [1.0, 2.0]}])),
        ProcessedSection("missing", SectionType.TABLE, 5, title="Missing",
                         error=SectionError("source_not_found", "Unknown data source: nope", "nope")),
        ProcessedSection("rule", SectionType.DIVIDER, 6, content=DividerContent()),
    ]


@pytest.fixture
def filters():
    return ReportFilters(
        date_range=DateRange(start="2025-01-01", end="2025-01-15"),
        teams=["t1", "t2"],
    )


def _csv_rows(payload: bytes):
    return list(csv.reader(io.StringIO(payload.decode("utf-8"), newline="")))


class TestCsvExport:
    """Test CSV layout"""

    def test_header_rows(self, export_renderer, report_template, processed_sections, filters):
        rows = _csv_rows(export_renderer.render_csv(report_template, processed_sections, filters))

        assert rows[0] == ["Weekly Team Report"]
        assert rows[1] == ["Period: 2025-01-01 - 2025-01-15; Teams: t1, t2"]
        assert rows[2] == []

    def test_quoting_round_trips(self, export_renderer, report_template, processed_sections, filters):
        rows = _csv_rows(export_renderer.render_csv(report_template, processed_sections, filters))

        assert ['Goals, assists and "shots"\nacross all games'] in rows

    def test_section_content_rows(self, export_renderer, report_template, processed_sections, filters):
        rows = _csv_rows(export_renderer.render_csv(report_template, processed_sections, filters))

        assert ["Average Score", "85", "up 12.5%"] in rows
        assert ["player", "score"] in rows
        assert ["Ola", "81.5"] in rows
        assert ["Eva", ""] in rows
        assert ["[Chart: Trend]"] in rows
        assert ["Error loading data: Unknown data source: nope"] in rows
        assert ["---"] in rows

    def test_lines_end_with_crlf(self, export_renderer, report_template, processed_sections, filters):
        payload = export_renderer.render_csv(report_template, processed_sections, filters)

        assert payload.startswith(b"Weekly Team Report\r\n")


class TestContentEquivalence:
    """CSV and HTML carry the same logical content"""

    def test_titles_and_row_counts_match(self, export_renderer, report_template, processed_sections, filters):
        csv_rows = _csv_rows(export_renderer.render_csv(report_template, processed_sections, filters))
        html = export_renderer.render_html(report_template, processed_sections, filters).decode("utf-8")

        titles = [s.title for s in processed_sections if s.title]
        html_titles = re.findall(r'<h2 class="section-title">(.*?)</h2>', html)
        assert html_titles == titles
        for title in titles:
            assert [title] in csv_rows

        header_index = csv_rows.index(["player", "score"])
        csv_table_rows = csv_rows[header_index + 1:header_index + 4]
        assert len(csv_table_rows) == html.count('<tr class="data-row">') == 3

    def test_html_escapes_content(self, export_renderer, report_template, filters):
        sections = [ProcessedSection("x", SectionType.TEXT, 1, title="<b>Title</b>",
                                     content=TextContent("<script>alert(1)</script>"))]

        html = export_renderer.render_html(report_template, sections, filters).decode("utf-8")

        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html


class TestBinaryFormats:
    """Test PDF and Excel backends"""

    def test_pdf_document(self, export_renderer, report_template, processed_sections, filters):
        document = export_renderer.render_document(
            report_template, processed_sections, filters, ExportFormat.PDF
        )

        assert document.payload.startswith(b"%PDF")
        assert document.metadata.page_count >= 1
        assert document.metadata.file_size == len(document.payload)

    def test_excel_workbook(self, export_renderer, report_template, processed_sections, filters):
        document = export_renderer.render_document(
            report_template, processed_sections, filters, ExportFormat.EXCEL
        )

        workbook = load_workbook(io.BytesIO(document.payload))
        sheet = workbook["Report"]
        values = [cell for row in sheet.iter_rows(values_only=True) for cell in row if cell is not None]

        assert sheet["A1"].value == "Weekly Team Report"
        assert "Players" in values
        assert "Error loading data: Unknown data source: nope" in values
        assert document.metadata.sheet_count == 1

    def test_excel_formula_text_stays_literal(self, export_renderer, report_template, filters):
        sections = [
            ProcessedSection("table", SectionType.TABLE, 1, title="Notes",
                             content=TableContent(headers=["player", "note"],
                                                  rows=[["Anna", "=HYPERLINK(\"http://x.test\")"]],
                                                  total_rows=1)),
        ]

        document = export_renderer.render_document(report_template, sections, filters, ExportFormat.EXCEL)

        sheet = load_workbook(io.BytesIO(document.payload))["Report"]
        cells = [cell for row in sheet.iter_rows() for cell in row
                 if cell.value == "=HYPERLINK(\"http://x.test\")"]
        assert len(cells) == 1
        assert cells[0].data_type == "s"


class TestStorage:
    """Test artifact persistence"""

    @pytest.mark.asyncio
    async def test_render_stores_artifact(self, export_renderer, report_template, processed_sections, filters):
        result = await export_renderer.render(
            report_template, processed_sections, filters, ExportFormat.CSV
        )

        assert result.file_name.endswith(".csv")
        assert result.download_url == f"/api/exports/{result.file_name}"
        with open(result.storage_path, "rb") as f:
            assert f.read() == result.payload

    def test_file_name_pattern(self):
        now = datetime(2025, 1, 15, 10, 30, 5, tzinfo=timezone.utc)

        name = build_file_name("Weekly Team Report!", ExportFormat.EXCEL, now)

        assert re.fullmatch(r"Weekly_Team_Report_20250115_103005_[0-9a-f]{8}\.xlsx", name)


class TestChartImages:
    """Test chart rasterization in the enhanced renderer"""

    def test_html_embeds_chart_png(self, storage, clock, report_template, processed_sections, filters):
        renderer = ExportRenderer(storage, chart_renderer=ChartRenderer(), clock=clock)

        document = renderer.render_document(report_template, processed_sections, filters, ExportFormat.HTML)

        assert b"data:image/png;base64," in document.payload

    def test_csv_keeps_placeholder(self, storage, clock, report_template, processed_sections, filters):
        renderer = ExportRenderer(storage, chart_renderer=ChartRenderer(), clock=clock)

        document = renderer.render_document(report_template, processed_sections, filters, ExportFormat.CSV)

        assert b"[Chart: Trend]" in document.payload

    def test_pdf_and_excel_embed_without_touching_sections(self, storage, clock, tmp_path, report_template,
                                                          processed_sections, filters):
        renderer = ExportRenderer(storage, chart_renderer=ChartRenderer(), clock=clock)

        pdf = renderer.render_document(report_template, processed_sections, filters, ExportFormat.PDF)
        excel = renderer.render_document(report_template, processed_sections, filters, ExportFormat.EXCEL)

        workbook = load_workbook(io.BytesIO(excel.payload))
        assert b"/Subtype /Image" in pdf.payload
        assert sum(len(sheet._images) for sheet in workbook.worksheets) == 1
        assert processed_sections[3].content.image_png is None
        assert list(tmp_path.rglob("*.png")) == []

    def test_chart_png_bytes(self):
        chart = ChartContent(kind="bar", labels=["Falcons", "Wolves"],
                             datasets=[{"label": "wins", "data": [7, None]}])

        png = ChartRenderer().render_png(chart, "Wins")

        assert png.startswith(b"\x89PNG\r\n\x1a\n")
