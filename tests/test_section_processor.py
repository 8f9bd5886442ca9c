"""
Unit Tests for the Section Processor

Tests:
- Metric aggregation and trends
- Table truncation and summaries
- Chart shaping
- Text variable substitution
- Section level error isolation
"""

import pytest

from analytics_reports.data_sources import DataSourceConfig
from analytics_reports.exceptions import SectionDataError
from analytics_reports.models import DateRange, ReportFilters, SectionType, TemplateSection
from analytics_reports.section_content import (
    ChartContent,
    MetricContent,
    TableContent,
    TextContent,
)
from analytics_reports.section_processor import (
    SectionData,
    aggregate,
    build_variable_context,
    compute_trend,
    process_chart,
    process_table,
    substitute_variables,
)


class TestMetrics:
    """Test metric aggregation and trend computation"""

    @pytest.mark.asyncio
    async def test_average_with_upward_trend(self, section_processor, metric_template):
        fetched = await section_processor.fetch_section_data(metric_template)
        sections = section_processor.process_sections(metric_template, fetched)

        metric = next(s for s in sections if s.section_id == "score").content
        assert isinstance(metric, MetricContent)
        assert metric.value == 85
        assert metric.trend.direction == "up"
        assert metric.trend.percentage == 12.5

    def test_trend_from_zero_is_stable(self):
        rows = [
            {"value": 0, "date": "2025-01-01"},
            {"value": 40, "date": "2025-01-02"},
        ]

        trend = compute_trend(rows, "value")

        assert trend.direction == "stable"
        assert trend.percentage == 0.0

    def test_trend_uses_chronological_order(self):
        rows = [
            {"value": 50, "date": "2025-01-03"},
            {"value": 100, "date": "2025-01-01"},
        ]

        trend = compute_trend(rows, "value")

        assert trend.direction == "down"
        assert trend.percentage == -50.0

    def test_trend_needs_two_points(self):
        assert compute_trend([{"value": 1}], "value") is None

    def test_aggregations(self):
        rows = [{"v": 1}, {"v": 4}, {"v": None}, {"v": "7"}]

        assert aggregate(rows, "v", "sum") == 12
        assert aggregate(rows, "v", "max") == 7
        assert aggregate(rows, "v", "min") == 1
        assert aggregate(rows, "v", "count") == 3
        assert aggregate([], "v", "avg") == 0

    def test_unknown_aggregation_raises(self):
        with pytest.raises(SectionDataError):
            aggregate([{"v": 1}], "v", "median")


class TestTables:
    """Test table shaping"""

    def _section(self, **config):
        return TemplateSection("t", SectionType.TABLE, 1, data_source="rows", config=config)

    def test_rows_never_exceed_default_max(self):
        rows = [{"n": i} for i in range(150)]

        table = process_table(self._section(), rows)

        assert len(table.rows) == 100
        assert table.total_rows == 150
        assert table.truncated

    def test_configured_max_rows(self):
        rows = [{"n": i} for i in range(10)]

        table = process_table(self._section(max_rows=5), rows)

        assert len(table.rows) == 5
        assert table.rows[0] == [0]

    def test_columns_and_summary(self):
        rows = [{"name": "a", "score": 10}, {"name": "b", "score": 20}]

        table = process_table(self._section(columns=["name", "score"], show_summary=True), rows)

        assert table.headers == ["name", "score"]
        assert table.summary == {"score": {"sum": 30, "avg": 15, "min": 10, "max": 20, "count": 2}}

    def test_dict_data_becomes_metric_rows(self):
        table = process_table(self._section(), {"total_games": 33, "nested": {"x": 1}})

        assert table.headers == ["metric", "value"]
        assert table.rows == [["total_games", 33]]


class TestCharts:
    """Test chart data shaping"""

    def test_line_chart_series(self):
        section = TemplateSection(
            "c", SectionType.CHART, 1, data_source="trend",
            config={"chart_type": "line", "x_field": "date", "y_field": "score"},
        )
        rows = [{"date": "2025-01-05", "score": 81.0}, {"date": "2025-01-12", "score": 82.0}]

        chart = process_chart(section, rows)

        assert isinstance(chart, ChartContent)
        assert chart.labels == ["2025-01-05", "2025-01-12"]
        assert chart.datasets == [{"label": "score", "data": [81.0, 82.0]}]

    def test_pie_chart_from_dict(self):
        section = TemplateSection("c", SectionType.CHART, 1, data_source="dist",
                                  config={"chart_type": "pie"})

        chart = process_chart(section, {"low": 1, "high": 2})

        assert chart.labels == ["low", "high"]
        assert chart.datasets[0]["data"] == [1.0, 2.0]

    def test_unsupported_chart_kind(self):
        section = TemplateSection("c", SectionType.CHART, 1, data_source="x",
                                  config={"chart_type": "radar"})
        with pytest.raises(SectionDataError):
            process_chart(section, [{"value": 1}])


class TestTextVariables:
    """Test {{variable}} substitution"""

    def test_unresolved_variable_renders_bracketed_name(self):
        assert substitute_variables("Hi {{nobody}}", {}) == "Hi [nobody]"

    def test_dotted_path_from_section_data(self):
        text = substitute_variables(
            "{{overview.total_teams}} teams", {}, section_data={"overview": {"total_teams": 4}}
        )
        assert text == "4 teams"

    def test_context_takes_precedence(self):
        text = substitute_variables("{{team_count}}", {"team_count": 2}, section_data={"team_count": 9})
        assert text == "2"

    def test_variable_context_counts_entities(self, fixed_datetime):
        fetched = {
            "s": SectionData("s", "rows", data=[
                {"team_id": "t1", "player_id": "p1"},
                {"team_id": "t1", "player_id": "p2"},
            ]),
        }

        context = build_variable_context(ReportFilters(), fetched, fixed_datetime)

        assert context["current_date"] == "2025-01-15"
        assert context["date_range"] == "All time"
        assert context["team_count"] == 1
        assert context["player_count"] == 2

    def test_variable_context_prefers_filter_lists(self, fixed_datetime):
        filters = ReportFilters(
            teams=["a", "b", "c"],
            date_range=DateRange(start="2025-01-01", end="2025-01-15"),
        )

        context = build_variable_context(filters, {}, fixed_datetime)

        assert context["team_count"] == 3
        assert context["date_range"] == "2025-01-01 - 2025-01-15"


class TestSectionProcessing:
    """Test ordering and error isolation across a template"""

    @pytest.mark.asyncio
    async def test_sections_processed_in_order(self, section_processor, make_template):
        template = make_template([
            TemplateSection("third", SectionType.DIVIDER, 3),
            TemplateSection("first", SectionType.TEXT, 1, content="Hello"),
            TemplateSection("second", SectionType.METRIC, 2,
                            data_source="performance_metrics", config={"field": "value"}),
        ])

        fetched = await section_processor.fetch_section_data(template)
        sections = section_processor.process_sections(template, fetched)

        assert [s.section_id for s in sections] == ["first", "second", "third"]
        assert all(s.ok for s in sections)

    @pytest.mark.asyncio
    async def test_text_section_sees_row_counts(self, section_processor, metric_template):
        fetched = await section_processor.fetch_section_data(metric_template)
        sections = section_processor.process_sections(metric_template, fetched)

        intro = sections[0].content
        assert isinstance(intro, TextContent)
        assert intro.text == "Report for 2 player(s) on 2025-01-15"

    @pytest.mark.asyncio
    async def test_unknown_source_only_fails_its_section(self, section_processor, broken_source_template):
        fetched = await section_processor.fetch_section_data(broken_source_template)
        sections = section_processor.process_sections(broken_source_template, fetched)

        good, missing = sections
        assert good.ok
        assert missing.error.kind == "source_not_found"
        assert "no_such_source" in missing.error.display()
        assert missing.error.display().startswith("Error loading data:")

    @pytest.mark.asyncio
    async def test_failing_source_becomes_section_error(self, aggregator, section_processor, make_template):
        def explode(filters):
            raise RuntimeError("database unavailable")

        aggregator.register_source(DataSourceConfig(name="flaky", description="Flaky"), explode)
        template = make_template([
            TemplateSection("flaky", SectionType.TABLE, 1, data_source="flaky"),
            TemplateSection("text", SectionType.TEXT, 2, content="still here"),
        ])

        fetched = await section_processor.fetch_section_data(template)
        sections = section_processor.process_sections(template, fetched)

        assert sections[0].error.kind == "section_data_error"
        assert "database unavailable" in sections[0].error.message
        assert sections[1].content.text == "still here"

    @pytest.mark.asyncio
    async def test_bad_config_becomes_section_error(self, section_processor, make_template):
        template = make_template([
            TemplateSection("scores", SectionType.TABLE, 1, data_source="performance_metrics",
                            config={"max_rows": "plenty"}),
            TemplateSection("text", SectionType.TEXT, 2, content="still here"),
        ])

        fetched = await section_processor.fetch_section_data(template)
        sections = section_processor.process_sections(template, fetched)

        assert sections[0].error.kind == "section_processing_error"
        assert "plenty" in sections[0].error.message
        assert sections[1].content.text == "still here"

    @pytest.mark.asyncio
    async def test_request_filters_reach_the_source(self, section_processor, metric_template):
        filters = ReportFilters(players=["p2"])

        fetched = await section_processor.fetch_section_data(metric_template, filters)
        sections = section_processor.process_sections(metric_template, fetched, filters)

        table = next(s for s in sections if s.section_id == "scores").content
        assert isinstance(table, TableContent)
        assert table.rows == [["p2", 90, "2025-01-12"]]
