"""
Unit Tests for Report Models

Tests:
- Date ranges and filter presets
- Filter merging and description
- Template validation and versioning
- Scheduled report validation and persistence form
"""

import pytest
from datetime import datetime, timedelta, timezone

from analytics_reports.exceptions import InvalidScheduleError, InvalidTemplateError
from analytics_reports.models import (
    CustomFilter,
    DatePreset,
    DateRange,
    DeliveryOptions,
    ExecutionStatus,
    ExportFormat,
    FilterOperator,
    Recipient,
    ReportFilters,
    ReportTemplate,
    ReportType,
    ScheduledReport,
    ScheduleFrequency,
    SectionType,
    TemplateSection,
    parse_datetime,
)


class TestDateHandling:
    """Test datetime parsing and date ranges"""

    def test_parse_datetime_handles_z_suffix(self):
        parsed = parse_datetime("2025-01-15T10:00:00Z")
        assert parsed == datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_parse_datetime_treats_naive_as_utc(self):
        parsed = parse_datetime("2025-01-15")
        assert parsed.tzinfo is not None
        assert parsed.hour == 0

    def test_date_range_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            DateRange(start="2025-02-01", end="2025-01-01")

    def test_date_range_describe(self):
        date_range = DateRange(start="2025-01-01", end="2025-01-31")
        assert date_range.describe() == "2025-01-01 - 2025-01-31"


class TestReportFilters:
    """Test filter presets, merging and description"""

    def test_last_7_days_preset_resolves_to_range(self, fixed_datetime):
        resolved = ReportFilters(date_preset=DatePreset.LAST_7_DAYS).resolve(fixed_datetime)

        assert resolved.date_range.start == fixed_datetime - timedelta(days=7)
        assert resolved.date_range.end == fixed_datetime
        assert resolved.date_preset is None

    def test_last_quarter_clamps_to_month_end(self):
        now = datetime(2025, 5, 31, 12, 0, tzinfo=timezone.utc)
        resolved = ReportFilters(date_preset=DatePreset.LAST_QUARTER).resolve(now)

        assert resolved.date_range.start == datetime(2025, 2, 28, 12, 0, tzinfo=timezone.utc)

    def test_resolve_is_stable_once_resolved(self, fixed_datetime):
        resolved = ReportFilters(date_preset=DatePreset.LAST_30_DAYS).resolve(fixed_datetime)
        later = resolved.resolve(fixed_datetime + timedelta(days=400))

        assert later.date_range == resolved.date_range

    def test_merge_later_values_win(self):
        base = ReportFilters(teams=["t1"], players=["p1"])
        merged = base.merge(ReportFilters(teams=["t2", "t3"]))

        assert merged.teams == ["t2", "t3"]
        assert merged.players == ["p1"]
        assert base.teams == ["t1"]

    def test_merge_explicit_range_replaces_inherited_preset(self):
        template_defaults = ReportFilters(date_preset=DatePreset.LAST_30_DAYS)
        explicit = DateRange(start="2024-06-01", end="2024-06-30")

        merged = template_defaults.merge(ReportFilters(date_range=explicit))

        assert merged.date_range == explicit
        assert merged.date_preset is None

    def test_merge_accumulates_custom_filters(self):
        first = ReportFilters(custom_filters=[CustomFilter("value", FilterOperator.GT, 10)])
        second = ReportFilters(custom_filters=[CustomFilter("category", FilterOperator.EQ, "offense")])

        merged = first.merge(None, second)

        assert [f.field for f in merged.custom_filters] == ["value", "category"]

    def test_describe_lists_period_and_entities(self):
        filters = ReportFilters(
            date_range=DateRange(start="2025-01-01", end="2025-01-31"),
            teams=["a", "b"],
        )
        assert filters.describe() == "Period: 2025-01-01 - 2025-01-31; Teams: a, b"

    def test_describe_empty_filters(self):
        assert ReportFilters().describe() is None
        assert ReportFilters().is_empty()

    def test_from_dict_parses_nested_values(self):
        filters = ReportFilters.from_dict({
            "date_preset": "last_7_days",
            "players": ["p1"],
            "custom_filters": [{"field": "value", "operator": "gte", "value": 50}],
        })

        assert filters.date_preset == DatePreset.LAST_7_DAYS
        assert filters.custom_filters[0].operator == FilterOperator.GTE


class TestReportTemplate:
    """Test template validation and versioning"""

    def test_duplicate_order_is_rejected(self):
        template = ReportTemplate(
            template_id="t",
            name="Dup",
            report_type=ReportType.CUSTOM,
            sections=[
                TemplateSection("a", SectionType.TEXT, 1),
                TemplateSection("b", SectionType.TEXT, 1),
            ],
        )
        with pytest.raises(InvalidTemplateError):
            template.validate()

    def test_ordered_sections(self):
        template = ReportTemplate(
            template_id="t",
            name="Ordered",
            report_type=ReportType.CUSTOM,
            sections=[
                TemplateSection("second", SectionType.TEXT, 2),
                TemplateSection("first", SectionType.TEXT, 1),
            ],
        )
        assert [s.section_id for s in template.ordered_sections()] == ["first", "second"]

    def test_bump_version(self):
        template = ReportTemplate(template_id="t", name="V", report_type=ReportType.CUSTOM)

        assert template.bump_version() == "1.0.1"
        assert template.bump_version("minor") == "1.1.0"
        assert template.bump_version("major") == "2.0.0"
        with pytest.raises(ValueError):
            template.bump_version("build")

    def test_from_dict_validates(self):
        with pytest.raises(InvalidTemplateError):
            ReportTemplate.from_dict({
                "template_id": "t",
                "name": "Bad",
                "sections": [
                    {"section_id": "a", "type": "text", "order": 1},
                    {"section_id": "b", "type": "metric", "order": 1},
                ],
            })


class TestScheduledReport:
    """Test scheduled report validation and serialization"""

    def _scheduled(self, **overrides):
        values = dict(
            schedule_id="s1",
            name="Weekly",
            template_id="tpl",
            frequency=ScheduleFrequency.WEEKLY,
            formats=[ExportFormat.PDF],
            created_by="u1",
        )
        values.update(overrides)
        return ScheduledReport(**values)

    def test_custom_frequency_requires_cron(self):
        with pytest.raises(InvalidScheduleError):
            self._scheduled(frequency=ScheduleFrequency.CUSTOM).validate()

    def test_requires_a_format(self):
        with pytest.raises(InvalidScheduleError):
            self._scheduled(formats=[]).validate()

    def test_rejects_invalid_recipient(self):
        scheduled = self._scheduled(delivery=DeliveryOptions(recipients=[Recipient("not-an-email")]))
        with pytest.raises(InvalidScheduleError):
            scheduled.validate()

    def test_dict_form_preserves_bookkeeping(self, fixed_datetime):
        scheduled = self._scheduled(
            next_run=fixed_datetime,
            run_count=3,
            failure_count=1,
            last_status=ExecutionStatus.COMPLETED_WITH_ERRORS,
        )

        restored = ScheduledReport.from_dict(scheduled.to_dict())

        assert restored.next_run == fixed_datetime
        assert restored.run_count == 3
        assert restored.failure_count == 1
        assert restored.last_status == ExecutionStatus.COMPLETED_WITH_ERRORS
        assert restored.frequency == ScheduleFrequency.WEEKLY


class TestExportFormat:
    """Test format metadata"""

    def test_excel_extension(self):
        assert ExportFormat.EXCEL.extension == "xlsx"
        assert ExportFormat.CSV.content_type == "text/csv"
