"""
Built-in report templates, one per standard report type.
"""

from typing import Any, Dict, List, Optional

from .models import (
    DatePreset,
    HeaderFooter,
    Layout,
    Orientation,
    ReportFilters,
    ReportTemplate,
    ReportType,
    SectionType,
    TemplateMetadata,
    TemplateSection,
)


def _section(
    order: int,
    section_type: SectionType,
    title: Optional[str] = None,
    data_source: Optional[str] = None,
    content: Any = None,
    **config: Any,
) -> TemplateSection:
    return TemplateSection(
        section_id=f"section-{order}",
        type=section_type,
        order=order,
        title=title,
        content=content,
        config=config,
        data_source=data_source,
    )


def _template(
    template_id: str,
    name: str,
    report_type: ReportType,
    description: str,
    sections: List[TemplateSection],
    tags: List[str],
    orientation: Orientation = Orientation.PORTRAIT,
) -> ReportTemplate:
    return ReportTemplate(
        template_id=template_id,
        name=name,
        report_type=report_type,
        description=description,
        category=report_type.value,
        sections=sections,
        layout=Layout(
            orientation=orientation,
            header=HeaderFooter(content=name),
            footer=HeaderFooter(content="Analytics Reports", show_page_numbers=True),
        ),
        default_filters=ReportFilters(date_preset=DatePreset.LAST_30_DAYS),
        metadata=TemplateMetadata(author="system", tags=tags, category=report_type.value, is_public=True),
        created_by="system",
        is_system=True,
    )


def build_system_templates() -> List[ReportTemplate]:
    return [
        _template(
            "system-team-performance",
            "Team Performance Overview",
            ReportType.TEAM_PERFORMANCE,
            "Team averages, win rates and the performance trend for the period",
            [
                _section(1, SectionType.TEXT, "Summary", "team_performance_metrics",
                         content="Performance of {{team_count}} team(s) for {{date_range}}. "
                                 "Top performing team: {{top_performing_team}}."),
                _section(2, SectionType.METRIC, "Average Performance", "team_performance_metrics",
                         field="average_performance"),
                _section(3, SectionType.METRIC, "Average Win Rate", "team_performance_metrics",
                         field="average_win_rate", unit="%"),
                _section(4, SectionType.CHART, "Performance Trend", "team_performance_trend",
                         chart_type="line", x_field="date", y_field="score",
                         x_label="Date", y_label="Score"),
                _section(5, SectionType.TABLE, "Team Results", "team_analytics",
                         columns=["team_name", "total_games", "wins", "losses", "win_rate",
                                  "average_performance"],
                         show_summary=True),
            ],
            tags=["team", "performance"],
        ),
        _template(
            "system-player-progress",
            "Player Progress Report",
            ReportType.PLAYER_PROGRESS,
            "Per-player performance development with workload context",
            [
                _section(1, SectionType.TEXT, "Overview",
                         content="Progress of {{player_count}} player(s) for {{date_range}}."),
                _section(2, SectionType.CHART, "Average Performance by Player",
                         "player_progress_summary", chart_type="bar",
                         x_field="player_name", y_field="average_performance"),
                _section(3, SectionType.TABLE, "Player Progress", "player_progress_summary",
                         columns=["player_name", "average_performance", "latest_performance",
                                  "trend_direction", "games_played", "goals", "assists",
                                  "readiness_score"]),
            ],
            tags=["player", "progress"],
            orientation=Orientation.LANDSCAPE,
        ),
        _template(
            "system-workout-effectiveness",
            "Workout Effectiveness Report",
            ReportType.WORKOUT_EFFECTIVENESS,
            "Workout types ranked by measured effectiveness",
            [
                _section(1, SectionType.CHART, "Effectiveness by Workout Type",
                         "workout_effectiveness", chart_type="bar",
                         x_field="workout_type", y_field="effectiveness"),
                _section(2, SectionType.TABLE, "Workout Ranking", "workout_effectiveness",
                         show_summary=True),
            ],
            tags=["training", "workouts"],
        ),
        _template(
            "system-attendance",
            "Training Attendance Report",
            ReportType.ATTENDANCE,
            "Daily training sessions, participants and completion",
            [
                _section(1, SectionType.METRIC, "Total Participants", "attendance_statistics",
                         field="participants", aggregation="sum"),
                _section(2, SectionType.METRIC, "Average Completion Rate", "attendance_statistics",
                         field="completion_rate", aggregation="avg", unit="%"),
                _section(3, SectionType.CHART, "Participants per Day", "attendance_statistics",
                         chart_type="area", x_field="date", y_field="participants"),
                _section(4, SectionType.TABLE, "Daily Attendance", "attendance_statistics"),
            ],
            tags=["training", "attendance"],
        ),
        _template(
            "system-injury-report",
            "Injury Risk Report",
            ReportType.MEDICAL,
            "Current injury risk distribution and high risk players",
            [
                _section(1, SectionType.METRIC, "Average Injury Risk", "injury_report_data",
                         field="average_injury_risk"),
                _section(2, SectionType.METRIC, "High Risk Players", "injury_report_data",
                         field="risk_distribution.high"),
                _section(3, SectionType.DIVIDER),
                _section(4, SectionType.TABLE, "Player Workload", "workload_analytics",
                         columns=["player_name", "injury_risk", "readiness_score",
                                  "recovery_time", "weekly_load"]),
            ],
            tags=["medical", "workload"],
        ),
        _template(
            "system-executive-summary",
            "Executive Summary",
            ReportType.EXECUTIVE_SUMMARY,
            "Organization wide overview of performance, training and health",
            [
                _section(1, SectionType.TEXT, "Overview", "executive_summary_data",
                         content="{{overview.total_teams}} team(s) and {{overview.total_players}} "
                                 "player(s) completed {{overview.total_sessions}} training "
                                 "session(s) between {{date_range}}."),
                _section(2, SectionType.METRIC, "Average Performance", "executive_summary_data",
                         field="performance.average_performance"),
                _section(3, SectionType.METRIC, "High Risk Players", "executive_summary_data",
                         field="health.high_risk_players"),
                _section(4, SectionType.TABLE, "Team Performance", "team_performance_metrics"),
            ],
            tags=["executive", "summary"],
        ),
    ]


def system_template_map() -> Dict[str, ReportTemplate]:
    return {template.template_id: template for template in build_system_templates()}
