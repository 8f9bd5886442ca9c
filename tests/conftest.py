"""
Shared pytest fixtures for analytics reports tests
"""

import pytest
from unittest.mock import Mock, AsyncMock
from datetime import datetime, timedelta, timezone

from analytics_reports.data_sources import DataAggregator, InMemoryRecordStore
from analytics_reports.delivery import ReportDelivery
from analytics_reports.export_renderer import ExportRenderer
from analytics_reports.models import (
    ReportTemplate,
    ReportType,
    SectionType,
    TemplateSection,
)
from analytics_reports.progress import InMemoryProgressStore
from analytics_reports.report_generator import ReportGenerator
from analytics_reports.repositories import (
    InMemoryGeneratedReportRepository,
    InMemoryScheduledReportRepository,
    InMemoryTemplateRepository,
    LocalReportStorage,
)
from analytics_reports.scheduler import ReportScheduler
from analytics_reports.section_processor import SectionProcessor


class FakeClock:
    """Settable clock returning aware UTC datetimes"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def fixed_datetime():
    """Wednesday 2025-01-15 10:00 UTC"""
    return datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_datetime):
    return FakeClock(fixed_datetime)


@pytest.fixture
def sample_records():
    """Raw rows per base entity, all inside the 30 days before the fixed time"""
    return {
        "performance_metrics": [
            {"metric_name": "score", "value": 80, "category": "offense",
             "team_id": "t1", "player_id": "p1", "date": "2025-01-10"},
            {"metric_name": "score", "value": 90, "category": "offense",
             "team_id": "t1", "player_id": "p2", "date": "2025-01-12"},
        ],
        "team_analytics": [
            {"team_id": "t1", "team_name": "Falcons", "average_performance": 78.0,
             "total_games": 10, "wins": 7, "losses": 3, "win_rate": 70.0,
             "average_goals": 3.1, "average_assists": 4.2, "teamwork_score": 81.0,
             "date": "2025-01-05"},
            {"team_id": "t2", "team_name": "Wolves", "average_performance": 84.0,
             "total_games": 12, "wins": 9, "losses": 3, "win_rate": 75.0,
             "average_goals": 3.6, "average_assists": 5.0, "teamwork_score": 79.0,
             "date": "2025-01-05"},
            {"team_id": "t1", "team_name": "Falcons", "average_performance": 82.0,
             "total_games": 11, "wins": 8, "losses": 3, "win_rate": 72.7,
             "average_goals": 3.3, "average_assists": 4.4, "teamwork_score": 83.0,
             "date": "2025-01-12"},
        ],
        "player_performance_stats": [
            {"player_id": "p1", "player_name": "Anna Berg", "team_id": "t1",
             "performance_score": 70, "games_played": 2, "goals": 1, "assists": 2,
             "date": "2025-01-02"},
            {"player_id": "p1", "player_name": "Anna Berg", "team_id": "t1",
             "performance_score": 78, "games_played": 3, "goals": 2, "assists": 1,
             "date": "2025-01-12"},
            {"player_id": "p2", "player_name": "Ola Lind", "team_id": "t2",
             "performance_score": 88, "games_played": 3, "goals": 4, "assists": 0,
             "date": "2025-01-04"},
            {"player_id": "p2", "player_name": "Ola Lind", "team_id": "t2",
             "performance_score": 81, "games_played": 2, "goals": 1, "assists": 1,
             "date": "2025-01-11"},
        ],
        "workload_analytics": [
            {"player_id": "p1", "player_name": "Anna Berg", "team_id": "t1",
             "total_load": 400, "weekly_load": 120, "monthly_load": 400,
             "injury_risk": 82, "recovery_time": 36, "readiness_score": 55,
             "date": "2025-01-12"},
            {"player_id": "p2", "player_name": "Ola Lind", "team_id": "t2",
             "total_load": 300, "weekly_load": 90, "monthly_load": 300,
             "injury_risk": 25, "recovery_time": 12, "readiness_score": 90,
             "date": "2025-01-12"},
        ],
        "training_statistics": [
            {"session_id": "s1", "team_id": "t1", "workout_type": "strength",
             "duration": 60, "average_intensity": 7, "participants": 18,
             "completion_rate": 90.0, "average_rating": 4.2, "calories_burned": 500,
             "date": "2025-01-10"},
            {"session_id": "s2", "team_id": "t2", "workout_type": "cardio",
             "duration": 45, "average_intensity": 8, "participants": 20,
             "completion_rate": 80.0, "average_rating": 4.0, "calories_burned": 450,
             "date": "2025-01-10"},
        ],
        "workout_analytics": [
            {"workout_id": "w1", "workout_type": "strength", "effectiveness": 72,
             "participant_count": 18, "average_completion": 90, "average_difficulty": 6,
             "average_rating": 4.2, "improvement_rate": 3.5, "date": "2025-01-10"},
            {"workout_id": "w2", "workout_type": "cardio", "effectiveness": 85,
             "participant_count": 20, "average_completion": 80, "average_difficulty": 7,
             "average_rating": 4.0, "improvement_rate": 4.1, "date": "2025-01-10"},
        ],
    }


@pytest.fixture
def record_store(sample_records):
    return InMemoryRecordStore(sample_records)


@pytest.fixture
def aggregator(record_store):
    return DataAggregator(record_store)


@pytest.fixture
def section_processor(aggregator, clock):
    return SectionProcessor(aggregator, clock=clock)


@pytest.fixture
def storage(tmp_path):
    return LocalReportStorage(tmp_path / "exports", url_prefix="/api/exports")


@pytest.fixture
def export_renderer(storage, clock):
    return ExportRenderer(storage, clock=clock)


@pytest.fixture
def make_template():
    """Factory for ad-hoc templates: make_template(sections, template_id=...)"""

    def factory(sections, template_id="tpl-test", name="Test Report", **kwargs):
        return ReportTemplate(
            template_id=template_id,
            name=name,
            report_type=kwargs.pop("report_type", ReportType.CUSTOM),
            sections=sections,
            **kwargs,
        )

    return factory


@pytest.fixture
def metric_template(make_template):
    """Score metric, score table and a text summary over performance_metrics"""
    return make_template([
        TemplateSection("intro", SectionType.TEXT, 1, title="Summary",
                        content="Report for {{player_count}} player(s) on {{current_date}}"),
        TemplateSection("score", SectionType.METRIC, 2, title="Average Score",
                        data_source="performance_metrics",
                        config={"field": "value", "aggregation": "avg"}),
        TemplateSection("scores", SectionType.TABLE, 3, title="Scores",
                        data_source="performance_metrics",
                        config={"columns": ["player_id", "value", "date"]}),
    ], template_id="tpl-metrics", name="Score Report")


@pytest.fixture
def broken_source_template(make_template):
    """One good section and one bound to a source that does not exist"""
    return make_template([
        TemplateSection("score", SectionType.METRIC, 1, title="Average Score",
                        data_source="performance_metrics", config={"field": "value"}),
        TemplateSection("missing", SectionType.TABLE, 2, title="Missing Data",
                        data_source="no_such_source"),
    ], template_id="tpl-broken", name="Broken Report")


@pytest.fixture
def template_repository(metric_template, broken_source_template):
    return InMemoryTemplateRepository([metric_template, broken_source_template])


@pytest.fixture
def report_repository():
    return InMemoryGeneratedReportRepository()


@pytest.fixture
def schedule_repository():
    return InMemoryScheduledReportRepository()


@pytest.fixture
def progress_store():
    return InMemoryProgressStore(ttl_seconds=3600)


@pytest.fixture
def generator(template_repository, report_repository, section_processor, export_renderer,
              progress_store, clock):
    return ReportGenerator(
        templates=template_repository,
        reports=report_repository,
        section_processor=section_processor,
        export_renderer=export_renderer,
        progress_store=progress_store,
        clock=clock,
    )


@pytest.fixture
def mock_email_sender():
    """EmailSender accepting every message"""
    sender = Mock()
    sender.send = AsyncMock(return_value=True)
    return sender


@pytest.fixture
def delivery(mock_email_sender):
    return ReportDelivery(mock_email_sender)


@pytest.fixture
def scheduler(schedule_repository, generator, delivery, template_repository, clock):
    return ReportScheduler(
        schedules=schedule_repository,
        generator=generator,
        delivery=delivery,
        templates=template_repository,
        clock=clock,
    )
