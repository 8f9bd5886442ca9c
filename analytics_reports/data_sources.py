"""
Data Aggregator

Resolves named data sources into rows or aggregate dictionaries. Base
sources read raw statistics from a RecordStore and apply the common filters;
derived sources re-aggregate base sources with pandas.
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import pandas as pd
import structlog

from .exceptions import SourceNotFound
from .models import CustomFilter, FilterOperator, ReportFilters, parse_datetime, utc_now

logger = structlog.get_logger()

SourceData = Union[List[Dict[str, Any]], Dict[str, Any]]
SourceFetcher = Callable[[ReportFilters], Union[SourceData, Awaitable[SourceData]]]

HIGH_RISK_THRESHOLD = 70
LOW_RISK_THRESHOLD = 30


# =============================================================================
# Record storage
# =============================================================================

class RecordStore(ABC):
    """Raw statistics rows per base entity"""

    @abstractmethod
    async def fetch_rows(self, entity: str) -> List[Dict[str, Any]]:
        ...


class InMemoryRecordStore(RecordStore):
    """Record store backed by a dictionary of row lists"""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._records: Dict[str, List[Dict[str, Any]]] = {
            entity: list(rows) for entity, rows in (records or {}).items()
        }

    def add_rows(self, entity: str, rows: List[Dict[str, Any]]) -> None:
        self._records.setdefault(entity, []).extend(rows)

    async def fetch_rows(self, entity: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._records.get(entity, [])]

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryRecordStore":
        with open(path, "r") as f:
            records = json.load(f)
        logger.info("records_loaded", path=str(path), entities=sorted(records))
        return cls(records)


# =============================================================================
# Source schemas
# =============================================================================

@dataclass
class DataField:
    name: str
    type: str  # string, number, date, boolean
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type, "label": self.label}


@dataclass
class FilterConfig:
    field: str
    type: str  # date_range, select, multi_select, number_range
    options: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "type": self.type, "options": list(self.options)}


@dataclass
class DataSourceConfig:
    """Descriptive schema of a data source, used for discovery and validation"""
    name: str
    description: str
    fields: List[DataField] = field(default_factory=list)
    filters: List[FilterConfig] = field(default_factory=list)
    aggregations: List[str] = field(default_factory=list)
    entity_filters: Dict[str, str] = field(default_factory=dict)
    date_field: Optional[str] = "date"
    derived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
            "filters": [f.to_dict() for f in self.filters],
            "aggregations": list(self.aggregations),
            "derived": self.derived,
        }


def _fields(*specs: str) -> List[DataField]:
    """Build fields from 'name:type:Label' specs"""
    result = []
    for spec in specs:
        name, field_type, label = spec.split(":", 2)
        result.append(DataField(name=name, type=field_type, label=label))
    return result


_DATE_FILTER = FilterConfig(field="date", type="date_range")

BASE_SOURCES: Dict[str, DataSourceConfig] = {
    "player_performance_stats": DataSourceConfig(
        name="player_performance_stats",
        description="Per-player performance statistics",
        fields=_fields(
            "player_id:string:Player ID", "player_name:string:Player",
            "team_id:string:Team ID", "performance_score:number:Performance Score",
            "skill_level:number:Skill Level", "endurance:number:Endurance",
            "strength:number:Strength", "speed:number:Speed",
            "accuracy:number:Accuracy", "teamwork:number:Teamwork",
            "games_played:number:Games Played", "goals:number:Goals",
            "assists:number:Assists", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("player_id", "multi_select"),
                 FilterConfig("team_id", "multi_select")],
        aggregations=["avg", "sum", "max", "min", "count"],
        entity_filters={"players": "player_id", "teams": "team_id"},
    ),
    "team_analytics": DataSourceConfig(
        name="team_analytics",
        description="Team level results and averages",
        fields=_fields(
            "team_id:string:Team ID", "team_name:string:Team",
            "average_performance:number:Average Performance",
            "total_games:number:Total Games", "wins:number:Wins",
            "losses:number:Losses", "win_rate:number:Win Rate",
            "average_goals:number:Average Goals",
            "average_assists:number:Average Assists",
            "teamwork_score:number:Teamwork Score", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("team_id", "multi_select")],
        aggregations=["avg", "sum", "max", "min", "count"],
        entity_filters={"teams": "team_id"},
    ),
    "training_statistics": DataSourceConfig(
        name="training_statistics",
        description="Training sessions and attendance",
        fields=_fields(
            "session_id:string:Session ID", "team_id:string:Team ID",
            "workout_type:string:Workout Type", "duration:number:Duration (min)",
            "average_intensity:number:Average Intensity",
            "participants:number:Participants",
            "completion_rate:number:Completion Rate",
            "average_rating:number:Average Rating",
            "calories_burned:number:Calories Burned", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("workout_type", "multi_select")],
        aggregations=["avg", "sum", "count"],
        entity_filters={"teams": "team_id", "workout_types": "workout_type"},
    ),
    "workload_analytics": DataSourceConfig(
        name="workload_analytics",
        description="Player training load and injury risk",
        fields=_fields(
            "player_id:string:Player ID", "player_name:string:Player",
            "team_id:string:Team ID", "total_load:number:Total Load",
            "weekly_load:number:Weekly Load", "monthly_load:number:Monthly Load",
            "injury_risk:number:Injury Risk", "recovery_time:number:Recovery Time (h)",
            "readiness_score:number:Readiness", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("player_id", "multi_select")],
        aggregations=["avg", "max", "min"],
        entity_filters={"players": "player_id", "teams": "team_id"},
    ),
    "workout_analytics": DataSourceConfig(
        name="workout_analytics",
        description="Workout program effectiveness",
        fields=_fields(
            "workout_id:string:Workout ID", "workout_type:string:Workout Type",
            "effectiveness:number:Effectiveness",
            "participant_count:number:Participants",
            "average_completion:number:Average Completion",
            "average_difficulty:number:Average Difficulty",
            "average_rating:number:Average Rating",
            "improvement_rate:number:Improvement Rate", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("workout_type", "multi_select")],
        aggregations=["avg", "sum", "count"],
        entity_filters={"workout_types": "workout_type"},
    ),
    "performance_metrics": DataSourceConfig(
        name="performance_metrics",
        description="Generic named performance metrics",
        fields=_fields(
            "metric_name:string:Metric", "value:number:Value",
            "category:string:Category", "team_id:string:Team ID",
            "player_id:string:Player ID", "date:date:Date",
        ),
        filters=[_DATE_FILTER, FilterConfig("category", "multi_select")],
        aggregations=["avg", "sum", "max", "min", "count"],
        entity_filters={
            "teams": "team_id", "players": "player_id", "categories": "category",
        },
    ),
}


# =============================================================================
# Filtering
# =============================================================================

def _coerce_pair(actual: Any, expected: Any):
    if isinstance(actual, (datetime, date)):
        return parse_datetime(actual), parse_datetime(expected)
    if isinstance(actual, (int, float)) and isinstance(expected, str):
        return actual, float(expected)
    return actual, expected


def matches_filter(row: Dict[str, Any], custom: CustomFilter) -> bool:
    """Evaluate a single custom predicate against a row"""
    actual = row.get(custom.field)
    operator = custom.operator

    if operator == FilterOperator.CONTAINS:
        return actual is not None and str(custom.value).lower() in str(actual).lower()
    if operator == FilterOperator.IN:
        values = custom.value if isinstance(custom.value, (list, tuple, set)) else [custom.value]
        return actual in values
    if actual is None:
        return False

    try:
        left, right = _coerce_pair(actual, custom.value)
        if operator == FilterOperator.EQ:
            return left == right
        if operator == FilterOperator.NE:
            return left != right
        if operator == FilterOperator.GT:
            return left > right
        if operator == FilterOperator.GTE:
            return left >= right
        if operator == FilterOperator.LT:
            return left < right
        if operator == FilterOperator.LTE:
            return left <= right
    except (TypeError, ValueError):
        return False
    return False


def apply_filters(
    rows: List[Dict[str, Any]],
    filters: ReportFilters,
    config: Optional[DataSourceConfig] = None,
) -> List[Dict[str, Any]]:
    """Apply the date range, entity lists and custom predicates (AND)"""
    date_field = config.date_field if config else "date"
    entity_filters = config.entity_filters if config else {}

    selected_entities = {
        row_field: {str(v) for v in getattr(filters, filter_name)}
        for filter_name, row_field in entity_filters.items()
        if getattr(filters, filter_name)
    }

    result = []
    for row in rows:
        if filters.date_range is not None and date_field:
            try:
                row_date = parse_datetime(row.get(date_field))
            except ValueError:
                row_date = None
            if row_date is None or not filters.date_range.contains(row_date):
                continue
        if any(str(row.get(f)) not in allowed for f, allowed in selected_entities.items()):
            continue
        if not all(matches_filter(row, custom) for custom in filters.custom_filters):
            continue
        result.append(row)
    return result


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as plain dicts with NaN replaced by None"""
    return df.astype(object).where(pd.notnull(df), None).to_dict("records")


def _day(value: Any) -> str:
    return parse_datetime(value).strftime("%Y-%m-%d")


def _round(value: Any, digits: int = 2) -> Optional[float]:
    if value is None or pd.isna(value):
        return None
    return round(float(value), digits)


@dataclass
class RegisteredSource:
    config: DataSourceConfig
    fetcher: SourceFetcher


class DataAggregator:
    """
    Named data source registry.

    fetch() is the single entry point used by the section processor. Unknown
    source names raise SourceNotFound.
    """

    def __init__(self, record_store: RecordStore):
        self.record_store = record_store
        self._sources: Dict[str, RegisteredSource] = {}

        for name, config in BASE_SOURCES.items():
            self._sources[name] = RegisteredSource(config, self._base_fetcher(name))
        self._register_derived_sources()

    def register_source(self, config: DataSourceConfig, fetcher: SourceFetcher) -> None:
        """Register an additional source; list results pass through the common filters"""
        self._sources[config.name] = RegisteredSource(config, fetcher)
        logger.info("data_source_registered", source=config.name)

    def list_data_sources(self) -> List[DataSourceConfig]:
        return [entry.config for entry in self._sources.values()]

    def get_data_source_config(self, source_name: str) -> DataSourceConfig:
        entry = self._sources.get(source_name)
        if entry is None:
            raise SourceNotFound(source_name)
        return entry.config

    async def fetch(self, source_name: str, filters: Optional[ReportFilters] = None) -> SourceData:
        """Fetch data for a named source under the given filters"""
        entry = self._sources.get(source_name)
        if entry is None:
            raise SourceNotFound(source_name)

        filters = (filters or ReportFilters()).resolve()
        result = entry.fetcher(filters)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, list) and not entry.config.derived:
            result = apply_filters(result, filters, entry.config)

        logger.debug(
            "data_source_fetched",
            source=source_name,
            records=len(result) if isinstance(result, list) else 1,
        )
        return result

    # -------------------------------------------------------------------------
    # Base sources
    # -------------------------------------------------------------------------

    def _base_fetcher(self, entity: str) -> SourceFetcher:
        async def fetch_entity(filters: ReportFilters) -> List[Dict[str, Any]]:
            return await self.record_store.fetch_rows(entity)
        return fetch_entity

    async def _rows(self, entity: str, filters: ReportFilters) -> List[Dict[str, Any]]:
        rows = await self.record_store.fetch_rows(entity)
        return apply_filters(rows, filters, BASE_SOURCES[entity])

    # -------------------------------------------------------------------------
    # Derived sources
    # -------------------------------------------------------------------------

    def _register_derived_sources(self) -> None:
        derived = [
            ("team_performance_metrics", "Team performance averages and top team",
             self._team_performance_metrics, {"teams": "team_id"}),
            ("team_performance_trend", "Average team performance per day",
             self._team_performance_trend, {"teams": "team_id"}),
            ("player_progress_summary", "Player performance with workload and trend",
             self._player_progress_summary, {"players": "player_id", "teams": "team_id"}),
            ("workout_effectiveness", "Workout types ranked by effectiveness",
             self._workout_effectiveness, {"workout_types": "workout_type"}),
            ("attendance_statistics", "Training attendance per day",
             self._attendance_statistics, {"teams": "team_id"}),
            ("injury_report_data", "Injury risk distribution from workload",
             self._injury_report_data, {"players": "player_id", "teams": "team_id"}),
            ("executive_summary_data", "Combined overview for executives",
             self._executive_summary_data, {}),
        ]
        for name, description, fetcher, entity_filters in derived:
            config = DataSourceConfig(
                name=name,
                description=description,
                filters=[_DATE_FILTER],
                entity_filters=entity_filters,
                derived=True,
            )
            self._sources[name] = RegisteredSource(config, fetcher)

    async def _team_performance_metrics(self, filters: ReportFilters) -> Dict[str, Any]:
        rows = await self._rows("team_analytics", filters)
        if not rows:
            return {
                "average_performance": 0,
                "total_games": 0,
                "average_win_rate": 0,
                "team_count": 0,
                "top_performing_team": None,
            }

        df = pd.DataFrame(rows)
        per_team = df.groupby("team_name")["average_performance"].mean()
        return {
            "average_performance": _round(df["average_performance"].mean()),
            "total_games": int(df["total_games"].sum()),
            "average_win_rate": _round(df["win_rate"].mean()),
            "team_count": int(df["team_id"].nunique()),
            "top_performing_team": str(per_team.idxmax()),
        }

    async def _team_performance_trend(self, filters: ReportFilters) -> List[Dict[str, Any]]:
        rows = await self._rows("team_analytics", filters)
        if not rows:
            return []

        df = pd.DataFrame(rows)
        df["day"] = [_day(v) for v in df["date"]]
        grouped = (
            df.groupby("day")
            .agg(score=("average_performance", "mean"), team_count=("team_id", "nunique"))
            .reset_index()
            .sort_values("day")
        )
        return [
            {"date": row.day, "score": _round(row.score), "team_count": int(row.team_count)}
            for row in grouped.itertuples(index=False)
        ]

    async def _player_progress_summary(self, filters: ReportFilters) -> List[Dict[str, Any]]:
        stats = await self._rows("player_performance_stats", filters)
        if not stats:
            return []
        workload = await self._rows("workload_analytics", filters)

        df = pd.DataFrame(stats)
        df["_ts"] = [parse_datetime(v) for v in df["date"]]
        df = df.sort_values("_ts")
        summary = (
            df.groupby("player_id")
            .agg(
                player_name=("player_name", "last"),
                average_performance=("performance_score", "mean"),
                first_score=("performance_score", "first"),
                latest_score=("performance_score", "last"),
                games_played=("games_played", "sum"),
                goals=("goals", "sum"),
                assists=("assists", "sum"),
            )
            .reset_index()
        )

        if workload:
            wl = pd.DataFrame(workload)
            wl["_ts"] = [parse_datetime(v) for v in wl["date"]]
            latest_load = (
                wl.sort_values("_ts")
                .groupby("player_id")[["injury_risk", "readiness_score", "total_load"]]
                .last()
                .reset_index()
            )
            summary = summary.merge(latest_load, on="player_id", how="left")

        result = []
        for record in _records(summary):
            first, latest = float(record.pop("first_score")), float(record.pop("latest_score"))
            if latest > first:
                trend = "improving"
            elif latest < first:
                trend = "declining"
            else:
                trend = "stable"
            record["average_performance"] = _round(record["average_performance"])
            record["latest_performance"] = _round(latest)
            record["trend_direction"] = trend
            for count_field in ("games_played", "goals", "assists"):
                record[count_field] = int(record[count_field])
            for load_field in ("injury_risk", "readiness_score", "total_load"):
                record[load_field] = _round(record.get(load_field))
            result.append(record)
        return result

    async def _workout_effectiveness(self, filters: ReportFilters) -> List[Dict[str, Any]]:
        rows = await self._rows("workout_analytics", filters)
        if not rows:
            return []

        df = pd.DataFrame(rows)
        grouped = (
            df.groupby("workout_type")
            .agg(
                effectiveness=("effectiveness", "mean"),
                sessions=("workout_id", "count"),
                participant_count=("participant_count", "sum"),
                average_completion=("average_completion", "mean"),
                average_rating=("average_rating", "mean"),
                improvement_rate=("improvement_rate", "mean"),
            )
            .reset_index()
            .sort_values("effectiveness", ascending=False)
        )
        return [
            {
                "workout_type": row.workout_type,
                "effectiveness": _round(row.effectiveness),
                "sessions": int(row.sessions),
                "participant_count": int(row.participant_count),
                "average_completion": _round(row.average_completion),
                "average_rating": _round(row.average_rating),
                "improvement_rate": _round(row.improvement_rate),
            }
            for row in grouped.itertuples(index=False)
        ]

    async def _attendance_statistics(self, filters: ReportFilters) -> List[Dict[str, Any]]:
        rows = await self._rows("training_statistics", filters)
        if not rows:
            return []

        df = pd.DataFrame(rows)
        df["day"] = [_day(v) for v in df["date"]]
        grouped = (
            df.groupby("day")
            .agg(
                sessions=("session_id", "count"),
                participants=("participants", "sum"),
                completion_rate=("completion_rate", "mean"),
            )
            .reset_index()
            .sort_values("day")
        )
        return [
            {
                "date": row.day,
                "sessions": int(row.sessions),
                "participants": int(row.participants),
                "completion_rate": _round(row.completion_rate),
            }
            for row in grouped.itertuples(index=False)
        ]

    async def _injury_report_data(self, filters: ReportFilters) -> Dict[str, Any]:
        rows = await self._rows("workload_analytics", filters)
        distribution = {"low": 0, "medium": 0, "high": 0}
        if not rows:
            return {
                "total_players": 0,
                "average_injury_risk": 0,
                "high_risk_players": [],
                "risk_distribution": distribution,
            }

        df = pd.DataFrame(rows)
        df["_ts"] = [parse_datetime(v) for v in df["date"]]
        latest = df.sort_values("_ts").groupby("player_id").last().reset_index()

        high_risk = []
        for record in _records(latest):
            risk = float(record["injury_risk"])
            if risk > HIGH_RISK_THRESHOLD:
                distribution["high"] += 1
                high_risk.append({
                    "player_id": record["player_id"],
                    "player_name": record.get("player_name"),
                    "injury_risk": _round(risk),
                    "recovery_time": _round(record.get("recovery_time")),
                })
            elif risk < LOW_RISK_THRESHOLD:
                distribution["low"] += 1
            else:
                distribution["medium"] += 1

        high_risk.sort(key=lambda p: p["injury_risk"], reverse=True)
        return {
            "total_players": int(len(latest)),
            "average_injury_risk": _round(latest["injury_risk"].mean()),
            "high_risk_players": high_risk,
            "risk_distribution": distribution,
        }

    async def _executive_summary_data(self, filters: ReportFilters) -> Dict[str, Any]:
        team_metrics, workouts, attendance, injuries = await asyncio.gather(
            self._team_performance_metrics(filters),
            self._workout_effectiveness(filters),
            self._attendance_statistics(filters),
            self._injury_report_data(filters),
        )

        total_sessions = sum(day["sessions"] for day in attendance)
        total_participants = sum(day["participants"] for day in attendance)
        most_effective = workouts[0]["workout_type"] if workouts else None

        insights = []
        if team_metrics["top_performing_team"]:
            insights.append(f"Top performing team: {team_metrics['top_performing_team']}")
        if most_effective:
            insights.append(f"Most effective workout type: {most_effective}")
        high_risk_count = len(injuries["high_risk_players"])
        if high_risk_count:
            insights.append(f"{high_risk_count} player(s) at high injury risk")
        if total_sessions:
            insights.append(
                f"Average attendance of {total_participants / total_sessions:.1f} per session"
            )

        return {
            "overview": {
                "total_teams": team_metrics["team_count"],
                "total_players": injuries["total_players"],
                "total_sessions": total_sessions,
                "generated_at": utc_now().isoformat(),
            },
            "performance": {
                "average_performance": team_metrics["average_performance"],
                "average_win_rate": team_metrics["average_win_rate"],
                "top_performing_team": team_metrics["top_performing_team"],
            },
            "training": {
                "total_sessions": total_sessions,
                "total_participants": total_participants,
                "most_effective_workout": most_effective,
            },
            "health": {
                "high_risk_players": high_risk_count,
                "risk_distribution": injuries["risk_distribution"],
            },
            "key_insights": insights,
        }
