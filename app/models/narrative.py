"""Domain models for the Robotics Narrative Index."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Trend = Literal["up", "down", "stable"]
SignalType = Literal["github", "contract", "news", "funding", "technical", "market", "prediction"]
NarrativeBand = Literal["strong", "building", "neutral", "weakening", "cold"]

HISTORY_SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NarrativeSignal(_CamelModel):
    """A single event that contributed to a component score."""

    id: str
    type: SignalType
    title: str
    description: str = ""
    impact: float = Field(default=0.0, ge=-10.0, le=10.0)
    timestamp: datetime = Field(default_factory=_utcnow)
    source: str = ""
    url: str | None = None


class NarrativeInterpretation(_CamelModel):
    band: NarrativeBand
    label: str
    color: str
    action: str
    emoji: str


class NarrativeScore(_CamelModel):
    """A computed Narrative Index snapshot with its provenance."""

    id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    overall: float = Field(ge=0.0, le=100.0)
    components: dict[str, float] = Field(default_factory=dict)
    trend: Trend = "stable"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    signals: list[NarrativeSignal] = Field(default_factory=list)
    data_age: dict[str, datetime] = Field(default_factory=dict)
    missing_components: list[str] = Field(default_factory=list)
    weight_scheme: str = "expanded"

    @field_validator("components")
    @classmethod
    def _components_in_range(cls, value: dict[str, float]) -> dict[str, float]:
        for name, score in value.items():
            if not 0.0 <= score <= 100.0:
                raise ValueError(f"component {name} out of range: {score}")
        return value


class StoredNarrativeScore(_CamelModel):
    """Minimal history snapshot; never mutated once appended."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    timestamp: datetime
    overall: float
    components: dict[str, float] = Field(default_factory=dict)
    trend: Trend = "stable"
    confidence: float = 0.5

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_score(cls, score: NarrativeScore) -> "StoredNarrativeScore":
        return cls(
            timestamp=score.timestamp,
            overall=score.overall,
            components=dict(score.components),
            trend=score.trend,
            confidence=score.confidence,
        )


class NarrativeHistory(_CamelModel):
    """On-disk history file layout."""

    scores: list[StoredNarrativeScore] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=_utcnow)
    version: int = HISTORY_SCHEMA_VERSION


class HistoryStatistics(_CamelModel):
    data_points: int
    avg_score: float
    min_score: float
    max_score: float
    current_score: float
    trend: Trend
    interpretation: NarrativeInterpretation


class ChartPoint(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    date: str
    timestamp: datetime
    overall: float
    trend: Trend


class HistoryPeriod(_CamelModel):
    days: int
    start_date: datetime | None = None
    end_date: datetime | None = None


class NarrativeHistoryView(_CamelModel):
    chart_data: list[ChartPoint] = Field(default_factory=list)
    statistics: HistoryStatistics
    period: HistoryPeriod
    change: float | None = None
