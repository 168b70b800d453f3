"""SQLModel mapping for persisted Narrative Index history entries."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.narrative import StoredNarrativeScore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


class NarrativeHistoryRecord(SQLModel, table=True):
    """One append-only row per computed Narrative Index."""

    __tablename__ = "narrative_history"
    __table_args__ = (sa.Index("ix_narrative_history_recorded_at", "recorded_at"),)

    id: int | None = Field(
        default=None,
        sa_column=Column(Integer, primary_key=True, autoincrement=True),
    )
    recorded_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    overall: float = Field(sa_column=Column(Float, nullable=False))
    components: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON_BACKING_TYPE, nullable=False),
    )
    trend: str = Field(sa_column=Column(String(length=16), nullable=False))
    confidence: float = Field(sa_column=Column(Float, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=UtcNow(),
        ),
    )

    @classmethod
    def from_stored(cls, entry: StoredNarrativeScore) -> NarrativeHistoryRecord:
        return cls(
            recorded_at=entry.timestamp,
            overall=entry.overall,
            components=dict(entry.components),
            trend=entry.trend,
            confidence=entry.confidence,
        )

    def to_stored(self) -> StoredNarrativeScore:
        return StoredNarrativeScore(
            timestamp=self.recorded_at,
            overall=self.overall,
            components=dict(self.components),
            trend=self.trend,
            confidence=self.confidence,
        )
