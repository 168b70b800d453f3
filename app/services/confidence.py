"""Completeness-based confidence scoring for API payloads."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence, Sized
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel

from app.models.envelope import Completeness, ConfidenceMeta

ConfidenceLevel = Literal["high", "medium", "low"]

HIGH_CONFIDENCE_THRESHOLD = 0.8
MEDIUM_CONFIDENCE_THRESHOLD = 0.5


def is_filled(value: Any) -> bool:
    """None, blank strings, and empty collections count as unfilled."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, Sized):
        return len(value) > 0
    return True


def _as_mapping(obj: Mapping[str, Any] | BaseModel | None) -> Mapping[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    return obj


def compute_confidence(obj: Mapping[str, Any] | BaseModel | None) -> float:
    """Return filled/total over the top-level fields, rounded to 2 decimals.

    >>> compute_confidence({"a": 1, "b": None})
    0.5
    """
    values = _as_mapping(obj)
    if not values:
        return 0.0
    filled = sum(1 for value in values.values() if is_filled(value))
    return round(filled / len(values), 2)


def get_confidence_level(score: float) -> ConfidenceLevel:
    clamped = max(0.0, min(1.0, score))
    if clamped >= HIGH_CONFIDENCE_THRESHOLD:
        return "high"
    if clamped >= MEDIUM_CONFIDENCE_THRESHOLD:
        return "medium"
    return "low"


def format_confidence(score: float) -> str:
    if score is None or math.isnan(score):
        return "0%"
    clamped = max(0.0, min(1.0, score))
    return f"{round(clamped * 100)}%"


def merge_confidence_scores(
    scores: Sequence[float], weights: Sequence[float] | None = None
) -> float:
    """Weighted mean of ``scores``.

    Falls back to the simple mean when ``weights`` is missing or its length
    differs from ``scores``; returns 0 when the weights sum to zero.
    """
    if not scores:
        return 0.0
    if weights is None or len(weights) != len(scores):
        return round(sum(scores) / len(scores), 2)
    total_weight = sum(weights)
    if total_weight == 0:
        return 0.0
    weighted = sum(score * weight for score, weight in zip(scores, weights))
    return round(weighted / total_weight, 2)


def build_confidence_meta(
    obj: Mapping[str, Any] | BaseModel | None,
    source: str,
    *,
    now: datetime | None = None,
) -> ConfidenceMeta:
    values = _as_mapping(obj)
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    return ConfidenceMeta(
        confidence=compute_confidence(values),
        last_updated=timestamp,
        source=source,
        completeness=Completeness(
            fields=len(values),
            filled=sum(1 for value in values.values() if is_filled(value)),
        ),
    )
