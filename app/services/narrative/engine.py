"""Narrative Index computation: concurrent component scoring and weighting."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from statistics import fmean
from typing import Any, Protocol
from uuid import uuid4

from app.clients.github import GitHubClient
from app.clients.market_data import MarketDataClient
from app.clients.newsapi import NewsAPIClient
from app.clients.polymarket import PolymarketClient
from app.clients.usaspending import USASpendingClient
from app.config import settings
from app.models.narrative import (
    NarrativeInterpretation,
    NarrativeScore,
    NarrativeSignal,
    StoredNarrativeScore,
    Trend,
)
from app.observability.metrics import metrics
from app.services.errors import (
    ComponentUnavailableError,
    GlobeError,
    NarrativeComputationError,
)
from app.services.narrative.components import (
    ComponentResult,
    ComponentScorer,
    ContractsScorer,
    FundingScorer,
    GitHubActivityScorer,
    IndexAlphaScorer,
    NewsScorer,
    PolymarketScorer,
    TechnicalScorer,
)
from app.services.narrative.sticky_signals import StickySignalStore
from app.services.narrative.weights import resolve_weights, validate_weights

logger = logging.getLogger(__name__)

MAX_SIGNALS = 10
TREND_WINDOW_DAYS = 7
TREND_THRESHOLD = 3.0
MIN_WINDOW_POINTS = 2
DEFAULT_CONFIDENCE = 0.5
FRESHNESS_HORIZON_HOURS = 24.0

# (lower bound, interpretation); checked in order.
_BANDS: tuple[tuple[float, NarrativeInterpretation], ...] = (
    (
        80.0,
        NarrativeInterpretation(
            band="strong",
            label="STRONG NARRATIVE",
            color="#00FF88",
            action="Major momentum, accumulate",
            emoji="🟢",
        ),
    ),
    (
        60.0,
        NarrativeInterpretation(
            band="building",
            label="BUILDING",
            color="#FFB800",
            action="Positive signals, watch closely",
            emoji="🟡",
        ),
    ),
    (
        40.0,
        NarrativeInterpretation(
            band="neutral",
            label="NEUTRAL",
            color="#888888",
            action="Mixed signals",
            emoji="⚪",
        ),
    ),
    (
        20.0,
        NarrativeInterpretation(
            band="weakening",
            label="WEAKENING",
            color="#FF8800",
            action="Negative drift",
            emoji="🟠",
        ),
    ),
)
_COLD = NarrativeInterpretation(
    band="cold", label="COLD", color="#FF3B3B", action="Narrative dead", emoji="🔴"
)


class HistoryReader(Protocol):
    def get_historical_scores(self, days: int) -> list[StoredNarrativeScore]:
        ...


def interpret_score(score: float) -> NarrativeInterpretation:
    """Qualitative band for an overall score; lower bounds are inclusive."""
    for lower_bound, interpretation in _BANDS:
        if score >= lower_bound:
            return interpretation
    return _COLD


def detect_trend(
    history: Sequence[StoredNarrativeScore],
    *,
    window_days: int = TREND_WINDOW_DAYS,
    threshold: float = TREND_THRESHOLD,
    now: datetime | None = None,
) -> Trend:
    """Compare the mean of ``(now-N, now]`` against ``(now-2N, now-N]``.

    Each window needs at least two points; otherwise the trend is stable.
    """
    current = now or datetime.now(timezone.utc)
    window = timedelta(days=window_days)
    recent = [
        entry.overall for entry in history if current - window < entry.timestamp <= current
    ]
    older = [
        entry.overall
        for entry in history
        if current - 2 * window < entry.timestamp <= current - window
    ]
    if len(recent) < MIN_WINDOW_POINTS or len(older) < MIN_WINDOW_POINTS:
        return "stable"
    delta = fmean(recent) - fmean(older)
    if delta > threshold:
        return "up"
    if delta < -threshold:
        return "down"
    return "stable"


def calculate_confidence(data_age: Mapping[str, datetime], now: datetime | None = None) -> float:
    """Mean freshness ``max(0, 1 - age_hours/24)``; 0.5 when nothing is dated."""
    if not data_age:
        return DEFAULT_CONFIDENCE
    current = now or datetime.now(timezone.utc)
    freshness = [
        max(0.0, 1 - (current - fetched).total_seconds() / 3600 / FRESHNESS_HORIZON_HOURS)
        for fetched in data_age.values()
    ]
    return round(min(1.0, fmean(freshness)), 2)


def combine_components(
    components: Mapping[str, float], weights: Mapping[str, float]
) -> float:
    """``Σ score·w / Σ w`` over the weighted components present, to one decimal."""
    present = {name: weights[name] for name in components if name in weights}
    total_weight = math.fsum(present.values())
    if total_weight <= 0:
        raise NarrativeComputationError("No weighted component produced a score.")
    weighted = math.fsum(components[name] * weight for name, weight in present.items())
    return round(weighted / total_weight, 1)


def rank_signals(signals: Sequence[NarrativeSignal], limit: int = MAX_SIGNALS) -> list[NarrativeSignal]:
    return sorted(signals, key=lambda signal: abs(signal.impact), reverse=True)[:limit]


class NarrativeEngine:
    """Runs every component scorer and folds the results into a NarrativeScore."""

    def __init__(
        self,
        scorers: Sequence[ComponentScorer],
        *,
        weight_scheme: str | None = None,
        weights: Mapping[str, float] | None = None,
        history: HistoryReader | None = None,
        clock: Callable[[], datetime] | None = None,
        resources: Sequence[Any] = (),
    ) -> None:
        self._scheme = weight_scheme or ("custom" if weights else settings.narrative_weight_scheme)
        self._weights = validate_weights(weights) if weights else resolve_weights(self._scheme)
        self._registry = {scorer.name: scorer for scorer in scorers}
        self._scorers = [scorer for scorer in scorers if scorer.name in self._weights]
        self._history = history
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._resources = tuple(resources)

    @property
    def weights(self) -> Mapping[str, float]:
        return self._weights

    @property
    def weight_scheme(self) -> str:
        return self._scheme

    @property
    def component_names(self) -> list[str]:
        return list(self._registry)

    async def score_component(self, name: str) -> ComponentResult:
        """Run a single scorer, weighted or not, outside of a full computation."""
        scorer = self._registry.get(name)
        if scorer is None:
            raise ComponentUnavailableError(name, "no scorer configured")
        started = time.perf_counter()
        try:
            result = await scorer.score(self._clock())
        except GlobeError as exc:
            metrics.increment("narrative.component_failed", tags={"component": name})
            logger.warning(
                "narrative.component_failed",
                extra={"component": name, "code": exc.code, "error": str(exc)},
            )
            raise
        metrics.timing(
            "narrative.component_ms",
            (time.perf_counter() - started) * 1000,
            tags={"component": name},
        )
        return result

    async def aclose(self) -> None:
        for resource in self._resources:
            await resource.aclose()

    async def compute(self) -> NarrativeScore:
        now = self._clock()
        started = time.perf_counter()
        outcomes = await asyncio.gather(
            *(scorer.score(now) for scorer in self._scorers), return_exceptions=True
        )

        results: dict[str, ComponentResult] = {}
        for scorer, outcome in zip(self._scorers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                metrics.increment("narrative.component_failed", tags={"component": scorer.name})
                logger.warning(
                    "narrative.component_failed",
                    extra={
                        "component": scorer.name,
                        "code": getattr(outcome, "code", "500_INTERNAL"),
                        "error": str(outcome),
                    },
                )
                continue
            results[scorer.name] = outcome
        missing = [name for name in self._weights if name not in results]

        if not results:
            raise NarrativeComputationError("Every narrative component failed.")

        components = {name: result.score for name, result in results.items()}
        overall = combine_components(components, self._weights)
        data_age = {
            name: result.as_of for name, result in results.items() if result.as_of is not None
        }
        present_fraction = math.fsum(self._weights[name] for name in results)
        confidence = round(calculate_confidence(data_age, now) * present_fraction, 2)
        signals = rank_signals(
            [signal for result in results.values() for signal in result.signals]
        )
        trend = detect_trend(self._recent_history(now, overall), now=now)

        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.timing("narrative.compute_ms", elapsed_ms)
        logger.info(
            "narrative.computed",
            extra={
                "overall": overall,
                "trend": trend,
                "confidence": confidence,
                "missing_components": missing,
                "weight_scheme": self._scheme,
                "duration_ms": round(elapsed_ms, 2),
            },
        )
        return NarrativeScore(
            id=f"narrative-{uuid4().hex[:12]}",
            timestamp=now,
            overall=overall,
            components=components,
            trend=trend,
            confidence=confidence,
            signals=signals,
            data_age=data_age,
            missing_components=missing,
            weight_scheme=self._scheme,
        )

    def _recent_history(self, now: datetime, overall: float) -> list[StoredNarrativeScore]:
        entries: list[StoredNarrativeScore] = []
        if self._history is not None:
            try:
                entries = list(self._history.get_historical_scores(2 * TREND_WINDOW_DAYS))
            except GlobeError as exc:
                logger.warning(
                    "narrative.trend_history_unavailable", extra={"code": exc.code}
                )
        # The score being computed counts as the newest point.
        entries.append(StoredNarrativeScore(timestamp=now, overall=overall))
        return entries


def build_default_engine(history: HistoryReader | None = None) -> NarrativeEngine:
    """Engine wired to the real provider clients from settings."""
    github = GitHubClient.from_settings()
    usaspending = USASpendingClient()
    news = NewsAPIClient.from_settings()
    polymarket = PolymarketClient()
    market = MarketDataClient()
    sticky = StickySignalStore()
    scorers: list[ComponentScorer] = [
        GitHubActivityScorer(github),
        ContractsScorer(usaspending, sticky, settings.breaking_contracts_path),
        NewsScorer(news),
        FundingScorer(sticky, settings.funding_database_path, news),
        TechnicalScorer(github),
        IndexAlphaScorer(market, settings.robotics_index_symbols, settings.benchmark_symbol),
        PolymarketScorer(polymarket),
    ]
    resources = [github, usaspending, polymarket, market]
    if news is not None:
        resources.append(news)
    return NarrativeEngine(scorers, history=history, resources=resources)
