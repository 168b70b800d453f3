from __future__ import annotations

import asyncio
import math
from datetime import timedelta

import pytest

from app.services.errors import (
    ComponentUnavailableError,
    HistoryStoreError,
    NarrativeComputationError,
    WeightConfigurationError,
)
from app.services.narrative import engine as engine_module
from app.services.narrative.engine import (
    NarrativeEngine,
    calculate_confidence,
    combine_components,
    detect_trend,
    interpret_score,
    rank_signals,
)
from app.services.narrative.weights import (
    CORE_WEIGHTS,
    EXPANDED_WEIGHTS,
    resolve_weights,
    validate_weights,
)
from tests.helpers.metrics_stub import StubMetrics
from tests.helpers.narrative import NOW, FakeHistory, FakeScorer, make_signal, stored


def _engine(scorers, **kwargs) -> NarrativeEngine:
    return NarrativeEngine(scorers, clock=lambda: NOW, **kwargs)


def test_weight_tables_sum_to_one():
    assert math.fsum(CORE_WEIGHTS.values()) == pytest.approx(1.0)
    assert math.fsum(EXPANDED_WEIGHTS.values()) == pytest.approx(1.0)
    assert resolve_weights(None) is EXPANDED_WEIGHTS
    assert resolve_weights(" Core ") is CORE_WEIGHTS


@pytest.mark.parametrize("weights", [{}, {"a": 0.5, "b": 0.4}, {"a": 1.2, "b": -0.2}])
def test_invalid_weight_tables_are_rejected(weights):
    with pytest.raises(WeightConfigurationError):
        validate_weights(weights)


def test_unknown_scheme_is_rejected():
    with pytest.raises(WeightConfigurationError):
        resolve_weights("legacy")


@pytest.mark.parametrize(
    ("score", "band"),
    [
        (100, "strong"),
        (80, "strong"),
        (79.9, "building"),
        (60, "building"),
        (59.9, "neutral"),
        (40, "neutral"),
        (20, "weakening"),
        (19.9, "cold"),
        (0, "cold"),
    ],
)
def test_interpretation_bands_have_inclusive_lower_bounds(score, band):
    assert interpret_score(score).band == band


def test_interpretation_carries_label_and_color():
    strong = interpret_score(85)
    assert strong.label == "STRONG NARRATIVE"
    assert strong.color == "#00FF88"


def test_trend_compares_adjacent_windows():
    rising = [stored(9, 60), stored(8, 61), stored(2, 70), stored(1, 71)]
    falling = [stored(9, 70), stored(8, 71), stored(2, 60), stored(1, 61)]

    assert detect_trend(rising, now=NOW) == "up"
    assert detect_trend(falling, now=NOW) == "down"


def test_trend_is_stable_within_threshold_or_with_sparse_windows():
    flat = [stored(9, 60), stored(8, 60), stored(2, 63), stored(1, 63)]
    sparse = [stored(9, 10), stored(2, 90), stored(1, 90)]

    assert detect_trend(flat, now=NOW) == "stable"
    assert detect_trend(sparse, now=NOW) == "stable"
    assert detect_trend([], now=NOW) == "stable"


def test_confidence_averages_freshness():
    assert calculate_confidence({}) == 0.5
    ages = {"github": NOW, "news": NOW - timedelta(hours=12)}
    assert calculate_confidence(ages, NOW) == 0.75
    assert calculate_confidence({"old": NOW - timedelta(hours=48)}, NOW) == 0.0


def test_combine_components_renormalizes_over_present_weights():
    weights = {"a": 0.5, "b": 0.3, "c": 0.2}
    assert combine_components({"a": 80, "b": 40}, weights) == 65.0
    assert combine_components({"a": 33.33, "c": 66.67}, {"a": 0.5, "c": 0.5}) == 50.0
    with pytest.raises(NarrativeComputationError):
        combine_components({"unknown": 50}, weights)


def test_rank_signals_orders_by_absolute_impact():
    signals = [make_signal(f"s{index}", impact=index - 6) for index in range(12)]

    ranked = rank_signals(signals)

    assert len(ranked) == 10
    assert [abs(signal.impact) for signal in ranked[:3]] == [6, 5, 5]


def test_partial_failure_renormalizes_and_lowers_confidence(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(engine_module, "metrics", stub)
    scorers = [
        FakeScorer("github", 80),
        FakeScorer("contracts", error=ComponentUnavailableError("contracts", "down")),
        FakeScorer("news", 60),
        FakeScorer("funding", 40),
        FakeScorer("technical", 50),
    ]

    score = asyncio.run(_engine(scorers, weight_scheme="core").compute())

    assert score.overall == 58.0
    assert score.components == {"github": 80, "news": 60, "funding": 40, "technical": 50}
    assert score.missing_components == ["contracts"]
    assert score.confidence == 0.75
    assert score.weight_scheme == "core"
    failed = [call for call in stub.increment_calls if call["metric"] == "narrative.component_failed"]
    assert failed[0]["tags"] == {"component": "contracts"}
    assert stub.timing_calls[0]["metric"] == "narrative.compute_ms"


def test_weighted_component_without_scorer_counts_as_missing():
    score = asyncio.run(_engine([FakeScorer("indexAlpha", 70)]).compute())

    assert score.overall == 70.0
    assert score.weight_scheme == "expanded"
    assert set(score.missing_components) == set(EXPANDED_WEIGHTS) - {"indexAlpha"}
    assert score.confidence == 0.3


def test_every_component_failing_raises():
    scorers = [FakeScorer("github", error=RuntimeError("boom"))]

    with pytest.raises(NarrativeComputationError):
        asyncio.run(_engine(scorers, weights={"github": 1.0}).compute())


def test_scorers_outside_the_weight_table_are_ignored():
    extra = FakeScorer("sentiment", 100)
    engine = _engine([FakeScorer("github", 40), extra], weights={"github": 1.0})

    score = asyncio.run(engine.compute())

    assert score.components == {"github": 40}
    assert engine.weight_scheme == "custom"
    assert extra.calls == 0


def test_trend_uses_history_plus_current_score():
    history = FakeHistory([stored(9, 60), stored(8, 60), stored(2, 70)])
    engine = _engine([FakeScorer("github", 70)], weights={"github": 1.0}, history=history)

    score = asyncio.run(engine.compute())

    assert score.trend == "up"
    assert history.requested_days == [14]


def test_history_failure_does_not_block_computation():
    history = FakeHistory(error=HistoryStoreError("disk gone"))
    engine = _engine([FakeScorer("github", 70)], weights={"github": 1.0}, history=history)

    score = asyncio.run(engine.compute())

    assert score.trend == "stable"
    assert score.overall == 70.0


def test_signals_are_ranked_and_capped():
    signals = [make_signal(f"gh-{index}", impact=index / 2) for index in range(15)]
    engine = _engine([FakeScorer("github", 55, signals=signals)], weights={"github": 1.0})

    score = asyncio.run(engine.compute())

    assert len(score.signals) == 10
    assert score.signals[0].id == "gh-14"


def test_fourteen_daily_scores_rising_by_ten_points_trend_up():
    daily = [stored(13 - day, 50.0 if day < 7 else 60.0) for day in range(14)]
    flat = [stored(13 - day, 55.0) for day in range(14)]

    assert detect_trend(daily, now=NOW) == "up"
    assert detect_trend(flat, now=NOW) == "stable"


def test_missing_components_follow_weight_order_without_duplicates():
    scorers = [FakeScorer("github", error=RuntimeError("down")), FakeScorer("news", 50)]

    score = asyncio.run(_engine(scorers).compute())

    assert score.missing_components == [name for name in EXPANDED_WEIGHTS if name != "news"]


def test_single_component_runs_even_when_unweighted(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(engine_module, "metrics", stub)
    sentiment = FakeScorer("sentiment", 64)
    engine = _engine(
        [FakeScorer("github", error=ComponentUnavailableError("github", "rate limited")), sentiment],
        weights={"github": 1.0},
    )

    result = asyncio.run(engine.score_component("sentiment"))

    assert result.score == 64
    assert engine.component_names == ["github", "sentiment"]
    with pytest.raises(ComponentUnavailableError):
        asyncio.run(engine.score_component("github"))
    with pytest.raises(ComponentUnavailableError):
        asyncio.run(engine.score_component("weather"))
    assert stub.timing_calls[0]["tags"] == {"component": "sentiment"}
    failed = [call for call in stub.increment_calls if call["metric"] == "narrative.component_failed"]
    assert failed[0]["tags"] == {"component": "github"}
