"""Pure scoring formulas for the Narrative Index components.

Each function maps already-fetched data to a 0-100 score plus the named
terms that produced it, so scorers can explain the number in a signal.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from app.clients.github import OrgActivity, ReleaseInfo
from app.clients.newsapi import HeadlineVelocity

TRACKED_RELEASE_ORGS = 11

FUNDING_ROUND_CAP = 500_000_000
FUNDING_BASELINE_MONTHLY = 400_000_000
FUNDING_MEANINGFUL_PRIOR = 50_000_000
FUNDING_STRONG_RECENT = 100_000_000

ALPHA_TIMEFRAME_WEIGHTS = (0.40, 0.35, 0.25)
BENCHMARK_FALLBACK_RETURNS = (0.04, 0.2, 0.8)

NEWS_BASELINE_ESTIMATE = 45.0


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def clamp_score(value: float) -> float:
    return float(max(0, min(100, round_half_up(value))))


@dataclass(frozen=True)
class FormulaResult:
    score: float
    terms: dict[str, float]

    def describe(self) -> str:
        return " + ".join(f"{name}={value:.1f}" for name, value in self.terms.items())


@dataclass(frozen=True)
class FundingEvent:
    company: str
    amount: float
    announced: date
    source: str = ""
    url: str | None = None
    title: str = ""


def github_activity(orgs: Sequence[OrgActivity]) -> FormulaResult:
    """20·ln(1+commits/50) + 20·(up−down)/orgs + 20·active/orgs."""
    total_orgs = len(orgs)
    if total_orgs == 0:
        raise ValueError("github_activity requires at least one org")
    commits = sum(org.commits_week for org in orgs)
    active = sum(1 for org in orgs if org.commits_week > 0)
    up = sum(1 for org in orgs if org.trend == "up")
    down = sum(1 for org in orgs if org.trend == "down")
    velocity = 20 * math.log(1 + commits / 50)
    momentum = 20 * (up - down) / total_orgs
    breadth = 20 * active / total_orgs
    return FormulaResult(
        score=clamp_score(velocity + momentum + breadth),
        terms={"velocity": velocity, "momentum": momentum, "breadth": breadth},
    )


def contracts_activity(
    total_awarded: float, contract_count: int, sticky_bonus: float
) -> FormulaResult:
    """30·ln(1+awarded/$10M) + min(20, 20·count/10) + min(20, sticky bonus)."""
    volume = 30 * math.log(1 + max(0.0, total_awarded) / 10_000_000)
    count = min(20.0, 20 * contract_count / 10)
    sticky = min(20.0, max(0.0, sticky_bonus))
    return FormulaResult(
        score=clamp_score(volume + count + sticky),
        terms={"volume": volume, "count": count, "sticky": sticky},
    )


def news_velocity(velocity: HeadlineVelocity) -> FormulaResult:
    """35 + 20·ln(1+recent/25) + 20·clamp(week-over-week change, −1, 1)."""
    volume = 20 * math.log(1 + velocity.recent / 25)
    change = (velocity.recent - velocity.previous) / max(1, velocity.previous)
    momentum = 20 * max(-1.0, min(1.0, change))
    return FormulaResult(
        score=clamp_score(35 + volume + momentum),
        terms={"base": 35.0, "volume": volume, "momentum": momentum},
    )


def _momentum_bonus(ratio: float) -> float:
    if ratio >= 2.0:
        return 15.0
    if ratio >= 1.5:
        return 10.0
    if ratio >= 1.2:
        return 5.0
    if ratio >= 0.8:
        return 0.0
    if ratio >= 0.5:
        return -5.0
    return -15.0


def funding_velocity(events: Sequence[FundingEvent], today: date) -> FormulaResult:
    """Velocity vs a $400M/month baseline, momentum, and recent deal flow.

    Rounds are capped at $500M each so a single mega-round cannot dominate.
    """

    def capped_total(window: Sequence[FundingEvent]) -> float:
        return sum(min(event.amount, FUNDING_ROUND_CAP) for event in window)

    aged = [(event, (today - event.announced).days) for event in events]
    last_30 = [event for event, days in aged if 0 <= days <= 30]
    prior_60 = [event for event, days in aged if 30 < days <= 90]
    last_90 = [event for event, days in aged if 0 <= days <= 90]

    monthly = capped_total(last_90) / 3
    ratio = max(0.1, monthly / FUNDING_BASELINE_MONTHLY)
    velocity = min(45.0, max(10.0, 40 + 15 * math.log2(ratio)))

    recent_total = capped_total(last_30)
    prior_monthly = capped_total(prior_60) / 2
    if prior_monthly > FUNDING_MEANINGFUL_PRIOR:
        momentum = _momentum_bonus(recent_total / prior_monthly)
    elif recent_total > FUNDING_STRONG_RECENT:
        momentum = 5.0
    else:
        momentum = 0.0

    recency = min(15.0, 4.0 * len(last_30))
    return FormulaResult(
        score=clamp_score(velocity + momentum + recency),
        terms={"velocity": velocity, "momentum": momentum, "recency": recency},
    )


def technical_momentum(
    releases: Sequence[ReleaseInfo], tracked_orgs: int = TRACKED_RELEASE_ORGS
) -> FormulaResult:
    """30·ln(1+releases/5) + min(30, 10·major) + 20·orgs/tracked."""
    majors = sum(1 for release in releases if release.is_major)
    orgs = len({release.org for release in releases})
    velocity = 30 * math.log(1 + len(releases) / 5)
    major = min(30.0, 10.0 * majors)
    breadth = 20 * orgs / max(1, tracked_orgs)
    return FormulaResult(
        score=clamp_score(velocity + major + breadth),
        terms={"velocity": velocity, "major": major, "breadth": breadth},
    )


def alpha_to_score(alpha: float) -> float:
    """Piecewise-linear map from weighted alpha (percent) to 0-100."""
    if alpha <= -5:
        return 5.0
    if alpha <= -3:
        return 5 + (alpha + 5) / 2 * 20
    if alpha <= -1:
        return 25 + (alpha + 3) / 2 * 15
    if alpha <= 0:
        return 40 + (alpha + 1) * 10
    if alpha <= 1:
        return 50 + alpha * 10
    if alpha <= 3:
        return 60 + (alpha - 1) / 2 * 15
    if alpha <= 5:
        return 75 + (alpha - 3) / 2 * 15
    return 90 + min(10.0, (alpha - 5) * 2)


def index_alpha(alpha_1d: float, alpha_5d: float, alpha_20d: float) -> FormulaResult:
    """Weighted 1D/5D/20D alpha, with alignment (±5) and acceleration (±3) adjustments."""
    w1, w5, w20 = ALPHA_TIMEFRAME_WEIGHTS
    weighted = alpha_1d * w1 + alpha_5d * w5 + alpha_20d * w20
    base = alpha_to_score(weighted)

    alignment = 0.0
    if alpha_1d > 0 and alpha_5d > 0 and alpha_20d > 0:
        alignment = 5.0
    elif alpha_1d < 0 and alpha_5d < 0 and alpha_20d < 0:
        alignment = -5.0

    acceleration = 0.0
    if alpha_1d > alpha_5d > alpha_20d and alpha_1d > 0:
        acceleration = 3.0
    elif alpha_1d < alpha_5d < alpha_20d and alpha_1d < 0:
        acceleration = -3.0

    return FormulaResult(
        score=clamp_score(base + alignment + acceleration),
        terms={
            "weightedAlpha": weighted,
            "base": base,
            "alignment": alignment,
            "acceleration": acceleration,
        },
    )


def prediction_market(prices: Sequence[tuple[float, float]]) -> FormulaResult:
    """Weighted YES probability × 100 over ``(price, weight)`` pairs."""
    total_weight = sum(weight for _, weight in prices)
    if total_weight <= 0:
        raise ValueError("prediction_market requires at least one weighted price")
    probability = sum(price * weight for price, weight in prices) / total_weight
    return FormulaResult(
        score=clamp_score(probability * 100),
        terms={"probability": probability * 100},
    )


def format_amount(amount: float) -> str:
    if amount >= 1_000_000_000:
        return f"{amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.0f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.0f}K"
    return f"{amount:.0f}"
