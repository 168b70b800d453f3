"""Component scorers that fetch signal data and turn it into 0-100 scores.

A scorer raises when it cannot produce a score (upstream failure or no data
at all); the engine then treats that component as absent.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from statistics import fmean
from typing import Any

from app.clients.github import GitHubClient
from app.clients.market_data import MarketDataClient, price_changes
from app.clients.newsapi import NewsAPIClient
from app.clients.polymarket import PolymarketClient
from app.clients.usaspending import USASpendingClient
from app.core.files import read_json
from app.models.narrative import NarrativeSignal
from app.services.errors import ComponentUnavailableError, GlobeError, UpstreamError
from app.services.narrative import formulas
from app.services.narrative.sticky_signals import (
    StickySignal,
    StickySignalStore,
    contract_impact,
    funding_impact,
)

logger = logging.getLogger(__name__)

FUNDING_LOOKBACK_DAYS = 180
BREAKING_CONTRACT_DAYS = 30
LARGE_CONTRACT_AMOUNT = 10_000_000
MEGA_ROUND_AMOUNT = 100_000_000
MARKET_HISTORY_DAYS = 40


@dataclass(frozen=True)
class ComponentResult:
    name: str
    score: float
    signals: list[NarrativeSignal] = field(default_factory=list)
    as_of: datetime | None = None
    estimated: bool = False


@dataclass(frozen=True)
class PredictionMarket:
    name: str
    token_id: str
    weight: float = 1.0


TESLA_OPTIMUS_MARKET = PredictionMarket(
    name="Tesla Optimus Release",
    token_id="81398621498976727589490119481788053159677593582770707348620729114209951230437",
)


class ComponentScorer(ABC):
    """One Narrative Index component."""

    name: str

    @abstractmethod
    async def score(self, now: datetime) -> ComponentResult:
        ...


def _signal_id(prefix: str, now: datetime) -> str:
    return f"{prefix}-{int(now.timestamp())}"


def _slug(value: str) -> str:
    return "-".join(value.lower().split())


class GitHubActivityScorer(ComponentScorer):
    name = "github"

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    async def score(self, now: datetime) -> ComponentResult:
        orgs = await self._client.org_leaderboard()
        if not orgs:
            raise ComponentUnavailableError(self.name, "no activity from tracked orgs")
        result = formulas.github_activity(orgs)
        commits = sum(org.commits_week for org in orgs)
        active = sum(1 for org in orgs if org.commits_week > 0)
        signal = NarrativeSignal(
            id=_signal_id("gh-quant", now),
            type="github",
            title=f"GitHub Score: {result.score:.0f}",
            description=f"{result.describe()} | {commits} commits, {active}/{len(orgs)} active",
            timestamp=now,
            source="GitHub API",
        )
        return ComponentResult(self.name, result.score, [signal], as_of=now)


class ContractsScorer(ComponentScorer):
    """Breaking contracts, decaying sticky signals, and USASpending awards."""

    name = "contracts"

    def __init__(
        self,
        client: USASpendingClient,
        sticky_store: StickySignalStore,
        breaking_contracts_path: str | Path,
    ) -> None:
        self._client = client
        self._sticky = sticky_store
        self._breaking_path = Path(breaking_contracts_path)

    async def score(self, now: datetime) -> ComponentResult:
        signals: list[NarrativeSignal] = []
        breaking_total = 0.0
        for contract in self._breaking_contracts(now):
            amount = float(contract.get("amount") or 0)
            impact = contract_impact(amount)
            breaking_total += amount
            label = f"{contract.get('company', 'Unknown')} ${formulas.format_amount(amount)}"
            description = str(contract.get("description", ""))
            signals.append(
                NarrativeSignal(
                    id=str(contract["id"]),
                    type="contract",
                    title=f"BREAKING: {label}",
                    description=f"{contract.get('agency', '')}: {description[:60]}",
                    impact=impact,
                    timestamp=contract["announced"],
                    source="Breaking News",
                    url=contract.get("url"),
                )
            )
            self._remember(
                StickySignal(
                    id=str(contract["id"]),
                    type="contract",
                    title=label,
                    description=description[:100],
                    base_impact=impact,
                    amount=amount,
                    timestamp=contract["announced"],
                    added_at=now,
                )
            )

        seen = {signal.id for signal in signals}
        sticky_bonus = 0.0
        for active in self._sticky.active(now, signal_type="contract"):
            if active.signal.id in seen:
                continue
            sticky_bonus += active.decayed_impact * 2
            signals.append(
                NarrativeSignal(
                    id=active.signal.id,
                    type="contract",
                    title=f"{active.signal.title} ({active.days_ago}d ago)",
                    description=(
                        f"{active.signal.description} [Impact: {active.decayed_impact:.1f} "
                        f"decayed from {active.signal.base_impact}]"
                    ),
                    impact=active.decayed_impact,
                    timestamp=active.signal.timestamp,
                    source="Sticky Signal",
                )
            )

        awards = await self._client.search_robotics_contracts(
            min_amount=100_000, days=30, limit=50, today=now.date()
        )
        total_awarded = breaking_total + sum(award.amount for award in awards)
        contract_count = len(awards) + (1 if breaking_total > 0 else 0)
        result = formulas.contracts_activity(total_awarded, contract_count, sticky_bonus)
        signals.append(
            NarrativeSignal(
                id=_signal_id("contracts-quant", now),
                type="contract",
                title=f"Contracts Score: {result.score:.0f}",
                description=(
                    f"{result.describe()} | ${formulas.format_amount(total_awarded)} "
                    f"across {contract_count} contracts"
                ),
                timestamp=now,
                source="USASpending.gov + Breaking",
            )
        )

        large = [award for award in awards if award.amount > LARGE_CONTRACT_AMOUNT][:3]
        for award in large:
            impact = contract_impact(award.amount)
            awarded_on = _as_datetime(award.award_date, now)
            signal_id = f"contract-{award.award_id}"
            self._remember(
                StickySignal(
                    id=signal_id,
                    type="contract",
                    title=f"${formulas.format_amount(award.amount)} Contract",
                    description=f"{award.recipient_name}: {award.description[:60]}",
                    base_impact=impact,
                    amount=award.amount,
                    timestamp=awarded_on,
                    added_at=now,
                )
            )
            signals.append(
                NarrativeSignal(
                    id=signal_id,
                    type="contract",
                    title=f"${formulas.format_amount(award.amount)} Contract Awarded",
                    description=f"{award.recipient_name}: {award.description[:80]}",
                    impact=impact,
                    timestamp=awarded_on,
                    source="USASpending.gov",
                )
            )
        if len(awards) > 20:
            signals.append(
                NarrativeSignal(
                    id=_signal_id("contracts-volume", now),
                    type="contract",
                    title="High Contract Volume",
                    description=f"{len(awards)} robotics contracts in last 30 days",
                    impact=1.5,
                    timestamp=now,
                    source="USASpending.gov",
                )
            )
        self._prune(now)
        return ComponentResult(self.name, result.score, signals, as_of=now)

    def _breaking_contracts(self, now: datetime) -> list[dict[str, Any]]:
        try:
            raw = read_json(self._breaking_path)
        except (OSError, json.JSONDecodeError):
            logger.exception(
                "narrative.breaking_contracts.unreadable",
                extra={"component": self.name, "path": str(self._breaking_path)},
            )
            return []
        entries = raw.get("contracts", []) if isinstance(raw, dict) else []
        cutoff = now - timedelta(days=BREAKING_CONTRACT_DAYS)
        recent: list[dict[str, Any]] = []
        for entry in entries:
            try:
                announced = _parse_timestamp(entry["announcedDate"], now)
            except (KeyError, TypeError, ValueError):
                logger.warning(
                    "narrative.breaking_contracts.record_skipped",
                    extra={"component": self.name, "id": entry.get("id")},
                )
                continue
            if announced >= cutoff and entry.get("id"):
                recent.append({**entry, "announced": announced})
        return recent

    def _remember(self, signal: StickySignal) -> None:
        try:
            self._sticky.add(signal)
        except GlobeError as exc:
            logger.warning(
                "narrative.sticky_signal.not_saved",
                extra={"component": self.name, "id": signal.id, "code": exc.code},
            )

    def _prune(self, now: datetime) -> None:
        try:
            self._sticky.prune_expired(now)
        except GlobeError as exc:
            logger.warning(
                "narrative.sticky_signal.prune_failed",
                extra={"component": self.name, "code": exc.code},
            )


class NewsScorer(ComponentScorer):
    """Headline velocity; a flagged baseline estimate when NewsAPI is not configured."""

    name = "news"

    def __init__(self, client: NewsAPIClient | None) -> None:
        self._client = client

    async def score(self, now: datetime) -> ComponentResult:
        if self._client is None:
            signal = NarrativeSignal(
                id=_signal_id("news-estimate", now),
                type="news",
                title="News Data Estimated",
                description="Using baseline estimate; NEWS_API_KEY is not configured",
                timestamp=now,
                source="Estimate",
            )
            return ComponentResult(
                self.name, formulas.NEWS_BASELINE_ESTIMATE, [signal], as_of=None, estimated=True
            )
        velocity = await self._client.headline_velocity(7, now=now)
        result = formulas.news_velocity(velocity)
        signal = NarrativeSignal(
            id=_signal_id("news-velocity", now),
            type="news",
            title=f"News Score: {result.score:.0f}",
            description=(
                f"{result.describe()} | {velocity.recent} headlines this week "
                f"vs {velocity.previous} last week"
            ),
            impact=1.0 if velocity.recent > velocity.previous else 0.0,
            timestamp=now,
            source="NewsAPI",
        )
        return ComponentResult(self.name, result.score, [signal], as_of=now)


def load_funding_events(path: Path, now: datetime) -> list[formulas.FundingEvent] | None:
    """Curated rounds from the last 180 days, or ``None`` when the file is absent."""
    try:
        raw = read_json(path)
    except (OSError, json.JSONDecodeError):
        logger.exception(
            "narrative.funding_database.unreadable", extra={"component": "funding", "path": str(path)}
        )
        return None
    if raw is None:
        return None
    cutoff = (now - timedelta(days=FUNDING_LOOKBACK_DAYS)).date()
    events: list[formulas.FundingEvent] = []
    for entry in raw.get("rounds", []) if isinstance(raw, dict) else []:
        try:
            announced = date.fromisoformat(str(entry["date"])[:10])
            amount = float(entry["amount"])
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "narrative.funding_database.record_skipped",
                extra={"component": "funding", "company": entry.get("company")},
            )
            continue
        if announced < cutoff:
            continue
        events.append(
            formulas.FundingEvent(
                company=str(entry.get("company", "Unknown")),
                amount=amount,
                announced=announced,
                source="Curated Database",
                title=f"{entry.get('round', '')}: {entry.get('description', '')}".strip(": "),
            )
        )
    return events


class FundingScorer(ComponentScorer):
    name = "funding"

    def __init__(
        self,
        sticky_store: StickySignalStore,
        funding_database_path: str | Path,
        news_client: NewsAPIClient | None = None,
    ) -> None:
        self._sticky = sticky_store
        self._database_path = Path(funding_database_path)
        self._news = news_client

    async def score(self, now: datetime) -> ComponentResult:
        curated = load_funding_events(self._database_path, now)
        events = list(curated or [])
        news_ok = False
        if self._news is not None:
            try:
                rounds = await self._news.funding_rounds(30, now=now)
                news_ok = True
            except UpstreamError as exc:
                logger.warning(
                    "narrative.funding_news_skipped",
                    extra={"component": self.name, "code": exc.code},
                )
                rounds = []
            known = {event.company.lower() for event in events}
            for entry in rounds:
                if entry.company.lower() in known:
                    continue
                events.append(
                    formulas.FundingEvent(
                        company=entry.company,
                        amount=entry.amount,
                        announced=entry.announced,
                        source=entry.source,
                        url=entry.url,
                        title=entry.title,
                    )
                )
        if curated is None and not news_ok:
            raise ComponentUnavailableError(self.name, "no funding data source available")

        today = now.date()
        result = formulas.funding_velocity(events, today)
        signals: list[NarrativeSignal] = []
        for active in self._sticky.active(now, signal_type="funding"):
            decay_pct = round(active.decayed_impact / active.signal.base_impact * 100)
            signals.append(
                NarrativeSignal(
                    id=active.signal.id,
                    type="funding",
                    title=f"{active.signal.title} ({active.days_ago}d ago, {decay_pct}% decay)",
                    description=active.signal.description,
                    impact=active.decayed_impact,
                    timestamp=active.signal.timestamp,
                    source="Sticky Signal",
                )
            )

        for event in events:
            days_ago = (today - event.announced).days
            if not 0 <= days_ago <= 90:
                continue
            announced_at = _as_datetime(event.announced, now)
            if event.amount >= MEGA_ROUND_AMOUNT:
                self._remember(
                    StickySignal(
                        id=f"funding-{_slug(event.company)}",
                        type="funding",
                        title=f"{event.company} ${formulas.format_amount(event.amount)}",
                        description=event.title or "Series funding round",
                        base_impact=funding_impact(event.amount),
                        amount=event.amount,
                        timestamp=announced_at,
                        added_at=now,
                    )
                )
            signals.append(
                NarrativeSignal(
                    id=f"funding-{_slug(event.company)}-{event.announced.isoformat()}",
                    type="funding",
                    title=f"{event.company}: ${formulas.format_amount(event.amount)}",
                    description=f"{days_ago}d ago via {event.source}" if event.source else "",
                    impact=2.0 if event.amount >= 100_000_000 else 1.0 if event.amount >= 50_000_000 else 0.0,
                    timestamp=announced_at,
                    source=event.source or "NewsAPI",
                    url=event.url,
                )
            )

        momentum = result.terms["momentum"]
        signals.append(
            NarrativeSignal(
                id=_signal_id("funding-quant", now),
                type="funding",
                title=f"Funding Score: {result.score:.0f}",
                description=result.describe(),
                impact=1.0 if momentum > 0 else -1.0 if momentum < 0 else 0.0,
                timestamp=now,
                source="Quant Formula",
            )
        )
        return ComponentResult(self.name, result.score, signals, as_of=now)

    def _remember(self, signal: StickySignal) -> None:
        try:
            self._sticky.add(signal)
        except GlobeError as exc:
            logger.warning(
                "narrative.sticky_signal.not_saved",
                extra={"component": self.name, "id": signal.id, "code": exc.code},
            )


class TechnicalScorer(ComponentScorer):
    name = "technical"

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    async def score(self, now: datetime) -> ComponentResult:
        releases = await self._client.recent_releases(30, now=now)
        result = formulas.technical_momentum(releases)
        signals = [
            NarrativeSignal(
                id=f"release-{release.org}-{release.version}",
                type="technical",
                title=f"Major: {release.org}/{release.repo} {release.version}",
                description=release.notes[:50] or "New major version",
                timestamp=release.published_at,
                source="GitHub Releases",
                url=release.url or None,
            )
            for release in releases
            if release.is_major
        ][:3]
        signals.append(
            NarrativeSignal(
                id=_signal_id("tech-quant", now),
                type="technical",
                title=f"Technical Score: {result.score:.0f}",
                description=f"{result.describe()} | {len(releases)} releases",
                timestamp=now,
                source="GitHub Releases",
            )
        )
        return ComponentResult(self.name, result.score, signals, as_of=now)


class IndexAlphaScorer(ComponentScorer):
    """Robotics basket returns against a world-equity benchmark."""

    name = "indexAlpha"

    def __init__(
        self,
        client: MarketDataClient,
        robotics_symbols: Sequence[str],
        benchmark_symbol: str = "URTH",
    ) -> None:
        self._client = client
        self._symbols = tuple(robotics_symbols)
        self._benchmark = benchmark_symbol

    async def score(self, now: datetime) -> ComponentResult:
        basket: list[dict[str, float]] = []
        for symbol in self._symbols:
            try:
                history = await self._client.daily_history(symbol, MARKET_HISTORY_DAYS, now=now)
            except UpstreamError as exc:
                logger.warning(
                    "narrative.index_alpha.symbol_skipped",
                    extra={"component": self.name, "symbol": symbol, "code": exc.code},
                )
                continue
            if len(history) >= 2:
                basket.append(price_changes(history))
        if not basket:
            raise ComponentUnavailableError(self.name, "no robotics price history")

        robotics = tuple(
            fmean(changes[key] for changes in basket)
            for key in ("change1D", "change5D", "change20D")
        )
        signals: list[NarrativeSignal] = []
        benchmark = await self._benchmark_returns(now)
        if benchmark is None:
            benchmark = formulas.BENCHMARK_FALLBACK_RETURNS
            signals.append(
                NarrativeSignal(
                    id=_signal_id("alpha-nobenchmark", now),
                    type="market",
                    title="Using Historical Benchmark",
                    description="Benchmark data unavailable, using 10% annual average",
                    timestamp=now,
                    source="Index Alpha",
                )
            )

        alpha_1d, alpha_5d, alpha_20d = (r - b for r, b in zip(robotics, benchmark))
        result = formulas.index_alpha(alpha_1d, alpha_5d, alpha_20d)
        weighted = result.terms["weightedAlpha"]
        if result.terms["alignment"] > 0:
            signals.append(
                NarrativeSignal(
                    id=_signal_id("alpha-momentum-up", now),
                    type="market",
                    title="Positive Momentum Alignment",
                    description="Robotics outperforming across all timeframes",
                    impact=2.0,
                    timestamp=now,
                    source="Index Alpha",
                )
            )
        elif result.terms["alignment"] < 0:
            signals.append(
                NarrativeSignal(
                    id=_signal_id("alpha-momentum-down", now),
                    type="market",
                    title="Negative Momentum Alignment",
                    description="Robotics underperforming across all timeframes",
                    impact=-2.0,
                    timestamp=now,
                    source="Index Alpha",
                )
            )
        signals.append(
            NarrativeSignal(
                id=_signal_id("alpha-summary", now),
                type="market",
                title=f"Weighted Alpha: {weighted:+.2f}% vs {self._benchmark}",
                description=(
                    f"1D: {alpha_1d:+.2f}% | 5D: {alpha_5d:+.2f}% | 20D: {alpha_20d:+.2f}%"
                ),
                impact=2.0 if weighted > 1 else -2.0 if weighted < -1 else 0.0,
                timestamp=now,
                source="Index Alpha",
            )
        )
        return ComponentResult(self.name, result.score, signals, as_of=now)

    async def _benchmark_returns(self, now: datetime) -> tuple[float, float, float] | None:
        try:
            history = await self._client.daily_history(
                self._benchmark, MARKET_HISTORY_DAYS, now=now
            )
        except UpstreamError as exc:
            logger.warning(
                "narrative.index_alpha.benchmark_unavailable",
                extra={"component": self.name, "symbol": self._benchmark, "code": exc.code},
            )
            return None
        if len(history) < 2:
            return None
        changes = price_changes(history)
        return changes["change1D"], changes["change5D"], changes["change20D"]


class PolymarketScorer(ComponentScorer):
    """The score is the weighted market-implied probability."""

    name = "polymarket"

    def __init__(
        self,
        client: PolymarketClient,
        markets: Sequence[PredictionMarket] = (TESLA_OPTIMUS_MARKET,),
    ) -> None:
        self._client = client
        self._markets = tuple(markets)

    async def score(self, now: datetime) -> ComponentResult:
        prices: list[tuple[float, float]] = []
        signals: list[NarrativeSignal] = []
        for market in self._markets:
            try:
                price = await self._client.price(market.token_id, "buy")
            except UpstreamError as exc:
                logger.warning(
                    "narrative.polymarket.market_skipped",
                    extra={"component": self.name, "market": market.name, "code": exc.code},
                )
                continue
            prices.append((price, market.weight))
            signals.append(
                NarrativeSignal(
                    id=f"polymarket-{_slug(market.name)}-{int(now.timestamp())}",
                    type="prediction",
                    title=f"{market.name}: {price * 100:.1f}%",
                    description="Polymarket probability = score",
                    timestamp=now,
                    source="Polymarket CLOB",
                )
            )
        if not prices:
            raise ComponentUnavailableError(self.name, "no prediction market prices")
        result = formulas.prediction_market(prices)
        return ComponentResult(self.name, result.score, signals, as_of=now)


def _parse_timestamp(raw: str, now: datetime) -> datetime:
    parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    return parsed


def _as_datetime(day: date | None, now: datetime) -> datetime:
    if day is None:
        return now
    return datetime(day.year, day.month, day.day, tzinfo=now.tzinfo)
