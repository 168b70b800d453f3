"""NewsAPI client: robotics headline velocity and funding-round extraction."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx

from app.clients.upstream import UpstreamClient
from app.config import settings
from app.services.errors import UpstreamError, UpstreamSchemaError

ROBOTICS_QUERY = '(robotics OR robot OR humanoid OR "autonomous systems")'
FUNDING_QUERY = (
    '(robotics OR "robot company" OR "AI startup" OR humanoid) AND '
    '(raises OR raised OR funding OR "series a" OR "series b" OR "series c" OR investment) '
    "AND (million OR billion)"
)

ROBOTICS_COMPANIES: tuple[str, ...] = (
    "Figure AI", "Figure", "1X Technologies", "1X", "Apptronik", "Agility Robotics",
    "Agility", "Boston Dynamics", "Sanctuary AI", "Sanctuary", "Physical Intelligence",
    "Skild AI", "Skild", "Covariant", "Dexterity", "Locus Robotics", "Berkshire Grey",
    "Nuro", "Aurora", "Waymo", "Anduril", "Shield AI", "Sarcos", "Exotec", "GreyOrange",
    "Realtime Robotics", "Symbotic", "RightHand Robotics", "Vecna Robotics", "Brain Corp",
    "Serve Robotics", "Ghost Robotics", "Unitree", "UBTECH", "Keenon", "Pudu",
    "Bear Robotics",
)

FUNDING_KEYWORDS: tuple[str, ...] = (
    "raises", "raised", "funding", "series a", "series b", "series c", "series d",
    "seed round", "investment", "venture", "financing", "secures", "closes",
    "led by", "valuation",
)

_AMOUNT_PATTERNS = (
    re.compile(r"\$\s*(\d+(?:\.\d+)?)\s*(million|billion|m|b)\b"),
    re.compile(r"(\d+(?:\.\d+)?)\s*(million|billion)\s*dollars?"),
    re.compile(r"raises?\s*\$\s*(\d+(?:\.\d+)?)\s*(million|billion|m|b)?"),
    re.compile(r"funding\s*(?:round\s*)?(?:of\s*)?\$\s*(\d+(?:\.\d+)?)\s*(million|billion|m|b)?"),
)
_DOLLAR_MENTION = re.compile(r"\$\s*\d+|\d+\s*(million|billion)", re.IGNORECASE)
_ROBOTICS_MENTION = re.compile(
    r"robot|autonom|\bai\b|artificial intelligence|machine learning|automation", re.IGNORECASE
)
_TITLE_COMPANY = (
    re.compile(r"^([A-Z][a-zA-Z0-9\s]+?)\s+(?:raises?|secures?|closes?|announces?)", re.IGNORECASE),
    re.compile(r"([A-Z][a-zA-Z0-9]+(?:\s+(?:AI|Robotics|Technologies))?)\s+(?:raises?|secures?)"),
)
_ARTICLE_WORDS = frozenset({"the", "a", "an", "this", "that"})


@dataclass(frozen=True)
class NewsArticle:
    title: str
    description: str
    source: str
    url: str
    published_at: datetime

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"


@dataclass(frozen=True)
class HeadlineVelocity:
    recent: int
    previous: int


@dataclass(frozen=True)
class FundingNews:
    company: str
    amount: float
    announced: date
    source: str
    url: str
    title: str


def parse_funding_amount(text: str) -> float | None:
    """Return the first dollar amount in ``text`` in USD (bare numbers are millions)."""
    lowered = text.lower()
    for pattern in _AMOUNT_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        value = float(match.group(1))
        unit = (match.group(2) or "").lower()
        if unit in ("billion", "b"):
            return value * 1_000_000_000
        return value if value >= 1000 else value * 1_000_000
    return None


def is_funding_article(article: NewsArticle) -> bool:
    text = article.text.lower()
    if not any(keyword in text for keyword in FUNDING_KEYWORDS):
        return False
    if not _DOLLAR_MENTION.search(text):
        return False
    return bool(_ROBOTICS_MENTION.search(text))


def extract_company_name(article: NewsArticle) -> str | None:
    lowered = article.text.lower()
    for company in ROBOTICS_COMPANIES:
        if company.lower() in lowered:
            return company
    for pattern in _TITLE_COMPANY:
        match = pattern.search(article.title)
        if not match:
            continue
        name = match.group(1).strip()
        if 2 < len(name) < 50 and name.lower() not in _ARTICLE_WORDS:
            return name
    return None


class NewsAPIClient:
    """Minimal NewsAPI ``/everything`` client."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("NEWS_API_KEY is required to create a NewsAPIClient.")
        self._upstream = UpstreamClient(
            base_url or settings.news_api_base_url,
            name="newsapi",
            headers={"X-Api-Key": api_key},
            http_client=http_client,
        )

    @classmethod
    def from_settings(cls) -> "NewsAPIClient | None":
        """Return a client when NEWS_API_KEY is configured, else ``None``."""
        if not settings.news_api_key:
            return None
        return cls(settings.news_api_key)

    async def aclose(self) -> None:
        await self._upstream.aclose()

    async def everything(self, query: str, *, start: date, end: date) -> list[NewsArticle]:
        payload = await self._upstream.get_json(
            "/everything",
            params={
                "q": query,
                "from": start.isoformat(),
                "to": end.isoformat(),
                "sortBy": "publishedAt",
                "language": "en",
                "pageSize": 100,
            },
        )
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            raise UpstreamError("NewsAPI returned error status")
        articles = payload.get("articles")
        if not isinstance(articles, list):
            raise UpstreamSchemaError("`articles` missing from NewsAPI response.")
        return [_to_article(entry) for entry in articles if isinstance(entry, dict)]

    async def headline_velocity(
        self, days: int = 7, *, now: datetime | None = None
    ) -> HeadlineVelocity:
        """Count robotics headlines in the last ``days`` versus the ``days`` before."""
        current = now or datetime.now(timezone.utc)
        articles = await self.everything(
            ROBOTICS_QUERY,
            start=(current - timedelta(days=days * 2)).date(),
            end=current.date(),
        )
        boundary = current - timedelta(days=days)
        recent = sum(1 for article in articles if article.published_at > boundary)
        return HeadlineVelocity(recent=recent, previous=len(articles) - recent)

    async def funding_rounds(
        self, days: int = 30, *, now: datetime | None = None
    ) -> list[FundingNews]:
        current = now or datetime.now(timezone.utc)
        articles = await self.everything(
            FUNDING_QUERY, start=(current - timedelta(days=days)).date(), end=current.date()
        )
        rounds: list[FundingNews] = []
        seen: set[str] = set()
        for article in articles:
            if not is_funding_article(article):
                continue
            company = extract_company_name(article)
            if not company or company.lower() in seen:
                continue
            amount = parse_funding_amount(article.text)
            if not amount or amount < 1_000_000:
                continue
            seen.add(company.lower())
            rounds.append(
                FundingNews(
                    company=company,
                    amount=amount,
                    announced=article.published_at.date(),
                    source=article.source,
                    url=article.url,
                    title=article.title,
                )
            )
        rounds.sort(key=lambda item: item.announced, reverse=True)
        return rounds


def _to_article(entry: dict[str, Any]) -> NewsArticle:
    published_raw = entry.get("publishedAt") or ""
    try:
        published = datetime.fromisoformat(published_raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise UpstreamSchemaError(f"Invalid publishedAt: {published_raw!r}") from exc
    source = entry.get("source") or {}
    return NewsArticle(
        title=entry.get("title") or "",
        description=entry.get("description") or "",
        source=source.get("name", "") if isinstance(source, dict) else str(source),
        url=entry.get("url") or "",
        published_at=published,
    )
