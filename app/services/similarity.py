"""Multi-factor similarity between company records.

Four sub-scores in [0, 1] are combined as a weighted sum normalized by the
total weight:

* tags: Jaccard index over normalized tag sets
* region: same country, then same regional bucket
* funding stage: distance between the highest ranks reached
* focus: Jaccard index over description keywords

Every sub-score is symmetric, so ``compute_similarity(a, b)`` equals
``compute_similarity(b, a)``. The explanation lists are not: differences are
phrased from the source company's point of view.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable, Sequence

from app.models.company import Company
from app.models.similarity import (
    SimilarCompany,
    SimilarityBreakdown,
    SimilarityLevel,
    SimilarityResult,
    SimilarityWeights,
    SourceCompanyRef,
)
from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = SimilarityWeights()
MIN_SIMILARITY = 0.1
MAX_RESULTS = 10
DEFAULT_LIMIT = 5
MAX_SHARED_TRAITS = 4
MAX_DIFFERENCES = 3

NEUTRAL_SCORE = 0.3
SAME_REGION_GROUP_SCORE = 0.6
STAGE_DISTANCE_SCORES = {0: 1.0, 1: 0.7, 2: 0.4}
FAR_STAGE_SCORE = 0.2

MIN_KEYWORD_LENGTH = 5
STOP_WORDS = frozenset(
    {
        "their", "which", "about", "these", "those", "would", "there", "where",
        "being", "other", "while", "through", "company", "companies",
    }
)

REGION_GROUPS: dict[str, frozenset[str]] = {
    "north-america": frozenset({"us", "usa", "united states", "canada", "ca"}),
    "europe": frozenset(
        {
            "uk", "united kingdom", "germany", "france", "netherlands", "switzerland",
            "sweden", "denmark", "norway", "finland", "spain", "italy",
        }
    ),
    "asia-pacific": frozenset(
        {"china", "japan", "south korea", "singapore", "australia", "india", "taiwan"}
    ),
}
_REGION_LABELS = {
    "north-america": "North America",
    "europe": "Europe",
    "asia-pacific": "Asia-Pacific",
}

_TAG_SEPARATORS = re.compile(r"[-_]+")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def normalize_tag(tag: str) -> str:
    collapsed = _TAG_SEPARATORS.sub(" ", tag.strip().lower())
    return _WHITESPACE.sub(" ", collapsed).strip()


def jaccard(left: set[str] | frozenset[str], right: set[str] | frozenset[str]) -> float:
    if not left and not right:
        return 0.0
    union = left | right
    return len(left & right) / len(union)


def _tag_set(tags: Iterable[str]) -> set[str]:
    return {normalized for normalized in (normalize_tag(tag) for tag in tags) if normalized}


def region_group(country: str | None) -> str | None:
    if not country:
        return None
    key = country.strip().lower()
    for group, members in REGION_GROUPS.items():
        if key in members:
            return group
    return None


def extract_keywords(description: str | None) -> set[str]:
    text = _NON_ALNUM.sub(" ", (description or "").lower())
    return {
        word
        for word in text.split()
        if len(word) >= MIN_KEYWORD_LENGTH and not word.isdigit() and word not in STOP_WORDS
    }


def tag_similarity(a: Company, b: Company) -> float:
    return jaccard(_tag_set(a.tags), _tag_set(b.tags))


def region_similarity(a: Company, b: Company) -> float:
    country_a = (a.country or "").strip().lower()
    country_b = (b.country or "").strip().lower()
    if country_a and country_a == country_b:
        return 1.0
    group_a = region_group(a.country)
    if group_a is not None and group_a == region_group(b.country):
        return SAME_REGION_GROUP_SCORE
    return 0.0


def stage_similarity(a: Company, b: Company) -> float:
    rank_a, rank_b = a.stage_rank, b.stage_rank
    if rank_a == 0 or rank_b == 0:
        return NEUTRAL_SCORE
    return STAGE_DISTANCE_SCORES.get(abs(rank_a - rank_b), FAR_STAGE_SCORE)


def focus_similarity(a: Company, b: Company) -> float:
    if not (a.description or "").strip() or not (b.description or "").strip():
        return NEUTRAL_SCORE
    return jaccard(extract_keywords(a.description), extract_keywords(b.description))


def score_breakdown(a: Company, b: Company) -> SimilarityBreakdown:
    return SimilarityBreakdown(
        tags=tag_similarity(a, b),
        region=region_similarity(a, b),
        funding_stage=stage_similarity(a, b),
        focus=focus_similarity(a, b),
    )


def compute_similarity(
    a: Company, b: Company, weights: SimilarityWeights | None = None
) -> float:
    """Weighted similarity in [0, 1], rounded to 2 decimals; 1.0 for the same id."""
    if a.id == b.id:
        return 1.0
    weights = weights or DEFAULT_WEIGHTS
    total = weights.total
    if total <= 0:
        return 0.0
    parts = score_breakdown(a, b)
    weighted = (
        parts.tags * weights.tags
        + parts.region * weights.region
        + parts.funding_stage * weights.funding_stage
        + parts.focus * weights.focus
    )
    return round(weighted / total, 2)


def get_similarity_level(score: float) -> SimilarityLevel:
    if score >= 0.8:
        return "very_high"
    if score >= 0.6:
        return "high"
    if score >= 0.4:
        return "moderate"
    return "low"


def _format_stage(round_name: str) -> str:
    return round_name.replace("-", " ").upper()


def extract_shared_traits(a: Company, b: Company) -> list[str]:
    """Human-readable overlaps: shared tags first, then region, then stage."""
    traits: list[str] = []
    tags_b = _tag_set(b.tags)
    seen: set[str] = set()
    for tag in a.tags:
        normalized = normalize_tag(tag)
        if normalized in tags_b and normalized not in seen:
            seen.add(normalized)
            traits.append(tag)
        if len(traits) == 3:
            break

    country_a = (a.country or "").strip()
    if country_a and country_a.lower() == (b.country or "").strip().lower():
        traits.append(f"{country_a}-based")
    else:
        group = region_group(a.country)
        if group is not None and group == region_group(b.country):
            traits.append(f"{_REGION_LABELS[group]} region")

    top_a, top_b = a.highest_round(), b.highest_round()
    if top_a is not None and top_b is not None:
        if top_a.rank == top_b.rank:
            traits.append(f"{_format_stage(top_a.round)} stage")
        elif abs(top_a.rank - top_b.rank) <= 1:
            traits.append("Similar funding stage")
    return traits[:MAX_SHARED_TRAITS]


def extract_differences(a: Company, b: Company) -> list[str]:
    """How ``b`` differs from ``a``: stage, region, unique focus tags, valuation."""
    differences: list[str] = []
    rank_a, rank_b = a.stage_rank, b.stage_rank
    if rank_a and rank_b and abs(rank_a - rank_b) >= 2:
        differences.append("Earlier stage" if rank_b < rank_a else "Later stage")

    country_a = (a.country or "").strip().lower()
    country_b = (b.country or "").strip()
    if country_a and country_b and country_a != country_b.lower():
        differences.append(f"Different region ({country_b})")

    tags_a = _tag_set(a.tags)
    unique = [tag for tag in b.tags if normalize_tag(tag) not in tags_a][:2]
    if unique:
        differences.append(f"Focus: {', '.join(unique)}")

    valuation_a, valuation_b = a.max_valuation, b.max_valuation
    if valuation_a > 0 and valuation_b > 0:
        if valuation_b < valuation_a * 0.3:
            differences.append("Lower valuation")
        elif valuation_b > valuation_a * 3:
            differences.append("Higher valuation")
    return differences[:MAX_DIFFERENCES]


def find_similar_companies(
    source: Company,
    companies: Sequence[Company],
    *,
    limit: int = DEFAULT_LIMIT,
    weights: SimilarityWeights | None = None,
) -> list[SimilarCompany]:
    """Rank ``companies`` against ``source``.

    The source itself is excluded, anything at or below ``MIN_SIMILARITY`` is
    dropped, ties are broken by name then id, and at most
    ``min(limit, MAX_RESULTS)`` entries are returned.
    """
    capped = max(0, min(limit, MAX_RESULTS))
    scored: list[tuple[float, Company]] = []
    for candidate in companies:
        if candidate.id == source.id:
            continue
        score = compute_similarity(source, candidate, weights)
        if score > MIN_SIMILARITY:
            scored.append((score, candidate))
    scored.sort(key=lambda item: (-item[0], item[1].name.lower(), item[1].id))
    return [
        SimilarCompany(
            id=candidate.id,
            name=candidate.name,
            similarity=score,
            level=get_similarity_level(score),
            shared_traits=extract_shared_traits(source, candidate),
            differences=extract_differences(source, candidate),
            country=candidate.country,
            tags=list(candidate.tags),
        )
        for score, candidate in scored[:capped]
    ]


def build_similarity_result(
    source: Company,
    companies: Sequence[Company],
    *,
    limit: int = DEFAULT_LIMIT,
    weights: SimilarityWeights | None = None,
) -> SimilarityResult:
    start = time.perf_counter()
    similar = find_similar_companies(source, companies, limit=limit, weights=weights)
    duration_ms = (time.perf_counter() - start) * 1000
    metrics.timing("similarity.rank_ms", duration_ms, tags={"candidates": len(companies)})
    logger.info(
        "similarity.ranked",
        extra={
            "company_id": source.id,
            "candidates": len(companies),
            "returned": len(similar),
            "duration_ms": round(duration_ms, 2),
        },
    )
    return SimilarityResult(
        source_company=SourceCompanyRef(id=source.id, name=source.name),
        similar=similar,
    )
