"""Per-component Narrative Index endpoints: one score plus the signals behind it."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response, globe_error_response
from app.services.confidence import build_confidence_meta
from app.services.errors import GlobeError
from app.services.narrative.history import MAX_HISTORY_DAYS, MIN_HISTORY_DAYS
from app.services.narrative.service import NarrativeService, get_narrative_service

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_SIGNAL_LIMIT = 50

# Shared-cache lifetime per component.
CACHE_CONTROL = {
    "github": "public, s-maxage=3600, stale-while-revalidate=1800",
    "contracts": "public, s-maxage=21600, stale-while-revalidate=10800",
    "funding": "public, s-maxage=86400, stale-while-revalidate=43200",
    "news": "public, s-maxage=300, stale-while-revalidate=150",
    "technical": "public, s-maxage=3600, stale-while-revalidate=1800",
}

_SOURCES = {
    "github": "GitHub",
    "contracts": "USASpending.gov",
    "funding": "Funding Database",
    "news": "NewsAPI",
    "technical": "GitHub Releases",
}


async def _serve_component(
    name: str, *, days: int, limit: int, service: NarrativeService
) -> JSONResponse:
    if not MIN_HISTORY_DAYS <= days <= MAX_HISTORY_DAYS:
        return error_response("Days must be between 1 and 365", status_code=400)
    if not 1 <= limit <= MAX_SIGNAL_LIMIT:
        return error_response(f"Limit must be between 1 and {MAX_SIGNAL_LIMIT}", status_code=400)
    try:
        lookup = await service.get_component(name)
    except GlobeError as exc:
        logger.error("narrative.api_error", extra={"route": name, "code": exc.code})
        return globe_error_response(exc, f"Failed to score {name} component")

    result = lookup.result
    cutoff = service.now() - timedelta(days=days)
    signals = [signal for signal in result.signals if signal.timestamp >= cutoff]
    signals.sort(key=lambda signal: signal.timestamp, reverse=True)
    signals = signals[:limit]

    data = {
        "component": name,
        "score": result.score,
        "estimated": result.estimated,
        "asOf": result.as_of.isoformat() if result.as_of else None,
        "signals": [signal.model_dump(mode="json", by_alias=True) for signal in signals],
        "cached": lookup.cached,
    }
    if lookup.stale:
        data["stale"] = True
    source = _SOURCES[name]
    if result.estimated:
        source = f"{source} (Estimated)"
    elif lookup.stale:
        source = f"{source} (Stale)"
    meta = build_confidence_meta(
        {"score": result.score, "asOf": result.as_of, "signals": signals}, source
    )
    return envelope_response(
        data, meta=meta, cache_control=None if lookup.stale else CACHE_CONTROL[name]
    )


@router.get("/github")
async def github_component(
    days: int = Query(30, description="Signal window in days (1-365)."),
    limit: int = Query(10, description="Signals to return (1-50)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    """Organisation commit activity across the tracked robotics repos."""
    return await _serve_component("github", days=days, limit=limit, service=service)


@router.get("/contracts")
async def contracts_component(
    days: int = Query(30, description="Signal window in days (1-365)."),
    limit: int = Query(10, description="Signals to return (1-50)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    """Federal contract awards, including sticky breaking contracts."""
    return await _serve_component("contracts", days=days, limit=limit, service=service)


@router.get("/funding")
async def funding_component(
    days: int = Query(365, description="Signal window in days (1-365)."),
    limit: int = Query(50, description="Signals to return (1-50)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    return await _serve_component("funding", days=days, limit=limit, service=service)


@router.get("/news")
async def news_component(
    days: int = Query(7, description="Signal window in days (1-365)."),
    limit: int = Query(30, description="Signals to return (1-50)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    return await _serve_component("news", days=days, limit=limit, service=service)


@router.get("/technical")
async def technical_component(
    days: int = Query(30, description="Signal window in days (1-365)."),
    limit: int = Query(10, description="Signals to return (1-50)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    """Release cadence of the tracked robotics frameworks."""
    return await _serve_component("technical", days=days, limit=limit, service=service)
