"""Narrative Index score and history endpoints."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response, globe_error_response
from app.services.confidence import build_confidence_meta
from app.services.errors import GlobeError
from app.services.narrative.engine import interpret_score
from app.services.narrative.history import MAX_HISTORY_DAYS, MIN_HISTORY_DAYS
from app.services.narrative.service import NarrativeService, get_narrative_service

router = APIRouter()
logger = logging.getLogger(__name__)

SCORE_CACHE_CONTROL = "public, s-maxage=900, stale-while-revalidate=450"
HISTORY_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=150"


@router.get("/narrative/score")
async def narrative_score(
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    """Current Narrative Index, served from cache for up to 15 minutes."""
    started = time.perf_counter()
    try:
        lookup = await service.get_score()
    except GlobeError as exc:
        logger.error("narrative.api_error", extra={"route": "score", "code": exc.code})
        return globe_error_response(exc, "Failed to compute narrative index")

    score = lookup.score
    data = score.model_dump(mode="json", by_alias=True)
    data["interpretation"] = interpret_score(score.overall).model_dump(mode="json")
    data["cached"] = lookup.cached
    if lookup.stale:
        data["stale"] = True
    source = "Narrative Index Engine (Stale)" if lookup.stale else "Narrative Index Engine"
    meta = build_confidence_meta(
        {
            "overall": score.overall,
            "components": len(score.components),
            "signals": len(score.signals),
        },
        source,
    )
    logger.info(
        "narrative.api_served",
        extra={
            "route": "score",
            "cached": lookup.cached,
            "stale": lookup.stale,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        },
    )
    return envelope_response(
        data,
        meta=meta,
        cache_control=None if lookup.stale else SCORE_CACHE_CONTROL,
    )


@router.get("/narrative/history")
async def narrative_history(
    days: int = Query(30, description="Days of history to return (1-365)."),
    service: NarrativeService = Depends(get_narrative_service),
) -> JSONResponse:
    if not MIN_HISTORY_DAYS <= days <= MAX_HISTORY_DAYS:
        return error_response("Days must be between 1 and 365", status_code=400)
    try:
        view = service.get_history(days)
    except GlobeError as exc:
        logger.error("narrative.api_error", extra={"route": "history", "code": exc.code})
        return globe_error_response(exc, "Failed to fetch narrative history")
    meta = build_confidence_meta(
        {"dataPoints": view.statistics.data_points, "days": days}, "Narrative History"
    )
    return envelope_response(view, meta=meta, cache_control=HISTORY_CACHE_CONTROL)
