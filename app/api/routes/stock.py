"""Daily historical prices for a ticker."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response, globe_error_response
from app.clients.market_data import MarketDataClient, price_changes
from app.services.confidence import build_confidence_meta
from app.services.errors import UpstreamError

router = APIRouter()
logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=1800"

_CLIENT_INSTANCE: MarketDataClient | None = None


def get_market_data_client() -> MarketDataClient:
    global _CLIENT_INSTANCE  # noqa: PLW0603
    if _CLIENT_INSTANCE is None:
        _CLIENT_INSTANCE = MarketDataClient()
    return _CLIENT_INSTANCE


@router.get("/stock/historical")
async def stock_historical(
    symbol: str | None = Query(None),
    days: int = Query(30, description="Days of history; clamped to 1-365."),
    client: MarketDataClient = Depends(get_market_data_client),
) -> JSONResponse:
    if not symbol or not symbol.strip():
        return error_response("Missing symbol parameter", status_code=400)
    symbol = symbol.strip().upper()
    days = min(365, max(1, days))
    try:
        history = await client.daily_history(symbol, days)
    except UpstreamError as exc:
        logger.error("stock.historical_failed", extra={"symbol": symbol, "code": exc.code})
        if exc.code == "404_UPSTREAM_NOT_FOUND":
            return error_response(f"No data found for symbol: {symbol}", status_code=404)
        return globe_error_response(exc, "Failed to fetch historical data")
    if not history:
        return error_response(f"No data found for symbol: {symbol}", status_code=404)

    data = {
        "symbol": symbol,
        "history": [asdict(point) for point in history],
        "metrics": {
            **price_changes(history),
            "requestedDays": days,
            "returnedDays": len(history),
            "startDate": history[-1].date,
            "endDate": history[0].date,
        },
    }
    meta = build_confidence_meta(
        {"symbol": symbol, "days": len(history), "latestClose": history[0].close},
        "Yahoo Finance",
    )
    return envelope_response(data, meta=meta, cache_control=CACHE_CONTROL)


async def close_market_data_client() -> None:
    global _CLIENT_INSTANCE  # noqa: PLW0603
    if _CLIENT_INSTANCE is not None:
        await _CLIENT_INSTANCE.aclose()
        _CLIENT_INSTANCE = None
