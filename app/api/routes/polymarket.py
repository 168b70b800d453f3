"""Cached proxy for Polymarket CLOB outcome-token prices."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response
from app.clients.polymarket import PolymarketClient
from app.config import settings
from app.core.cache import TTLCache
from app.services.confidence import build_confidence_meta
from app.services.errors import UpstreamError

router = APIRouter()
logger = logging.getLogger(__name__)

MIN_TOKEN_ID_LENGTH = 10

_CLIENT_INSTANCE: PolymarketClient | None = None
_PRICE_CACHE: TTLCache[dict] | None = None


def get_polymarket_client() -> PolymarketClient:
    global _CLIENT_INSTANCE  # noqa: PLW0603
    if _CLIENT_INSTANCE is None:
        _CLIENT_INSTANCE = PolymarketClient()
    return _CLIENT_INSTANCE


def get_price_cache() -> TTLCache[dict]:
    global _PRICE_CACHE  # noqa: PLW0603
    if _PRICE_CACHE is None:
        _PRICE_CACHE = TTLCache(settings.upstream_cache_ttl_seconds, name="polymarket_price")
    return _PRICE_CACHE


@router.get("/polymarket/clob/price")
async def clob_price(
    token_id: str | None = Query(None),
    side: Literal["buy", "sell"] = Query("buy"),
    client: PolymarketClient = Depends(get_polymarket_client),
    cache: TTLCache[dict] = Depends(get_price_cache),
) -> JSONResponse:
    """Outcome-token price; the last cached value is served when the upstream fails."""
    if not token_id:
        return error_response("Missing token_id parameter", status_code=400)
    if len(token_id) < MIN_TOKEN_ID_LENGTH:
        return error_response(
            "Invalid token_id format", status_code=400, details={"tokenId": token_id}
        )

    key = f"{token_id}:{side}"
    cached = cache.get(key)
    if cached is not None:
        return envelope_response(cached)

    try:
        price = await client.price(token_id, side)
    except UpstreamError as exc:
        logger.error(
            "polymarket.price_failed",
            extra={"token_id": token_id, "side": side, "code": exc.code},
        )
        stale = cache.get_stale(key)
        if stale is not None:
            return envelope_response(stale)
        details = {"tokenId": token_id, "side": side, "status": exc.status_code}
        if exc.code == "404_UPSTREAM_NOT_FOUND":
            return error_response("Price not found", status_code=404, details=details)
        return error_response("Upstream fetch failed", status_code=502, details=details)

    data = {
        "price": price,
        "_meta": build_confidence_meta(
            {"price": price, "tokenId": token_id, "side": side}, "Polymarket CLOB API"
        ).model_dump(mode="json", by_alias=True),
    }
    cache.set(key, data)
    return envelope_response(data)


async def close_polymarket_client() -> None:
    global _CLIENT_INSTANCE  # noqa: PLW0603
    if _CLIENT_INSTANCE is not None:
        await _CLIENT_INSTANCE.aclose()
        _CLIENT_INSTANCE = None
