"""Polymarket CLOB price client."""

from __future__ import annotations

import httpx

from app.clients.upstream import UpstreamClient
from app.config import settings
from app.services.errors import UpstreamSchemaError


class PolymarketClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._upstream = UpstreamClient(
            base_url or settings.polymarket_clob_base_url,
            name="polymarket",
            timeout=timeout,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._upstream.aclose()

    async def price(self, token_id: str, side: str = "buy") -> float:
        """Return the outcome-token price in [0, 1] (the implied probability)."""
        payload = await self._upstream.get_json(
            "/price", params={"token_id": token_id, "side": side}
        )
        raw = payload.get("price") if isinstance(payload, dict) else None
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise UpstreamSchemaError("`price` missing from Polymarket response.") from exc
