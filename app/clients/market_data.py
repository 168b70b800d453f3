"""Daily price history from the Yahoo Finance chart API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from app.clients.upstream import UpstreamClient
from app.config import settings
from app.services.errors import UpstreamError, UpstreamSchemaError


@dataclass(frozen=True)
class PricePoint:
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float


def percent_change(latest: float, reference: float) -> float:
    return (latest - reference) / reference * 100 if reference > 0 else 0.0


def price_changes(history: list[PricePoint]) -> dict[str, float]:
    """1/5/20-day percent changes for a most-recent-first history."""
    if not history:
        return {"latestClose": 0.0, "change1D": 0.0, "change5D": 0.0, "change20D": 0.0}
    latest = history[0].close

    def close_at(offset: int) -> float:
        return history[offset].close if len(history) > offset else latest

    return {
        "latestClose": latest,
        "change1D": percent_change(latest, close_at(1)),
        "change5D": percent_change(latest, close_at(5)),
        "change20D": percent_change(latest, close_at(20)),
    }


class MarketDataClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._upstream = UpstreamClient(
            base_url or settings.market_data_base_url,
            name="market_data",
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._upstream.aclose()

    async def daily_history(
        self, symbol: str, days: int = 30, *, now: datetime | None = None
    ) -> list[PricePoint]:
        """Daily bars for ``symbol`` over the last ``days``, most recent first."""
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=days)
        payload = await self._upstream.get_json(
            f"/v8/finance/chart/{symbol.upper()}",
            params={
                "period1": int(start.timestamp()),
                "period2": int(end.timestamp()),
                "interval": "1d",
            },
        )
        return _parse_chart(symbol, payload)


def _parse_chart(symbol: str, payload: Any) -> list[PricePoint]:
    try:
        chart = payload["chart"]
        if chart.get("error"):
            raise UpstreamError(
                f"No historical data found for {symbol}",
                code="404_UPSTREAM_NOT_FOUND",
                status_code=404,
            )
        result = chart["result"][0]
        timestamps = result.get("timestamp") or []
        quote = result["indicators"]["quote"][0]
    except (KeyError, IndexError, TypeError) as exc:
        raise UpstreamSchemaError("Unexpected chart response schema.") from exc

    points: list[PricePoint] = []
    for index, stamp in enumerate(timestamps):
        close = _value(quote, "close", index)
        if close is None:
            continue
        points.append(
            PricePoint(
                date=datetime.fromtimestamp(stamp, tz=timezone.utc).date().isoformat(),
                open=_value(quote, "open", index) or 0.0,
                high=_value(quote, "high", index) or 0.0,
                low=_value(quote, "low", index) or 0.0,
                close=close,
                volume=_value(quote, "volume", index) or 0.0,
            )
        )
    points.reverse()
    return points


def _value(quote: dict[str, Any], key: str, index: int) -> float | None:
    series = quote.get(key) or []
    if index >= len(series) or series[index] is None:
        return None
    return float(series[index])
