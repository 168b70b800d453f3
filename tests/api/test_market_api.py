from __future__ import annotations

from app.api.routes.polymarket import get_polymarket_client, get_price_cache
from app.api.routes.stock import get_market_data_client
from app.clients.market_data import PricePoint
from app.core.cache import TTLCache
from app.main import app
from app.services.errors import UpstreamError

TOKEN = "81398621498976727589490119481788053159677593582770707348620729114209951230437"


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _FakePolymarket:
    def __init__(self, price=0.074, error=None):
        self.price_value = price
        self.error = error
        self.calls = []

    async def price(self, token_id, side="buy"):
        self.calls.append((token_id, side))
        if self.error is not None:
            raise self.error
        return self.price_value


class _FakeMarketData:
    def __init__(self, history=None, error=None):
        self.history = history or []
        self.error = error
        self.calls = []

    async def daily_history(self, symbol, days=30, *, now=None):
        self.calls.append((symbol, days))
        if self.error is not None:
            raise self.error
        return self.history


def _use_polymarket(client_stub, cache=None) -> TTLCache:
    cache = cache or TTLCache(60, name="polymarket_price", clock=_Clock())
    app.dependency_overrides[get_polymarket_client] = lambda: client_stub
    app.dependency_overrides[get_price_cache] = lambda: cache
    return cache


def test_price_is_fetched_then_cached(client):
    upstream = _FakePolymarket()
    _use_polymarket(upstream)

    first = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})
    second = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})

    assert first.status_code == 200
    data = first.json()["data"]
    assert data["price"] == 0.074
    assert data["_meta"]["source"] == "Polymarket CLOB API"
    assert second.json()["data"]["price"] == 0.074
    assert upstream.calls == [(TOKEN, "buy")]


def test_price_cache_is_keyed_by_side(client):
    upstream = _FakePolymarket()
    _use_polymarket(upstream)

    client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})
    client.get("/api/polymarket/clob/price", params={"token_id": TOKEN, "side": "sell"})

    assert upstream.calls == [(TOKEN, "buy"), (TOKEN, "sell")]


def test_price_requires_valid_token(client):
    _use_polymarket(_FakePolymarket())

    missing = client.get("/api/polymarket/clob/price")
    short = client.get("/api/polymarket/clob/price", params={"token_id": "123"})
    bad_side = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN, "side": "hold"})

    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing token_id parameter"
    assert short.status_code == 400
    assert short.json()["details"] == {"tokenId": "123"}
    assert bad_side.status_code == 400


def test_upstream_failure_serves_stale_price(client):
    clock = _Clock()
    cache = TTLCache(60, name="polymarket_price", clock=clock)
    cache.set(f"{TOKEN}:buy", {"price": 0.05})
    clock.now = 120.0
    _use_polymarket(_FakePolymarket(error=UpstreamError("boom", status_code=503)), cache)

    response = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})

    assert response.status_code == 200
    assert response.json()["data"] == {"price": 0.05}


def test_upstream_not_found_passes_through(client):
    error = UpstreamError("missing", code="404_UPSTREAM_NOT_FOUND", status_code=404)
    _use_polymarket(_FakePolymarket(error=error))

    response = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})

    assert response.status_code == 404
    assert response.json()["details"]["status"] == 404


def test_upstream_failure_without_cache_is_bad_gateway(client):
    _use_polymarket(_FakePolymarket(error=UpstreamError("boom", status_code=503)))

    response = client.get("/api/polymarket/clob/price", params={"token_id": TOKEN})

    assert response.status_code == 502
    assert response.json()["error"] == "Upstream fetch failed"


def _bars() -> list[PricePoint]:
    return [
        PricePoint(date="2026-10-16", open=11, high=12, low=10, close=11.0, volume=300),
        PricePoint(date="2026-10-15", open=10, high=11, low=9, close=10.0, volume=200),
    ]


def test_stock_history_with_metrics(client):
    upstream = _FakeMarketData(_bars())
    app.dependency_overrides[get_market_data_client] = lambda: upstream

    response = client.get("/api/stock/historical", params={"symbol": "botz", "days": 900})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["symbol"] == "BOTZ"
    assert data["history"][0]["close"] == 11.0
    assert data["metrics"]["requestedDays"] == 365
    assert data["metrics"]["returnedDays"] == 2
    assert data["metrics"]["startDate"] == "2026-10-15"
    assert data["metrics"]["endDate"] == "2026-10-16"
    assert round(data["metrics"]["change1D"], 2) == 10.0
    assert upstream.calls == [("BOTZ", 365)]


def test_stock_requires_symbol(client):
    app.dependency_overrides[get_market_data_client] = lambda: _FakeMarketData()

    response = client.get("/api/stock/historical")

    assert response.status_code == 400


def test_stock_unknown_symbol_is_not_found(client):
    error = UpstreamError("nope", code="404_UPSTREAM_NOT_FOUND", status_code=404)
    app.dependency_overrides[get_market_data_client] = lambda: _FakeMarketData(error=error)

    response = client.get("/api/stock/historical", params={"symbol": "NOPE"})

    assert response.status_code == 404
    assert response.json()["error"] == "No data found for symbol: NOPE"


def test_stock_empty_history_is_not_found(client):
    app.dependency_overrides[get_market_data_client] = lambda: _FakeMarketData([])

    response = client.get("/api/stock/historical", params={"symbol": "BOTZ"})

    assert response.status_code == 404


def test_stock_upstream_failure_maps_status(client):
    app.dependency_overrides[get_market_data_client] = lambda: _FakeMarketData(
        error=UpstreamError("bad gateway", status_code=502)
    )

    response = client.get("/api/stock/historical", params={"symbol": "BOTZ"})

    assert response.status_code == 502
    assert response.json()["error"] == "Failed to fetch historical data"
