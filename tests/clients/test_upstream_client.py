from __future__ import annotations

import asyncio

import httpx
import pytest

from app.clients.upstream import UpstreamClient
from app.services.errors import (
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamSchemaError,
    UpstreamTimeoutError,
)


def _client(handler, *, retry_attempts: int = 2) -> tuple[UpstreamClient, list[float]]:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://upstream.test"
    )
    client = UpstreamClient(
        "https://upstream.test",
        name="test",
        retry_attempts=retry_attempts,
        http_client=http_client,
        sleep=fake_sleep,
    )
    return client, sleeps


def test_transient_status_is_retried_with_backoff():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"price": "0.42"})

    client, sleeps = _client(handler)

    payload = asyncio.run(client.get_json("/price", params={"token_id": "1"}))

    assert payload == {"price": "0.42"}
    assert len(calls) == 2
    assert sleeps == [0.25]


def test_retries_stop_after_configured_attempts():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502, text="bad gateway")

    client, sleeps = _client(handler, retry_attempts=2)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(client.get_json("/price"))

    assert len(calls) == 3
    assert sleeps == [0.25, 0.5]
    assert excinfo.value.code == "502_UPSTREAM"
    assert excinfo.value.status_code == 502


def test_rate_limit_maps_to_typed_error():
    client, _ = _client(lambda request: httpx.Response(429), retry_attempts=0)

    with pytest.raises(UpstreamRateLimitError) as excinfo:
        asyncio.run(client.get_json("/price"))

    assert excinfo.value.code == "429_UPSTREAM_RATE_LIMIT"


def test_not_found_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    client, sleeps = _client(handler)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(client.get_json("/missing"))

    assert excinfo.value.code == "404_UPSTREAM_NOT_FOUND"
    assert len(calls) == 1
    assert sleeps == []


def test_transport_errors_are_retried_then_raised():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client, sleeps = _client(handler, retry_attempts=1)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(client.get_json("/price"))

    assert len(calls) == 2
    assert sleeps == [0.25]
    assert excinfo.value.code == "502_UPSTREAM"


def test_timeouts_map_to_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client, _ = _client(handler, retry_attempts=0)

    with pytest.raises(UpstreamTimeoutError) as excinfo:
        asyncio.run(client.get_json("/price"))

    assert excinfo.value.code == "504_UPSTREAM_TIMEOUT"


def test_invalid_json_raises_schema_error():
    client, _ = _client(lambda request: httpx.Response(200, text="<html>"), retry_attempts=0)

    with pytest.raises(UpstreamSchemaError):
        asyncio.run(client.get_json("/price"))
