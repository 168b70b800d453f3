"""Shared async HTTP plumbing for third-party APIs: timeout, retry, error mapping."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from app.config import settings
from app.core.backoff import RetryPolicy
from app.observability.metrics import metrics
from app.services.errors import (
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamSchemaError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

_USER_AGENT = "RoboticsIntelligenceGlobe/1.0"


class UpstreamClient:
    """Thin ``httpx.AsyncClient`` wrapper with bounded retry and typed errors.

    Transient statuses (429/502/503/504) and transport errors are retried up
    to ``retry_attempts`` extra times with exponential backoff. Anything else
    is mapped to an :class:`UpstreamError` subclass immediately.
    """

    def __init__(
        self,
        base_url: str,
        *,
        name: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._timeout = timeout if timeout is not None else settings.upstream_timeout_seconds
        retries = retry_attempts if retry_attempts is not None else settings.upstream_retry_attempts
        self._policy = RetryPolicy.from_settings(
            max(0, retries) + 1, base_delay=backoff_base, max_delay=backoff_max
        )
        self._sleep = sleep
        default_headers = {"Accept": "application/json", "User-Agent": _USER_AGENT}
        default_headers.update(headers or {})
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=self._timeout
        )
        self._headers = default_headers

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def get_json(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("GET", path, params=params, headers=headers)
        return self._decode(response)

    async def post_json(
        self,
        path: str,
        *,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request("POST", path, json=json, headers=headers)
        return self._decode(response)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        merged_headers = {**self._headers, **(headers or {})}
        last_error: UpstreamError | None = None
        for attempt, delay in self._policy.schedule():
            try:
                response = await self._http.request(
                    method, path, headers=merged_headers, timeout=self._timeout, **kwargs
                )
            except httpx.TimeoutException as exc:
                last_error = UpstreamTimeoutError(f"{self.name} request timed out")
                last_error.__cause__ = exc
            except httpx.TransportError as exc:
                last_error = UpstreamError(f"HTTP error calling {self.name}: {exc}")
                last_error.__cause__ = exc
            else:
                if not self._policy.should_retry_status(response.status_code, attempt):
                    return self._raise_for_status(response)
                last_error = _status_error(self.name, response)

            if self._policy.is_final(attempt):
                break
            metrics.increment("upstream.retry", tags={"upstream": self.name, "attempt": attempt})
            logger.warning(
                "upstream.retry",
                extra={
                    "upstream": self.name,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "code": last_error.code,
                },
            )
            await self._sleep(delay)

        assert last_error is not None
        metrics.increment("upstream.failure", tags={"upstream": self.name, "code": last_error.code})
        logger.error(
            "upstream.exhausted",
            extra={"upstream": self.name, "code": last_error.code, "path": path},
        )
        raise last_error

    def _raise_for_status(self, response: httpx.Response) -> httpx.Response:
        if response.status_code < 400:
            return response
        error = _status_error(self.name, response)
        logger.warning(
            "upstream.status_error",
            extra={"upstream": self.name, "status": response.status_code, "code": error.code},
        )
        raise error

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamSchemaError(f"Failed to decode {self.name} response JSON.") from exc


def _status_error(name: str, response: httpx.Response) -> UpstreamError:
    status_code = response.status_code
    if status_code == 429:
        return UpstreamRateLimitError(f"Rate limited by {name}")
    if status_code in (408, 504):
        return UpstreamTimeoutError(f"{name} timed out upstream ({status_code})")
    if status_code == 404:
        return UpstreamError(
            f"{name} resource not found", code="404_UPSTREAM_NOT_FOUND", status_code=404
        )
    detail = response.text[:200] if response.content else ""
    message = f"{name} request failed: {status_code}"
    if detail:
        message = f"{message} - {detail}"
    return UpstreamError(message, status_code=status_code)
