"""Envelope responses and error-code to HTTP status mapping for API routes."""

from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from app.models.envelope import ConfidenceMeta, build_envelope
from app.services.errors import GlobeError


def map_error_code(code: str) -> int:
    """HTTP status for a ``GlobeError.code`` such as ``404_COMPANY_NOT_FOUND``."""
    if code == "400_INVALID_PARAMETER":
        return status.HTTP_400_BAD_REQUEST
    if code in {"404_COMPANY_NOT_FOUND", "404_UPSTREAM_NOT_FOUND"}:
        return status.HTTP_404_NOT_FOUND
    if code == "429_UPSTREAM_RATE_LIMIT":
        return status.HTTP_429_TOO_MANY_REQUESTS
    if code in {"502_UPSTREAM", "502_UPSTREAM_SCHEMA"}:
        return status.HTTP_502_BAD_GATEWAY
    if code == "503_COMPONENT_UNAVAILABLE":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if code == "504_UPSTREAM_TIMEOUT":
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def envelope_response(
    data: Any,
    *,
    meta: ConfidenceMeta | None = None,
    cache_control: str | None = None,
) -> JSONResponse:
    headers = {"Cache-Control": cache_control} if cache_control else None
    return JSONResponse(build_envelope(ok=True, data=data, meta=meta), headers=headers)


def error_response(
    message: str,
    *,
    status_code: int,
    details: Any = None,
) -> JSONResponse:
    return JSONResponse(
        build_envelope(ok=False, error=message, details=details), status_code=status_code
    )


def globe_error_response(exc: GlobeError, message: str | None = None) -> JSONResponse:
    """Envelope for a domain error; ``message`` replaces the error text when given."""
    if message is None:
        return error_response(str(exc), status_code=map_error_code(exc.code))
    return error_response(message, status_code=map_error_code(exc.code), details=str(exc))
