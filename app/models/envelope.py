"""Response envelope shared by every API endpoint: ``{ok, data?, error?, details?, _meta?}``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Completeness(BaseModel):
    fields: int
    filled: int


class ConfidenceMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    confidence: float = Field(ge=0.0, le=1.0)
    last_updated: str
    source: str
    completeness: Completeness


def build_envelope(
    *,
    ok: bool,
    data: Any = None,
    error: str | None = None,
    details: Any = None,
    meta: ConfidenceMeta | None = None,
) -> dict[str, Any]:
    """Assemble a JSON-ready envelope, omitting absent keys."""
    payload: dict[str, Any] = {"ok": ok}
    if data is not None:
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json", by_alias=True)
        payload["data"] = data
    if error is not None:
        payload["error"] = error
    if details is not None:
        payload["details"] = details
    if meta is not None:
        payload["_meta"] = meta.model_dump(mode="json", by_alias=True)
    return payload
