"""Component weight tables for the Narrative Index.

``expanded`` is the canonical scheme: market alpha carries the heaviest
weight because it reflects capital actually moving. ``core`` is the
five-component table that predates the market signals and stays selectable
through ``NARRATIVE_WEIGHT_SCHEME=core``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType

from app.services.errors import WeightConfigurationError

_TOLERANCE = 1e-9

CORE_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {
        "github": 0.20,
        "contracts": 0.25,
        "news": 0.20,
        "funding": 0.20,
        "technical": 0.15,
    }
)

EXPANDED_WEIGHTS: Mapping[str, float] = MappingProxyType(
    {
        "indexAlpha": 0.30,
        "polymarket": 0.15,
        "contracts": 0.15,
        "github": 0.10,
        "news": 0.10,
        "funding": 0.10,
        "technical": 0.10,
    }
)

WEIGHT_SCHEMES: Mapping[str, Mapping[str, float]] = MappingProxyType(
    {"core": CORE_WEIGHTS, "expanded": EXPANDED_WEIGHTS}
)
DEFAULT_SCHEME = "expanded"


def validate_weights(weights: Mapping[str, float]) -> Mapping[str, float]:
    """Raise unless every weight is positive and the table sums to 1.0."""
    if not weights:
        raise WeightConfigurationError("Weight table is empty.")
    for name, weight in weights.items():
        if weight <= 0:
            raise WeightConfigurationError(f"Weight for {name} must be > 0, got {weight}.")
    total = math.fsum(weights.values())
    if abs(total - 1.0) > _TOLERANCE:
        raise WeightConfigurationError(f"Weights must sum to 1.0, got {total:.6f}.")
    return weights


def resolve_weights(scheme: str | None = None) -> Mapping[str, float]:
    name = (scheme or DEFAULT_SCHEME).strip().lower()
    try:
        weights = WEIGHT_SCHEMES[name]
    except KeyError as exc:
        raise WeightConfigurationError(
            f"Unknown weight scheme {scheme!r}; expected one of {sorted(WEIGHT_SCHEMES)}."
        ) from exc
    return validate_weights(weights)


for _scheme in WEIGHT_SCHEMES.values():
    validate_weights(_scheme)
