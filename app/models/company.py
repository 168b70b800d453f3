"""Domain models for the private robotics companies dataset."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Ordinal rank per funding round; sub-rounds share their series rank.
FUNDING_STAGE_RANKS: dict[str, int] = {
    "pre-seed": 1,
    "seed": 2,
    "series-a": 3,
    "series-a1": 3,
    "series-a2": 3,
    "series-b": 4,
    "series-b1": 4,
    "series-b2": 4,
    "series-c": 5,
    "series-c1": 5,
    "series-c2": 5,
    "series-d": 6,
    "series-e": 7,
    "unknown": 0,
}


def stage_rank(round_name: str | None) -> int:
    """Return the ordinal rank of ``round_name`` (0 when unknown)."""
    if not round_name:
        return 0
    return FUNDING_STAGE_RANKS.get(round_name.strip().lower(), 0)


class _DatasetModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CompanyHQ(_DatasetModel):
    lat: float
    lon: float
    confidence: Literal["high", "med", "low"] = "low"
    source: str = ""
    raw_address: str | None = None


class FundingRoundData(_DatasetModel):
    """One parsed funding round; amounts are normalized to USD."""

    round: str = "unknown"
    valuation_usd: float | None = None
    money_raised_usd: float | None = None
    time: str | None = None
    confidence: Literal["high", "med", "low"] = "low"
    notes: str = ""
    source_column: str = ""
    currency: str | None = None

    @field_validator("round", mode="before")
    @classmethod
    def _normalize_round(cls, value: Any) -> str:
        if not value:
            return "unknown"
        return str(value).strip().lower()

    @property
    def rank(self) -> int:
        return stage_rank(self.round)


class Company(_DatasetModel):
    """A record from the static company dataset; read-only within a request."""

    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    website: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    hq: CompanyHQ | None = None
    last_updated: str | None = None
    funding_rounds: list[FundingRoundData] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _default_missing_arrays(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        for key in ("aliases", "tags", "fundingRounds", "funding_rounds"):
            if key in values and values[key] is None:
                values[key] = []
        return values

    def highest_round(self) -> FundingRoundData | None:
        """Return the round with the highest stage rank, if any is known."""
        ranked = [entry for entry in self.funding_rounds if entry.rank > 0]
        if not ranked:
            return None
        return max(ranked, key=lambda entry: entry.rank)

    @property
    def stage_rank(self) -> int:
        top = self.highest_round()
        return top.rank if top else 0

    @property
    def max_valuation(self) -> float:
        valuations = [entry.valuation_usd or 0.0 for entry in self.funding_rounds]
        return max(valuations, default=0.0)

    def matches(self, identifier: str) -> bool:
        """True when ``identifier`` equals the id or, case-insensitively, the name."""
        needle = identifier.strip().lower()
        return self.id == identifier or self.id.lower() == needle or self.name.lower() == needle
