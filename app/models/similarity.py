"""Response models for the similarity engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SimilarityLevel = Literal["very_high", "high", "moderate", "low"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SimilarityWeights(_CamelModel):
    """Relative importance of each factor; normalized by their total at scoring time."""

    tags: float = Field(default=0.40, ge=0)
    region: float = Field(default=0.20, ge=0)
    funding_stage: float = Field(default=0.25, ge=0)
    focus: float = Field(default=0.15, ge=0)

    @property
    def total(self) -> float:
        return self.tags + self.region + self.funding_stage + self.focus


class SimilarityBreakdown(_CamelModel):
    tags: float
    region: float
    funding_stage: float
    focus: float


class SimilarCompany(_CamelModel):
    id: str
    name: str
    similarity: float = Field(ge=0.0, le=1.0)
    level: SimilarityLevel
    shared_traits: list[str] = Field(default_factory=list, max_length=4)
    differences: list[str] = Field(default_factory=list, max_length=3)
    country: str | None = None
    tags: list[str] = Field(default_factory=list)


class SourceCompanyRef(_CamelModel):
    id: str
    name: str


class SimilarityResult(_CamelModel):
    source_company: SourceCompanyRef
    similar: list[SimilarCompany] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _ensure_ranked(self) -> "SimilarityResult":
        scores = [entry.similarity for entry in self.similar]
        if scores != sorted(scores, reverse=True):
            raise ValueError("similar companies must be ordered by descending similarity")
        return self
