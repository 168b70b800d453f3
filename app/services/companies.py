"""Read-through access to the static private companies dataset."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.config import settings
from app.core.cache import ReadThroughCache
from app.models.company import Company
from app.observability.metrics import metrics
from app.services.errors import CompanyNotFoundError, DatasetError

logger = logging.getLogger(__name__)


def load_companies(path: Path) -> list[Company]:
    """Parse the dataset file; malformed records are skipped and logged.

    The file is either a bare list of company objects or ``{"companies": [...]}``.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise DatasetError(f"Company dataset not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("companies.dataset.unreadable", extra={"path": str(path)})
        raise DatasetError(f"Company dataset unreadable: {path}") from exc

    records: Any = raw.get("companies") if isinstance(raw, dict) else raw
    if not isinstance(records, list):
        raise DatasetError("Company dataset must contain a list of companies.")

    companies: list[Company] = []
    skipped = 0
    for index, record in enumerate(records):
        try:
            companies.append(Company.model_validate(record))
        except ValidationError as exc:
            skipped += 1
            logger.warning(
                "companies.dataset.record_skipped",
                extra={"index": index, "errors": exc.error_count()},
            )
    if skipped:
        metrics.increment("companies.dataset.skipped", skipped)
    logger.info(
        "companies.dataset.loaded",
        extra={"path": str(path), "companies": len(companies), "skipped": skipped},
    )
    return companies


class CompanyDataset:
    """Company records cached for ``ttl_seconds`` and reloaded from disk afterwards."""

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._path = Path(path or settings.companies_dataset_path)
        self._cache: ReadThroughCache[list[Company]] = ReadThroughCache(
            lambda: load_companies(self._path),
            ttl_seconds or settings.companies_cache_ttl_seconds,
            name="companies",
            clock=clock,
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loads(self) -> int:
        return self._cache.loads

    def all(self) -> list[Company]:
        return self._cache.get()

    def find(self, identifier: str) -> Company:
        """Return the company whose id or (case-insensitive) name matches."""
        for company in self.all():
            if company.matches(identifier):
                return company
        raise CompanyNotFoundError(identifier)

    def invalidate(self) -> None:
        self._cache.invalidate()


_DATASET_INSTANCE: CompanyDataset | None = None


def get_company_dataset() -> CompanyDataset:
    """Singleton accessor used by API routes."""
    global _DATASET_INSTANCE  # noqa: PLW0603
    if _DATASET_INSTANCE is None:
        _DATASET_INSTANCE = CompanyDataset()
    return _DATASET_INSTANCE
