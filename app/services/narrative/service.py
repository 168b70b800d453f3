"""Cached access to the Narrative Index and its history."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TypeVar

from app.config import settings
from app.core.cache import TTLCache
from app.models.narrative import HistoryPeriod, NarrativeHistoryView, NarrativeScore
from app.services.errors import GlobeError
from app.services.narrative.components import ComponentResult
from app.services.narrative.engine import NarrativeEngine, build_default_engine
from app.services.narrative.history import (
    HistoryStore,
    build_history_store,
    calculate_change,
    format_for_chart,
    summarize_history,
    validate_days,
)
from app.services.narrative.recorder import HistoryRecorder

logger = logging.getLogger(__name__)

_SCORE_KEY = "narrative:score"

T = TypeVar("T")


@dataclass(frozen=True)
class ScoreLookup:
    score: NarrativeScore
    cached: bool
    stale: bool = False


@dataclass(frozen=True)
class ComponentLookup:
    result: ComponentResult
    cached: bool
    stale: bool = False


class NarrativeService:
    """Serves the latest score from cache and records every fresh computation."""

    def __init__(
        self,
        engine: NarrativeEngine,
        history: HistoryStore,
        *,
        recorder: HistoryRecorder | None = None,
        cache: TTLCache[NarrativeScore] | None = None,
        component_cache: TTLCache[ComponentResult] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self._history = history
        self._recorder = recorder or HistoryRecorder(history)
        self._cache = cache or TTLCache(settings.narrative_cache_ttl_seconds, name="narrative")
        self._component_cache = component_cache or TTLCache(
            settings.component_cache_ttl_seconds, name="narrative_component"
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def recorder(self) -> HistoryRecorder:
        return self._recorder

    @property
    def history(self) -> HistoryStore:
        return self._history

    def now(self) -> datetime:
        return self._clock()

    async def get_score(self) -> ScoreLookup:
        score, cached, stale = await self._read_through(
            self._cache, _SCORE_KEY, self._engine.compute
        )
        if not cached:
            self._recorder.schedule(score)
        return ScoreLookup(score=score, cached=cached, stale=stale)

    async def get_component(self, name: str) -> ComponentLookup:
        """Latest result of one component scorer, cached separately from the index."""
        result, cached, stale = await self._read_through(
            self._component_cache,
            f"narrative:component:{name}",
            lambda: self._engine.score_component(name),
        )
        return ComponentLookup(result=result, cached=cached, stale=stale)

    async def _read_through(
        self, cache: TTLCache[T], key: str, compute: Callable[[], Awaitable[T]]
    ) -> tuple[T, bool, bool]:
        """Return ``(value, cached, stale)``; the last good value covers a failed compute."""
        hit = cache.get(key)
        if hit is not None:
            logger.info("narrative.cache_hit", extra={"key": key})
            return hit, True, False
        try:
            value = await compute()
        except GlobeError as exc:
            stale = cache.get_stale(key)
            if stale is None:
                raise
            logger.warning(
                "narrative.stale_fallback",
                extra={"key": key, "code": exc.code, "age_seconds": cache.age(key)},
            )
            return stale, True, True
        cache.set(key, value)
        return value, False, False

    def get_history(self, days: int = 30) -> NarrativeHistoryView:
        entries = self._history.get_historical_scores(validate_days(days))
        return NarrativeHistoryView(
            chart_data=format_for_chart(entries),
            statistics=summarize_history(entries, now=self._clock()),
            period=HistoryPeriod(
                days=days,
                start_date=entries[0].timestamp if entries else None,
                end_date=entries[-1].timestamp if entries else None,
            ),
            change=calculate_change(entries),
        )

    async def aclose(self) -> None:
        await self._recorder.drain()
        await self._engine.aclose()


_NARRATIVE_SERVICE: NarrativeService | None = None


def get_narrative_service() -> NarrativeService:
    global _NARRATIVE_SERVICE  # noqa: PLW0603
    if _NARRATIVE_SERVICE is None:
        history = build_history_store()
        _NARRATIVE_SERVICE = NarrativeService(build_default_engine(history), history)
    return _NARRATIVE_SERVICE


async def shutdown_narrative_service() -> None:
    global _NARRATIVE_SERVICE  # noqa: PLW0603
    if _NARRATIVE_SERVICE is not None:
        await _NARRATIVE_SERVICE.aclose()
        _NARRATIVE_SERVICE = None
