"""Background history appends with bounded retry and an outcome log."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from app.config import settings
from app.core.backoff import RetryPolicy
from app.models.narrative import NarrativeScore, StoredNarrativeScore
from app.observability.metrics import metrics
from app.services.errors import GlobeError
from app.services.narrative.history import HistoryStore

logger = logging.getLogger(__name__)

MAX_EVENTS = 100
FAILURE_ALERT_THRESHOLD = 3


@dataclass(frozen=True)
class RecordOutcome:
    status: Literal["recorded", "failed"]
    score_timestamp: datetime
    overall: float
    attempts: int
    error: str | None = None


class HistoryRecorder:
    """Appends each computed score to the history store off the request path.

    Failed appends are retried with exponential backoff; the final outcome of
    every append lands in :attr:`events`. Errors are logged and counted, never
    raised to the caller of :meth:`schedule`.
    """

    def __init__(
        self,
        store: HistoryStore,
        *,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        max_events: int = MAX_EVENTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._policy = RetryPolicy.from_settings(
            max_attempts or settings.history_append_attempts,
            base_delay=backoff_base,
            max_delay=backoff_max,
        )
        self._events: deque[RecordOutcome] = deque(maxlen=max_events)
        self._tasks: set[asyncio.Task[RecordOutcome]] = set()
        self._consecutive_failures = 0
        self._sleep = sleep

    @property
    def events(self) -> list[RecordOutcome]:
        return list(self._events)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, score: NarrativeScore) -> asyncio.Task[RecordOutcome]:
        task = asyncio.get_running_loop().create_task(self.record(score))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def record(self, score: NarrativeScore) -> RecordOutcome:
        stored = StoredNarrativeScore.from_score(score)
        last_error: Exception | None = None
        attempts = 0
        for attempt, delay in self._policy.schedule():
            attempts = attempt
            try:
                await asyncio.to_thread(self._store.append, stored)
            except GlobeError as exc:
                last_error = exc
                logger.warning(
                    "narrative.history.append_retry",
                    extra={"attempt": attempt, "code": exc.code, "error": str(exc)},
                )
                if not self._policy.is_final(attempt):
                    await self._sleep(delay)
                continue
            except Exception as exc:
                # Unknown store failures are not retried.
                last_error = exc
                logger.exception("narrative.history.append_crashed", extra={"attempt": attempt})
                break
            return self._finish(
                RecordOutcome(
                    status="recorded",
                    score_timestamp=stored.timestamp,
                    overall=stored.overall,
                    attempts=attempts,
                )
            )

        metrics.increment("narrative.history.record_failed")
        logger.error(
            "narrative.history.record_failed",
            extra={
                "attempts": attempts,
                "code": getattr(last_error, "code", type(last_error).__name__),
                "overall": stored.overall,
            },
        )
        return self._finish(
            RecordOutcome(
                status="failed",
                score_timestamp=stored.timestamp,
                overall=stored.overall,
                attempts=attempts,
                error=str(last_error) if last_error else None,
            )
        )

    async def drain(self) -> list[RecordOutcome]:
        """Wait for every scheduled append and return their outcomes."""
        if not self._tasks:
            return []
        return list(await asyncio.gather(*self._tasks))

    def _finish(self, outcome: RecordOutcome) -> RecordOutcome:
        self._events.append(outcome)
        metrics.increment(f"narrative.history.{outcome.status}", tags={"attempts": outcome.attempts})
        if outcome.status == "recorded":
            self._consecutive_failures = 0
            return outcome
        self._consecutive_failures += 1
        if self._consecutive_failures >= FAILURE_ALERT_THRESHOLD:
            metrics.alert(
                "narrative.history.consecutive_failures",
                value=self._consecutive_failures,
                threshold=FAILURE_ALERT_THRESHOLD,
                severity="critical",
            )
        return outcome
