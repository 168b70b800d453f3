"""Retry policy shared by upstream HTTP calls and history appends."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from app.config import settings

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with doubling delays capped at ``max_delay``.

    ``schedule()`` yields ``(attempt, delay)``; ``delay`` is the wait after a
    failed ``attempt`` before the next one. With the defaults: 0.25s, 0.5s,
    1s, 2s, 2s, ...
    """

    max_attempts: int = 3
    base_delay: float = 0.25
    max_delay: float = 2.0
    factor: float = 2.0
    retry_statuses: frozenset[int] = RETRYABLE_STATUSES

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError("delays must be > 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    @classmethod
    def from_settings(
        cls,
        max_attempts: int,
        *,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, max_attempts),
            base_delay=base_delay or settings.upstream_backoff_base_seconds,
            max_delay=max_delay or settings.upstream_backoff_max_seconds,
        )

    def schedule(self) -> Iterator[tuple[int, float]]:
        delay = min(self.base_delay, self.max_delay)
        for attempt in range(1, self.max_attempts + 1):
            yield attempt, delay
            delay = min(delay * self.factor, self.max_delay)

    def is_final(self, attempt: int) -> bool:
        return attempt >= self.max_attempts

    def should_retry_status(self, status_code: int, attempt: int) -> bool:
        """True when a response with ``status_code`` warrants another attempt."""
        return status_code in self.retry_statuses and not self.is_final(attempt)
