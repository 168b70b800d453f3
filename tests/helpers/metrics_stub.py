from __future__ import annotations

from typing import Any


class StubMetrics:
    """Records every metric call instead of logging or sending it."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def _capture(self, kind: str, metric: str, value: float, tags: dict[str, Any] | None, **extra):
        self.calls.append({"kind": kind, "metric": metric, "value": value, "tags": tags or {}, **extra})

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._capture("counter", metric, value, tags)

    def timing(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._capture("timing", metric, value, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._capture("gauge", metric, value, tags)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        self._capture("alert", metric, value, tags, threshold=threshold, severity=severity)

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == kind]

    @property
    def increment_calls(self) -> list[dict[str, Any]]:
        return self.of_kind("counter")

    @property
    def timing_calls(self) -> list[dict[str, Any]]:
        return self.of_kind("timing")

    @property
    def alert_calls(self) -> list[dict[str, Any]]:
        return self.of_kind("alert")

    def names(self, kind: str = "counter") -> list[str]:
        return [call["metric"] for call in self.of_kind(kind)]
