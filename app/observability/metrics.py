"""Counters, timings, gauges and alerts for the globe services.

Every sample is logged as a ``globe.metric`` debug record; with
``METRICS_BACKEND=statsd`` it is also sent over UDP.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Literal

from statsd import StatsClient

from app.config import settings

logger = logging.getLogger("app.metrics")

MetricType = Literal["counter", "timing", "gauge"]


class MetricsReporter:
    def __init__(self) -> None:
        self._disabled = settings.metrics_disable
        self._namespace = settings.metrics_namespace or "globe"
        self._backend = (settings.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(settings.metrics_sample_rate, 1.0))
        self._schema_version = settings.metrics_schema_version
        self._statsd = self._connect() if self._backend == "statsd" and not self._disabled else None

    def _connect(self) -> StatsClient | None:
        try:
            return StatsClient(
                host=settings.metrics_statsd_host, port=settings.metrics_statsd_port, prefix=""
            )
        except OSError as exc:  # pragma: no cover - socket setup failure
            self._backend_error("statsd.init", exc)
            return None

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._record("counter", metric, value, tags)

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._record("timing", metric, value_ms, tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._record("gauge", metric, value, tags)

    def alert(
        self,
        metric: str,
        *,
        value: float,
        threshold: float,
        severity: str,
        tags: dict[str, Any] | None = None,
    ) -> None:
        """Log an alert record once ``value`` has crossed ``threshold``."""
        if self._disabled:
            return
        logger.warning(
            "globe.alert",
            extra={
                "metrics": {
                    "metric": self.qualify(metric),
                    "value": round(float(value), 4),
                    "threshold": round(float(threshold), 4),
                    "severity": severity,
                    "schema_version": self._schema_version,
                    "tags": tags or {},
                }
            },
        )

    def qualify(self, metric: str) -> str:
        """Prefix ``metric`` with the namespace unless it already carries it."""
        name = (metric or "").strip()
        if not name:
            return self._namespace
        if name.startswith(f"{self._namespace}."):
            return name
        return f"{self._namespace}.{name}"

    def _record(
        self, kind: MetricType, metric: str, value: float, tags: dict[str, Any] | None
    ) -> None:
        if self._disabled or value is None:
            return
        # Gauges report state, so they are never sampled.
        rate = 1.0 if kind == "gauge" else self._sample_rate
        if rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > rate:
            return
        name = self.qualify(metric)
        sample: dict[str, Any] = {
            "metric": name,
            "value": round(float(value), 4),
            "type": kind,
            "tags": tags or {},
        }
        if rate < 1.0:
            sample["sample_rate"] = round(rate, 4)
        logger.debug("globe.metric", extra={"metrics": sample})
        if self._statsd is None:
            return
        try:
            if kind == "counter":
                self._statsd.incr(name, value, rate=rate)
            elif kind == "timing":
                self._statsd.timing(name, value, rate=rate)
            else:
                self._statsd.gauge(name, value)
        except OSError as exc:  # pragma: no cover - UDP send failure
            self._backend_error(name, exc)

    def _backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


metrics = MetricsReporter()
