"""Large contract and funding events whose impact decays over ~30 days."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.config import settings
from app.core.files import atomic_write_json, read_json
from app.services.errors import GlobeError

logger = logging.getLogger(__name__)

EXPIRY_DAYS = 30

# (max days since the event, impact multiplier)
_DECAY_STEPS: tuple[tuple[int, float], ...] = (
    (0, 1.0),
    (1, 0.85),
    (3, 0.60),
    (7, 0.30),
    (14, 0.10),
    (30, 0.05),
)


def decay_multiplier(days_ago: int) -> float:
    for max_days, multiplier in _DECAY_STEPS:
        if days_ago <= max_days:
            return multiplier
    return 0.0


def contract_impact(amount: float) -> float:
    if amount >= 500_000_000:
        return 5.0
    if amount >= 100_000_000:
        return 3.0
    if amount >= 50_000_000:
        return 2.0
    if amount >= 10_000_000:
        return 1.0
    return 0.5


def funding_impact(amount: float) -> float:
    if amount >= 500_000_000:
        return 5.0
    if amount >= 300_000_000:
        return 4.0
    if amount >= 200_000_000:
        return 3.0
    if amount >= 100_000_000:
        return 2.0
    if amount >= 50_000_000:
        return 1.5
    if amount >= 30_000_000:
        return 1.0
    return 0.5


class StickySignal(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: Literal["contract", "funding"]
    title: str
    description: str = ""
    base_impact: float
    amount: float | None = None
    timestamp: datetime
    added_at: datetime

    def days_ago(self, now: datetime) -> int:
        event = self.timestamp
        if event.tzinfo is None:
            event = event.replace(tzinfo=timezone.utc)
        return (now - event).days


class ActiveStickySignal(BaseModel):
    signal: StickySignal
    days_ago: int
    decayed_impact: float


class StickySignalStore:
    """JSON-file store; writes are atomic and serialized by a lock."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or settings.sticky_signals_path)
        self._lock = Lock()

    def load(self) -> list[StickySignal]:
        try:
            raw = read_json(self._path)
        except (OSError, json.JSONDecodeError):
            logger.exception("sticky_signals.unreadable", extra={"path": str(self._path)})
            return []
        entries = raw.get("signals", []) if isinstance(raw, dict) else []
        signals: list[StickySignal] = []
        for entry in entries:
            try:
                signals.append(StickySignal.model_validate(entry))
            except ValidationError:
                record_id = entry.get("id") if isinstance(entry, dict) else None
                logger.warning("sticky_signals.record_skipped", extra={"id": record_id})
        return signals

    def add(self, signal: StickySignal) -> bool:
        """Persist ``signal`` unless one with the same id exists. Returns True when added."""
        with self._lock:
            signals = self.load()
            if any(existing.id == signal.id for existing in signals):
                return False
            signals.append(signal)
            self._save(signals)
        logger.info(
            "sticky_signals.added", extra={"id": signal.id, "type": signal.type}
        )
        return True

    def active(
        self, now: datetime, *, signal_type: str | None = None
    ) -> list[ActiveStickySignal]:
        result: list[ActiveStickySignal] = []
        for signal in self.load():
            if signal_type and signal.type != signal_type:
                continue
            days = signal.days_ago(now)
            decayed = signal.base_impact * decay_multiplier(days)
            if decayed > 0:
                result.append(
                    ActiveStickySignal(signal=signal, days_ago=days, decayed_impact=decayed)
                )
        return result

    def prune_expired(self, now: datetime) -> int:
        with self._lock:
            signals = self.load()
            kept = [signal for signal in signals if signal.days_ago(now) < EXPIRY_DAYS]
            removed = len(signals) - len(kept)
            if removed:
                self._save(kept)
        if removed:
            logger.info("sticky_signals.pruned", extra={"removed": removed})
        return removed

    def _save(self, signals: list[StickySignal]) -> None:
        payload = {
            "signals": [signal.model_dump(mode="json", by_alias=True) for signal in signals],
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            atomic_write_json(self._path, payload)
        except OSError as exc:
            logger.error("sticky_signals.write_failed", extra={"path": str(self._path)})
            raise GlobeError(
                f"Failed to write sticky signals: {exc}", code="500_STICKY_SIGNALS"
            ) from exc
