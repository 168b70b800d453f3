from __future__ import annotations

from datetime import timedelta

import pytest

from app.services.narrative.sticky_signals import (
    StickySignal,
    StickySignalStore,
    contract_impact,
    decay_multiplier,
    funding_impact,
)
from tests.helpers.narrative import NOW


def _signal(signal_id: str, days_ago: int, *, signal_type: str = "contract", impact: float = 3.0):
    return StickySignal(
        id=signal_id,
        type=signal_type,
        title=signal_id,
        base_impact=impact,
        amount=150_000_000,
        timestamp=NOW - timedelta(days=days_ago),
        added_at=NOW,
    )


@pytest.mark.parametrize(
    ("days", "multiplier"),
    [(0, 1.0), (1, 0.85), (2, 0.6), (7, 0.3), (10, 0.1), (30, 0.05), (31, 0.0)],
)
def test_decay_schedule(days, multiplier):
    assert decay_multiplier(days) == multiplier


def test_impact_tiers():
    assert contract_impact(600_000_000) == 5.0
    assert contract_impact(20_000_000) == 1.0
    assert contract_impact(1_000_000) == 0.5
    assert funding_impact(350_000_000) == 4.0
    assert funding_impact(35_000_000) == 1.0


def test_add_is_idempotent_by_id(tmp_path):
    store = StickySignalStore(tmp_path / "sticky.json")

    assert store.add(_signal("contract-1", 2)) is True
    assert store.add(_signal("contract-1", 2)) is False
    assert [signal.id for signal in store.load()] == ["contract-1"]


def test_active_applies_decay_and_type_filter(tmp_path):
    store = StickySignalStore(tmp_path / "sticky.json")
    store.add(_signal("contract-1", 2))
    store.add(_signal("funding-1", 0, signal_type="funding", impact=4.0))
    store.add(_signal("contract-old", 45))

    active = store.active(NOW, signal_type="contract")

    assert [entry.signal.id for entry in active] == ["contract-1"]
    assert active[0].days_ago == 2
    assert active[0].decayed_impact == pytest.approx(1.8)


def test_prune_removes_signals_older_than_thirty_days(tmp_path):
    store = StickySignalStore(tmp_path / "sticky.json")
    store.add(_signal("fresh", 29))
    store.add(_signal("expired", 30))

    assert store.prune_expired(NOW) == 1
    assert [signal.id for signal in store.load()] == ["fresh"]
    assert store.prune_expired(NOW) == 0


def test_missing_or_corrupt_file_loads_empty(tmp_path):
    assert StickySignalStore(tmp_path / "absent.json").load() == []

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{oops", encoding="utf-8")
    assert StickySignalStore(corrupt).load() == []
