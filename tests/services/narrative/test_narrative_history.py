from __future__ import annotations

import json
from datetime import timedelta

import pytest

from app.services.errors import HistoryStoreError, InvalidParameterError
from app.services.narrative import history as history_module
from app.services.narrative.history import (
    JsonHistoryStore,
    SqlHistoryStore,
    build_history_store,
    calculate_change,
    format_for_chart,
    summarize_history,
    validate_days,
)
from tests.helpers.metrics_stub import StubMetrics
from tests.helpers.narrative import NOW, make_score, stored


@pytest.fixture
def json_store(tmp_path) -> JsonHistoryStore:
    return JsonHistoryStore(tmp_path / "history.json", clock=lambda: NOW)


@pytest.fixture
def sql_store(tmp_path):
    store = SqlHistoryStore(f"sqlite:///{tmp_path / 'history.db'}", clock=lambda: NOW)
    yield store
    store.dispose()


@pytest.mark.parametrize("days", [0, 366, -1, True, "30"])
def test_validate_days_rejects_out_of_range(days):
    with pytest.raises(InvalidParameterError) as excinfo:
        validate_days(days)
    assert excinfo.value.code == "400_INVALID_PARAMETER"


def test_json_store_keeps_entries_in_timestamp_order(json_store, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(history_module, "metrics", stub)

    json_store.append(stored(1, 61))
    json_store.append(stored(3, 58))
    json_store.append(make_score(64.2))

    assert [entry.overall for entry in json_store.all()] == [58, 61, 64.2]
    assert json_store.latest().overall == 64.2
    assert json_store.data_range() == (NOW - timedelta(days=3), NOW)
    assert stub.names() == ["narrative.history.appended"] * 3


def test_json_store_writes_camel_case_layout(json_store):
    json_store.append(stored(0, 62, components={"github": 70.0}, confidence=0.9))

    payload = json.loads(json_store.path.read_text(encoding="utf-8"))

    assert payload["version"] == 1
    assert "lastUpdated" in payload
    assert payload["scores"][0]["overall"] == 62
    assert payload["scores"][0]["components"] == {"github": 70.0}


def test_json_window_is_inclusive_at_cutoff(json_store):
    json_store.append(stored(7, 50))
    json_store.append(stored(7.01, 40))
    json_store.append(stored(0.5, 55))

    assert [entry.overall for entry in json_store.get_historical_scores(7)] == [50, 55]


def test_json_store_sets_aside_undecodable_file_before_appending(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonHistoryStore(path, clock=lambda: NOW)

    assert store.get_historical_scores(30) == []
    assert store.has_history() is False
    assert store.data_range() == (None, None)

    store.append(stored(0, 50))

    quarantined = list(tmp_path.glob("history.json.corrupt-*"))
    assert len(quarantined) == 1
    assert quarantined[0].read_text(encoding="utf-8") == "{not json"
    assert [entry.overall for entry in store.all()] == [50]


def test_json_store_keeps_entries_that_fail_validation(tmp_path, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(history_module, "metrics", stub)
    path = tmp_path / "history.json"
    bad = {"timestamp": (NOW - timedelta(days=1)).isoformat(), "overall": 56, "trend": "sideways"}
    path.write_text(
        json.dumps(
            {
                "scores": [
                    {"timestamp": (NOW - timedelta(days=3)).isoformat(), "overall": 50},
                    {"timestamp": (NOW - timedelta(days=2)).isoformat(), "overall": 55},
                    bad,
                ],
                "version": 1,
            }
        ),
        encoding="utf-8",
    )
    store = JsonHistoryStore(path, clock=lambda: NOW)

    assert [entry.overall for entry in store.all()] == [50, 55]

    store.append(make_score(60.0))

    on_disk = json.loads(path.read_text(encoding="utf-8"))["scores"]
    assert len(on_disk) == 4
    assert bad in on_disk
    assert [entry.overall for entry in store.all()] == [50, 55, 60.0]
    assert "narrative.history.quarantined" not in stub.names()
    assert list(tmp_path.glob("history.json.corrupt-*")) == []


def test_json_store_io_failure_raises_history_error(tmp_path):
    directory = tmp_path / "history.json"
    directory.mkdir()
    store = JsonHistoryStore(directory, clock=lambda: NOW)

    with pytest.raises(HistoryStoreError) as excinfo:
        store.append(stored(0, 50))
    assert excinfo.value.code == "500_HISTORY_STORE"


def test_sql_store_round_trips_and_orders(sql_store):
    sql_store.append(stored(2, 60, components={"github": 55.0}, trend="up", confidence=0.8))
    sql_store.append(stored(10, 45))
    sql_store.append(stored(0, 66))

    recent = sql_store.get_historical_scores(7)

    assert [entry.overall for entry in recent] == [60, 66]
    assert recent[0].components == {"github": 55.0}
    assert recent[0].trend == "up"
    assert recent[0].timestamp == NOW - timedelta(days=2)
    assert sql_store.latest().overall == 66
    start, end = sql_store.data_range()
    assert (start, end) == (NOW - timedelta(days=10), NOW)
    assert sql_store.has_history() is True


def test_sql_store_empty(sql_store):
    assert sql_store.latest() is None
    assert sql_store.data_range() == (None, None)
    assert sql_store.has_history() is False


def test_build_history_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setattr(history_module.settings, "database_url", None)
    assert isinstance(build_history_store(), JsonHistoryStore)

    store = build_history_store(f"sqlite:///{tmp_path / 'h.db'}")
    assert isinstance(store, SqlHistoryStore)
    store.dispose()


def test_summarize_empty_history_defaults_to_neutral():
    stats = summarize_history([], now=NOW)

    assert stats.data_points == 0
    assert stats.avg_score == 0.0
    assert stats.current_score == 50.0
    assert stats.trend == "stable"
    assert stats.interpretation.band == "neutral"


def test_summarize_history_statistics():
    entries = [stored(9, 40), stored(8, 45), stored(2, 70), stored(0, 81)]

    stats = summarize_history(entries, now=NOW)

    assert stats.data_points == 4
    assert stats.avg_score == 59.0
    assert (stats.min_score, stats.max_score) == (40, 81)
    assert stats.current_score == 81
    assert stats.trend == "up"
    assert stats.interpretation.band == "strong"


def test_chart_points_flatten_components():
    points = format_for_chart([stored(1, 60, components={"github": 70.0, "news": 45.0})])

    payload = points[0].model_dump(mode="json", by_alias=True)

    assert payload["date"] == "2026-10-17"
    assert payload["overall"] == 60
    assert payload["github"] == 70.0
    assert payload["news"] == 45.0


def test_change_between_last_two_entries():
    assert calculate_change([]) is None
    assert calculate_change([stored(1, 60)]) is None
    assert calculate_change([stored(2, 60), stored(1, 62.35)]) == 2.4
