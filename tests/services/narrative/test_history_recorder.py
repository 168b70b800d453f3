from __future__ import annotations

import asyncio

from app.services.errors import HistoryStoreError
from app.services.narrative import recorder as recorder_module
from app.services.narrative.recorder import HistoryRecorder
from tests.helpers.metrics_stub import StubMetrics
from tests.helpers.narrative import make_score


class _FlakyStore:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.appended = []
        self.attempts = 0

    def append(self, score):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise HistoryStoreError("disk full")
        self.appended.append(score)
        return score


def _recorder(store, **kwargs):
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return HistoryRecorder(store, sleep=fake_sleep, **kwargs), sleeps


def test_append_retries_then_records(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(recorder_module, "metrics", stub)
    store = _FlakyStore(failures=1)
    recorder, sleeps = _recorder(store, max_attempts=3)

    outcome = asyncio.run(recorder.record(make_score(64.0)))

    assert outcome.status == "recorded"
    assert outcome.attempts == 2
    assert sleeps == [0.25]
    assert store.appended[0].overall == 64.0
    assert stub.increment_calls[-1]["metric"] == "narrative.history.recorded"


def test_exhausted_retries_log_a_failed_event_without_raising(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(recorder_module, "metrics", stub)
    recorder, sleeps = _recorder(_FlakyStore(failures=10), max_attempts=3)

    outcome = asyncio.run(recorder.record(make_score()))

    assert outcome.status == "failed"
    assert outcome.attempts == 3
    assert outcome.error == "disk full"
    assert sleeps == [0.25, 0.5]
    assert recorder.events == [outcome]
    metrics_emitted = stub.names()
    assert "narrative.history.record_failed" in metrics_emitted
    assert metrics_emitted[-1] == "narrative.history.failed"


def test_scheduled_appends_are_drained():
    store = _FlakyStore(failures=0)
    recorder, _ = _recorder(store)

    async def scenario():
        recorder.schedule(make_score(50.0))
        recorder.schedule(make_score(51.0))
        assert recorder.pending == 2
        return await recorder.drain()

    outcomes = asyncio.run(scenario())

    assert sorted(outcome.overall for outcome in outcomes) == [50.0, 51.0]
    assert recorder.pending == 0
    assert len(store.appended) == 2


def test_event_log_is_bounded():
    recorder, _ = _recorder(_FlakyStore(failures=0), max_events=2)

    async def scenario():
        for overall in (10.0, 20.0, 30.0):
            await recorder.record(make_score(overall))

    asyncio.run(scenario())

    assert [event.overall for event in recorder.events] == [20.0, 30.0]


def test_repeated_failures_raise_an_alert_until_a_success(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(recorder_module, "metrics", stub)
    store = _FlakyStore(failures=3)
    recorder, _ = _recorder(store, max_attempts=1)

    async def scenario():
        for _ in range(4):
            await recorder.record(make_score())

    asyncio.run(scenario())

    assert len(stub.alert_calls) == 1
    assert stub.alert_calls[0]["metric"] == "narrative.history.consecutive_failures"
    assert stub.alert_calls[0]["severity"] == "critical"
    assert recorder.consecutive_failures == 0


class _BrokenStore:
    def __init__(self) -> None:
        self.attempts = 0

    def append(self, score):
        self.attempts += 1
        raise RuntimeError("driver exploded")


def test_unexpected_store_error_is_recorded_as_failed_and_drains():
    store = _BrokenStore()
    recorder, sleeps = _recorder(store, max_attempts=3)

    async def scenario():
        recorder.schedule(make_score(70.0))
        return await recorder.drain()

    outcomes = asyncio.run(scenario())

    assert [outcome.status for outcome in outcomes] == ["failed"]
    assert outcomes[0].error == "driver exploded"
    assert outcomes[0].attempts == 1
    assert store.attempts == 1
    assert sleeps == []
    assert recorder.consecutive_failures == 1
