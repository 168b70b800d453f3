from __future__ import annotations

import pytest

from app.core import backoff as backoff_module
from app.core.backoff import RetryPolicy


def test_delays_double_from_base_and_cap_at_two_seconds():
    schedule = list(RetryPolicy(max_attempts=6).schedule())
    assert schedule == [(1, 0.25), (2, 0.5), (3, 1.0), (4, 2.0), (5, 2.0), (6, 2.0)]


def test_transient_statuses_retry_until_the_final_attempt():
    policy = RetryPolicy(max_attempts=3)

    assert policy.should_retry_status(503, attempt=1) is True
    assert policy.should_retry_status(429, attempt=2) is True
    assert policy.should_retry_status(503, attempt=3) is False
    assert policy.should_retry_status(404, attempt=1) is False
    assert policy.should_retry_status(500, attempt=1) is False
    assert policy.is_final(3) is True


def test_from_settings_floors_attempts_and_falls_back_to_configured_delays(monkeypatch):
    monkeypatch.setattr(backoff_module.settings, "upstream_backoff_base_seconds", 0.1)
    monkeypatch.setattr(backoff_module.settings, "upstream_backoff_max_seconds", 0.3)

    policy = RetryPolicy.from_settings(0)

    assert policy.max_attempts == 1
    assert [delay for _, delay in RetryPolicy.from_settings(4).schedule()] == [0.1, 0.2, 0.3, 0.3]


@pytest.mark.parametrize(
    "kwargs",
    [{"max_attempts": 0}, {"base_delay": 0}, {"factor": 0.5}, {"max_delay": 0}],
)
def test_invalid_arguments_raise(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
