from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from eventreminders.errors import TransientStoreError
from eventreminders.utils import call_with_retries, to_naive_utc, utcnow


def test_to_naive_utc_converts_aware_values():
    aware = datetime(2025, 6, 9, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == datetime(2025, 6, 9, 10, 0)
    assert to_naive_utc(datetime(2025, 6, 9, 10, 0)) == datetime(2025, 6, 9, 10, 0)
    assert to_naive_utc(None) is None
    assert utcnow().tzinfo is None


def test_call_with_retries_backs_off_then_succeeds():
    delays: list[float] = []
    calls = {"count": 0}

    def flaky():
        calls["count"] += 1
        if calls["count"] < 3:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return "ok"

    result = call_with_retries(
        flaky,
        attempts=3,
        backoff_seconds=0.5,
        description="lookup",
        sleep=delays.append,
    )

    assert result == "ok"
    assert delays == [0.5, 1.0]


def test_call_with_retries_raises_transient_error_when_exhausted():
    calls = {"count": 0}

    def always_locked():
        calls["count"] += 1
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    with pytest.raises(TransientStoreError) as excinfo:
        call_with_retries(
            always_locked,
            attempts=2,
            backoff_seconds=0,
            description="enqueue",
            sleep=lambda _: None,
        )

    assert calls["count"] == 2
    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_call_with_retries_does_not_retry_other_errors():
    calls = {"count": 0}

    def broken():
        calls["count"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        call_with_retries(broken, attempts=5, backoff_seconds=0, description="x")

    assert calls["count"] == 1
