"""
Unit tests for sslib.polling — bounded poll-until helper.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))
from sslib.errors import PollTimeoutError, ProviderFailureError
from sslib.polling import poll_until


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _sequence(*values):
    it = iter(values)
    return MagicMock(side_effect=lambda: next(it))


class TestPollUntil:
    def test_returns_on_first_success_without_sleeping(self):
        clock = FakeClock()
        result = poll_until(lambda: "done", lambda v: v == "done", "thing", sleep=clock.sleep, clock=clock)
        assert result.value == "done"
        assert result.attempts == 1
        assert clock.sleeps == []

    def test_sleeps_between_attempts_only(self):
        clock = FakeClock()
        fetch = _sequence("a", "b", "done")
        result = poll_until(fetch, lambda v: v == "done", "thing", interval=30, sleep=clock.sleep, clock=clock)
        assert result.attempts == 3
        assert fetch.call_count == 3
        assert clock.sleeps == [30, 30]
        assert result.elapsed_seconds == 60

    def test_timeout_after_max_attempts(self):
        clock = FakeClock()
        fetch = MagicMock(return_value="pending")
        with pytest.raises(PollTimeoutError) as exc_info:
            poll_until(fetch, lambda v: False, "export", max_attempts=4, sleep=clock.sleep, clock=clock)
        assert fetch.call_count == 4
        assert len(clock.sleeps) == 3
        assert exc_info.value.attempts == 4
        assert exc_info.value.last_value == "pending"

    def test_wall_clock_timeout(self):
        clock = FakeClock()
        fetch = MagicMock(return_value="pending")
        with pytest.raises(PollTimeoutError):
            poll_until(fetch, lambda v: False, "x", interval=10, max_attempts=100, timeout=25,
                       sleep=clock.sleep, clock=clock)
        assert fetch.call_count == 3

    def test_is_done_may_abort(self):
        clock = FakeClock()
        fetch = _sequence("creating", "failed", "available")

        def check(value):
            if value == "failed":
                raise ProviderFailureError("failed")
            return value == "available"

        with pytest.raises(ProviderFailureError):
            poll_until(fetch, check, "snapshot", sleep=clock.sleep, clock=clock)
        assert fetch.call_count == 2

    def test_sleep_first(self):
        clock = FakeClock()
        poll_until(lambda: 1, lambda v: True, "x", interval=5, sleep_first=True, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == [5]

    def test_on_pending_called_for_each_miss(self):
        clock = FakeClock()
        on_pending = MagicMock()
        poll_until(_sequence(1, 2, 3), lambda v: v == 3, "x", max_attempts=5, on_pending=on_pending,
                   sleep=clock.sleep, clock=clock)
        assert [c.args for c in on_pending.call_args_list] == [(1, 1, 5), (2, 2, 5)]

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            poll_until(lambda: 1, lambda v: True, "x", max_attempts=0)
