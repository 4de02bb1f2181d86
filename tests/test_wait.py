"""Tests for the bounded wait-for-condition helper."""

import pytest

from nrfrecover.errors import WaitTimeoutError
from nrfrecover.lock_state import LockState
from nrfrecover.mocks import MockClock
from nrfrecover.wait import wait_for


def _poller(values):
    it = iter(values)
    calls = []

    def poll():
        value = next(it)
        calls.append(value)
        return value

    return poll, calls


def test_returns_first_satisfying_value():
    clock = MockClock()
    poll, calls = _poller([1, 2, 3, 4])

    result = wait_for(poll, lambda v: v == 3, attempts=5, interval_s=0.5, clock=clock, what="x")

    assert result == 3
    assert calls == [1, 2, 3]
    assert clock.get_sleep_calls() == [0.5, 0.5]


def test_no_sleep_when_first_poll_succeeds():
    clock = MockClock()
    result = wait_for(lambda: 7, lambda v: v == 7, attempts=3, interval_s=1.0, clock=clock, what="x")
    assert result == 7
    assert clock.get_sleep_calls() == []


def test_timeout_reports_last_value():
    clock = MockClock()
    poll, calls = _poller([5, 6, 7])

    with pytest.raises(WaitTimeoutError) as exc_info:
        wait_for(
            poll, lambda v: v == 0, attempts=3, interval_s=0.25, clock=clock,
            what="status", address=0x1000, expected=0,
        )

    err = exc_info.value
    assert err.observed == 7
    assert err.address == 0x1000
    assert err.expected == 0
    assert "status" in err.message
    assert len(calls) == 3
    # no sleep after the final attempt
    assert clock.get_sleep_calls() == [0.25, 0.25]


def test_poll_exception_propagates_immediately():
    clock = MockClock()
    calls = []

    def poll():
        calls.append(1)
        raise RuntimeError("bus fault")

    with pytest.raises(RuntimeError):
        wait_for(poll, lambda v: True, attempts=10, interval_s=0.1, clock=clock, what="x")
    assert calls == [1]
    assert clock.get_sleep_calls() == []


def test_non_integer_values_have_no_observed():
    clock = MockClock()
    with pytest.raises(WaitTimeoutError) as exc_info:
        wait_for(
            lambda: LockState.LOCKED, lambda s: s is LockState.UNLOCKED,
            attempts=2, interval_s=0.1, clock=clock, what="lock",
        )
    assert exc_info.value.observed is None


def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        wait_for(lambda: 0, lambda v: True, attempts=0, interval_s=0.1, clock=MockClock(), what="x")
