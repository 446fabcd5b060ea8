"""Tests for cloudspec.waiter."""

from __future__ import annotations

import threading
import time
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from cloudspec.errors import (
    FatalStateError,
    NotFoundError,
    TransientError,
    UnexpectedStateError,
    WaitCancelledError,
    WaitTimeoutError,
)
from cloudspec.waiter import GONE, NotFound, PollResult, WaitSpec, _backoff, wait

FAST = {"min_delay": 0.01, "max_delay": 0.01}


def _sequence(*results):
    """Fetcher that replays ``results`` and then repeats the last one.

    Exceptions in the sequence are raised instead of returned.
    """
    calls = []

    def fetch() -> PollResult:
        item = results[min(len(calls), len(results) - 1)]
        calls.append(item)
        if isinstance(item, BaseException):
            raise item
        return item

    fetch.calls = calls  # type: ignore[attr-defined]
    return fetch


def _found(status: str) -> PollResult:
    return PollResult({"State": status}, status)


class TestWaitSpec:
    def test_defaults(self):
        spec = WaitSpec(target={"ACTIVE"}, timeout=60)
        assert spec.pending == frozenset()
        assert spec.fatal == frozenset()
        assert spec.not_found is NotFound.RETRY
        assert spec.min_delay <= spec.max_delay

    def test_frozen(self):
        spec = WaitSpec(target={"ACTIVE"}, timeout=60)
        with pytest.raises(ValidationError):
            spec.timeout = 5  # type: ignore[misc]

    def test_target_required(self):
        with pytest.raises(ValidationError):
            WaitSpec(target=set(), timeout=60)

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_timeout_positive(self, timeout):
        with pytest.raises(ValidationError):
            WaitSpec(target={"ACTIVE"}, timeout=timeout)

    @pytest.mark.parametrize(
        "sets",
        [
            {"pending": {"A"}, "target": {"A"}},
            {"pending": {"A"}, "target": {"B"}, "fatal": {"A"}},
            {"target": {"B"}, "fatal": {"B"}},
        ],
    )
    def test_sets_disjoint(self, sets):
        with pytest.raises(ValidationError, match="share states"):
            WaitSpec(timeout=60, **sets)

    def test_delay_order(self):
        with pytest.raises(ValidationError, match="min_delay"):
            WaitSpec(target={"A"}, timeout=60, min_delay=5, max_delay=1)

    def test_gone_policy_needs_gone_state(self):
        with pytest.raises(ValidationError, match="GONE"):
            WaitSpec(target={"Deleted"}, timeout=60, not_found=NotFound.GONE)

    def test_gone_policy_with_gone_target(self):
        spec = WaitSpec(target={"Deleted", GONE}, timeout=60, not_found=NotFound.GONE)
        assert GONE in spec.known


class TestOutcomes:
    def test_target_on_first_poll(self):
        fetch = _sequence(_found("ACTIVE"))
        resource = wait(WaitSpec(target={"ACTIVE"}, timeout=5, **FAST), fetch)
        assert resource == {"State": "ACTIVE"}
        assert len(fetch.calls) == 1

    def test_pending_then_target(self):
        fetch = _sequence(_found("CREATING"), _found("CREATING"), _found("ACTIVE"))
        spec = WaitSpec(pending={"CREATING"}, target={"ACTIVE"}, timeout=5, **FAST)
        assert wait(spec, fetch) == {"State": "ACTIVE"}
        assert len(fetch.calls) == 3

    def test_fatal(self):
        fetch = _sequence(_found("Creating"), _found("Failed"))
        spec = WaitSpec(pending={"Creating"}, target={"Applied"}, fatal={"Failed"}, timeout=5, **FAST)
        with pytest.raises(FatalStateError) as info:
            wait(spec, fetch)
        assert info.value.status == "Failed"
        assert info.value.resource == {"State": "Failed"}

    def test_failure_status_as_target(self):
        accepting = WaitSpec(pending={"SHARING"}, target={"SHARED", "SHARE_FAILED"}, timeout=5, **FAST)
        result = wait(accepting, _sequence(_found("SHARING"), _found("SHARE_FAILED")))
        assert result == {"State": "SHARE_FAILED"}

        strict = WaitSpec(pending={"SHARING"}, target={"SHARED"}, fatal={"SHARE_FAILED"}, timeout=5, **FAST)
        fetch = _sequence(_found("SHARING"), _found("SHARE_FAILED"), _found("SHARED"))
        with pytest.raises(FatalStateError):
            wait(strict, fetch)
        assert len(fetch.calls) == 2

    def test_unexpected(self):
        fetch = _sequence(_found("Sharing"), _found("Rejected"))
        spec = WaitSpec(pending={"Sharing"}, target={"Shared"}, timeout=5, **FAST)
        with pytest.raises(UnexpectedStateError) as info:
            wait(spec, fetch)
        assert info.value.status == "Rejected"
        assert info.value.expected == ["Shared", "Sharing"]
        assert "Rejected" in str(info.value)

    def test_timeout(self):
        fetch = _sequence(_found("STARTING"))
        spec = WaitSpec(pending={"STARTING"}, target={"RUNNING"}, timeout=0.2, **FAST)
        started = time.monotonic()
        with pytest.raises(WaitTimeoutError) as info:
            wait(spec, fetch)
        assert time.monotonic() - started >= 0.2
        assert isinstance(info.value, TimeoutError)
        assert info.value.status == "STARTING"
        assert info.value.elapsed >= 0.2
        assert "STARTING" in str(info.value)

    def test_timeout_is_bounded(self):
        fetch = _sequence(_found("STARTING"))
        spec = WaitSpec(pending={"STARTING"}, target={"RUNNING"}, timeout=0.3, min_delay=0.5, max_delay=5)
        started = time.monotonic()
        with pytest.raises(WaitTimeoutError):
            wait(spec, fetch)
        assert time.monotonic() - started < 2.0


class TestNotFound:
    def test_retry_keeps_polling(self):
        fetch = _sequence(PollResult(), PollResult(), _found("Active"))
        spec = WaitSpec(pending={"Creating"}, target={"Active"}, timeout=5, **FAST)
        assert wait(spec, fetch) == {"State": "Active"}
        assert len(fetch.calls) == 3

    def test_retry_times_out_without_state(self):
        spec = WaitSpec(target={"Active"}, timeout=0.1, **FAST)
        with pytest.raises(WaitTimeoutError, match="no state observed"):
            wait(spec, _sequence(PollResult()))

    def test_gone_is_target(self):
        fetch = _sequence(_found("Deleting"), PollResult())
        spec = WaitSpec(
            pending={"Deleting"}, target={GONE}, timeout=5, not_found=NotFound.GONE, **FAST
        )
        assert wait(spec, fetch) is None

    def test_gone_is_fatal(self):
        fetch = _sequence(_found("Creating"), PollResult())
        spec = WaitSpec(
            pending={"Creating"},
            target={"Active"},
            fatal={GONE},
            timeout=5,
            not_found=NotFound.GONE,
            **FAST,
        )
        with pytest.raises(FatalStateError) as info:
            wait(spec, fetch)
        assert info.value.status == GONE

    def test_error(self):
        spec = WaitSpec(target={"Active"}, timeout=5, not_found=NotFound.ERROR, **FAST)
        fetch = _sequence(PollResult(), _found("Active"))
        with pytest.raises(NotFoundError):
            wait(spec, fetch)
        assert len(fetch.calls) == 1


class TestFetchErrors:
    def test_transient_error_is_retried(self):
        fetch = _sequence(TransientError("throttled"), _found("Applied"))
        spec = WaitSpec(target={"Applied"}, timeout=5, **FAST)
        assert wait(spec, fetch) == {"State": "Applied"}

    def test_other_errors_propagate_unchanged(self):
        boom = RuntimeError("access denied")
        spec = WaitSpec(target={"Applied"}, timeout=5, **FAST)
        with pytest.raises(RuntimeError) as info:
            wait(spec, _sequence(boom))
        assert info.value is boom

    def test_custom_classifier(self):
        fetch = _sequence(ConnectionError("reset"), _found("Applied"))
        spec = WaitSpec(target={"Applied"}, timeout=5, **FAST)
        resource = wait(spec, fetch, transient=lambda exc: isinstance(exc, ConnectionError))
        assert resource == {"State": "Applied"}

    def test_timeout_while_failing_chains_last_error(self):
        spec = WaitSpec(target={"Applied"}, timeout=0.1, **FAST)
        with pytest.raises(WaitTimeoutError) as info:
            wait(spec, _sequence(TransientError("still throttled")))
        assert isinstance(info.value.__cause__, TransientError)


class TestCancellation:
    def test_cancelled_before_first_poll(self):
        cancel = threading.Event()
        cancel.set()
        fetch = _sequence(_found("Active"))
        with pytest.raises(WaitCancelledError):
            wait(WaitSpec(target={"Active"}, timeout=5), fetch, cancel=cancel)
        assert fetch.calls == []

    def test_cancel_interrupts_sleep(self):
        cancel = threading.Event()
        fetch = _sequence(_found("Creating"))
        spec = WaitSpec(pending={"Creating"}, target={"Active"}, timeout=60, min_delay=30, max_delay=30)
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(WaitCancelledError) as info:
                wait(spec, fetch, cancel=cancel)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 5
        assert info.value.status == "Creating"


class TestBackoff:
    def test_exponential_within_bounds(self):
        spec = WaitSpec(target={"A"}, timeout=600, min_delay=1, max_delay=8)
        delay = _backoff(spec)
        for attempt in range(1, 12):
            value = delay(SimpleNamespace(attempt_number=attempt, seconds_since_start=0.0))
            assert 1 <= value <= 8

    def test_fixed_when_bounds_equal(self):
        spec = WaitSpec(target={"A"}, timeout=600, min_delay=3, max_delay=3)
        delay = _backoff(spec)
        assert delay(SimpleNamespace(attempt_number=7, seconds_since_start=1.0)) == 3

    def test_capped_at_remaining_time(self):
        spec = WaitSpec(target={"A"}, timeout=10, min_delay=1, max_delay=8)
        delay = _backoff(spec)
        assert delay(SimpleNamespace(attempt_number=6, seconds_since_start=9.75)) <= 0.25

    def test_zero_min_delay_still_backs_off(self):
        spec = WaitSpec(target={"A"}, timeout=600, min_delay=0, max_delay=8)
        delay = _backoff(spec)
        assert delay(SimpleNamespace(attempt_number=1, seconds_since_start=0.0)) > 0
