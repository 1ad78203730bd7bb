"""Tests for the activity runner: retries, timeouts and heartbeats."""

from __future__ import annotations

import time

import pytest

from builds_collector.errors import (
    ActivityTimeoutError,
    ApiError,
    ConfigurationError,
    RateLimitError,
)
from builds_collector.orchestration.activities import (
    ActivityOptions,
    RetryPolicy,
    run_activity,
)

FAST_RETRY = RetryPolicy(initial_interval=0.0, backoff_coefficient=2.0, max_interval=0.0, max_attempts=3)


def run(fn, *args, options=None, **kwargs):
    return run_activity(
        fn,
        *args,
        options=options or ActivityOptions(start_to_close_timeout=5.0, retry_policy=FAST_RETRY),
        execution_id="exec-1",
        resources=None,
        **kwargs,
    )


class TestRetries:
    def test_returns_result(self):
        assert run(lambda actx, value: value * 2, 21) == 42

    def test_retryable_error_then_success(self):
        attempts = []

        def flaky(actx):
            attempts.append(actx.attempt)
            if actx.attempt < 3:
                raise ApiError("503", status_code=503, retryable=True)
            return "ok"

        assert run(flaky) == "ok"
        assert attempts == [1, 2, 3]

    def test_gives_up_after_max_attempts(self):
        calls = []

        def always_failing(actx):
            calls.append(actx.is_final_attempt)
            raise ApiError("503", retryable=True)

        with pytest.raises(ApiError):
            run(always_failing)
        assert calls == [False, False, True]

    def test_non_retryable_raises_immediately(self):
        calls = []

        def misconfigured(actx):
            calls.append(1)
            raise ConfigurationError("no credentials")

        with pytest.raises(ConfigurationError):
            run(misconfigured)
        assert len(calls) == 1

    def test_rate_limit_is_not_retried(self):
        calls = []

        def limited(actx):
            calls.append(1)
            raise RateLimitError("slow down", retry_after=60)

        with pytest.raises(RateLimitError):
            run(limited)
        assert len(calls) == 1

    def test_backoff_waits_are_bounded(self):
        waits = []
        policy = RetryPolicy(initial_interval=1.0, backoff_coefficient=2.0, max_interval=3.0, max_attempts=4)

        def failing(actx):
            raise ApiError("503", retryable=True)

        with pytest.raises(ApiError):
            run(
                failing,
                options=ActivityOptions(start_to_close_timeout=5.0, retry_policy=policy),
                sleep=waits.append,
            )
        assert len(waits) == 3
        assert all(0 < wait <= 3.0 for wait in waits)
        assert waits == sorted(waits)

    def test_cancellation_stops_retries(self):
        calls = []

        def failing(actx):
            calls.append(1)
            raise ApiError("503", retryable=True)

        with pytest.raises(ApiError):
            run(failing, is_cancelled=lambda: True)
        assert len(calls) == 1


class TestTimeouts:
    def test_start_to_close_timeout(self):
        def slow(actx):
            time.sleep(0.5)
            return "late"

        options = ActivityOptions(
            start_to_close_timeout=0.1,
            retry_policy=RetryPolicy(max_attempts=1),
        )
        with pytest.raises(ActivityTimeoutError) as info:
            run(slow, options=options)
        assert info.value.kind == "start_to_close"

    def test_missed_heartbeat(self):
        def silent(actx):
            time.sleep(0.5)

        options = ActivityOptions(
            start_to_close_timeout=5.0,
            heartbeat_timeout=0.1,
            retry_policy=RetryPolicy(max_attempts=1),
        )
        with pytest.raises(ActivityTimeoutError) as info:
            run(silent, options=options)
        assert info.value.kind == "heartbeat"

    def test_heartbeats_keep_attempt_alive(self):
        def chatty(actx):
            for step in range(5):
                time.sleep(0.04)
                actx.heartbeat({"step": step})
            return actx.heartbeat_details

        options = ActivityOptions(
            start_to_close_timeout=5.0,
            heartbeat_timeout=0.15,
            retry_policy=RetryPolicy(max_attempts=1),
        )
        assert run(chatty, options=options) == {"step": 4}

    def test_timeout_is_retried(self):
        def slow_then_fast(actx):
            if actx.attempt == 1:
                time.sleep(0.3)
            return actx.attempt

        options = ActivityOptions(start_to_close_timeout=0.1, retry_policy=FAST_RETRY)
        assert run(slow_then_fast, options=options) == 2
