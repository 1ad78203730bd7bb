"""
Activity execution with timeouts, heartbeats and retries.

An activity is a plain function ``fn(actx, *args)``. Each attempt runs on its
own worker thread while the caller watches two clocks:

- start-to-close: total time the attempt may take
- heartbeat: maximum silence between ``actx.heartbeat()`` calls

An attempt that exceeds either is abandoned (its next heartbeat raises) and
counts as a retryable :class:`ActivityTimeoutError`. Retries follow the
bounded exponential backoff of the :class:`RetryPolicy` via tenacity; rate
limits and non-retryable errors are raised immediately.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..config import ActivityConfig
from ..errors import ActivityTimeoutError, classify_error, is_retryable
from ..logging import logger


@dataclass(frozen=True)
class RetryPolicy:
    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    max_interval: float = 60.0
    max_attempts: int = 3

    @classmethod
    def from_config(cls, config: ActivityConfig) -> RetryPolicy:
        return cls(
            initial_interval=config.initial_interval_seconds,
            backoff_coefficient=config.backoff_coefficient,
            max_interval=config.max_interval_seconds,
            max_attempts=config.max_attempts,
        )


@dataclass(frozen=True)
class ActivityOptions:
    start_to_close_timeout: float = 600.0
    heartbeat_timeout: float | None = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_config(cls, config: ActivityConfig, *, heartbeat: bool = False) -> ActivityOptions:
        return cls(
            start_to_close_timeout=config.start_to_close_seconds,
            heartbeat_timeout=config.heartbeat_timeout_seconds if heartbeat else None,
            retry_policy=RetryPolicy.from_config(config),
        )


class ActivityContext:
    """Handed to every activity attempt."""

    def __init__(
        self,
        activity_name: str,
        execution_id: str,
        attempt: int,
        max_attempts: int,
        resources: Any,
    ) -> None:
        self.activity_name = activity_name
        self.execution_id = execution_id
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.resources = resources
        self.heartbeat_details: Any = None
        self._last_heartbeat = time.monotonic()
        self._abandoned = threading.Event()

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def heartbeat(self, details: Any = None) -> None:
        """Report liveness. Raises once the attempt has been abandoned."""
        if self._abandoned.is_set():
            raise ActivityTimeoutError(
                f"Activity {self.activity_name} attempt {self.attempt} was abandoned",
                kind="abandoned",
            )
        self._last_heartbeat = time.monotonic()
        self.heartbeat_details = details

    def seconds_since_heartbeat(self) -> float:
        return time.monotonic() - self._last_heartbeat

    def abandon(self) -> None:
        self._abandoned.set()


def _poll_interval(options: ActivityOptions) -> float:
    shortest = options.start_to_close_timeout
    if options.heartbeat_timeout is not None:
        shortest = min(shortest, options.heartbeat_timeout)
    return min(max(shortest / 10, 0.01), 1.0)


def _run_attempt(
    fn: Callable[..., Any],
    args: tuple[Any, ...],
    actx: ActivityContext,
    options: ActivityOptions,
) -> Any:
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"activity-{actx.activity_name}")
    future = executor.submit(fn, actx, *args)
    started = time.monotonic()
    poll = _poll_interval(options)
    try:
        while True:
            try:
                return future.result(timeout=poll)
            except FutureTimeoutError:
                pass
            if time.monotonic() - started >= options.start_to_close_timeout:
                actx.abandon()
                raise ActivityTimeoutError(
                    f"Activity {actx.activity_name} exceeded {options.start_to_close_timeout}s",
                    kind="start_to_close",
                )
            if (
                options.heartbeat_timeout is not None
                and actx.seconds_since_heartbeat() >= options.heartbeat_timeout
            ):
                actx.abandon()
                raise ActivityTimeoutError(
                    f"Activity {actx.activity_name} missed its heartbeat ({options.heartbeat_timeout}s)",
                    kind="heartbeat",
                )
    finally:
        # An abandoned attempt keeps its thread until it notices.
        executor.shutdown(wait=False)


def run_activity(
    fn: Callable[..., Any],
    *args: Any,
    options: ActivityOptions,
    execution_id: str,
    resources: Any,
    is_cancelled: Callable[[], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Run ``fn`` under ``options`` and return its result or raise its last error."""
    policy = options.retry_policy
    name = getattr(fn, "__name__", "activity")
    attempt_counter = 0

    def attempt() -> Any:
        nonlocal attempt_counter
        attempt_counter += 1
        actx = ActivityContext(
            activity_name=name,
            execution_id=execution_id,
            attempt=attempt_counter,
            max_attempts=policy.max_attempts,
            resources=resources,
        )
        return _run_attempt(fn, args, actx, options)

    def stop_when_cancelled(retry_state: RetryCallState) -> bool:
        return is_cancelled is not None and is_cancelled()

    def log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "activity_retry",
            activity=name,
            execution_id=execution_id,
            attempt=retry_state.attempt_number,
            error=str(exc),
            error_type=classify_error(exc).value if exc else None,
            next_wait=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts) | stop_when_cancelled,
        wait=wait_exponential(
            multiplier=policy.initial_interval,
            exp_base=policy.backoff_coefficient,
            max=policy.max_interval,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(attempt)
