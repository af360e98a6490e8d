"""
Retry controller for expensive, failure-prone calls.

run() starts an action on a worker thread and returns a run id at once.
status() reports the run's state and its attempt history. wait() blocks
with a bounded poll schedule until the run is terminal.

Attempt k that fails is followed by a sleep of
initial_backoff * base ** (k - 1) seconds before attempt k + 1. After
max_failures failed attempts the run is failed and stays failed.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

from devlog.config import (
    POLL_INITIAL_INTERVAL_SECONDS,
    POLL_MAX_INTERVAL_SECONDS,
    POLL_MAX_POLLS,
    POLL_STEP_SECONDS,
    RETRY_BACKOFF_BASE,
    RETRY_INITIAL_BACKOFF_SECONDS,
    RETRY_MAX_FAILURES,
    RETRY_MAX_WORKERS,
)
from devlog.errors import ConfigurationError, RetryExhaustedError, RetryTimeoutError
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event

T = TypeVar("T")

logger = get_logger(__name__)

RunState = Literal["running", "completed", "failed"]


@dataclass(frozen=True)
class RetryAttempt:
    attempt_number: int
    outcome: Literal["succeeded", "failed"]
    backoff_seconds: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class RetryRunStatus:
    run_id: str
    state: RunState
    attempts: tuple[RetryAttempt, ...] = ()
    result: Any = None
    error: BaseException | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state != "running"


@dataclass(frozen=True)
class PollPolicy:
    """Poll i (0-based) waits min(initial_interval + step * i, max_interval) seconds."""

    initial_interval: float = POLL_INITIAL_INTERVAL_SECONDS
    step: float = POLL_STEP_SECONDS
    max_interval: float = POLL_MAX_INTERVAL_SECONDS
    max_polls: int = POLL_MAX_POLLS

    def interval(self, poll_index: int) -> float:
        return min(self.initial_interval + self.step * poll_index, self.max_interval)


@dataclass
class _Run:
    run_id: str
    name: str
    state: RunState = "running"
    attempts: list[RetryAttempt] = field(default_factory=list)
    result: Any = None
    error: BaseException | None = None
    done: threading.Event = field(default_factory=threading.Event)
    future: Future[None] | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def snapshot(self) -> RetryRunStatus:
        with self.lock:
            return RetryRunStatus(
                run_id=self.run_id,
                state=self.state,
                attempts=tuple(self.attempts),
                result=self.result,
                error=self.error,
            )


class RetryController:
    """Bounded retries with exponential backoff, tracked per run."""

    def __init__(
        self,
        initial_backoff: float = RETRY_INITIAL_BACKOFF_SECONDS,
        base: float = RETRY_BACKOFF_BASE,
        max_failures: int = RETRY_MAX_FAILURES,
        poll_policy: PollPolicy | None = None,
        max_workers: int = RETRY_MAX_WORKERS,
        sleep_fn: Callable[[float], None] = time.sleep,
        non_retryable: tuple[type[BaseException], ...] = (ConfigurationError,),
    ):
        if max_failures < 1:
            raise ValueError("max_failures must be >= 1")
        self.initial_backoff = initial_backoff
        self.base = base
        self.max_failures = max_failures
        self.poll_policy = poll_policy or PollPolicy()
        self.sleep_fn = sleep_fn
        self.non_retryable = non_retryable
        self.max_workers = max_workers
        self._executor = self._new_executor()
        self._runs: dict[str, _Run] = {}
        self._runs_lock = threading.Lock()

    def backoff_for(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number `attempt` (1-based)."""
        return self.initial_backoff * self.base ** (attempt - 1)

    def run(self, action: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> str:
        """
        Start action(*args, **kwargs) under the retry policy.

        Side Effects:
            - Submits work to the controller's thread pool
        """
        run = _Run(run_id=uuid.uuid4().hex, name=name or getattr(action, "__name__", "action"))
        with self._runs_lock:
            self._runs[run.run_id] = run
            run.future = self._executor.submit(self._execute, run, action, args, kwargs)
        return run.run_id

    def status(self, run_id: str) -> RetryRunStatus:
        """
        Raises:
            KeyError: If run_id is unknown
        """
        with self._runs_lock:
            run = self._runs[run_id]
        return run.snapshot()

    def wait(self, run_id: str, poll_policy: PollPolicy | None = None) -> RetryRunStatus:
        """
        Block until the run is terminal, polling on a bounded schedule.

        Each poll waits on the run's completion event, so a finished run wakes
        the caller immediately.

        Raises:
            RetryTimeoutError: If the run is still running after max_polls polls
        """
        policy = poll_policy or self.poll_policy
        with self._runs_lock:
            run = self._runs[run_id]

        for poll in range(policy.max_polls):
            if run.done.wait(policy.interval(poll)):
                return run.snapshot()

        counter(f"retry.{run.name}.timeout")
        log_event("retry.timeout", stage=run.name, run_id=run_id, polls=policy.max_polls)
        raise RetryTimeoutError(run_id, policy.max_polls)

    def run_and_wait(self, action: Callable[..., T], *args: Any, name: str | None = None, **kwargs: Any) -> T:
        """
        Synchronous wrapper: run, wait, then return the result or raise.

        Raises:
            ConfigurationError: Re-raised as-is (never retried)
            RetryExhaustedError: If every attempt failed
            RetryTimeoutError: If the wait bound was reached; the run is abandoned
        """
        run_id = self.run(action, *args, name=name, **kwargs)
        try:
            status = self.wait(run_id)
        except RetryTimeoutError:
            self.abandon(run_id)
            raise
        self.forget(run_id)

        if status.state == "completed":
            return status.result
        if isinstance(status.error, self.non_retryable):
            raise status.error
        raise RetryExhaustedError(run_id, len(status.attempts), status.error) from status.error

    def forget(self, run_id: str) -> None:
        """Drop a terminal run's bookkeeping."""
        with self._runs_lock:
            run = self._runs.get(run_id)
            if run is not None and run.done.is_set():
                del self._runs[run_id]

    def abandon(self, run_id: str) -> None:
        """
        Stop tracking a run that outlived its wait bound.

        A run still queued is cancelled. A run still executing cannot be
        interrupted, so the pool it occupies is retired and later runs go
        to a fresh pool.

        Side Effects:
            - Removes the run's bookkeeping
            - May replace the controller's thread pool
        """
        with self._runs_lock:
            run = self._runs.pop(run_id, None)
            future = run.future if run is not None else None
            if future is None or future.cancel() or future.done():
                return
            stuck = self._executor
            self._executor = self._new_executor()

        stuck.shutdown(wait=False)
        counter(f"retry.{run.name}.abandoned")
        logger.warning("Abandoned run %s (%s); thread pool replaced", run_id, run.name)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="retry")

    def _execute(
        self,
        run: _Run,
        action: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = action(*args, **kwargs)
            except self.non_retryable as exc:
                self._finish(run, attempt, error=exc)
                logger.error("%s failed with non-retryable error: %s", run.name, exc)
                return
            except Exception as exc:
                counter(f"retry.{run.name}.attempt_failed")
                if attempt >= self.max_failures:
                    self._finish(run, attempt, error=exc)
                    counter(f"retry.{run.name}.exhausted")
                    log_event(
                        "retry.exhausted", stage=run.name, attempts=attempt, error=str(exc)
                    )
                    return

                delay = self.backoff_for(attempt)
                with run.lock:
                    run.attempts.append(
                        RetryAttempt(attempt, "failed", backoff_seconds=delay, error=str(exc))
                    )
                counter("retry_count")
                log_event("retry_scheduled", stage=run.name, attempt=attempt, delay=delay)
                self.sleep_fn(delay)
            else:
                self._finish(run, attempt, result=result)
                return

    @staticmethod
    def _finish(
        run: _Run, attempt: int, result: Any = None, error: BaseException | None = None
    ) -> None:
        with run.lock:
            if error is None:
                run.attempts.append(RetryAttempt(attempt, "succeeded"))
                run.state = "completed"
                run.result = result
            else:
                run.attempts.append(RetryAttempt(attempt, "failed", error=str(error)))
                run.state = "failed"
                run.error = error
        run.done.set()
