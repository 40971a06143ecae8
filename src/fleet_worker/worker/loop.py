"""Processing loop driving task cycles with bounded-retry backpressure."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from fleet_worker.worker.errors import FailureAllowanceExhausted, NoTasksAvailable
from fleet_worker.worker.runner import TaskRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoopSummary:
    """Aggregate loop counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    idle_polls: int = 0


class ProcessingLoop:
    """Runs task cycles until failures or empty polls exhaust their allowance.

    Successful cycles reset both counters. An empty queue is not a failure:
    it waits ``poll_interval_seconds`` before the next claim and only ends the
    loop after ``max_idle_polls`` consecutive empty polls. A failed cycle
    waits ``failure_delay_seconds`` (the poll interval unless given) before
    the next attempt.
    """

    def __init__(
        self,
        *,
        runner: TaskRunner,
        failure_allowance: int = 5,
        max_idle_polls: int = 5,
        poll_interval_seconds: float = 30.0,
        failure_delay_seconds: float | None = None,
    ) -> None:
        if failure_allowance <= 0:
            raise ValueError("failure_allowance must be a positive integer.")
        if max_idle_polls <= 0:
            raise ValueError("max_idle_polls must be a positive integer.")
        self.runner = runner
        self.failure_allowance = failure_allowance
        self.max_idle_polls = max_idle_polls
        self.poll_interval_seconds = poll_interval_seconds
        self.failure_delay_seconds = (
            poll_interval_seconds if failure_delay_seconds is None else failure_delay_seconds
        )
        self.failures_left = failure_allowance
        self.summary = LoopSummary()
        self._stop_event = threading.Event()
        self._stop_signal_name: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self, *, signal_name: str | None = None) -> None:
        """Finish the current cycle, then leave the loop."""

        self._stop_signal_name = signal_name
        self._stop_event.set()

    def run(self) -> LoopSummary:
        """Iterate until stopped; raise when failures or empty polls run out."""

        consecutive_idle = 0
        self.failures_left = self.failure_allowance
        with self._signal_handlers():
            while not self.stop_requested:
                try:
                    report = self.runner.run_cycle()
                except Exception as error:  # noqa: BLE001
                    consecutive_idle = 0
                    self._record_failure(error)
                    self._sleep_with_stop(self.failure_delay_seconds)
                    continue

                if report is None:
                    self.summary.idle_polls += 1
                    consecutive_idle += 1
                    if consecutive_idle >= self.max_idle_polls:
                        raise NoTasksAvailable(
                            f"No tasks available after {consecutive_idle} consecutive polls",
                        )
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                consecutive_idle = 0
                self.failures_left = self.failure_allowance
                self.summary.processed += 1
                self.summary.succeeded += 1
                logger.info("Successfully processed task %s", report.task_id)

        if self._stop_signal_name is not None:
            logger.info("Processing loop stopped by %s", self._stop_signal_name)
        return self.summary

    def _record_failure(self, error: Exception) -> None:
        self.summary.processed += 1
        self.summary.failed += 1
        self.failures_left -= 1
        logger.exception(
            "Failed to process task (%d failures left): %s",
            self.failures_left,
            error,
        )
        if self.failures_left <= 0:
            raise FailureAllowanceExhausted(
                f"Giving up after {self.failure_allowance} consecutive failures: {error}",
                last_error=error,
            ) from error

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self._stop_event.wait(timeout=seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
