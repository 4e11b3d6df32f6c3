"""Readiness waiting with progress feedback.

The Waiter polls a probe until it reports ready or a timeout elapses.
Progress is reported by a separate thread on a short fixed interval,
through an injectable ProgressSink, so the polling logic can be tested
without a terminal.
"""

import threading
import time
from collections.abc import Callable
from typing import Protocol

from rich.status import Status

from k0rdentd.console import Reporter
from k0rdentd.exceptions import WaitCancelledError, WaitTimeoutError

Probe = Callable[[], bool]

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_REPORT_INTERVAL = 0.1


class ProgressSink(Protocol):
    """Receives progress of a single wait."""

    def start(self, description: str) -> None: ...

    def update(self, elapsed: float) -> None: ...

    def stop(self, *, succeeded: bool) -> None: ...


class NullProgress:
    """Progress sink that discards everything."""

    def start(self, description: str) -> None:
        pass

    def update(self, elapsed: float) -> None:
        pass

    def stop(self, *, succeeded: bool) -> None:
        pass


class SpinnerProgress:
    """Progress sink rendering a Rich spinner with the elapsed time."""

    def __init__(self, reporter: Reporter) -> None:
        self._reporter = reporter
        self._description = ""
        self._status: Status | None = None

    def start(self, description: str) -> None:
        self._description = description
        self._status = self._reporter.console.status(f"[info]Waiting for {description}[/info]", spinner="dots")
        self._status.start()

    def update(self, elapsed: float) -> None:
        if self._status is not None:
            self._status.update(f"[info]Waiting for {self._description}[/info] [muted]({elapsed:.0f}s)[/muted]")

    def stop(self, *, succeeded: bool) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


class Waiter:
    """Polls probes until they hold or their time budget runs out.

    Attributes:
        poll_interval: Seconds between two probe calls.
        report_interval: Seconds between two progress updates.

    """

    def __init__(
        self,
        reporter: Reporter,
        *,
        progress: Callable[[], ProgressSink] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        report_interval: float = DEFAULT_REPORT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the Waiter.

        Args:
            reporter: Output channel for debug lines.
            progress: Factory for a fresh progress sink per wait; a spinner by default.
            poll_interval: Seconds between two probe calls.
            report_interval: Seconds between two progress updates.
            clock: Monotonic clock, replaceable in tests.

        """
        self._reporter = reporter
        self._progress = progress if progress is not None else (lambda: SpinnerProgress(reporter))
        self.poll_interval = poll_interval
        self.report_interval = report_interval
        self._clock = clock

    def _report(self, sink: ProgressSink, started: float, stop: threading.Event) -> None:
        while not stop.wait(self.report_interval):
            sink.update(self._clock() - started)

    def _poll(self, probe: Probe, description: str) -> bool:
        try:
            return bool(probe())
        except Exception as e:
            self._reporter.debug(f"{description}: probe failed: {e}")
            return False

    def wait_until(
        self,
        description: str,
        probe: Probe,
        timeout: float,
        *,
        cancel: threading.Event | None = None,
    ) -> float:
        """Block until ``probe`` returns True.

        A probe that raises is treated as not ready. The probe is not
        called again once it has reported ready.

        Args:
            description: What is being awaited, used in progress and errors.
            probe: Callable returning True when the condition holds.
            timeout: Time budget in seconds.
            cancel: Optional event checked between polls.

        Returns:
            Seconds spent waiting.

        Raises:
            WaitTimeoutError: If the budget elapses before the probe holds.
            WaitCancelledError: If ``cancel`` is set before the probe holds.

        """
        started = self._clock()
        deadline = started + timeout
        sink = self._progress()
        stop = threading.Event()
        sink.start(description)
        reporter_thread = threading.Thread(
            target=self._report, args=(sink, started, stop), name="k0rdentd-progress", daemon=True
        )
        reporter_thread.start()

        succeeded = False
        try:
            while True:
                if self._poll(probe, description):
                    succeeded = True
                    return self._clock() - started

                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise WaitTimeoutError(description, timeout)

                delay = min(self.poll_interval, remaining)
                if cancel is None:
                    time.sleep(delay)
                elif cancel.wait(delay):
                    raise WaitCancelledError(f"cancelled while waiting for {description}")
        finally:
            stop.set()
            reporter_thread.join()
            sink.stop(succeeded=succeeded)
