"""Compile scheduler — single-flight, throttled compiles for one project.

State machine: ``IDLE -> RUNNING -> IDLE``. At most one compile runs at a
time. A request that arrives while one is running either shares that
compile's result (COALESCE), fails with AlreadyCompilingError (REJECT), or
waits for it and then runs once more (QUEUE); all QUEUE requests arriving
during one compile share the single follow-up run. A compile never starts
less than ``min_interval_ms`` after the previous one started.

The completion hook (normally the version manager's commit) runs before any
caller is released, so a finished build and its history entry become
visible together.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from easypaper.build.models import BuildResult
from easypaper.errors import (
    AlreadyCompilingError,
    BuildCancelledError,
    CompileThrottledError,
)

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class CompileTrigger(str, Enum):
    INTERACTIVE = "interactive"  # the Compile button
    AUTOMATIC = "automatic"  # preview-driven recompiles


class BusyPolicy(str, Enum):
    COALESCE = "coalesce"
    REJECT = "reject"
    QUEUE = "queue"


class ThrottlePolicy(str, Enum):
    DELAY = "delay"
    DROP = "drop"


DEFAULT_BUSY: Dict[CompileTrigger, BusyPolicy] = {
    CompileTrigger.INTERACTIVE: BusyPolicy.REJECT,
    CompileTrigger.AUTOMATIC: BusyPolicy.COALESCE,
}


class _Flight:
    """One compile run and everybody waiting on its result."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.cancel = threading.Event()
        self.result: Optional[BuildResult] = None
        self.error: Optional[BaseException] = None

    def wait(self) -> BuildResult:
        self.done.wait()
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise RuntimeError("compile finished without a result")
        return self.result


class CompileScheduler:
    """Admission control in front of one project's build engine."""

    def __init__(
        self,
        run: Callable[[threading.Event], BuildResult],
        *,
        min_interval_ms: int = 600,
        on_complete: Optional[Callable[[BuildResult], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._run = run
        self._min_interval_s = max(0, min_interval_ms) / 1000.0
        self._on_complete = on_complete
        self._clock = clock
        self._cond = threading.Condition()
        self._flight: Optional[_Flight] = None
        self._pending: Optional[_Flight] = None
        self._last_start: Optional[float] = None
        self._runs = 0
        self._closed = False

    # ---- introspection ----

    @property
    def state(self) -> SchedulerState:
        with self._cond:
            return SchedulerState.RUNNING if self._flight is not None else SchedulerState.IDLE

    @property
    def runs(self) -> int:
        """Number of compiles actually started."""
        with self._cond:
            return self._runs

    @property
    def min_interval_ms(self) -> int:
        return int(self._min_interval_s * 1000)

    @min_interval_ms.setter
    def min_interval_ms(self, value: int) -> None:
        with self._cond:
            self._min_interval_s = max(0, value) / 1000.0

    # ---- requests ----

    def request(
        self,
        trigger: CompileTrigger = CompileTrigger.INTERACTIVE,
        *,
        busy: Optional[BusyPolicy] = None,
        throttle: ThrottlePolicy = ThrottlePolicy.DELAY,
    ) -> BuildResult:
        """Ask for a compile and block until a result is available."""
        busy = busy or DEFAULT_BUSY[trigger]

        with self._cond:
            if self._closed:
                raise BuildCancelledError("Project is closed")

            if self._flight is None:
                flight = _Flight()
                self._flight = flight
            elif busy is BusyPolicy.COALESCE:
                return self._join(self._flight)
            elif busy is BusyPolicy.REJECT:
                raise AlreadyCompilingError("A compile is already running for this project")
            elif self._pending is not None:
                return self._join(self._pending)
            else:
                flight = _Flight()
                self._pending = flight
                while self._flight is not None and not self._closed:
                    self._cond.wait()
                self._pending = None
                if self._closed or flight.cancel.is_set():
                    error = BuildCancelledError("Compilation cancelled before start")
                    self._resolve(flight, error=error)
                    raise error
                self._flight = flight

            wait_s = self._throttle_wait()
            if wait_s > 0 and throttle is ThrottlePolicy.DROP:
                error = CompileThrottledError(int(wait_s * 1000) + 1)
                self._finish(flight, error=error)
                raise error

        return self._execute(flight, wait_s)

    def _join(self, flight: _Flight) -> BuildResult:
        """Wait (lock released) for another caller's flight."""
        self._cond.release()
        try:
            return flight.wait()
        finally:
            self._cond.acquire()

    def _throttle_wait(self) -> float:
        if self._last_start is None:
            return 0.0
        return self._last_start + self._min_interval_s - self._clock()

    def _execute(self, flight: _Flight, wait_s: float) -> BuildResult:
        if wait_s > 0:
            logger.debug("Compile delayed %.0fms by throttle", wait_s * 1000)
            if flight.cancel.wait(wait_s):
                error = BuildCancelledError("Compilation cancelled before start")
                self._finish(flight, error=error)
                raise error

        with self._cond:
            self._last_start = self._clock()
            self._runs += 1

        try:
            result = self._run(flight.cancel)
            if flight.cancel.is_set():
                raise BuildCancelledError("Compilation cancelled")
        except BaseException as exc:
            if isinstance(exc, BuildCancelledError):
                logger.info("Compile cancelled; result discarded")
            self._finish(flight, error=exc)
            raise

        if self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception:
                logger.warning("Recording build outcome failed", exc_info=True)
        self._finish(flight, result=result)
        return result

    def _resolve(
        self,
        flight: _Flight,
        *,
        result: Optional[BuildResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        flight.result = result
        flight.error = error
        flight.done.set()
        self._cond.notify_all()

    def _finish(self, flight: _Flight, **outcome) -> None:
        with self._cond:
            if self._flight is flight:
                self._flight = None
            self._resolve(flight, **outcome)

    # ---- cancellation ----

    def cancel(self) -> bool:
        """Cancel the running and queued compiles. Returns True if any existed."""
        with self._cond:
            cancelled = False
            for flight in (self._flight, self._pending):
                if flight is not None:
                    flight.cancel.set()
                    cancelled = True
            self._cond.notify_all()
            return cancelled

    def close(self) -> None:
        """Cancel everything and refuse further requests."""
        with self._cond:
            self._closed = True
        self.cancel()
