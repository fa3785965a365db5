"""Clock and one-shot scheduler.

Clock gives the orchestrator wall time (for start time and tick pacing)
and monotonic time (for durations). Scheduler arms one-shot timers at an
absolute wall time.

Both are injectable protocols so tests can drive time by hand:

    clock = ManualClock(start)
    scheduler = ManualScheduler(clock)
    orchestrator = CaptureOrchestrator(..., clock=clock, scheduler=scheduler)
    scheduler.advance(timedelta(seconds=10))  # fires due timers
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from timelapse_mcp.observability import get_logger

logger = get_logger(__name__)

_handle_ids = itertools.count(1)


@runtime_checkable
class Clock(Protocol):  # pragma: no cover
    """Protocol for time functions (injectable for testing)."""

    def now(self) -> datetime:
        """Return the current wall time as an aware UTC datetime."""
        ...

    def monotonic(self) -> float:
        """Return monotonic seconds, meaningful only as differences."""
        ...


class SystemClock:
    """Default clock using datetime and the time module."""

    def now(self) -> datetime:
        """Current UTC time."""
        return datetime.now(UTC)

    def monotonic(self) -> float:
        """Delegate to time.monotonic()."""
        return time.monotonic()


@dataclass(eq=False)
class TimerHandle:
    """Identifies one armed timer.

    Handles compare by identity. The orchestrator keeps the handle it
    armed last and ignores firings from any other handle, which covers
    the window where a timer fires while being cancelled.

    Attributes:
        trigger_at: Requested wall time of the firing.
        timer_id: Process-unique id, for logs.
    """

    trigger_at: datetime
    timer_id: int = field(default_factory=lambda: next(_handle_ids))
    cancelled: bool = False


@runtime_checkable
class Scheduler(Protocol):  # pragma: no cover
    """Arms and cancels one-shot timers."""

    def arm(
        self, trigger_at: datetime, callback: Callable[[TimerHandle], None]
    ) -> TimerHandle:
        """Schedule ``callback(handle)`` once, at or after ``trigger_at``.

        A trigger time in the past fires as soon as possible.

        Args:
            trigger_at: Absolute aware wall time.
            callback: Invoked from a scheduler-owned thread with the handle.

        Returns:
            Handle for cancel() and for matching the firing.
        """
        ...

    def cancel(self, handle: TimerHandle) -> None:
        """Cancel a timer. Idempotent; unknown or fired handles are ignored."""
        ...


class ThreadingScheduler:
    """Scheduler backed by threading.Timer.

    Delivery is best-effort: the timer thread sleeps for the remaining
    delay computed against the clock at arm time, so system sleep or a
    wall clock jump can make a firing late, never early by more than the
    platform timer resolution.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        """Create a scheduler.

        Args:
            clock: Clock used to turn trigger times into delays
                (default SystemClock).
        """
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._timers: dict[int, threading.Timer] = {}

    def arm(
        self, trigger_at: datetime, callback: Callable[[TimerHandle], None]
    ) -> TimerHandle:
        """Start a daemon timer thread for the remaining delay."""
        handle = TimerHandle(trigger_at=trigger_at)
        delay = max(0.0, (trigger_at - self._clock.now()).total_seconds())

        def fire() -> None:
            with self._lock:
                self._timers.pop(handle.timer_id, None)
                if handle.cancelled:
                    return
            callback(handle)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        timer.name = f"timelapse-timer-{handle.timer_id}"
        with self._lock:
            self._timers[handle.timer_id] = timer
        timer.start()

        logger.debug("Timer armed", timer_id=handle.timer_id, delay_s=round(delay, 3))
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        """Cancel the timer thread if it has not fired yet."""
        with self._lock:
            handle.cancelled = True
            timer = self._timers.pop(handle.timer_id, None)
        if timer is not None:
            timer.cancel()
            logger.debug("Timer cancelled", timer_id=handle.timer_id)

    def cancel_all(self) -> None:
        """Cancel every pending timer (process shutdown)."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    @property
    def pending_count(self) -> int:
        """Number of armed timers that have not fired."""
        with self._lock:
            return len(self._timers)
