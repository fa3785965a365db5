"""Test helpers for timelapse-mcp.

Provides deterministic time sources, a camera driver whose captures can be
held open, and protocol compliance checks.

Example:
    from tests.helpers import GatedCameraDriver, ManualClock, ManualScheduler

    clock = ManualClock()
    scheduler = ManualScheduler(clock)
    scheduler.advance(timedelta(seconds=10))  # fires due timers
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any, Protocol

from timelapse_mcp.devices.clock import TimerHandle

#: Start time of ManualClock unless given.
EPOCH = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

#: Upper bound for any wait in tests, so a bug fails instead of hanging.
WAIT_TIMEOUT = 5.0


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Raises:
        AssertionError: Listing the missing members.
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    protocol_methods = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_") or attr in ("__enter__", "__exit__")
    }
    missing = sorted(m for m in protocol_methods if not hasattr(instance, m))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self._lock = threading.Lock()
        self._now = start
        self._monotonic = 1000.0

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def monotonic(self) -> float:
        with self._lock:
            return self._monotonic

    def advance(self, delta: timedelta) -> None:
        with self._lock:
            self._now += delta
            self._monotonic += delta.total_seconds()


class ManualScheduler:
    """Scheduler whose timers fire only from advance() or fire().

    Callbacks run on the calling (test) thread.
    """

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._lock = threading.Lock()
        self._timers: list[tuple[TimerHandle, Callable[[TimerHandle], None]]] = []
        self.armed: list[TimerHandle] = []

    def arm(
        self, trigger_at: datetime, callback: Callable[[TimerHandle], None]
    ) -> TimerHandle:
        handle = TimerHandle(trigger_at=trigger_at)
        with self._lock:
            self._timers.append((handle, callback))
            self.armed.append(handle)
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            handle.cancelled = True

    @property
    def pending(self) -> list[TimerHandle]:
        """Armed timers that have neither fired nor been cancelled."""
        with self._lock:
            return [h for h, _ in self._timers if not h.cancelled]

    def advance(self, delta: timedelta) -> int:
        """Move the clock and fire every due timer, oldest trigger first.

        Returns:
            Number of timers fired.
        """
        self.clock.advance(delta)
        now = self.clock.now()
        with self._lock:
            due = sorted(
                (t for t in self._timers if not t[0].cancelled and t[0].trigger_at <= now),
                key=lambda t: t[0].trigger_at,
            )
            for timer in due:
                self._timers.remove(timer)
        for handle, callback in due:
            callback(handle)
        return len(due)

    def fire(self, handle: TimerHandle) -> None:
        """Deliver a firing for ``handle`` even if cancelled (race simulation)."""
        with self._lock:
            matches = [t for t in self._timers if t[0] is handle]
            for timer in matches:
                self._timers.remove(timer)
        callback = matches[0][1] if matches else None
        if callback is None:
            raise KeyError(f"Timer {handle.timer_id} is not armed")
        callback(handle)


class GatedCameraDriver:
    """Camera driver with controllable captures.

    Attributes:
        gate: Captures block until set (set by default, clear to hold).
        capture_started: Set when a capture begins.
        open_count: Number of successful open() calls.
        close_count: Number of instance closes.
        max_concurrent_captures: Highest number of simultaneous captures.
        captures: Number of capture() calls made.
    """

    def __init__(
        self,
        failing_captures: set[int] | None = None,
        focus_results: list[bool] | None = None,
        unavailable: bool = False,
        gated: bool = False,
    ) -> None:
        self.failing_captures = failing_captures or set()
        self.focus_results = list(focus_results or [])
        self.unavailable = unavailable
        self.gate = threading.Event()
        if not gated:
            self.gate.set()
        self.capture_started = threading.Event()
        self.open_count = 0
        self.close_count = 0
        self.focus_calls = 0
        self.captures = 0
        self.max_concurrent_captures = 0
        self._active = 0
        self._lock = threading.Lock()
        self._numbers = itertools.count(1)

    def get_connected_cameras(self) -> dict[int, dict[str, Any]]:
        return {
            0: {"name": "Front", "width": 4, "height": 4, "facing": "front"},
            1: {"name": "Back", "width": 4, "height": 4, "facing": "back"},
        }

    def open(self, camera_id: int) -> GatedCameraInstance:
        if self.unavailable:
            raise RuntimeError("Camera busy")
        if camera_id not in self.get_connected_cameras():
            raise ValueError(f"Camera {camera_id} not found")
        with self._lock:
            self.open_count += 1
        return GatedCameraInstance(self, camera_id)

    @property
    def open_instances(self) -> int:
        with self._lock:
            return self.open_count - self.close_count

    def _capture(self, camera_id: int) -> bytes:
        number = next(self._numbers)
        with self._lock:
            self.captures += 1
            self._active += 1
            self.max_concurrent_captures = max(self.max_concurrent_captures, self._active)
        self.capture_started.set()
        try:
            if not self.gate.wait(WAIT_TIMEOUT):
                raise RuntimeError("Gate never opened")
            if number in self.failing_captures:
                raise RuntimeError(f"Sensor failure on capture {number}")
            return f"frame-{number}-cam{camera_id}".encode()
        finally:
            with self._lock:
                self._active -= 1

    def _autofocus(self) -> bool:
        with self._lock:
            self.focus_calls += 1
            if self.focus_results:
                return self.focus_results.pop(0)
        return True

    def _closed(self) -> None:
        with self._lock:
            self.close_count += 1


class GatedCameraInstance:
    """Instance returned by GatedCameraDriver.open()."""

    def __init__(self, driver: GatedCameraDriver, camera_id: int) -> None:
        self._driver = driver
        self.camera_id = camera_id
        self.closed = False

    def __enter__(self) -> GatedCameraInstance:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def get_info(self) -> dict[str, Any]:
        return {"camera_id": self.camera_id, **self._driver.get_connected_cameras()[self.camera_id]}

    def autofocus(self) -> bool:
        return self._driver._autofocus()

    def capture(self, image_format: str = "jpg") -> bytes:
        if self.closed:
            raise RuntimeError("Camera closed")
        return self._driver._capture(self.camera_id)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._driver._closed()
