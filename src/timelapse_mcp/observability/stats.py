"""Capture pipeline statistics.

Tracks every pipeline attempt (acquire, focus, capture, write) made by the
orchestrator:
- Success and failure counts, failures grouped by error kind
- Duration statistics (min, max, avg, p95) over a rolling window
- Time of the most recent attempt

Thread-safe: the pipeline worker records while MCP tools read summaries.

Example:
    stats = CaptureStats()
    stats.record_capture(duration_ms=180.0, success=True)
    stats.record_capture(duration_ms=40.0, success=False,
                         error_kind="focus_failed")

    summary = stats.get_summary()
    print(f"Success rate: {summary.success_rate:.1%}")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

#: Attempts retained for duration percentiles. At one frame every few
#: seconds this covers the last hour or so of a sequence.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class StatsSummary:
    """Point-in-time summary of capture statistics.

    Attributes:
        total_captures: All attempts since creation or reset.
        successful_captures: Attempts that produced a written frame.
        failed_captures: Attempts that ended in a pipeline error.
        success_rate: successful / total, 0.0 when nothing was attempted.
        min_duration_ms: Fastest successful attempt in the window.
        max_duration_ms: Slowest successful attempt in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration in the window.
        error_counts: Failure count per error kind.
        last_capture_time: UTC time of the latest attempt, if any.
        uptime_seconds: Seconds since creation or reset.
    """

    total_captures: int
    successful_captures: int
    failed_captures: int
    success_rate: float
    min_duration_ms: float
    max_duration_ms: float
    avg_duration_ms: float
    p95_duration_ms: float
    error_counts: dict[str, int] = field(default_factory=dict)
    last_capture_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "total_captures": self.total_captures,
            "successful_captures": self.successful_captures,
            "failed_captures": self.failed_captures,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "error_counts": self.error_counts.copy(),
            "last_capture_time": (
                self.last_capture_time.isoformat() if self.last_capture_time else None
            ),
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass
class CaptureRecord:
    """Single pipeline attempt."""

    timestamp: float  # monotonic time
    duration_ms: float
    success: bool
    error_kind: str | None = None


class CaptureStats:
    """Rolling statistics for capture pipeline attempts.

    Cumulative counters cover the whole lifetime; duration statistics use
    only the most recent ``window_size`` attempts so memory stays bounded
    during multi-day sequences.
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty collector.

        Args:
            window_size: Attempts kept for duration statistics.

        Raises:
            ValueError: If window_size is not positive.
        """
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._window_size = window_size
        self._records: deque[CaptureRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total_captures = 0
        self._successful_captures = 0
        self._start_time = time.monotonic()
        self._last_capture_time: datetime | None = None
        self._lock = threading.Lock()

    def record_capture(
        self,
        duration_ms: float,
        success: bool,
        error_kind: str | None = None,
    ) -> None:
        """Record the outcome of one pipeline attempt.

        Args:
            duration_ms: Wall time spent in the pipeline.
            success: True if the frame was written.
            error_kind: CaptureError.kind for failures (e.g. 'focus_failed').
        """
        record = CaptureRecord(
            timestamp=time.monotonic(),
            duration_ms=duration_ms,
            success=success,
            error_kind=error_kind,
        )

        with self._lock:
            self._records.append(record)
            self._total_captures += 1
            if success:
                self._successful_captures += 1
            elif error_kind:
                self._error_counts[error_kind] = (
                    self._error_counts.get(error_kind, 0) + 1
                )
            self._last_capture_time = _utc_now()

    def get_summary(self) -> StatsSummary:
        """Compute a summary snapshot.

        Data is copied under the lock; sorting for the percentile happens
        outside it.

        Returns:
            StatsSummary. Duration fields are 0.0 when no successful
            attempt is in the window.

        Example:
            >>> stats = CaptureStats()
            >>> stats.record_capture(duration_ms=100, success=True)
            >>> stats.record_capture(duration_ms=200, success=True)
            >>> stats.get_summary().avg_duration_ms
            150.0
        """
        with self._lock:
            total = self._total_captures
            successful = self._successful_captures
            error_counts = self._error_counts.copy()
            last_capture_time = self._last_capture_time
            start_time = self._start_time
            durations = [
                r.duration_ms for r in self._records if r.success and r.duration_ms > 0
            ]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return StatsSummary(
            total_captures=total,
            successful_captures=successful,
            failed_captures=total - successful,
            success_rate=successful / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            error_counts=error_counts,
            last_capture_time=last_capture_time,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all records and counters and restart the uptime clock."""
        with self._lock:
            self._records.clear()
            self._error_counts.clear()
            self._total_captures = 0
            self._successful_captures = 0
            self._start_time = time.monotonic()
            self._last_capture_time = None

    def to_dict(self) -> dict[str, Any]:
        """Summary as a JSON-serializable dictionary."""
        return self.get_summary().to_dict()


def _percentile(sorted_data: list[float], p: float) -> float:
    """Linear-interpolated percentile of pre-sorted data.

    Args:
        sorted_data: Values in ascending order. Empty input returns 0.0.
        p: Percentile in [0, 100].

    Example:
        >>> _percentile([10.0, 20.0, 30.0, 40.0], 50)
        25.0
    """
    if not sorted_data:
        return 0.0
    if len(sorted_data) == 1:
        return sorted_data[0]

    k = (len(sorted_data) - 1) * (p / 100)
    lower = int(k)
    upper = min(lower + 1, len(sorted_data) - 1)
    fraction = k - lower
    return sorted_data[lower] + (sorted_data[upper] - sorted_data[lower]) * fraction
