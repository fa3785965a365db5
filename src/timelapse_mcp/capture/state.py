"""Sequence state, status snapshots and orchestrator events.

SequenceState is mutated only by CaptureOrchestrator event handlers on
the dispatcher thread. Timer and pipeline threads never touch it; they
post events instead.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from timelapse_mcp.capture.errors import CaptureError
    from timelapse_mcp.devices.clock import TimerHandle


class Phase(Enum):
    """Lifecycle phase of the orchestrator."""

    IDLE = "idle"  # Initial and terminal
    ACTIVE = "active"  # Sequence running, waiting for the next tick
    CAPTURE_IN_FLIGHT = "capture_in_flight"  # Pipeline outstanding


@dataclass
class SequenceState:
    """Mutable state of the current (or last) sequence.

    Attributes:
        phase: Current lifecycle phase.
        start_time: Set on start, cleared on shutdown.
        next_index: Index of the next frame; equals frames captured so far.
        limit: Frames before automatic stop, 0 = unlimited.
        interval: Time between tick firings.
        sequence_id: Output container name for this run.
        stop_requested: Stop latched while a capture is in flight.
        tick_time: When the current tick fired, base for the next one.
        timer: Handle of the armed scheduler timer, if any.
    """

    phase: Phase = Phase.IDLE
    start_time: datetime | None = None
    next_index: int = 0
    limit: int = 0
    interval: timedelta = timedelta(seconds=1)
    sequence_id: str | None = None
    stop_requested: bool = False
    tick_time: datetime | None = None
    timer: TimerHandle | None = None

    @property
    def running(self) -> bool:
        """True between start and final shutdown."""
        return self.phase is not Phase.IDLE

    @property
    def capture_in_flight(self) -> bool:
        """True while a pipeline invocation is outstanding."""
        return self.phase is Phase.CAPTURE_IN_FLIGHT

    @property
    def images_remaining(self) -> int:
        """Frames left before the limit, 0 when unlimited."""
        if self.limit == 0:
            return 0
        return self.limit - self.next_index

    def snapshot(self) -> StatusSnapshot:
        """Freeze the externally visible fields."""
        return StatusSnapshot(
            running=self.running,
            start_time=self.start_time,
            images_captured=self.next_index,
            images_remaining=self.images_remaining,
            sequence_id=self.sequence_id,
        )


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Status published to the status sink.

    Attributes:
        running: Whether a sequence is active.
        start_time: Start of the active sequence, None when idle.
        images_captured: Frames captured in the current or last sequence.
        images_remaining: Frames left before the limit, 0 when unlimited.
        sequence_id: Name of the current or last sequence.
    """

    running: bool
    start_time: datetime | None
    images_captured: int
    images_remaining: int
    sequence_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation with ISO-8601 start time."""
        return {
            "running": self.running,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "images_captured": self.images_captured,
            "images_remaining": self.images_remaining,
            "sequence_id": self.sequence_id,
        }


# --- Events ---


@dataclass
class Event:
    """Base class for events processed by the dispatcher."""


@dataclass
class StartCommand(Event):
    """Start a new sequence."""

    sequence_id: str
    strict: bool = False
    reply: Future[bool] = field(default_factory=Future)


@dataclass
class StopCommand(Event):
    """Stop the running sequence (deferred if a capture is in flight)."""

    strict: bool = False
    reply: Future[None] = field(default_factory=Future)


@dataclass
class StatusQuery(Event):
    """Publish and return the current snapshot."""

    reply: Future[StatusSnapshot] = field(default_factory=Future)


@dataclass
class TimerFired(Event):
    """Scheduler callback for the timer identified by ``handle``."""

    handle: TimerHandle


@dataclass
class CaptureSucceeded(Event):
    """Pipeline finished and the frame was written."""

    index: int
    duration_ms: float


@dataclass
class CaptureFailed(Event):
    """Pipeline ended with a capture error."""

    index: int
    error: CaptureError
    duration_ms: float


@dataclass
class Shutdown(Event):
    """Stop the dispatcher loop after releasing resources."""

    reply: Future[None] = field(default_factory=Future)
