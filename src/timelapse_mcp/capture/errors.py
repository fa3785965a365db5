"""Exceptions raised by the capture pipeline and the sequence state machine.

Hierarchy:
    TimelapseError
    ├── CaptureError               pipeline failures, terminal for a sequence
    │   ├── ResourceUnavailableError
    │   ├── FocusFailedError
    │   └── WriteFailedError
    └── SequenceStateError         command misuse, absorbed unless strict
        ├── AlreadyRunningError
        └── NotRunningError
"""

from __future__ import annotations


class TimelapseError(Exception):
    """Base exception for timelapse operations."""

    pass


class CaptureError(TimelapseError):
    """Base exception for capture pipeline failures.

    Each subclass carries a stable ``kind`` string used in statistics,
    status payloads and logs.
    """

    kind: str = "capture_error"


class ResourceUnavailableError(CaptureError):
    """Raised when the camera cannot be acquired or fails to deliver a frame."""

    kind = "resource_unavailable"


class FocusFailedError(CaptureError):
    """Raised when an autofocus pass does not converge."""

    kind = "focus_failed"


class WriteFailedError(CaptureError):
    """Raised when a frame cannot be persisted."""

    kind = "write_failed"


class SequenceStateError(TimelapseError):
    """Base exception for commands that do not fit the current state."""

    pass


class AlreadyRunningError(SequenceStateError):
    """Raised by a strict start while a sequence is running."""

    pass


class NotRunningError(SequenceStateError):
    """Raised by a strict stop while no sequence is running."""

    pass
