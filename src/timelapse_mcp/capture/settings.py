"""Sequence settings and the helpers that build them.

Settings are read once, when a sequence starts. Changing them afterwards
affects only the next sequence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

#: Interval used when no interval is configured.
DEFAULT_INTERVAL = timedelta(seconds=10)

#: Accepted image file extensions for written frames.
SUPPORTED_IMAGE_FORMATS = frozenset({"jpg", "png"})

_INTERVAL_UNITS: dict[str, int] = {
    "s": 1,
    "sec": 1,
    "m": 60,
    "min": 60,
    "h": 3600,
    "hr": 3600,
}

_INTERVAL_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_INTERVAL_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]+)\s*")


@dataclass(frozen=True, slots=True)
class SequenceSettings:
    """Capture configuration for one sequence.

    Attributes:
        interval: Time between successive tick firings. Must be positive.
        limit: Frames to capture before stopping automatically, 0 = unlimited.
        camera_id: Driver camera id. None picks the default camera
            (back-facing if known, otherwise the lowest id).
        autofocus: Run an autofocus pass before every capture.
        focus_attempts: Autofocus passes tried before giving up. 1 means no
            retry.
        keep_camera_warm: Keep the camera open between ticks instead of
            releasing it after each frame.
        image_format: File extension and encoding of written frames.
    """

    interval: timedelta = DEFAULT_INTERVAL
    limit: int = 0
    camera_id: int | None = None
    autofocus: bool = False
    focus_attempts: int = 1
    keep_camera_warm: bool = False
    image_format: str = "jpg"

    def __post_init__(self) -> None:
        """Validate field ranges.

        Raises:
            ValueError: On a non-positive interval, negative limit, negative
                camera id, focus_attempts < 1 or unsupported image format.
        """
        if self.interval <= timedelta(0):
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if self.camera_id is not None and self.camera_id < 0:
            raise ValueError(f"camera_id must be >= 0, got {self.camera_id}")
        if self.focus_attempts < 1:
            raise ValueError(
                f"focus_attempts must be >= 1, got {self.focus_attempts}"
            )
        if self.image_format not in SUPPORTED_IMAGE_FORMATS:
            raise ValueError(
                f"image_format must be one of {sorted(SUPPORTED_IMAGE_FORMATS)}, "
                f"got {self.image_format!r}"
            )

    def with_changes(self, **changes: Any) -> SequenceSettings:
        """Return a copy with the given fields replaced (and re-validated).

        None values are skipped so optional tool arguments can be passed
        straight through.

        Example:
            >>> s = SequenceSettings().with_changes(limit=3, autofocus=None)
            >>> s.limit, s.autofocus
            (3, False)
        """
        applied = {key: value for key, value in changes.items() if value is not None}
        return replace(self, **applied)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (interval in seconds)."""
        return {
            "interval_seconds": self.interval.total_seconds(),
            "limit": self.limit,
            "camera_id": self.camera_id,
            "autofocus": self.autofocus,
            "focus_attempts": self.focus_attempts,
            "keep_camera_warm": self.keep_camera_warm,
            "image_format": self.image_format,
        }


def parse_interval(value: str | float | int | timedelta) -> timedelta:
    """Parse an interval given as seconds or as numbers with units.

    Accepts a plain number (seconds) or one or more number/unit pairs
    with the suffixes s/sec, m/min, h/hr. Pairs are summed, so "1h30m"
    is ninety minutes. A number without a unit is only valid on its own.

    Args:
        value: '45', '45s', '5m', '1.5h', '1h30m', a number of seconds, or
            a timedelta (returned after validation).

    Returns:
        Positive timedelta.

    Raises:
        ValueError: If the text is malformed, a unit unknown, the value a
            bool, too large, or the interval not positive.

    Example:
        >>> parse_interval("5m")
        datetime.timedelta(seconds=300)
        >>> parse_interval("1h30m")
        datetime.timedelta(seconds=5400)
        >>> parse_interval(2.5)
        datetime.timedelta(seconds=2, microseconds=500000)
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid interval: {value!r}")
    try:
        if isinstance(value, timedelta):
            interval = value
        elif isinstance(value, int | float):
            interval = timedelta(seconds=value)
        else:
            interval = timedelta(seconds=_interval_seconds(value))
    except OverflowError as e:
        raise ValueError(f"Interval too large: {value!r}") from e

    if interval <= timedelta(0):
        raise ValueError(f"Interval must be positive, got {value!r}")
    return interval


def _interval_seconds(value: str) -> float:
    text = value.strip().lower()
    if _INTERVAL_NUMBER.fullmatch(text):
        return float(text)

    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _INTERVAL_TOKEN.match(text, pos)
        if match is None:
            raise ValueError(f"Invalid interval: {value!r}")
        amount, unit = match.groups()
        if unit not in _INTERVAL_UNITS:
            raise ValueError(f"Unknown interval unit {unit!r} in {value!r}")
        seconds += float(amount) * _INTERVAL_UNITS[unit]
        pos = match.end()
    if pos == 0:
        raise ValueError(f"Invalid interval: {value!r}")
    return seconds


def default_sequence_id(now: datetime | None = None) -> str:
    """Name a sequence after its start time.

    Colons are avoided so the name is a valid directory on every platform.

    Example:
        >>> default_sequence_id(datetime(2026, 10, 19, 7, 30, 5))
        '2026-10-19 07-30-05'
    """
    moment = now if now is not None else datetime.now()
    return moment.strftime("%Y-%m-%d %H-%M-%S")
