"""Collaborators the orchestrator reports to and reads from.

Protocols:
    StatusSink: Receives a StatusSnapshot after every state change
    SettingsProvider: Supplies SequenceSettings when a sequence starts
    ErrorNotifier: Receives a human-readable description of failures

Implementations here are the defaults used by the CLI and MCP server;
user interfaces provide their own.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Protocol, runtime_checkable

from timelapse_mcp.capture.settings import SequenceSettings
from timelapse_mcp.capture.state import StatusSnapshot
from timelapse_mcp.observability import get_logger

logger = get_logger(__name__)


@runtime_checkable
class StatusSink(Protocol):  # pragma: no cover
    """Receives status snapshots.

    Called on the orchestrator dispatcher thread. Implementations must
    return quickly and must not call blocking orchestrator commands.
    """

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Handle a new snapshot.

        Args:
            snapshot: Frozen status after a transition or on demand.
        """
        ...


@runtime_checkable
class SettingsProvider(Protocol):  # pragma: no cover
    """Supplies capture settings at sequence start."""

    def load(self) -> SequenceSettings:
        """Return the settings for a sequence about to start.

        Raises:
            ValueError: If the stored configuration is invalid. The
                sequence does not start.
        """
        ...


@runtime_checkable
class ErrorNotifier(Protocol):  # pragma: no cover
    """Presents capture failures to the user."""

    def notify(self, message: str) -> None:
        """Deliver a human-readable failure description."""
        ...


class LoggingStatusSink:
    """Status sink that writes every snapshot to the log."""

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Log the snapshot at INFO."""
        logger.info("Status", **snapshot.to_dict())


class RecordingStatusSink:
    """Status sink keeping snapshots, newest last.

    Used by the MCP server to report the latest status, and by tests.
    """

    def __init__(self, maxlen: int | None = None) -> None:
        """Create an empty history.

        Args:
            maxlen: Keep only the newest ``maxlen`` snapshots (None = all).
        """
        self._lock = threading.Lock()
        self._history: deque[StatusSnapshot] = deque(maxlen=maxlen)

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Append the snapshot to the history."""
        with self._lock:
            self._history.append(snapshot)

    @property
    def history(self) -> list[StatusSnapshot]:
        """Copy of all snapshots received."""
        with self._lock:
            return list(self._history)

    @property
    def latest(self) -> StatusSnapshot | None:
        """Most recent snapshot, None before the first one."""
        with self._lock:
            return self._history[-1] if self._history else None


class StaticSettingsProvider:
    """Settings held in memory, replaceable between sequences."""

    def __init__(self, settings: SequenceSettings | None = None) -> None:
        """Store initial settings (defaults when None)."""
        self._lock = threading.Lock()
        self._settings = settings or SequenceSettings()

    def load(self) -> SequenceSettings:
        """Return the current settings."""
        with self._lock:
            return self._settings

    def set(self, settings: SequenceSettings) -> None:
        """Replace the settings."""
        with self._lock:
            self._settings = settings

    def update(self, **changes: object) -> SequenceSettings:
        """Replace selected fields; None values are ignored.

        Returns:
            The new settings.

        Raises:
            ValueError: If a new value fails validation. Stored settings
                are left unchanged.
        """
        with self._lock:
            self._settings = self._settings.with_changes(**changes)
            return self._settings


class LoggingErrorNotifier:
    """Notifier that logs failures at ERROR."""

    def notify(self, message: str) -> None:
        """Log the failure description."""
        logger.error("Capture failed", reason=message)


class RecordingErrorNotifier:
    """Notifier keeping every message; the MCP status tool reports them."""

    def __init__(self) -> None:
        """Create an empty message list."""
        self._lock = threading.Lock()
        self._messages: list[str] = []

    def notify(self, message: str) -> None:
        """Record the message."""
        with self._lock:
            self._messages.append(message)
        logger.warning("Capture failure recorded", reason=message)

    @property
    def messages(self) -> list[str]:
        """Copy of all messages received."""
        with self._lock:
            return list(self._messages)
