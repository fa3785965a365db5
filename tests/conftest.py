"""Pytest configuration and fixtures for timelapse-mcp tests.

Provides deterministic time, recording collaborators and a ready-made
orchestrator wired to them. Every test starts with a fresh driver factory
and no process-wide runtime.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from tests.helpers import GatedCameraDriver, ManualClock, ManualScheduler
from timelapse_mcp import runtime
from timelapse_mcp.capture import (
    CaptureOrchestrator,
    RecordingErrorNotifier,
    RecordingStatusSink,
    SequenceSettings,
    StaticSettingsProvider,
)
from timelapse_mcp.data import FrameWriter
from timelapse_mcp.devices import CameraResourceHandle
from timelapse_mcp.drivers import config

# =============================================================================
# Global state
# =============================================================================


@pytest.fixture(autouse=True)
def reset_global_state() -> Iterator[None]:
    """Reset the driver factory singleton and the runtime around each test.

    Business context:
    The MCP server and CLI configure module-level singletons. Without a
    reset, a test that switches to hardware mode or leaves a runtime
    running would leak into every later test.
    """
    config._factory = None
    yield
    runtime.shutdown_runtime()
    config._factory = None


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """Clock frozen at helpers.EPOCH until advanced."""
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> ManualScheduler:
    """Scheduler firing timers only from scheduler.advance()."""
    return ManualScheduler(clock)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def driver() -> GatedCameraDriver:
    """Camera driver with two cameras whose captures succeed immediately."""
    return GatedCameraDriver()


@pytest.fixture
def writer(tmp_path: Path) -> FrameWriter:
    """Frame writer rooted in a per-test temporary directory."""
    return FrameWriter(tmp_path / "sequences")


@pytest.fixture
def status_sink() -> RecordingStatusSink:
    """Sink keeping every published snapshot."""
    return RecordingStatusSink()


@pytest.fixture
def notifier() -> RecordingErrorNotifier:
    """Notifier keeping every failure message."""
    return RecordingErrorNotifier()


@pytest.fixture
def settings() -> StaticSettingsProvider:
    """Settings with a 10 second interval and no limit."""
    return StaticSettingsProvider(SequenceSettings())


@pytest.fixture
def camera(driver: GatedCameraDriver) -> CameraResourceHandle:
    """Camera handle over the gated driver."""
    return CameraResourceHandle(driver)


@pytest.fixture
def orchestrator(
    camera: CameraResourceHandle,
    writer: FrameWriter,
    settings: StaticSettingsProvider,
    status_sink: RecordingStatusSink,
    notifier: RecordingErrorNotifier,
    clock: ManualClock,
    scheduler: ManualScheduler,
) -> Iterator[CaptureOrchestrator]:
    """Orchestrator driven by the manual clock and scheduler.

    Closed after the test with a short timeout so a stuck capture fails
    the test instead of hanging the run.

    Example:
        >>> def test_tick(orchestrator, scheduler):
        ...     orchestrator.start("seq")
        ...     scheduler.advance(timedelta(seconds=10))
        ...     assert orchestrator.wait_until_settled(5)
    """
    orch = CaptureOrchestrator(
        camera,
        writer,
        settings=settings,
        status_sink=status_sink,
        notifier=notifier,
        clock=clock,
        scheduler=scheduler,
    )
    yield orch
    orch.close(timeout=5.0)
