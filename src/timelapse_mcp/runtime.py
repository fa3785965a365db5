"""Process-wide time-lapse runtime (service locator for the tool layer).

Bundles the camera driver, the orchestrator and the collaborators the MCP
tools report from. The server creates it once with init_runtime() and
tears it down with shutdown_runtime().

Example:
    from timelapse_mcp.runtime import get_runtime, init_runtime

    init_runtime()  # driver and data dir from drivers.config
    runtime = get_runtime()
    runtime.start(interval="30s", limit=10)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from timelapse_mcp.capture import (
    CaptureOrchestrator,
    Phase,
    RecordingErrorNotifier,
    RecordingStatusSink,
    SequenceSettings,
    StaticSettingsProvider,
    StatusSnapshot,
    parse_interval,
)
from timelapse_mcp.data import FrameWriter
from timelapse_mcp.devices import CameraResourceHandle, Clock, Scheduler
from timelapse_mcp.drivers.cameras import CameraDriver
from timelapse_mcp.drivers.config import get_factory
from timelapse_mcp.observability import get_logger

logger = get_logger(__name__)

# Snapshots kept for status reporting
_STATUS_HISTORY = 100


@dataclass
class TimelapseRuntime:
    """Orchestrator plus the collaborators the tool layer reads back.

    Attributes:
        driver: Camera driver used for discovery and capture.
        writer: Frame writer (root = data directory).
        defaults: Settings a start falls back to for omitted values.
        settings: Provider the orchestrator loads at each start.
        status_sink: Recent snapshots.
        notifier: Failure messages.
        orchestrator: The state machine.
    """

    driver: CameraDriver
    writer: FrameWriter
    defaults: SequenceSettings
    settings: StaticSettingsProvider
    status_sink: RecordingStatusSink
    notifier: RecordingErrorNotifier
    orchestrator: CaptureOrchestrator

    def start(
        self,
        sequence_id: str | None = None,
        interval: str | float | timedelta | None = None,
        limit: int | None = None,
        camera_id: int | None = None,
        autofocus: bool | None = None,
        keep_camera_warm: bool | None = None,
    ) -> bool:
        """Start a sequence with per-run overrides of the defaults.

        Overrides are applied only when no sequence is running, so a
        rejected start leaves the settings of the next run untouched.

        Returns:
            True if started, False if a sequence was already running.

        Raises:
            ValueError: If an override or the sequence id is invalid.
        """
        if self.orchestrator.phase is not Phase.IDLE:
            return False
        self.settings.set(
            self.defaults.with_changes(
                interval=parse_interval(interval) if interval is not None else None,
                limit=limit,
                camera_id=camera_id,
                autofocus=autofocus,
                keep_camera_warm=keep_camera_warm,
            )
        )
        return self.orchestrator.start(sequence_id)

    def describe(self) -> dict[str, Any]:
        """Status, settings, statistics and recent errors as a JSON-ready dict."""
        snapshot: StatusSnapshot = self.orchestrator.status()
        result: dict[str, Any] = snapshot.to_dict()
        result["settings"] = self.settings.load().to_dict()
        if snapshot.sequence_id is not None:
            result["sequence_path"] = str(self.writer.sequence_path(snapshot.sequence_id))
        result["stats"] = self.orchestrator.stats.to_dict()
        result["errors"] = self.notifier.messages
        return result


_runtime: TimelapseRuntime | None = None


def init_runtime(
    driver: CameraDriver | None = None,
    writer: FrameWriter | None = None,
    defaults: SequenceSettings | None = None,
    clock: Clock | None = None,
    scheduler: Scheduler | None = None,
) -> TimelapseRuntime:
    """Create the module-level runtime, replacing (and closing) any previous one.

    Args:
        driver: Camera driver (default from the driver factory).
        writer: Frame writer (default from the driver factory).
        defaults: Default sequence settings.
        clock: Time source for the orchestrator.
        scheduler: Timer source for the orchestrator.

    Returns:
        The new runtime.
    """
    global _runtime
    shutdown_runtime()

    factory = get_factory()
    driver = driver or factory.create_camera_driver()
    defaults = defaults or SequenceSettings()
    writer = writer or factory.create_frame_writer(defaults.image_format)
    settings = StaticSettingsProvider(defaults)
    status_sink = RecordingStatusSink(maxlen=_STATUS_HISTORY)
    notifier = RecordingErrorNotifier()

    orchestrator = CaptureOrchestrator(
        CameraResourceHandle(driver, defaults.camera_id, defaults.image_format),
        writer,
        settings=settings,
        status_sink=status_sink,
        notifier=notifier,
        clock=clock,
        scheduler=scheduler,
    )
    _runtime = TimelapseRuntime(
        driver=driver,
        writer=writer,
        defaults=defaults,
        settings=settings,
        status_sink=status_sink,
        notifier=notifier,
        orchestrator=orchestrator,
    )
    logger.info(
        "Runtime initialized",
        driver=type(driver).__name__,
        data_dir=str(writer.root),
    )
    return _runtime


def get_runtime() -> TimelapseRuntime:
    """Return the runtime created by init_runtime().

    Raises:
        RuntimeError: If init_runtime() has not been called.
    """
    if _runtime is None:
        raise RuntimeError("Runtime not initialized; call init_runtime() first")
    return _runtime


def shutdown_runtime() -> None:
    """Close the runtime's orchestrator and forget it. No-op if not initialized."""
    global _runtime
    if _runtime is not None:
        _runtime.orchestrator.close()
        _runtime = None
        logger.info("Runtime shut down")
