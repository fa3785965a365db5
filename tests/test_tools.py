"""Tests for the MCP time-lapse tools and the runtime behind them.

The runtime is created per test with GatedCameraDriver, a temporary data
directory and manual time, so tool calls never touch hardware or sleep.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from mcp import types
from mcp.server import Server

from tests.helpers import WAIT_TIMEOUT, GatedCameraDriver, ManualClock, ManualScheduler
from timelapse_mcp.capture import SequenceSettings
from timelapse_mcp.data import FrameWriter
from timelapse_mcp.runtime import (
    TimelapseRuntime,
    get_runtime,
    init_runtime,
    shutdown_runtime,
)
from timelapse_mcp.tools import timelapse

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runtime(
    driver: GatedCameraDriver,
    tmp_path: Path,
    clock: ManualClock,
    scheduler: ManualScheduler,
) -> TimelapseRuntime:
    """Process runtime over the gated driver; shut down by conftest."""
    return init_runtime(
        driver=driver,
        writer=FrameWriter(tmp_path / "frames"),
        defaults=SequenceSettings(interval=timedelta(seconds=10)),
        clock=clock,
        scheduler=scheduler,
    )


async def call(name: str, arguments: dict[str, Any] | None = None) -> str:
    result = await timelapse.dispatch(name, arguments)
    assert len(result) == 1
    assert result[0].type == "text"
    return result[0].text


async def call_json(name: str, arguments: dict[str, Any] | None = None) -> dict:
    return json.loads(await call(name, arguments))


def tick(runtime: TimelapseRuntime, scheduler: ManualScheduler) -> None:
    scheduler.advance(timedelta(seconds=10))
    assert runtime.orchestrator.wait_until_settled(WAIT_TIMEOUT)


# =============================================================================
# Runtime
# =============================================================================


class TestRuntime:
    """Process-wide runtime lifecycle."""

    def test_get_runtime_before_init(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            get_runtime()

    def test_init_and_shutdown(self, runtime: TimelapseRuntime) -> None:
        assert get_runtime() is runtime

        shutdown_runtime()

        assert runtime.orchestrator.closed is True
        with pytest.raises(RuntimeError):
            get_runtime()

    def test_reinit_closes_previous(self, runtime: TimelapseRuntime, tmp_path: Path) -> None:
        replacement = init_runtime(writer=FrameWriter(tmp_path / "other"))

        assert runtime.orchestrator.closed is True
        assert get_runtime() is replacement

    def test_defaults_come_from_driver_factory(self, tmp_path: Path) -> None:
        from timelapse_mcp.drivers.cameras import DigitalTwinCameraDriver
        from timelapse_mcp.drivers.config import set_data_dir

        set_data_dir(tmp_path)
        created = init_runtime()

        assert isinstance(created.driver, DigitalTwinCameraDriver)
        assert created.writer.root == tmp_path

    def test_start_applies_overrides_over_defaults(self, runtime: TimelapseRuntime) -> None:
        assert runtime.start("seq", interval="1m", limit=4, autofocus=True) is True

        loaded = runtime.settings.load()
        assert loaded.interval == timedelta(minutes=1)
        assert loaded.limit == 4
        assert loaded.autofocus is True
        assert runtime.defaults.limit == 0

    def test_rejected_start_keeps_running_settings(self, runtime: TimelapseRuntime) -> None:
        runtime.start("seq", limit=4)

        assert runtime.start("other", limit=9) is False
        assert runtime.settings.load().limit == 4

    def test_invalid_override_raises(self, runtime: TimelapseRuntime) -> None:
        with pytest.raises(ValueError):
            runtime.start("seq", interval="0s")
        with pytest.raises(ValueError):
            runtime.start("seq", limit=-1)

    def test_describe(self, runtime: TimelapseRuntime, scheduler: ManualScheduler) -> None:
        runtime.start("seq", limit=3)
        tick(runtime, scheduler)

        info = runtime.describe()

        assert info["running"] is True
        assert info["images_captured"] == 1
        assert info["images_remaining"] == 2
        assert info["sequence_path"].endswith("seq")
        assert info["settings"]["limit"] == 3
        assert info["stats"]["successful_captures"] == 1
        assert info["errors"] == []


# =============================================================================
# Tools
# =============================================================================


class TestToolRegistration:
    def test_tool_names(self) -> None:
        assert [tool.name for tool in timelapse.TOOLS] == [
            "list_cameras",
            "start_timelapse",
            "stop_timelapse",
            "get_timelapse_status",
        ]

    def test_register_installs_handlers(self) -> None:
        server = Server("test-server")

        timelapse.register(server)

        assert types.ListToolsRequest in server.request_handlers
        assert types.CallToolRequest in server.request_handlers

    @pytest.mark.asyncio
    async def test_unknown_tool(self, runtime: TimelapseRuntime) -> None:
        assert await call("make_coffee") == "Unknown tool: make_coffee"


class TestListCameras:
    @pytest.mark.asyncio
    async def test_lists_cameras_and_default(self, runtime: TimelapseRuntime) -> None:
        result = await call_json("list_cameras")

        assert result["count"] == 2
        assert result["default_camera_id"] == 1
        assert [c["id"] for c in result["cameras"]] == [0, 1]
        assert result["cameras"][1]["facing"] == "back"

    @pytest.mark.asyncio
    async def test_no_cameras(self, tmp_path: Path) -> None:
        class NoCameras(GatedCameraDriver):
            def get_connected_cameras(self) -> dict:
                return {}

        init_runtime(driver=NoCameras(), writer=FrameWriter(tmp_path))

        assert await call("list_cameras") == "No cameras connected"

    @pytest.mark.asyncio
    async def test_without_runtime_reports_error(self) -> None:
        assert (await call("list_cameras")).startswith("Error listing cameras")


class TestStartTimelapse:
    """start_timelapse tool."""

    @pytest.mark.asyncio
    async def test_start(self, runtime: TimelapseRuntime) -> None:
        result = await call_json(
            "start_timelapse",
            {"sequence_id": "balcony", "interval": "30s", "limit": 2},
        )

        assert result["started"] is True
        assert result["running"] is True
        assert result["sequence_id"] == "balcony"
        assert result["images_remaining"] == 2
        assert result["settings"]["interval_seconds"] == 30.0

    @pytest.mark.asyncio
    async def test_compound_interval(self, runtime: TimelapseRuntime) -> None:
        result = await call_json("start_timelapse", {"interval": "1h30m"})

        assert result["started"] is True
        assert result["settings"]["interval_seconds"] == 5400.0

    @pytest.mark.asyncio
    async def test_start_without_arguments_uses_defaults(
        self, runtime: TimelapseRuntime
    ) -> None:
        result = await call_json("start_timelapse", None)

        assert result["started"] is True
        assert result["sequence_id"]
        assert result["settings"]["interval_seconds"] == 10.0

    @pytest.mark.asyncio
    async def test_second_start_reports_already_running(
        self, runtime: TimelapseRuntime
    ) -> None:
        await call("start_timelapse", {"sequence_id": "first"})

        result = await call_json("start_timelapse", {"sequence_id": "second"})

        assert result["started"] is False
        assert result["sequence_id"] == "first"
        assert "already running" in result["message"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "arguments",
        [
            {"interval": "soon"},
            {"interval": "0"},
            {"interval": True},
            {"interval": "1h30"},
            {"limit": -1},
            {"camera_id": -1},
            {"sequence_id": "a/b"},
            {"sequence_id": ".."},
        ],
    )
    async def test_invalid_arguments(
        self, runtime: TimelapseRuntime, arguments: dict[str, Any]
    ) -> None:
        text = await call("start_timelapse", arguments)

        assert text.startswith("Error starting timelapse")
        assert runtime.orchestrator.status().running is False


class TestStopAndStatus:
    """stop_timelapse and get_timelapse_status tools."""

    @pytest.mark.asyncio
    async def test_stop(self, runtime: TimelapseRuntime, scheduler: ManualScheduler) -> None:
        await call("start_timelapse", {"sequence_id": "seq"})
        tick(runtime, scheduler)

        result = await call_json("stop_timelapse")

        assert result["running"] is False
        assert result["images_captured"] == 1
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, runtime: TimelapseRuntime) -> None:
        result = await call_json("stop_timelapse")

        assert result["running"] is False
        assert result["sequence_id"] is None

    @pytest.mark.asyncio
    async def test_status_progress(
        self, runtime: TimelapseRuntime, scheduler: ManualScheduler
    ) -> None:
        await call("start_timelapse", {"sequence_id": "seq", "limit": 2})
        tick(runtime, scheduler)
        tick(runtime, scheduler)

        result = await call_json("get_timelapse_status")

        assert result["running"] is False
        assert result["images_captured"] == 2
        assert result["start_time"] is None
        assert result["stats"]["successful_captures"] == 2
        assert len(list(Path(result["sequence_path"]).iterdir())) == 2

    @pytest.mark.asyncio
    async def test_status_reports_capture_errors(
        self, tmp_path: Path, clock: ManualClock, scheduler: ManualScheduler
    ) -> None:
        """A failed frame ends the run and shows up in the status errors."""
        rt = init_runtime(
            driver=GatedCameraDriver(failing_captures={1}),
            writer=FrameWriter(tmp_path),
            clock=clock,
            scheduler=scheduler,
        )
        await call("start_timelapse", {"sequence_id": "seq"})
        tick(rt, scheduler)

        result = await call_json("get_timelapse_status")

        assert result["running"] is False
        assert len(result["errors"]) == 1
        assert "Frame 0" in result["errors"][0]
        assert result["stats"]["error_counts"] == {"resource_unavailable": 1}

    @pytest.mark.asyncio
    async def test_status_without_runtime(self) -> None:
        assert (await call("get_timelapse_status")).startswith("Error getting status")
