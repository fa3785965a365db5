"""MCP Tools for time-lapse capture.

Uses the runtime created by the server (timelapse_mcp.runtime) for camera
discovery and sequence control. Works with real cameras and the digital
twin alike.
"""

from __future__ import annotations

import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from timelapse_mcp.capture import TimelapseError
from timelapse_mcp.drivers.cameras import select_default_camera
from timelapse_mcp.observability import get_logger
from timelapse_mcp.runtime import get_runtime

logger = get_logger(__name__)


# Tool definitions
TOOLS = [
    Tool(
        name="list_cameras",
        description="List available cameras and the one used by default",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    Tool(
        name="start_timelapse",
        description=(
            "Start a time-lapse sequence. Frames are captured every interval "
            "until the limit is reached or the sequence is stopped."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "sequence_id": {
                    "type": "string",
                    "description": (
                        "Name of the output folder (default: current date and time)"
                    ),
                },
                "interval": {
                    "type": "string",
                    "description": "Time between frames, e.g. '30s', '5m', '1h30m'",
                },
                "limit": {
                    "type": "integer",
                    "description": "Frames to capture before stopping (0 = unlimited)",
                    "minimum": 0,
                },
                "camera_id": {
                    "type": "integer",
                    "description": "Camera ID from list_cameras (default camera if omitted)",
                },
                "autofocus": {
                    "type": "boolean",
                    "description": "Run autofocus before every frame",
                },
                "keep_camera_warm": {
                    "type": "boolean",
                    "description": "Keep the camera open between frames",
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="stop_timelapse",
        description=(
            "Stop the running sequence. A frame being captured is finished first."
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    Tool(
        name="get_timelapse_status",
        description=(
            "Get sequence status: running, frames captured and remaining, "
            "settings, capture statistics and recent errors"
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
]


def register(server: Server) -> None:
    """Register time-lapse tools with the MCP server.

    Tools registered:
    - list_cameras: Enumerate cameras
    - start_timelapse: Start a sequence
    - stop_timelapse: Stop the sequence
    - get_timelapse_status: Report progress

    Args:
        server: MCP Server instance, not yet running.

    Example:
        >>> server = Server("timelapse-mcp")
        >>> register(server)
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return available time-lapse tools (MCP tool discovery)."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Route tool calls to their implementations.

        Args:
            name: Tool name from TOOLS.
            arguments: Arguments matching the tool's inputSchema.

        Returns:
            Single TextContent with a JSON result or an error message.
        """
        return await dispatch(name, arguments)


async def dispatch(name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
    """Call the implementation of tool ``name``."""
    arguments = arguments or {}
    if name == "list_cameras":
        return await _list_cameras()
    elif name == "start_timelapse":
        return await _start_timelapse(
            sequence_id=arguments.get("sequence_id"),
            interval=arguments.get("interval"),
            limit=arguments.get("limit"),
            camera_id=arguments.get("camera_id"),
            autofocus=arguments.get("autofocus"),
            keep_camera_warm=arguments.get("keep_camera_warm"),
        )
    elif name == "stop_timelapse":
        return await _stop_timelapse()
    elif name == "get_timelapse_status":
        return await _get_timelapse_status()
    else:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]


def _json(result: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


# Tool implementations


async def _list_cameras() -> list[TextContent]:
    """List cameras reported by the driver.

    Returns:
        JSON {"count", "default_camera_id", "cameras": [{"id", "name",
        "width", "height", "facing"}]}, or "No cameras connected".

    Example:
        >>> result = await _list_cameras()
        >>> json.loads(result[0].text)["default_camera_id"]
        1
    """
    try:
        cameras = get_runtime().driver.get_connected_cameras()
        if not cameras:
            return [TextContent(type="text", text="No cameras connected")]

        result = {
            "count": len(cameras),
            "default_camera_id": select_default_camera(cameras),
            "cameras": [
                {
                    "id": cam_id,
                    "name": info.get("name"),
                    "width": info.get("width"),
                    "height": info.get("height"),
                    "facing": info.get("facing", "unknown"),
                }
                for cam_id, info in sorted(cameras.items())
            ],
        }
        return _json(result)
    except Exception as e:
        logger.error("Error listing cameras", error=str(e))
        return [TextContent(type="text", text=f"Error listing cameras: {e}")]


async def _start_timelapse(
    sequence_id: str | None = None,
    interval: str | float | None = None,
    limit: int | None = None,
    camera_id: int | None = None,
    autofocus: bool | None = None,
    keep_camera_warm: bool | None = None,
) -> list[TextContent]:
    """Start a sequence; omitted values use the server defaults.

    Returns:
        JSON {"started": bool, ...status}. started is False when a
        sequence was already running. Invalid arguments return an error
        message.
    """
    try:
        runtime = get_runtime()
        started = runtime.start(
            sequence_id=sequence_id,
            interval=interval,
            limit=limit,
            camera_id=camera_id,
            autofocus=autofocus,
            keep_camera_warm=keep_camera_warm,
        )
        result = {"started": started, **runtime.describe()}
        if not started:
            result["message"] = "A sequence is already running"
        return _json(result)
    except (ValueError, TimelapseError) as e:
        logger.warning("Invalid start request", error=str(e))
        return [TextContent(type="text", text=f"Error starting timelapse: {e}")]
    except Exception as e:
        logger.error("Error starting timelapse", error=str(e))
        return [TextContent(type="text", text=f"Error starting timelapse: {e}")]


async def _stop_timelapse() -> list[TextContent]:
    """Stop the sequence (no-op when idle).

    Returns:
        JSON status after the request. running stays true until an
        in-flight capture finishes.
    """
    try:
        runtime = get_runtime()
        runtime.orchestrator.stop()
        return _json(runtime.describe())
    except Exception as e:
        logger.error("Error stopping timelapse", error=str(e))
        return [TextContent(type="text", text=f"Error stopping timelapse: {e}")]


async def _get_timelapse_status() -> list[TextContent]:
    """Report status, settings, statistics and errors as JSON."""
    try:
        return _json(get_runtime().describe())
    except Exception as e:
        logger.error("Error getting timelapse status", error=str(e))
        return [TextContent(type="text", text=f"Error getting status: {e}")]
