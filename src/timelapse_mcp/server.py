"""MCP Server entry point for time-lapse capture."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Literal

from mcp.server import Server
from mcp.server.stdio import stdio_server

from timelapse_mcp.capture import SequenceSettings, parse_interval
from timelapse_mcp.drivers.config import set_data_dir, use_digital_twin, use_hardware
from timelapse_mcp.observability import configure_logging, get_logger
from timelapse_mcp.runtime import init_runtime, shutdown_runtime
from timelapse_mcp.tools import timelapse

logger = get_logger(__name__)

SERVER_NAME = "timelapse-mcp"

DriverModeName = Literal["hardware", "digital_twin"]


def configure_drivers(mode: DriverModeName, data_dir: str | None = None) -> None:
    """Select the driver mode and data directory for the process.

    Args:
        mode: "hardware" for real cameras, "digital_twin" for simulation.
        data_dir: Sequence storage directory (None keeps the default).
    """
    if mode == "hardware":
        use_hardware()
        logger.info("Using HARDWARE mode (real cameras)")
    else:
        use_digital_twin()
        logger.info("Using DIGITAL_TWIN mode (simulated cameras)")

    if data_dir:
        set_data_dir(Path(data_dir))


def create_server(defaults: SequenceSettings | None = None) -> Server:
    """Create the MCP server and the time-lapse runtime behind it.

    Drivers must be configured first (configure_drivers()).

    Args:
        defaults: Settings used when start_timelapse omits a value.

    Returns:
        MCP Server with the time-lapse tools registered.

    Example:
        >>> configure_drivers("digital_twin")
        >>> server = create_server(SequenceSettings(limit=100))
    """
    server = Server(SERVER_NAME)

    runtime = init_runtime(defaults=defaults)
    logger.info(
        "Initialized runtime",
        driver=type(runtime.driver).__name__,
        defaults=runtime.defaults.to_dict(),
    )

    timelapse.register(server)
    return server


async def run_server(defaults: SequenceSettings | None = None) -> None:
    """Run the MCP server over stdio until the client disconnects.

    The running sequence, if any, is stopped and the camera released on
    exit.

    Args:
        defaults: Settings used when start_timelapse omits a value.
    """
    server = create_server(defaults)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        shutdown_runtime()


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add driver, sequence-default and logging flags shared by all commands."""
    parser.add_argument(
        "--mode",
        type=str,
        choices=["hardware", "digital_twin"],
        default="digital_twin",
        help=(
            "Driver mode: 'hardware' for real cameras, "
            "'digital_twin' for simulation (default)"
        ),
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory to store sequences (default: ~/.timelapse-mcp/sequences)",
    )
    parser.add_argument(
        "--interval",
        type=str,
        default=None,
        help="Time between frames, e.g. 10, 30s, 5m, 1h (default: 10s)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Frames to capture before stopping, 0 = unlimited (default: 0)",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=None,
        help="Camera ID (default: back-facing camera, else the first)",
    )
    parser.add_argument(
        "--autofocus",
        action="store_true",
        default=None,
        help="Run autofocus before every frame",
    )
    parser.add_argument(
        "--keep-camera-warm",
        action="store_true",
        default=None,
        help="Keep the camera open between frames",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write logs as JSON lines",
    )


def settings_from_args(args: argparse.Namespace) -> SequenceSettings:
    """Build default sequence settings from parsed flags.

    Raises:
        ValueError: If the interval or limit is invalid.
    """
    return SequenceSettings().with_changes(
        interval=parse_interval(args.interval) if args.interval is not None else None,
        limit=args.limit,
        camera_id=args.camera,
        autofocus=args.autofocus,
        keep_camera_warm=args.keep_camera_warm,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments for the MCP server.

    Args:
        argv: Arguments without the program name (default sys.argv[1:]).

    Returns:
        Namespace with mode, data_dir, interval, limit, camera, autofocus,
        keep_camera_warm, log_level and json_logs.

    Raises:
        SystemExit: On invalid arguments or --help.
    """
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="Time-lapse MCP Server - Capture image sequences from a camera",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the timelapse-mcp server.

    Parses arguments, configures logging (stderr, stdout carries the MCP
    protocol) and drivers, then serves MCP over stdio until the client
    disconnects.

    Args:
        argv: Arguments without the program name (default sys.argv[1:]).

    Raises:
        SystemExit: On argument errors, including an invalid interval.

    Example:
        >>> # MCP client config:
        >>> # "command": "python", "args": ["-m", "timelapse_mcp.server"]
    """
    args = parse_args(argv)

    configure_logging(
        level=args.log_level,
        json_format=args.json_logs,
        stream=sys.stderr,
        force=True,
    )

    try:
        defaults = settings_from_args(args)
    except ValueError as e:
        raise SystemExit(f"{SERVER_NAME}: error: {e}") from e

    configure_drivers(args.mode, args.data_dir)

    logger.info("Starting MCP server")
    asyncio.run(run_server(defaults))


if __name__ == "__main__":  # pragma: no cover
    main()
