"""CLI entry point for timelapse-mcp.

Provides the ``timelapse-mcp`` console script with subcommands:

- ``run`` - Capture a sequence in the foreground (Ctrl+C stops it)
- ``cameras`` - List available cameras as JSON
- ``server`` - Run the MCP server (default if no subcommand)

Usage::

    # Ten frames, one every 30 seconds, from the simulated camera
    timelapse-mcp run --interval 30s --limit 10 --name garden

    # Unlimited sequence from a real camera with autofocus
    timelapse-mcp run --mode hardware --interval 5m --autofocus

    # Run MCP server (same as python -m timelapse_mcp.server)
    timelapse-mcp server --mode hardware --data-dir /data/timelapse
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence

from timelapse_mcp.drivers.cameras import select_default_camera
from timelapse_mcp.observability import configure_logging, get_logger
from timelapse_mcp.server import (
    add_common_arguments,
    configure_drivers,
    settings_from_args,
)

logger = get_logger(__name__)

PROG_NAME = "timelapse-mcp"

# Seconds between checks for sequence completion while running in the
# foreground; keeps Ctrl+C responsive
_POLL_INTERVAL_SEC = 0.5


def _setup(args: argparse.Namespace) -> None:
    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)
    configure_drivers(args.mode, args.data_dir)


def run_sequence(args: argparse.Namespace) -> int:
    """Capture one sequence in the foreground.

    Returns when the limit is reached, a capture fails or the user presses
    Ctrl+C. On Ctrl+C a capture in progress is finished before exiting.

    Args:
        args: Parsed ``run`` arguments.

    Returns:
        0 if the sequence ended without a capture error, 1 otherwise, 2 if
        the settings were invalid.
    """
    from timelapse_mcp.runtime import init_runtime, shutdown_runtime

    try:
        defaults = settings_from_args(args)
    except ValueError as e:
        logger.error("Invalid settings", error=str(e))
        return 2

    _setup(args)
    runtime = init_runtime(defaults=defaults)
    orchestrator = runtime.orchestrator
    try:
        try:
            runtime.start(sequence_id=args.name)
        except ValueError as e:
            logger.error("Could not start sequence", error=str(e))
            return 2

        try:
            while not orchestrator.wait_until_idle(timeout=_POLL_INTERVAL_SEC):
                pass
        except KeyboardInterrupt:
            logger.info("Stopping sequence, finishing current frame")
            orchestrator.stop()
            orchestrator.wait_until_idle()

        summary = runtime.describe()
        logger.info(
            "Sequence complete",
            sequence_id=summary["sequence_id"],
            images_captured=summary["images_captured"],
            path=summary.get("sequence_path"),
        )
        return 1 if summary["errors"] else 0
    finally:
        shutdown_runtime()


def list_cameras(args: argparse.Namespace) -> int:
    """Print the cameras of the configured driver as JSON.

    Returns:
        0 if at least one camera was found, 1 otherwise.
    """
    from timelapse_mcp.drivers.config import get_factory

    _setup(args)
    cameras = get_factory().create_camera_driver().get_connected_cameras()
    if not cameras:
        logger.warning("No cameras connected")
        return 1

    result = {
        "default_camera_id": select_default_camera(cameras),
        "cameras": {str(cam_id): dict(info) for cam_id, info in sorted(cameras.items())},
    }
    sys.stdout.write(json.dumps(result, indent=2) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Time-lapse MCP - interval image capture from a camera",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Capture a sequence in the foreground",
    )
    add_common_arguments(run_parser)
    run_parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Sequence name (default: current date and time)",
    )

    cameras_parser = subparsers.add_parser(
        "cameras",
        help="List available cameras",
    )
    add_common_arguments(cameras_parser)

    # Server subcommand (pass-through to server.main())
    subparsers.add_parser(
        "server",
        help="Run MCP server (default if no subcommand)",
        add_help=False,
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point for timelapse-mcp.

    Args:
        argv: Arguments without the program name (default sys.argv[1:]).

    Returns:
        Exit code.

    Example:
        >>> # timelapse-mcp run --interval 10s --limit 3
        >>> # timelapse-mcp cameras --mode hardware
        >>> # timelapse-mcp  (no args = run server)
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()

    if not argv or argv[0] == "server":
        from timelapse_mcp.server import main as server_main

        server_main(argv[1:])
        return 0
    if argv[0].startswith("-") and argv[0] not in ("-h", "--help"):
        # Flags without a subcommand go to the server
        from timelapse_mcp.server import main as server_main

        server_main(argv)
        return 0

    args = parser.parse_args(argv)
    if args.command == "run":
        return run_sequence(args)
    if args.command == "cameras":
        return list_cameras(args)
    parser.print_help()
    return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
