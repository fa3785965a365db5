"""Observability module for timelapse-mcp.

Provides structured logging and capture statistics.

Example:
    from timelapse_mcp.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(sequence_id="balcony"):
        logger.info("Frame written", index=12, bytes=51234)

Statistics Example:
    from timelapse_mcp.observability import CaptureStats

    stats = CaptureStats()
    stats.record_capture(duration_ms=150, success=True)
    print(stats.get_summary().success_rate)
"""

from timelapse_mcp.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from timelapse_mcp.observability.stats import (
    CaptureStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "CaptureStats",
    "StatsSummary",
]
