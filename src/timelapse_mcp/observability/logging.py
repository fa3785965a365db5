"""Structured logging for timelapse-mcp.

Thin layer over the standard logging module that adds:
- Keyword structured data on every log call
- Human-readable (key=value) and JSON line formatters
- Context propagation via contextvars (sequence id, tick index, ...)

Security Note:
    Sequence names come from users. Pass them as keyword arguments, never
    interpolated into the message, so a CRLF in a name cannot forge entries:

    # SAFE
    logger.info("Sequence started", sequence_id=name)

    # UNSAFE
    logger.info(f"Sequence {name} started")

Example:
    logger = get_logger(__name__)
    logger.info("Scheduler armed", delay_s=30.0)

    with LogContext(sequence_id="garden"):
        logger.info("Frame written", index=3)  # includes sequence_id

    configure_logging(json_format=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

#: Name of the package root logger that owns all handlers.
ROOT_LOGGER_NAME = "timelapse_mcp"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger accepting structured keyword data.

    Every keyword argument that is not a standard logging parameter is
    collected into ``record.structured_data`` together with the active
    LogContext values.

    Usage:
        logger = StructuredLogger("timelapse_mcp.capture")
        logger.info("Tick fired", index=4, late_ms=12.5)
    """

    def debug(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log_structured(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log_structured(logging.INFO, msg, args, kwargs)

    def warning(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log_structured(logging.WARNING, msg, args, kwargs)

    def error(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log_structured(logging.ERROR, msg, args, kwargs)

    def exception(
        self, msg: object, *args: Any, exc_info: Any = True, **kwargs: Any
    ) -> None:
        """Log error message with the active exception attached."""
        if self.isEnabledFor(logging.ERROR):
            kwargs["exc_info"] = exc_info
            self._log_structured(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log critical message with optional structured data kwargs."""
        if self.isEnabledFor(logging.CRITICAL):
            self._log_structured(logging.CRITICAL, msg, args, kwargs)

    def _log_structured(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any],
        kwargs: dict[str, Any],
    ) -> None:
        """Split logging parameters from structured data and emit.

        Standard parameters (exc_info, stack_info, stacklevel, extra) are
        passed through to Logger._log. Remaining kwargs are merged over the
        current LogContext, so explicit values win over ambient ones.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % placeholders.
            args: Arguments for % formatting.
            kwargs: Mixed logging parameters and structured data.
        """
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", False)
        stacklevel = kwargs.pop("stacklevel", 1)
        extra = kwargs.pop("extra", None)

        structured_data = {**_log_context.get(), **kwargs}
        extra = dict(extra) if extra else {}
        extra["structured_data"] = structured_data

        # +2 skips this helper and the public level method
        self._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 2,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter with structured data.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Initialize the structured formatter.

        Args:
            fmt: Format string using LogRecord attributes. Defaults to
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date format for %(asctime)s.
            include_structured: Append ' | key=value ...' when the record
                carries structured data.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format record text and append structured key=value pairs.

        Args:
            record: Record to format. A missing or empty
                ``structured_data`` attribute yields only the base format.

        Returns:
            Formatted line, e.g. '... - INFO - Frame written | index=3'.
        """
        base = super().format(record)
        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line (NDJSON) for log aggregation.

    Keys: timestamp (ISO 8601, UTC), level, logger, message, exception (if
    any), plus every structured data key at top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a record as a single-line JSON object.

        Non-serializable values fall back to str().
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_dict.update(getattr(record, "structured_data", {}))

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Format a structured value for key=value output.

    None becomes 'null', strings with spaces are quoted, dicts and lists are
    JSON encoded, everything else goes through str().

    Example:
        >>> _format_value("2026-10-19 07-00-00")
        '"2026-10-19 07-00-00"'
        >>> _format_value({"index": 3})
        '{"index": 3}'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Context manager adding key-value pairs to every log record.

    Backed by contextvars, so values are isolated per thread and per task.
    Contexts nest; inner values override outer ones.

    Usage:
        with LogContext(sequence_id="garden"):
            logger.info("Sequence started")

            with LogContext(index=7):
                logger.info("Capturing")  # sequence_id and index
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Store the key-value pairs to apply on enter."""
        self._kwargs = kwargs
        self._token = None

    def __enter__(self) -> LogContext:
        """Merge this context's values over the current context."""
        current = _log_context.get()
        self._token = _log_context.set({**current, **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the context that was active before __enter__."""
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the timelapse-mcp logging system.

    Installs a single stream handler on the ``timelapse_mcp`` logger and
    makes StructuredLogger the logger class. Idempotent: later calls are
    ignored unless ``force=True``. Safe to call from several threads.

    Args:
        level: Minimum level (int or name such as 'DEBUG').
        json_format: Use JSONFormatter instead of StructuredFormatter.
        stream: Output stream, default sys.stderr. The MCP server speaks
            over stdout, so logs must never default to it.
        include_structured: Append structured data in text mode.
        force: Drop existing handlers and reconfigure.

    Example:
        >>> configure_logging(level="DEBUG")
        >>> configure_logging(json_format=True, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Install handler and formatter (caller holds the lock)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Remove package handlers (caller holds the lock)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Return logging to the unconfigured state (used by tests)."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        StructuredLogger under the ``timelapse_mcp`` hierarchy.

    Example:
        >>> logger = get_logger("timelapse_mcp.data.frame_writer")
        >>> logger.info("Frame written", index=0, bytes=48213)
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    # setLoggerClass() above guarantees the concrete type
    return cast(StructuredLogger, logging.getLogger(name))
