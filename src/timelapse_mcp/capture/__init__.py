"""Time-lapse capture core: settings, state machine and collaborators.

Example:
    from timelapse_mcp.capture import (
        CaptureOrchestrator,
        SequenceSettings,
        StaticSettingsProvider,
    )
"""

from timelapse_mcp.capture.errors import (
    AlreadyRunningError,
    CaptureError,
    FocusFailedError,
    NotRunningError,
    ResourceUnavailableError,
    SequenceStateError,
    TimelapseError,
    WriteFailedError,
)
from timelapse_mcp.capture.settings import (
    DEFAULT_INTERVAL,
    SUPPORTED_IMAGE_FORMATS,
    SequenceSettings,
    default_sequence_id,
    parse_interval,
)
from timelapse_mcp.capture.state import Phase, SequenceState, StatusSnapshot
from timelapse_mcp.capture.interfaces import (
    ErrorNotifier,
    LoggingErrorNotifier,
    LoggingStatusSink,
    RecordingErrorNotifier,
    RecordingStatusSink,
    SettingsProvider,
    StaticSettingsProvider,
    StatusSink,
)

# Imported last: the orchestrator depends on the device layer, which in
# turn imports the error types above.
from timelapse_mcp.capture.orchestrator import CaptureOrchestrator  # noqa: E402

__all__ = [
    # Orchestrator
    "CaptureOrchestrator",
    # Settings
    "DEFAULT_INTERVAL",
    "SUPPORTED_IMAGE_FORMATS",
    "SequenceSettings",
    "default_sequence_id",
    "parse_interval",
    # State
    "Phase",
    "SequenceState",
    "StatusSnapshot",
    # Collaborators
    "ErrorNotifier",
    "LoggingErrorNotifier",
    "LoggingStatusSink",
    "RecordingErrorNotifier",
    "RecordingStatusSink",
    "SettingsProvider",
    "StaticSettingsProvider",
    "StatusSink",
    # Errors
    "AlreadyRunningError",
    "CaptureError",
    "FocusFailedError",
    "NotRunningError",
    "ResourceUnavailableError",
    "SequenceStateError",
    "TimelapseError",
    "WriteFailedError",
]
