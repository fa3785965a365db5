"""Frame storage for time-lapse sequences.

Example:
    from pathlib import Path

    from timelapse_mcp.data import FrameWriter

    writer = FrameWriter(Path("/data/timelapse"))
    path = writer.write("sunset", 0, jpeg_bytes)  # /data/timelapse/sunset/0000.jpg
"""

from timelapse_mcp.data.frame_writer import (
    FrameIndexer,
    FrameWriter,
    NullFrameIndexer,
    frame_filename,
    validate_sequence_id,
)

__all__ = [
    "FrameIndexer",
    "FrameWriter",
    "NullFrameIndexer",
    "frame_filename",
    "validate_sequence_id",
]
