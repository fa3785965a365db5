"""Frame persistence for time-lapse sequences.

Frames are written to <root>/<sequence_id>/NNNN.<ext>, numbered from 0000.
Each write goes to a temporary file in the target directory which is
fsynced and then renamed over the final name, so a crash never leaves a
truncated frame behind under its real name.

After a write the FrameIndexer is told about the new file. Desktop
installs use NullFrameIndexer; gallery or media library integrations
implement their own.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from timelapse_mcp.capture.errors import WriteFailedError
from timelapse_mcp.capture.settings import SUPPORTED_IMAGE_FORMATS
from timelapse_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "FrameIndexer",
    "FrameWriter",
    "NullFrameIndexer",
    "frame_filename",
    "validate_sequence_id",
]


@runtime_checkable
class FrameIndexer(Protocol):  # pragma: no cover
    """Announces newly written frames to an external catalog."""

    def index_frame(self, path: Path) -> None:
        """Register a frame that was just written.

        Args:
            path: Final path of the frame file.
        """
        ...


class NullFrameIndexer:
    """Indexer that does nothing."""

    def index_frame(self, path: Path) -> None:
        """Ignore the frame."""


def validate_sequence_id(sequence_id: str) -> str:
    """Check that a sequence id names exactly one directory under the root.

    Args:
        sequence_id: Proposed name.

    Returns:
        The name, unchanged.

    Raises:
        ValueError: If the name is empty or blank, is '.' or '..', or
            contains a path separator or NUL.

    Example:
        >>> validate_sequence_id("2026-10-19 07-30-05")
        '2026-10-19 07-30-05'
    """
    if not sequence_id or not sequence_id.strip():
        raise ValueError("Sequence id must not be empty")
    if sequence_id in (".", ".."):
        raise ValueError(f"Invalid sequence id: {sequence_id!r}")
    separators = {"/", "\\", "\0"}
    if os.altsep:
        separators.add(os.altsep)
    if any(sep in sequence_id for sep in separators):
        raise ValueError(f"Sequence id must not contain path separators: {sequence_id!r}")
    return sequence_id


def frame_filename(index: int, image_format: str = "jpg") -> str:
    """Zero-padded file name for a frame index.

    Example:
        >>> frame_filename(7)
        '0007.jpg'
    """
    return f"{index:04d}.{image_format}"


class FrameWriter:
    """Writes frame bytes under a root directory.

    Example:
        writer = FrameWriter(Path("~/.timelapse-mcp/sequences").expanduser())
        path = writer.write("garden", 0, jpeg_bytes)
        # ~/.timelapse-mcp/sequences/garden/0000.jpg
    """

    def __init__(
        self,
        root: Path | str,
        image_format: str = "jpg",
        indexer: FrameIndexer | None = None,
    ) -> None:
        """Create a writer. Directories are created lazily on first write.

        Args:
            root: Directory holding one sub-directory per sequence.
            image_format: File extension of written frames.
            indexer: Notified after each successful write
                (default NullFrameIndexer).

        Raises:
            ValueError: If image_format is unsupported.
        """
        if image_format not in SUPPORTED_IMAGE_FORMATS:
            raise ValueError(f"Unsupported image format: {image_format!r}")
        self.root = Path(root)
        self.image_format = image_format
        self._indexer = indexer or NullFrameIndexer()

    def __repr__(self) -> str:
        """Return writer summary for logs."""
        return f"FrameWriter(root={str(self.root)!r}, format={self.image_format})"

    def sequence_path(self, sequence_id: str) -> Path:
        """Directory holding the frames of one sequence.

        Raises:
            ValueError: If sequence_id is not a valid directory name.
        """
        return self.root / validate_sequence_id(sequence_id)

    def frame_path(
        self, sequence_id: str, index: int, image_format: str | None = None
    ) -> Path:
        """Final path of frame ``index`` in a sequence."""
        return self.sequence_path(sequence_id) / frame_filename(
            index, image_format or self.image_format
        )

    def write(
        self,
        sequence_id: str,
        index: int,
        data: bytes,
        image_format: str | None = None,
    ) -> Path:
        """Persist one frame atomically.

        Args:
            sequence_id: Sequence directory name.
            index: Frame index (>= 0), becomes the zero-padded file name.
            data: Encoded image bytes.
            image_format: Extension for this frame, default the writer's.

        Returns:
            Path of the written frame.

        Raises:
            ValueError: If sequence_id is invalid or index is negative.
            WriteFailedError: If the directory or file cannot be written.
        """
        if index < 0:
            raise ValueError(f"Frame index must be >= 0, got {index}")
        target = self.frame_path(sequence_id, index, image_format)

        tmp_path: Path | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb",
                dir=str(target.parent),
                prefix=f".{target.stem}-",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            logger.error(
                "Frame write failed",
                sequence_id=sequence_id,
                index=index,
                path=str(target),
                error=str(e),
            )
            raise WriteFailedError(f"Could not write {target}: {e}") from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        logger.info("Frame written", index=index, path=str(target), size=len(data))
        try:
            self._indexer.index_frame(target)
        except Exception as e:
            logger.warning("Frame indexer failed", path=str(target), error=str(e))
        return target
