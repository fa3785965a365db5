"""Digital Twin Camera Driver - Simulated Hardware for Testing.

Provides simulated cameras for development, demos and tests without a
physical device. Follows the CameraDriver protocol for drop-in replacement
of OpenCVCameraDriver.

Image Sources:
    Synthetic: Generated test pattern stamped with the frame number
    Directory: Cycle through images in a folder
    File: Return the same image repeatedly

Fault injection (DigitalTwinConfig):
    unavailable_cameras: ids whose open() fails as if the device were busy
    focus_converges: False makes every autofocus pass fail
    failing_captures: 1-based capture numbers (across the driver) that fail
    capture_delay_s: sleep inside capture() to simulate exposure time

Example:
    from timelapse_mcp.drivers.cameras.twin import DigitalTwinCameraDriver

    driver = DigitalTwinCameraDriver()
    with driver.open(0) as camera:
        jpeg_data = camera.capture()
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType, TracebackType
from typing import TYPE_CHECKING, Any, TypedDict, final

import cv2
import numpy as np

from timelapse_mcp.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_CAMERAS",
    "DigitalTwinCameraDriver",
    "DigitalTwinCameraInstance",
    "DigitalTwinConfig",
    "ImageSource",
    "TwinCameraInfo",
    "create_directory_camera",
    "create_file_camera",
]


class ImageSource(Enum):
    """Image source for digital twin camera."""

    SYNTHETIC = "synthetic"  # Generate test patterns
    DIRECTORY = "directory"  # Cycle through images in a folder
    FILE = "file"  # Return same image repeatedly


class TwinCameraInfo(TypedDict):
    """Simulated camera description (same keys as OpenCV camera info)."""

    name: str
    width: int
    height: int
    facing: str  # "back", "front" or "unknown"


@dataclass
class DigitalTwinConfig:
    """Configuration for digital twin camera behavior."""

    image_source: ImageSource = ImageSource.SYNTHETIC
    image_path: Path | None = None  # Directory or file path
    cycle_images: bool = True  # Loop through directory images
    capture_delay_s: float = 0.0
    focus_converges: bool = True
    unavailable_cameras: frozenset[int] = field(default_factory=frozenset)
    failing_captures: frozenset[int] = field(default_factory=frozenset)


# JPEG encoding quality (0-100)
_DEFAULT_JPEG_QUALITY = 90

_SYNTHETIC_GRID_SPACING = 40

# A phone-like pair: rear camera for the time-lapse, front for selfies
DEFAULT_CAMERAS: Mapping[int, TwinCameraInfo] = MappingProxyType(
    {
        0: TwinCameraInfo(
            name="Simulated Front Camera", width=640, height=480, facing="front"
        ),
        1: TwinCameraInfo(
            name="Simulated Rear Camera", width=1280, height=720, facing="back"
        ),
    }
)


@final
class DigitalTwinCameraDriver:
    """Digital twin camera driver for development without hardware.

    Example:
        # Rear camera fails to focus, third capture fails
        config = DigitalTwinConfig(
            focus_converges=False,
            failing_captures=frozenset({3}),
        )
        driver = DigitalTwinCameraDriver(config=config)
    """

    __slots__ = ("config", "_cameras", "_capture_counter", "_counter_lock")

    def __init__(
        self,
        config: DigitalTwinConfig | None = None,
        cameras: Mapping[int, TwinCameraInfo] | None = None,
    ) -> None:
        """Initialize digital twin camera driver.

        Args:
            config: Image source and fault injection settings. Defaults to
                synthetic frames with no faults.
            cameras: Camera definitions by id. Defaults to DEFAULT_CAMERAS.
        """
        self.config = config or DigitalTwinConfig()
        self._cameras: dict[int, TwinCameraInfo] = (
            dict(cameras) if cameras else dict(DEFAULT_CAMERAS)
        )
        self._capture_counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        logger.info(
            "Digital twin camera driver initialized",
            image_source=self.config.image_source.value,
            num_cameras=len(self._cameras),
        )

    def __repr__(self) -> str:
        """Return concise driver summary for logs."""
        return (
            f"DigitalTwinCameraDriver("
            f"source={self.config.image_source.value}, "
            f"cameras={list(self._cameras.keys())})"
        )

    def get_connected_cameras(self) -> dict[int, TwinCameraInfo]:
        """Return simulated camera list (no hardware scanning)."""
        logger.debug("Listing simulated cameras", count=len(self._cameras))
        return dict(self._cameras)

    def open(self, camera_id: int) -> DigitalTwinCameraInstance:
        """Open a simulated camera.

        Args:
            camera_id: Key of the cameras mapping.

        Returns:
            DigitalTwinCameraInstance ready to focus and capture.

        Raises:
            ValueError: If camera_id is not a configured camera.
            RuntimeError: If camera_id is listed in unavailable_cameras.
        """
        if camera_id not in self._cameras:
            logger.error("Camera not found", camera_id=camera_id)
            raise ValueError(f"Camera {camera_id} not found")
        if camera_id in self.config.unavailable_cameras:
            logger.warning("Simulated camera busy", camera_id=camera_id)
            raise RuntimeError(f"Camera {camera_id} is in use by another process")

        logger.info("Opening simulated camera", camera_id=camera_id)
        return DigitalTwinCameraInstance(
            camera_id,
            self._cameras[camera_id],
            self.config,
            self._next_capture_number,
        )

    def _next_capture_number(self) -> int:
        """Driver-wide 1-based capture counter (survives reopen)."""
        with self._counter_lock:
            return next(self._capture_counter)


@final
class DigitalTwinCameraInstance:
    """Open simulated camera.

    Supports the context manager protocol:
        with driver.open(0) as camera:
            data = camera.capture()
    """

    def __init__(
        self,
        camera_id: int,
        info: TwinCameraInfo,
        config: DigitalTwinConfig,
        next_capture_number: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the simulated connection.

        Args:
            camera_id: Identifier within the driver.
            info: Camera description.
            config: Shared driver configuration.
            next_capture_number: Callable returning the driver-wide capture
                number; a local counter is used when None.
        """
        self._camera_id = camera_id
        self._info = info
        self._config = config
        local_counter = itertools.count(1)
        self._next_capture_number = next_capture_number or (
            lambda: next(local_counter)
        )
        self._closed = False

        self._image_files: list[Path] = []
        self._image_index = 0
        self._load_image_files()

    def __enter__(self) -> DigitalTwinCameraInstance:
        """Return self for use in a with-block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the camera; exceptions are not suppressed."""
        self.close()

    def __repr__(self) -> str:
        """Return instance summary for logs."""
        return (
            f"DigitalTwinCameraInstance(camera_id={self._camera_id}, "
            f"closed={self._closed})"
        )

    def _load_image_files(self) -> None:
        """Collect image files for directory mode (silently empty otherwise)."""
        if self._config.image_source != ImageSource.DIRECTORY:
            return
        if self._config.image_path is None:
            return

        path = Path(self._config.image_path)
        if not path.is_dir():
            return

        extensions = {".jpg", ".jpeg", ".png", ".tif", ".tiff"}
        self._image_files = sorted(
            f for f in path.iterdir() if f.suffix.lower() in extensions
        )

    @property
    def is_closed(self) -> bool:
        """True after close()."""
        return self._closed

    def get_info(self) -> dict[str, Any]:
        """Return a copy of the camera description plus its id."""
        return {"camera_id": self._camera_id, **self._info}

    def autofocus(self) -> bool:
        """Simulate one autofocus pass.

        Returns:
            config.focus_converges.

        Raises:
            RuntimeError: If the camera was closed.
        """
        self._ensure_open()
        logger.debug(
            "Simulated autofocus",
            camera_id=self._camera_id,
            converged=self._config.focus_converges,
        )
        return self._config.focus_converges

    def capture(self, image_format: str = "jpg") -> bytes:
        """Capture one encoded frame.

        Args:
            image_format: 'jpg' or 'png'.

        Returns:
            Encoded image bytes at camera resolution.

        Raises:
            RuntimeError: If the camera is closed or the capture number is
                listed in failing_captures.
        """
        self._ensure_open()
        number = self._next_capture_number()

        if self._config.capture_delay_s > 0:
            time.sleep(self._config.capture_delay_s)

        if number in self._config.failing_captures:
            logger.warning(
                "Simulated capture failure", camera_id=self._camera_id, number=number
            )
            raise RuntimeError(f"Simulated sensor readout failure on capture {number}")

        if self._config.image_source == ImageSource.FILE:
            img = self._image_from_file(number)
        elif self._config.image_source == ImageSource.DIRECTORY:
            img = self._image_from_directory(number)
        else:
            img = self._synthetic_image(number)

        return _encode(img, image_format)

    def _image_from_file(self, number: int) -> NDArray[Any]:
        """Load the configured file, falling back to a synthetic frame."""
        if self._config.image_path is None:
            return self._synthetic_image(number)

        path = Path(self._config.image_path)
        if not path.is_file():
            return self._synthetic_image(number)

        img = cv2.imread(str(path))
        if img is None:
            return self._synthetic_image(number)
        return self._resize_to_camera(img)

    def _image_from_directory(self, number: int) -> NDArray[Any]:
        """Load the next directory image, falling back to a synthetic frame."""
        if not self._image_files:
            return self._synthetic_image(number)

        image_path = self._image_files[self._image_index]

        self._image_index += 1
        if self._config.cycle_images:
            self._image_index %= len(self._image_files)
        else:
            self._image_index = min(self._image_index, len(self._image_files) - 1)

        img = cv2.imread(str(image_path))
        if img is None:
            return self._synthetic_image(number)
        return self._resize_to_camera(img)

    def _resize_to_camera(self, img: NDArray[Any]) -> NDArray[Any]:
        """Resize to the simulated sensor resolution if needed."""
        target = (self._info["width"], self._info["height"])
        h, w = img.shape[:2]
        if (w, h) != target:
            img = cv2.resize(img, target)
        return img

    def _synthetic_image(self, number: int) -> NDArray[Any]:
        """Grid pattern with the camera name and capture number."""
        width = self._info["width"]
        height = self._info["height"]

        img: NDArray[Any] = np.zeros((height, width, 3), dtype=np.uint8)
        img[::_SYNTHETIC_GRID_SPACING, :] = [60, 60, 60]
        img[:, ::_SYNTHETIC_GRID_SPACING] = [60, 60, 60]

        # Sweep a bar across the frame so consecutive frames differ visibly
        bar_x = (number * _SYNTHETIC_GRID_SPACING) % width
        cv2.rectangle(img, (bar_x, 0), (bar_x + 8, height), (0, 180, 255), -1)

        cv2.putText(
            img,
            f"DIGITAL TWIN - {self._info['name']}",
            (20, 40),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.8,
            (255, 255, 255),
            2,
        )
        cv2.putText(
            img,
            f"Capture #{number}",
            (20, 80),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.7,
            (200, 200, 200),
            1,
        )
        return img

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Camera {self._camera_id} is closed")

    def close(self) -> None:
        """Mark the simulated camera closed. Safe to call repeatedly."""
        if not self._closed:
            self._closed = True
            logger.debug("Simulated camera closed", camera_id=self._camera_id)


def _encode(img: NDArray[Any], image_format: str) -> bytes:
    """Encode an image as JPEG or PNG bytes.

    Raises:
        ValueError: For an unsupported format.
        RuntimeError: If OpenCV fails to encode.
    """
    if image_format == "jpg":
        ok, buffer = cv2.imencode(
            ".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, _DEFAULT_JPEG_QUALITY]
        )
    elif image_format == "png":
        ok, buffer = cv2.imencode(".png", img)
    else:
        raise ValueError(f"Unsupported image format: {image_format!r}")
    if not ok:
        raise RuntimeError(f"Failed to encode image as {image_format}")
    return buffer.tobytes()


def create_file_camera(image_path: Path | str) -> DigitalTwinCameraDriver:
    """Create a twin that returns the same image on every capture."""
    config = DigitalTwinConfig(
        image_source=ImageSource.FILE,
        image_path=Path(image_path),
    )
    return DigitalTwinCameraDriver(config=config)


def create_directory_camera(
    image_dir: Path | str,
    cycle: bool = True,
) -> DigitalTwinCameraDriver:
    """Create a twin that steps through the images of a directory.

    Args:
        image_dir: Directory containing .jpg/.png/.tif images.
        cycle: Loop back to the first image after the last one.
    """
    config = DigitalTwinConfig(
        image_source=ImageSource.DIRECTORY,
        image_path=Path(image_dir),
        cycle_images=cycle,
    )
    return DigitalTwinCameraDriver(config=config)
