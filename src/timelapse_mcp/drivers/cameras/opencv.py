"""OpenCV Camera Driver - Real Hardware Implementation.

Wraps cv2.VideoCapture to provide camera access for webcams, USB cameras
and phone cameras exposed as video devices, following the CameraDriver
protocol.

Types:
    OpenCVCameraInfo: TypedDict for camera information
    VideoCaptureProtocol: Subset of cv2.VideoCapture used here (enables testing)

Classes:
    OpenCVCameraInstance: Opened camera for focus and capture
    OpenCVCameraDriver: Driver for probing and opening devices

Example:
    from timelapse_mcp.drivers.cameras.opencv import OpenCVCameraDriver

    driver = OpenCVCameraDriver()
    cameras = driver.get_connected_cameras()
    if cameras:
        with driver.open(min(cameras)) as camera:
            camera.autofocus()
            jpeg_data = camera.capture()
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from types import MappingProxyType, TracebackType
from typing import TYPE_CHECKING, Any, Protocol, TypedDict, final, runtime_checkable

import cv2
import numpy as np

from timelapse_mcp.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "OpenCVCameraDriver",
    "OpenCVCameraInstance",
    "OpenCVCameraInfo",
    "VideoCaptureProtocol",
]

# =============================================================================
# Constants
# =============================================================================

# Device indices probed by get_connected_cameras()
_DEFAULT_MAX_PROBE = 4

# Frames read and discarded after open so auto exposure can settle
_WARMUP_FRAMES = 3

# Autofocus convergence: relative sharpness change between consecutive
# frames below this tolerance counts as settled
_FOCUS_TOLERANCE = 0.02
_FOCUS_MAX_FRAMES = 30
_FOCUS_SETTLE_FRAMES = 3
_FOCUS_FRAME_DELAY_SEC = 0.05

_JPEG_QUALITY = 90

_ENCODE_PARAMS: Mapping[str, tuple[str, list[int]]] = MappingProxyType(
    {
        "jpg": (".jpg", [cv2.IMWRITE_JPEG_QUALITY, _JPEG_QUALITY]),
        "png": (".png", []),
    }
)


class OpenCVCameraInfo(TypedDict):
    """Camera description returned by discovery and get_info()."""

    camera_id: int
    name: str
    width: int
    height: int
    facing: str


@runtime_checkable
class VideoCaptureProtocol(Protocol):  # pragma: no cover
    """Subset of cv2.VideoCapture used by this driver.

    Implement this protocol to drive the OpenCV driver without a device:

        driver = OpenCVCameraDriver(capture_factory=lambda index: FakeCapture())
    """

    def isOpened(self) -> bool:  # noqa: N802 - OpenCV API name
        """Return True if the device was opened."""
        ...

    def read(self) -> tuple[bool, Any]:
        """Grab and decode the next frame."""
        ...

    def get(self, prop_id: int) -> float:
        """Read a capture property."""
        ...

    def set(self, prop_id: int, value: float) -> bool:
        """Write a capture property; False when unsupported."""
        ...

    def release(self) -> None:
        """Close the device."""
        ...


def sharpness(frame: NDArray[Any]) -> float:
    """Focus measure: variance of the Laplacian of the grayscale frame.

    Args:
        frame: BGR or grayscale image.

    Returns:
        Non-negative score; higher is sharper.
    """
    gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


@final
class OpenCVCameraInstance:
    """Opened OpenCV camera.

    Should not be constructed directly - use OpenCVCameraDriver.open().
    """

    def __init__(
        self,
        camera_id: int,
        capture: VideoCaptureProtocol,
        facing: str = "unknown",
        frame_delay_sec: float = _FOCUS_FRAME_DELAY_SEC,
    ) -> None:
        """Wrap an opened capture device.

        Args:
            camera_id: Device index.
            capture: Opened VideoCapture (or compatible object).
            facing: "back", "front" or "unknown".
            frame_delay_sec: Pause between frames while autofocusing.
        """
        self._camera_id = camera_id
        self._capture = capture
        self._frame_delay_sec = frame_delay_sec
        self._closed = False
        self._info = OpenCVCameraInfo(
            camera_id=camera_id,
            name=f"Video device {camera_id}",
            width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            facing=facing,
        )

    def __enter__(self) -> OpenCVCameraInstance:
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
            f"OpenCVCameraInstance(camera_id={self._camera_id}, "
            f"closed={self._closed})"
        )

    @property
    def is_closed(self) -> bool:
        """True after close()."""
        return self._closed

    def get_info(self) -> dict[str, Any]:
        """Return device index, name and frame size."""
        self._ensure_open()
        return dict(self._info)

    def autofocus(self) -> bool:
        """Enable continuous autofocus and wait for the image to settle.

        OpenCV exposes no focus-complete signal, so convergence is judged
        from the frames: the pass succeeds once the Laplacian sharpness
        changes by less than _FOCUS_TOLERANCE over _FOCUS_SETTLE_FRAMES
        consecutive frames.

        Returns:
            True when settled, or when the device has no autofocus control.
            False if sharpness was still moving after _FOCUS_MAX_FRAMES.

        Raises:
            RuntimeError: If the camera is closed or stops delivering frames.
        """
        self._ensure_open()
        if not self._capture.set(cv2.CAP_PROP_AUTOFOCUS, 1):
            logger.debug("Autofocus unsupported", camera_id=self._camera_id)
            return True

        previous: float | None = None
        stable = 0
        for frame_number in range(_FOCUS_MAX_FRAMES):
            score = sharpness(self._read_frame())
            if previous is not None:
                change = abs(score - previous) / max(previous, 1e-6)
                stable = stable + 1 if change < _FOCUS_TOLERANCE else 0
                if stable >= _FOCUS_SETTLE_FRAMES:
                    logger.debug(
                        "Autofocus settled",
                        camera_id=self._camera_id,
                        frames=frame_number + 1,
                        sharpness=round(score, 2),
                    )
                    return True
            previous = score
            if self._frame_delay_sec > 0:
                time.sleep(self._frame_delay_sec)

        logger.warning(
            "Autofocus did not settle",
            camera_id=self._camera_id,
            frames=_FOCUS_MAX_FRAMES,
        )
        return False

    def capture(self, image_format: str = "jpg") -> bytes:
        """Read one frame and encode it.

        Args:
            image_format: 'jpg' or 'png'.

        Returns:
            Encoded image bytes.

        Raises:
            ValueError: If image_format is unsupported.
            RuntimeError: If the device returns no frame or encoding fails.
        """
        if image_format not in _ENCODE_PARAMS:
            raise ValueError(f"Unsupported image format: {image_format!r}")
        self._ensure_open()

        frame = self._read_frame()
        extension, params = _ENCODE_PARAMS[image_format]
        ok, buffer = cv2.imencode(extension, frame, params)
        if not ok:
            raise RuntimeError(f"Failed to encode frame as {image_format}")
        return np.asarray(buffer).tobytes()

    def _read_frame(self) -> NDArray[Any]:
        self._ensure_open()
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise RuntimeError(f"Camera {self._camera_id} returned no frame")
        return frame

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Camera {self._camera_id} is closed")

    def close(self) -> None:
        """Release the device. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        try:
            self._capture.release()
        except cv2.error as e:
            logger.warning(
                "Error releasing camera", camera_id=self._camera_id, error=str(e)
            )
        logger.debug("Camera released", camera_id=self._camera_id)


@final
class OpenCVCameraDriver:
    """Camera driver for devices reachable through cv2.VideoCapture.

    Supports dependency injection for testing via capture_factory.

    Example:
        # Production use
        driver = OpenCVCameraDriver()

        # Testing
        driver = OpenCVCameraDriver(capture_factory=FakeCapture)
    """

    def __init__(
        self,
        capture_factory: Callable[[int], VideoCaptureProtocol] | None = None,
        max_probe: int = _DEFAULT_MAX_PROBE,
        facing: Mapping[int, str] | None = None,
        warmup_frames: int = _WARMUP_FRAMES,
        focus_frame_delay_sec: float = _FOCUS_FRAME_DELAY_SEC,
    ) -> None:
        """Create the driver. No device is touched until discovery or open.

        Args:
            capture_factory: Callable returning a capture for a device
                index. Defaults to cv2.VideoCapture.
            max_probe: Device indices 0..max_probe-1 are probed on discovery.
            facing: Optional facing per device index ('back' or 'front').
                OpenCV cannot report it, so it is configured.
            warmup_frames: Frames discarded right after open.
            focus_frame_delay_sec: Pause between frames while autofocusing.
        """
        self._capture_factory: Callable[[int], VideoCaptureProtocol] = (
            capture_factory or cv2.VideoCapture
        )
        self._max_probe = max_probe
        self._facing = dict(facing or {})
        self._warmup_frames = warmup_frames
        self._focus_frame_delay_sec = focus_frame_delay_sec

    def __repr__(self) -> str:
        """Return driver summary for logs."""
        return f"OpenCVCameraDriver(max_probe={self._max_probe})"

    def get_connected_cameras(self) -> dict[int, OpenCVCameraInfo]:
        """Probe device indices and report the ones that open.

        Each device is opened and released immediately.

        Returns:
            Mapping of device index to camera info.
        """
        cameras: dict[int, OpenCVCameraInfo] = {}
        for index in range(self._max_probe):
            capture = self._capture_factory(index)
            try:
                if not capture.isOpened():
                    continue
                cameras[index] = OpenCVCameraInfo(
                    camera_id=index,
                    name=f"Video device {index}",
                    width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                    height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                    facing=self._facing.get(index, "unknown"),
                )
            finally:
                capture.release()

        logger.info("Camera discovery complete", count=len(cameras))
        return cameras

    def open(self, camera_id: int) -> OpenCVCameraInstance:
        """Open a device for capture.

        Args:
            camera_id: Device index.

        Returns:
            OpenCVCameraInstance.

        Raises:
            ValueError: If camera_id is negative.
            RuntimeError: If the device cannot be opened (missing or busy).
        """
        if camera_id < 0:
            raise ValueError(f"Invalid camera ID: {camera_id}")

        capture = self._capture_factory(camera_id)
        if not capture.isOpened():
            capture.release()
            logger.error("Failed to open camera", camera_id=camera_id)
            raise RuntimeError(f"Camera {camera_id} could not be opened")

        for _ in range(self._warmup_frames):
            capture.read()

        instance = OpenCVCameraInstance(
            camera_id,
            capture,
            facing=self._facing.get(camera_id, "unknown"),
            frame_delay_sec=self._focus_frame_delay_sec,
        )
        logger.info("Camera opened", camera_id=camera_id)
        return instance
