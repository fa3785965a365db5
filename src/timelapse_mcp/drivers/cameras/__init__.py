"""Camera driver module.

Provides camera access through OpenCV (real webcams and phone-style
devices) and a digital twin for development without hardware.

Protocols:
    CameraDriver: Interface for camera discovery and connection
    CameraInstance: Interface for focus and capture operations

Implementations:
    OpenCVCameraDriver/OpenCVCameraInstance: cv2.VideoCapture devices
    DigitalTwinCameraDriver/DigitalTwinCameraInstance: Simulated cameras

Helpers:
    select_default_camera: Pick the back-facing camera, else the lowest id
"""

from __future__ import annotations

from collections.abc import Mapping
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

from timelapse_mcp.drivers.cameras.opencv import (
    OpenCVCameraDriver,
    OpenCVCameraInstance,
)
from timelapse_mcp.drivers.cameras.twin import (
    DEFAULT_CAMERAS,
    DigitalTwinCameraDriver,
    DigitalTwinCameraInstance,
    DigitalTwinConfig,
    ImageSource,
    TwinCameraInfo,
    create_directory_camera,
    create_file_camera,
)


@runtime_checkable
class CameraInstance(Protocol):  # pragma: no cover
    """Protocol for an opened camera.

    Represents exclusive access to one device, held from open() until
    close(). Implemented by OpenCVCameraInstance and
    DigitalTwinCameraInstance.

    Business context: The time-lapse pipeline opens, focuses, captures and
    closes through this contract only, so the same pipeline drives real
    devices in the field and the digital twin in tests and demos.
    """

    def get_info(self) -> dict[str, Any]:
        """Get camera information.

        Returns:
            Dict with at least:
            - camera_id: int - Identifier used to open the camera
            - name: str - Human readable camera name
            - width: int - Frame width in pixels
            - height: int - Frame height in pixels
            - facing: str - "back", "front" or "unknown"

        Raises:
            RuntimeError: If the camera is disconnected.
        """
        ...

    def autofocus(self) -> bool:
        """Run one autofocus pass.

        Blocks until the lens settles or the pass gives up.

        Returns:
            True if focus converged, False otherwise. Cameras without
            autofocus return True.

        Raises:
            RuntimeError: If the camera is closed or disconnected.
        """
        ...

    def capture(self, image_format: str = "jpg") -> bytes:
        """Capture a single still frame.

        Args:
            image_format: Encoding of the returned bytes, 'jpg' or 'png'.

        Returns:
            Encoded image bytes ready to be written to disk.

        Raises:
            ValueError: If image_format is unsupported.
            RuntimeError: If the capture or encoding fails.

        Example:
            >>> jpeg_data = camera.capture()
            >>> Path("0000.jpg").write_bytes(jpeg_data)
        """
        ...

    def close(self) -> None:
        """Release the device. Safe to call multiple times."""
        ...

    def __enter__(self) -> CameraInstance:
        """Return self for use in a with-block."""
        ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the camera; exceptions are not suppressed."""
        ...


@runtime_checkable
class CameraDriver(Protocol):  # pragma: no cover
    """Protocol for camera drivers (hardware abstraction layer).

    Defines camera discovery and connection. Implemented by
    OpenCVCameraDriver (real hardware) and DigitalTwinCameraDriver
    (simulation).

    Business context: Production runs use OpenCVCameraDriver while tests
    and CI use the digital twin with injected faults.
    """

    def get_connected_cameras(self) -> Mapping[int, Mapping[str, Any]]:
        """Enumerate available cameras.

        Returns:
            Mapping of camera_id to camera info. Empty if no cameras.
            Each info contains at least name and facing.

        Raises:
            RuntimeError: If device enumeration fails.

        Example:
            >>> for cam_id, info in driver.get_connected_cameras().items():
            ...     print(f"Camera {cam_id}: {info['name']}")
        """
        ...

    def open(self, camera_id: int) -> CameraInstance:
        """Open a camera for exclusive access.

        Args:
            camera_id: Identifier from get_connected_cameras().

        Returns:
            CameraInstance supporting the context manager protocol.

        Raises:
            ValueError: If camera_id is unknown.
            RuntimeError: If the camera is in use or cannot be opened.
        """
        ...


def select_default_camera(cameras: Mapping[int, Mapping[str, Any]]) -> int:
    """Choose the camera used when none is configured.

    Prefers the lowest-numbered back-facing camera and falls back to the
    lowest camera id.

    Args:
        cameras: Result of CameraDriver.get_connected_cameras().

    Returns:
        Selected camera id.

    Raises:
        LookupError: If no cameras are available.

    Example:
        >>> select_default_camera({0: {"facing": "front"}, 1: {"facing": "back"}})
        1
    """
    if not cameras:
        raise LookupError("No cameras available")
    back_facing = [
        camera_id
        for camera_id, info in cameras.items()
        if info.get("facing") == "back"
    ]
    if back_facing:
        return min(back_facing)
    return min(cameras)


__all__ = [
    # Protocols
    "CameraDriver",
    "CameraInstance",
    "select_default_camera",
    # OpenCV implementation
    "OpenCVCameraDriver",
    "OpenCVCameraInstance",
    # Digital twin implementation
    "DigitalTwinCameraDriver",
    "DigitalTwinCameraInstance",
    "DigitalTwinConfig",
    "ImageSource",
    "DEFAULT_CAMERAS",
    "create_directory_camera",
    "create_file_camera",
    # TypedDicts
    "TwinCameraInfo",
]
