"""Camera resource handle with driver injection.

CameraResourceHandle owns at most one open CameraInstance and converts
driver failures into the capture error types the orchestrator understands.
It is used from the pipeline worker thread only, except release(), which
the orchestrator may also call from its dispatcher thread once no pipeline
is in flight.

Example:
    from timelapse_mcp.devices.camera import CameraResourceHandle
    from timelapse_mcp.drivers.cameras import DigitalTwinCameraDriver

    handle = CameraResourceHandle(DigitalTwinCameraDriver())
    handle.acquire()
    try:
        handle.focus()
        data = handle.capture_frame()
    finally:
        handle.release()
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from timelapse_mcp.capture.errors import FocusFailedError, ResourceUnavailableError
from timelapse_mcp.drivers.cameras import select_default_camera
from timelapse_mcp.observability import get_logger

if TYPE_CHECKING:
    from timelapse_mcp.drivers.cameras import CameraDriver, CameraInstance

logger = get_logger(__name__)


class CameraResourceHandle:
    """Exclusive, lazily opened camera.

    Attributes:
        camera_id: Requested camera, None for the default camera.
        image_format: Encoding requested from the driver on capture.
    """

    def __init__(
        self,
        driver: CameraDriver,
        camera_id: int | None = None,
        image_format: str = "jpg",
    ) -> None:
        """Create a closed handle. No device is touched until acquire().

        Args:
            driver: Camera driver (OpenCV or digital twin).
            camera_id: Camera to open; None selects the default camera.
            image_format: 'jpg' or 'png'.
        """
        self._driver = driver
        self.camera_id = camera_id
        self.image_format = image_format
        self._instance: CameraInstance | None = None
        self._opened_id: int | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        """Return handle summary for logs."""
        return (
            f"CameraResourceHandle(camera_id={self.camera_id}, "
            f"open={self.is_open})"
        )

    @property
    def is_open(self) -> bool:
        """True while a driver instance is held."""
        with self._lock:
            return self._instance is not None

    @property
    def opened_camera_id(self) -> int | None:
        """Id of the open camera (resolved default included), None if closed."""
        with self._lock:
            return self._opened_id

    def configure(self, camera_id: int | None, image_format: str = "jpg") -> None:
        """Select the camera and encoding for the next sequence.

        An open camera is released if a different camera is requested.

        Args:
            camera_id: Camera to open; None selects the default camera.
            image_format: 'jpg' or 'png'.
        """
        if camera_id != self.camera_id:
            self.release()
        self.camera_id = camera_id
        self.image_format = image_format

    def acquire(self) -> None:
        """Open the camera if it is not already open.

        Raises:
            ResourceUnavailableError: If no camera exists, the id is unknown,
                or the driver cannot open the device.
        """
        with self._lock:
            if self._instance is not None:
                return

        camera_id = self.camera_id
        try:
            if camera_id is None:
                camera_id = select_default_camera(self._driver.get_connected_cameras())
            instance = self._driver.open(camera_id)
        except (LookupError, ValueError, RuntimeError, OSError) as e:
            logger.error("Camera unavailable", camera_id=camera_id, error=str(e))
            raise ResourceUnavailableError(
                f"Camera {camera_id if camera_id is not None else 'default'} "
                f"unavailable: {e}"
            ) from e

        with self._lock:
            self._instance = instance
            self._opened_id = camera_id
        logger.info("Camera acquired", camera_id=camera_id)

    def focus(self, attempts: int = 1) -> None:
        """Run autofocus passes until one converges.

        Args:
            attempts: Passes to try before giving up (at least 1).

        Raises:
            FocusFailedError: If no pass converged.
            ResourceUnavailableError: If the camera is not acquired or the
                driver fails.
        """
        instance = self._require_instance()
        for attempt in range(1, max(attempts, 1) + 1):
            try:
                converged = instance.autofocus()
            except RuntimeError as e:
                raise ResourceUnavailableError(f"Autofocus failed: {e}") from e
            if converged:
                logger.debug("Focus converged", attempt=attempt)
                return
            logger.info("Focus did not converge", attempt=attempt, attempts=attempts)
        raise FocusFailedError(f"Autofocus did not converge after {attempts} attempt(s)")

    def capture_frame(self) -> bytes:
        """Capture one encoded frame.

        Returns:
            Encoded image bytes in image_format.

        Raises:
            ResourceUnavailableError: If the camera is not acquired or the
                capture fails.
        """
        instance = self._require_instance()
        try:
            data = instance.capture(self.image_format)
        except (RuntimeError, ValueError, OSError) as e:
            logger.error("Capture failed", camera_id=self._opened_id, error=str(e))
            raise ResourceUnavailableError(f"Capture failed: {e}") from e
        logger.debug("Frame captured", camera_id=self._opened_id, size=len(data))
        return data

    def release(self) -> None:
        """Close the camera. Idempotent; close errors are logged, not raised."""
        with self._lock:
            instance, self._instance = self._instance, None
            camera_id, self._opened_id = self._opened_id, None
        if instance is None:
            return
        try:
            instance.close()
        except Exception as e:
            logger.warning("Error releasing camera", camera_id=camera_id, error=str(e))
        else:
            logger.info("Camera released", camera_id=camera_id)

    def _require_instance(self) -> CameraInstance:
        with self._lock:
            instance = self._instance
        if instance is None:
            raise ResourceUnavailableError("Camera not acquired")
        return instance
