"""Unit tests for the Digital Twin Camera Driver.

Test Categories:
1. Driver Tests
   - Camera listing and open errors
   - Fault injection (busy camera, failing captures, focus)
   - __repr__ string representation

2. Instance Tests
   - Context manager (__enter__/__exit__)
   - Synthetic, file and directory image sources
   - Encoding formats and closed-camera errors
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from tests.helpers import assert_implements_protocol
from timelapse_mcp.drivers.cameras import CameraDriver, CameraInstance
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

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def driver() -> DigitalTwinCameraDriver:
    """Create default DigitalTwinCameraDriver for testing.

    Business context:
    Synthetic mode gives predictable frames without image files, so the
    capture pipeline can be exercised anywhere, including CI.

    Returns:
        DigitalTwinCameraDriver with the default front/rear camera pair.
    """
    return DigitalTwinCameraDriver()


@pytest.fixture
def camera_info() -> TwinCameraInfo:
    """Small camera description so encoded frames stay tiny."""
    return TwinCameraInfo(name="Tiny", width=64, height=48, facing="back")


def _decode(data: bytes) -> np.ndarray:
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert img is not None
    return img


def _write_image(path: Path, color: int, size: tuple[int, int] = (32, 24)) -> Path:
    width, height = size
    cv2.imwrite(str(path), np.full((height, width, 3), color, dtype=np.uint8))
    return path


# =============================================================================
# Driver
# =============================================================================


class TestDigitalTwinCameraDriver:
    """Discovery and open()."""

    def test_lists_default_cameras(self, driver: DigitalTwinCameraDriver) -> None:
        cameras = driver.get_connected_cameras()

        assert set(cameras) == {0, 1}
        assert cameras[1]["facing"] == "back"
        assert cameras == dict(DEFAULT_CAMERAS)

    def test_listing_is_a_copy(self, driver: DigitalTwinCameraDriver) -> None:
        driver.get_connected_cameras().clear()

        assert len(driver.get_connected_cameras()) == 2

    def test_custom_cameras(self, camera_info: TwinCameraInfo) -> None:
        driver = DigitalTwinCameraDriver(cameras={5: camera_info})

        assert list(driver.get_connected_cameras()) == [5]

    def test_open_unknown_camera(self, driver: DigitalTwinCameraDriver) -> None:
        with pytest.raises(ValueError, match="not found"):
            driver.open(7)

    def test_open_unavailable_camera(self) -> None:
        """Simulates another app holding the camera."""
        driver = DigitalTwinCameraDriver(
            DigitalTwinConfig(unavailable_cameras=frozenset({1}))
        )

        with pytest.raises(RuntimeError, match="in use"):
            driver.open(1)
        driver.open(0).close()

    def test_failing_captures_counted_across_reopen(self) -> None:
        """Capture numbers belong to the driver, so a reopen does not reset them."""
        driver = DigitalTwinCameraDriver(
            DigitalTwinConfig(failing_captures=frozenset({2}))
        )

        with driver.open(0) as camera:
            camera.capture()
        with driver.open(0) as camera:
            with pytest.raises(RuntimeError, match="capture 2"):
                camera.capture()
            camera.capture()

    def test_focus_fault(self) -> None:
        driver = DigitalTwinCameraDriver(DigitalTwinConfig(focus_converges=False))

        with driver.open(1) as camera:
            assert camera.autofocus() is False

    def test_repr_shows_source_and_cameras(self, driver: DigitalTwinCameraDriver) -> None:
        text = repr(driver)

        assert "synthetic" in text
        assert "[0, 1]" in text

    def test_implements_protocol(self, driver: DigitalTwinCameraDriver) -> None:
        assert_implements_protocol(driver, CameraDriver)
        with driver.open(0) as camera:
            assert_implements_protocol(camera, CameraInstance)


# =============================================================================
# Instance
# =============================================================================


class TestDigitalTwinCameraInstance:
    """Capture and lifecycle of an open simulated camera."""

    def test_context_manager_closes(self, driver: DigitalTwinCameraDriver) -> None:
        with driver.open(0) as camera:
            assert camera.is_closed is False

        assert camera.is_closed is True

    def test_context_manager_exit_with_exception(
        self, driver: DigitalTwinCameraDriver
    ) -> None:
        with pytest.raises(KeyError):
            with driver.open(0) as camera:
                raise KeyError("boom")

        assert camera.is_closed is True

    def test_get_info(self, driver: DigitalTwinCameraDriver) -> None:
        with driver.open(1) as camera:
            info = camera.get_info()

        assert info["camera_id"] == 1
        assert info["width"] == 1280
        assert info["facing"] == "back"

    def test_synthetic_jpeg_at_camera_resolution(
        self, camera_info: TwinCameraInfo
    ) -> None:
        camera = DigitalTwinCameraInstance(0, camera_info, DigitalTwinConfig())

        data = camera.capture()

        assert data[:2] == b"\xff\xd8"
        assert _decode(data).shape == (48, 64, 3)

    def test_png_encoding(self, camera_info: TwinCameraInfo) -> None:
        camera = DigitalTwinCameraInstance(0, camera_info, DigitalTwinConfig())

        assert camera.capture("png")[:8] == b"\x89PNG\r\n\x1a\n"

    def test_unsupported_format(self, camera_info: TwinCameraInfo) -> None:
        camera = DigitalTwinCameraInstance(0, camera_info, DigitalTwinConfig())

        with pytest.raises(ValueError, match="Unsupported"):
            camera.capture("gif")

    def test_consecutive_synthetic_frames_differ(
        self, camera_info: TwinCameraInfo
    ) -> None:
        camera = DigitalTwinCameraInstance(0, camera_info, DigitalTwinConfig())

        assert camera.capture("png") != camera.capture("png")

    def test_closed_camera_refuses_work(self, camera_info: TwinCameraInfo) -> None:
        camera = DigitalTwinCameraInstance(0, camera_info, DigitalTwinConfig())
        camera.close()
        camera.close()

        with pytest.raises(RuntimeError, match="closed"):
            camera.capture()
        with pytest.raises(RuntimeError, match="closed"):
            camera.autofocus()

    def test_capture_delay(self, camera_info: TwinCameraInfo) -> None:
        camera = DigitalTwinCameraInstance(
            0, camera_info, DigitalTwinConfig(capture_delay_s=0.01)
        )

        assert camera.capture()


class TestImageSources:
    """File and directory backed twins."""

    def test_file_camera_resizes_to_camera(self, tmp_path: Path) -> None:
        image = _write_image(tmp_path / "still.png", 200)
        driver = create_file_camera(image)

        with driver.open(0) as camera:
            img = _decode(camera.capture("png"))

        assert img.shape == (480, 640, 3)
        assert int(img[10, 10, 0]) == 200

    def test_missing_file_falls_back_to_synthetic(self, tmp_path: Path) -> None:
        driver = create_file_camera(tmp_path / "missing.jpg")

        with driver.open(0) as camera:
            assert _decode(camera.capture()).shape == (480, 640, 3)

    def test_unreadable_file_falls_back_to_synthetic(self, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.jpg"
        bogus.write_bytes(b"not an image")

        with create_file_camera(bogus).open(0) as camera:
            assert camera.capture()[:2] == b"\xff\xd8"

    def test_directory_camera_cycles(self, tmp_path: Path) -> None:
        _write_image(tmp_path / "a.png", 10)
        _write_image(tmp_path / "b.png", 250)
        (tmp_path / "notes.txt").write_text("ignored")
        driver = create_directory_camera(tmp_path)

        with driver.open(0) as camera:
            values = [int(_decode(camera.capture("png"))[5, 5, 0]) for _ in range(3)]

        assert values == [10, 250, 10]

    def test_directory_camera_without_cycle_repeats_last(self, tmp_path: Path) -> None:
        _write_image(tmp_path / "a.png", 10)
        _write_image(tmp_path / "b.png", 250)
        driver = create_directory_camera(tmp_path, cycle=False)

        with driver.open(0) as camera:
            values = [int(_decode(camera.capture("png"))[5, 5, 0]) for _ in range(3)]

        assert values == [10, 250, 250]

    def test_empty_directory_falls_back_to_synthetic(self, tmp_path: Path) -> None:
        with create_directory_camera(tmp_path).open(0) as camera:
            assert camera.capture()[:2] == b"\xff\xd8"

    def test_directory_source_without_path(self) -> None:
        driver = DigitalTwinCameraDriver(
            DigitalTwinConfig(image_source=ImageSource.DIRECTORY)
        )

        with driver.open(0) as camera:
            assert camera.capture()
