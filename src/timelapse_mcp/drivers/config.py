"""Driver configuration and factory.

Supports switching between real camera drivers and the digital twin for
testing and development without physical hardware.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from timelapse_mcp.drivers.cameras import (
    CameraDriver,
    DigitalTwinCameraDriver,
    DigitalTwinConfig,
    ImageSource,
    OpenCVCameraDriver,
)
from timelapse_mcp.observability import get_logger

if TYPE_CHECKING:
    from timelapse_mcp.data import FrameIndexer, FrameWriter

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Video device indices probed in hardware mode
DEFAULT_MAX_PROBE = 4


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # Real cameras via OpenCV
    DIGITAL_TWIN = "digital_twin"  # Simulated cameras for testing


def _default_data_dir() -> Path:
    """Get default directory for sequence storage.

    Returns:
        Path to ~/.timelapse-mcp/sequences. The directory may not exist
        yet; it is created on the first frame write.
    """
    return Path.home() / ".timelapse-mcp" / "sequences"


@dataclass
class DriverConfig:
    """Configuration for driver selection and storage.

    Attributes:
        mode: HARDWARE for real devices, DIGITAL_TWIN for simulation.
        data_dir: Directory holding one sub-directory per sequence.
        camera_facing: Facing per video device index ('back'/'front'),
            used to choose the default camera in hardware mode.
        max_probe: Video device indices probed in hardware mode.
        stub_image_path: Image file or directory for the digital twin
            (None = synthetic frames).
        twin: Full digital twin configuration; overrides stub_image_path.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN

    # Data storage settings
    data_dir: Path = field(default_factory=_default_data_dir)

    # Hardware settings
    camera_facing: dict[int, str] = field(default_factory=dict)
    max_probe: int = DEFAULT_MAX_PROBE

    # Digital twin settings
    stub_image_path: Path | None = None
    twin: DigitalTwinConfig | None = None


class DriverFactory:
    """Factory for creating drivers and frame writers from configuration.

    Thread Safety:
        Not thread-safe. The global factory singleton should be configured
        once at startup before the orchestrator starts.
    """

    def __init__(self, config: DriverConfig | None = None):
        """Initialize driver factory.

        Args:
            config: DriverConfig; None defaults to digital twin mode with
                all defaults.

        Example:
            >>> factory = DriverFactory()  # Digital twin mode
            >>> driver = factory.create_camera_driver()
        """
        self.config = config or DriverConfig()

    def create_camera_driver(self) -> CameraDriver:
        """Create the camera driver for the configured mode.

        Returns:
            OpenCVCameraDriver in HARDWARE mode, DigitalTwinCameraDriver in
            DIGITAL_TWIN mode.
        """
        if self.config.mode == DriverMode.HARDWARE:
            logger.debug("Creating OpenCV camera driver", max_probe=self.config.max_probe)
            return OpenCVCameraDriver(
                max_probe=self.config.max_probe,
                facing=self.config.camera_facing,
            )

        twin_config = self.config.twin
        if twin_config is None:
            stub = self.config.stub_image_path
            if stub is None:
                twin_config = DigitalTwinConfig()
            else:
                twin_config = DigitalTwinConfig(
                    image_source=ImageSource.DIRECTORY
                    if stub.is_dir()
                    else ImageSource.FILE,
                    image_path=stub,
                )
        return DigitalTwinCameraDriver(twin_config)

    def create_frame_writer(
        self,
        image_format: str = "jpg",
        indexer: FrameIndexer | None = None,
    ) -> FrameWriter:
        """Create a frame writer rooted at the configured data directory.

        Args:
            image_format: 'jpg' or 'png'.
            indexer: Optional frame indexer.
        """
        from timelapse_mcp.data import FrameWriter

        return FrameWriter(
            self.config.data_dir.expanduser(),
            image_format=image_format,
            indexer=indexer,
        )


# =============================================================================
# Global Singleton
# =============================================================================
# Not thread-safe: configure once at startup before starting sequences.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Get the global driver factory, creating a digital twin one on first use.

    Example:
        >>> factory = get_factory()  # Default digital twin
        >>> use_hardware()
        >>> factory = get_factory()  # Hardware mode
    """
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one using ``config``.

    Example:
        >>> configure(DriverConfig(mode=DriverMode.HARDWARE, data_dir=Path("/data")))
    """
    global _factory
    _factory = DriverFactory(config)
    logger.info(
        "Drivers configured",
        mode=config.mode.value,
        data_dir=str(config.data_dir),
    )


def _copy_config_with_mode(mode: DriverMode) -> DriverConfig:
    """Current configuration with only the mode changed."""
    return replace(get_factory().config, mode=mode)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch to simulated cameras.

    Args:
        preserve_config: Keep data_dir and other settings instead of
            resetting everything to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(preserve_config: bool = False) -> None:
    """Switch to real cameras through OpenCV.

    Args:
        preserve_config: Keep data_dir and other settings instead of
            resetting everything to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.HARDWARE))
    else:
        configure(DriverConfig(mode=DriverMode.HARDWARE))


def set_data_dir(data_dir: Path | str) -> None:
    """Set the directory new frame writers write under.

    Args:
        data_dir: Path or string; '~' is expanded when a writer is created.
    """
    factory = get_factory()
    factory.config.data_dir = Path(data_dir)
    logger.info("Data directory set", data_dir=str(data_dir))
