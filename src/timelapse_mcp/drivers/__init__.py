"""Camera drivers for time-lapse capture.

Supports two modes:
- HARDWARE: Real cameras through OpenCV
- DIGITAL_TWIN: Simulated cameras for testing without hardware

Use drivers.config to switch modes:
    from timelapse_mcp.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from timelapse_mcp.drivers import cameras, config
from timelapse_mcp.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    set_data_dir,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    # Submodules
    "cameras",
    "config",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "get_factory",
    "configure",
    "set_data_dir",
    "use_digital_twin",
    "use_hardware",
]
