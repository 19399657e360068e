"""Camera drivers for meal capture.

Supports two modes:
- HARDWARE: Real webcam through OpenCV
- DIGITAL_TWIN: Simulated camera for testing without hardware

Use drivers.config to switch modes:
    from meal_capture.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from meal_capture.drivers import config, media
from meal_capture.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    "config",
    "media",
    "DriverConfig",
    "DriverFactory",
    "DriverMode",
    "configure",
    "get_factory",
    "use_digital_twin",
    "use_hardware",
]
