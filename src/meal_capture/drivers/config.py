"""Driver configuration and factory.

Switches between a real webcam (OpenCV) and the digital twin camera, and
builds capture controllers wired to whichever gateway is configured.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from meal_capture.drivers.media import (
    DigitalTwinMediaConfig,
    DigitalTwinMediaGateway,
    FacingMode,
    MediaDeviceGateway,
    OpenCVGatewayConfig,
    OpenCVMediaGateway,
    StreamConstraints,
)
from meal_capture.utils.image import DEFAULT_JPEG_QUALITY

if TYPE_CHECKING:
    from meal_capture.devices.capture_controller import (
        CaptureController,
        CaptureControllerConfig,
        CaptureHooks,
    )
    from meal_capture.observability import CaptureStats

# =============================================================================
# Constants
# =============================================================================

DEFAULT_READINESS_TIMEOUT_S = 10.0

# Frame size reported by the simulated rear camera
DEFAULT_TWIN_FRAME_WIDTH = 1280
DEFAULT_TWIN_FRAME_HEIGHT = 720

# Consecutive failed reads before a webcam is reported as errored
DEFAULT_READ_FAILURE_LIMIT = 30


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # OpenCV webcam
    DIGITAL_TWIN = "digital_twin"  # Simulated camera


@dataclass
class DriverConfig:
    """Configuration for gateway selection and capture settings.

    Attributes:
        mode: HARDWARE for a real webcam, DIGITAL_TWIN for simulation.
        device_index: Explicit camera index (None = choose by facing mode).
        facing_mode: Preferred camera direction (rear by default).
        readiness_timeout_s: Seconds from permission grant to first frame.
        jpeg_quality: JPEG quality for camera snapshots.
        twin_frame_width: Frame width reported by the digital twin.
        twin_frame_height: Frame height reported by the digital twin.
        twin_torch: Digital twin offers a torch.
        twin_zoom_range: Digital twin zoom (min, max, step), None = no zoom.
        read_failure_limit: Failed webcam reads before DeviceErrored.
        zoom_range: Webcam zoom (min, max, step) when CAP_PROP_ZOOM works.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN

    # Stream selection
    device_index: int | None = None
    facing_mode: FacingMode = FacingMode.ENVIRONMENT

    # Controller settings
    readiness_timeout_s: float = DEFAULT_READINESS_TIMEOUT_S
    jpeg_quality: int = DEFAULT_JPEG_QUALITY

    # Digital twin settings
    twin_frame_width: int = DEFAULT_TWIN_FRAME_WIDTH
    twin_frame_height: int = DEFAULT_TWIN_FRAME_HEIGHT
    twin_torch: bool = True
    twin_zoom_range: tuple[float, float, float] | None = field(
        default=(1.0, 5.0, 0.1)
    )

    # Webcam settings (hardware mode)
    read_failure_limit: int = DEFAULT_READ_FAILURE_LIMIT
    zoom_range: tuple[float, float, float] | None = None


class DriverFactory:
    """Factory for gateways and capture controllers based on configuration.

    Thread Safety:
        Not thread-safe. Configure once at startup.
    """

    def __init__(self, config: DriverConfig | None = None):
        """Store the configuration used by the create_* methods.

        Args:
            config: Driver configuration. None defaults to DriverConfig()
                (digital twin).

        Example:
            >>> factory = DriverFactory()
            >>> gateway = factory.create_media_gateway()  # DigitalTwinMediaGateway
        """
        self.config = config or DriverConfig()

    def create_media_gateway(self) -> MediaDeviceGateway:
        """Create the media gateway for the configured mode.

        Business context: The same capture flow runs against a simulated
        camera in CI and demos, and against a real webcam on a kiosk or
        laptop, switched by configuration alone.

        Returns:
            OpenCVMediaGateway in HARDWARE mode, DigitalTwinMediaGateway
            in DIGITAL_TWIN mode.

        Example:
            >>> factory = DriverFactory(DriverConfig(mode=DriverMode.HARDWARE))
            >>> gateway = factory.create_media_gateway()  # OpenCVMediaGateway
        """
        if self.config.mode == DriverMode.HARDWARE:
            return OpenCVMediaGateway(
                OpenCVGatewayConfig(
                    device_index=self.config.device_index or 0,
                    zoom_range=self.config.zoom_range,
                    read_failure_limit=self.config.read_failure_limit,
                )
            )
        return DigitalTwinMediaGateway(
            DigitalTwinMediaConfig(
                frame_width=self.config.twin_frame_width,
                frame_height=self.config.twin_frame_height,
                torch_supported=self.config.twin_torch,
                zoom_range=self.config.twin_zoom_range,
            )
        )

    def create_controller_config(self) -> CaptureControllerConfig:
        """Build the controller settings from this configuration.

        Raises:
            ValueError: If the timeout or JPEG quality is invalid.
        """
        from meal_capture.devices.capture_controller import CaptureControllerConfig

        return CaptureControllerConfig(
            readiness_timeout_s=self.config.readiness_timeout_s,
            jpeg_quality=self.config.jpeg_quality,
            constraints=StreamConstraints(
                facing_mode=self.config.facing_mode,
                device_index=self.config.device_index,
            ),
        )

    def create_controller(
        self,
        gateway: MediaDeviceGateway | None = None,
        *,
        hooks: CaptureHooks | None = None,
        stats: CaptureStats | None = None,
    ) -> CaptureController:
        """Create a capture controller for the configured mode.

        Args:
            gateway: Gateway to use; a new one is created when None.
            hooks: Optional controller hooks.
            stats: Optional statistics collector.

        Returns:
            CaptureController in IDLE.
        """
        from meal_capture.devices.capture_controller import CaptureController

        return CaptureController(
            gateway or self.create_media_gateway(),
            self.create_controller_config(),
            hooks=hooks,
            stats=stats,
        )


# =============================================================================
# Global Singleton
# =============================================================================
# Not thread-safe. Configure once at startup.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Get the global driver factory, creating a digital twin one on first use.

    Example:
        >>> factory = get_factory()
        >>> factory.config.mode
        <DriverMode.DIGITAL_TWIN: 'digital_twin'>
    """
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one using ``config``.

    Args:
        config: New driver configuration.

    Example:
        >>> configure(DriverConfig(mode=DriverMode.HARDWARE, device_index=1))
    """
    global _factory
    _factory = DriverFactory(config)


def _copy_config_with_mode(mode: DriverMode) -> DriverConfig:
    """Copy the current configuration with a different mode."""
    return replace(get_factory().config, mode=mode)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch to the simulated camera.

    Args:
        preserve_config: Keep the other current settings instead of
            resetting them to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(preserve_config: bool = False) -> None:
    """Switch to a real webcam through OpenCV.

    Args:
        preserve_config: Keep the other current settings instead of
            resetting them to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.HARDWARE))
    else:
        configure(DriverConfig(mode=DriverMode.HARDWARE))
