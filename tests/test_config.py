"""Tests for driver configuration and the global factory."""

import pytest

from meal_capture.devices import CaptureController, CaptureState
from meal_capture.drivers import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    use_digital_twin,
    use_hardware,
)
from meal_capture.drivers.media import (
    DigitalTwinMediaGateway,
    FacingMode,
    OpenCVMediaGateway,
)
from meal_capture.observability import CaptureStats


class TestDriverConfig:
    """Tests for DriverConfig defaults."""

    def test_defaults(self) -> None:
        """Defaults favour the simulated rear camera."""
        config = DriverConfig()
        assert config.mode is DriverMode.DIGITAL_TWIN
        assert config.device_index is None
        assert config.facing_mode is FacingMode.ENVIRONMENT
        assert config.readiness_timeout_s == 10.0
        assert config.jpeg_quality == 92
        assert (config.twin_frame_width, config.twin_frame_height) == (1280, 720)


class TestDriverFactory:
    """Tests for DriverFactory."""

    def test_twin_gateway(self) -> None:
        """DIGITAL_TWIN mode builds a twin with the configured frame size."""
        factory = DriverFactory(
            DriverConfig(twin_frame_width=640, twin_frame_height=480, twin_torch=False)
        )
        gateway = factory.create_media_gateway()

        assert isinstance(gateway, DigitalTwinMediaGateway)
        assert gateway.config.frame_width == 640
        assert gateway.config.torch_supported is False

    def test_hardware_gateway(self) -> None:
        """HARDWARE mode builds an OpenCV gateway without opening anything."""
        factory = DriverFactory(
            DriverConfig(mode=DriverMode.HARDWARE, device_index=2, zoom_range=(1.0, 3.0, 0.5))
        )
        gateway = factory.create_media_gateway()

        assert isinstance(gateway, OpenCVMediaGateway)
        assert gateway.config.device_index == 2
        assert gateway.config.zoom_range == (1.0, 3.0, 0.5)

    def test_controller_config(self) -> None:
        """Controller settings and stream constraints come from the config."""
        factory = DriverFactory(
            DriverConfig(
                readiness_timeout_s=3.0,
                jpeg_quality=80,
                facing_mode=FacingMode.USER,
                device_index=1,
            )
        )
        config = factory.create_controller_config()

        assert config.readiness_timeout_s == 3.0
        assert config.jpeg_quality == 80
        assert config.constraints.facing_mode is FacingMode.USER
        assert config.constraints.device_index == 1

    def test_invalid_timeout_rejected(self) -> None:
        """Bad controller settings fail when the controller is built."""
        factory = DriverFactory(DriverConfig(readiness_timeout_s=0))
        with pytest.raises(ValueError):
            factory.create_controller_config()

    @pytest.mark.asyncio
    async def test_create_controller(self) -> None:
        """The factory wires gateway, config and stats into a controller."""
        stats = CaptureStats()
        controller = DriverFactory().create_controller(stats=stats)

        assert isinstance(controller, CaptureController)
        assert controller.stats is stats
        await controller.enter_camera_mode()
        assert await controller.wait_until_settled(timeout=1.0) is CaptureState.STREAMING
        controller.close()

    def test_create_controller_with_gateway(self) -> None:
        """An explicit gateway is used as-is."""
        gateway = DigitalTwinMediaGateway()
        controller = DriverFactory().create_controller(gateway)
        controller.close()
        assert gateway.call_log == []


class TestGlobalFactory:
    """Tests for get_factory(), configure() and the mode switches."""

    def test_default_is_twin(self) -> None:
        """Without configuration the global factory is a twin factory."""
        assert get_factory().config.mode is DriverMode.DIGITAL_TWIN
        assert get_factory() is get_factory()

    def test_configure_replaces_factory(self) -> None:
        """configure() installs a new factory."""
        configure(DriverConfig(mode=DriverMode.HARDWARE, device_index=3))
        assert get_factory().config.device_index == 3

    def test_use_hardware_resets_settings(self) -> None:
        """Switching without preserve_config returns to defaults."""
        configure(DriverConfig(readiness_timeout_s=2.0))
        use_hardware()

        assert get_factory().config.mode is DriverMode.HARDWARE
        assert get_factory().config.readiness_timeout_s == 10.0

    def test_preserve_config(self) -> None:
        """preserve_config keeps the other settings."""
        configure(DriverConfig(readiness_timeout_s=2.0, device_index=1))
        use_hardware(preserve_config=True)
        assert get_factory().config.readiness_timeout_s == 2.0

        use_digital_twin(preserve_config=True)
        assert get_factory().config.mode is DriverMode.DIGITAL_TWIN
        assert get_factory().config.device_index == 1
