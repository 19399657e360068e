"""Pytest configuration and fixtures for meal-capture tests.

Every controller test runs against the digital twin gateway, so no
camera is needed. Readiness timeouts are shortened where a test waits
for one to fire.
"""

from collections.abc import AsyncIterator, Iterator

import pytest

from meal_capture.devices import CaptureController, CaptureControllerConfig
from meal_capture.drivers import config as driver_config
from meal_capture.drivers.media import (
    DigitalTwinMediaConfig,
    DigitalTwinMediaGateway,
    PermissionMode,
)
from meal_capture.observability import CaptureStats, reset_logging
from tests.helpers import SHORT_TIMEOUT_S, RecordingEncoder, RecordingPreviewSink


@pytest.fixture(autouse=True)
def _isolate_global_state() -> Iterator[None]:
    """Reset logging handlers and the global driver factory after each test.

    Business context: CLI and config tests reconfigure process-wide
    singletons; without this reset a hardware-mode factory could leak
    into a later test and try to open a real webcam.
    """
    yield
    reset_logging()
    driver_config._factory = None


@pytest.fixture
def gateway() -> DigitalTwinMediaGateway:
    """Digital twin that grants immediately and reports a 1280x720 frame."""
    return DigitalTwinMediaGateway()


@pytest.fixture
def manual_gateway() -> DigitalTwinMediaGateway:
    """Digital twin whose requests wait for grant()/deny() and which only
    reports frames when the test calls emit_frame().
    """
    return DigitalTwinMediaGateway(
        DigitalTwinMediaConfig(permission=PermissionMode.MANUAL, auto_frames=False)
    )


@pytest.fixture
def encoder() -> RecordingEncoder:
    """Encoder double recording shapes and qualities."""
    return RecordingEncoder()


@pytest.fixture
def sink() -> RecordingPreviewSink:
    """Preview sink double."""
    return RecordingPreviewSink()


@pytest.fixture
def stats() -> CaptureStats:
    """Fresh statistics collector."""
    return CaptureStats()


@pytest.fixture
async def controller(
    gateway: DigitalTwinMediaGateway, stats: CaptureStats
) -> AsyncIterator[CaptureController]:
    """Controller on the auto-granting twin with the real OpenCV encoder.

    Yields:
        CaptureController in IDLE; closed after the test.
    """
    c = CaptureController(gateway, stats=stats)
    yield c
    c.close()


@pytest.fixture
async def manual_controller(
    manual_gateway: DigitalTwinMediaGateway,
    encoder: RecordingEncoder,
    sink: RecordingPreviewSink,
    stats: CaptureStats,
) -> AsyncIterator[CaptureController]:
    """Controller on the manual twin with a short readiness timeout."""
    c = CaptureController(
        manual_gateway,
        CaptureControllerConfig(readiness_timeout_s=SHORT_TIMEOUT_S),
        encoder=encoder,
        preview_sink=sink,
        stats=stats,
    )
    yield c
    c.close()
