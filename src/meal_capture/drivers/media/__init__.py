"""Media device gateways.

Gateways turn a camera (real or simulated) into the handles and signals
the capture controller works with.
"""

from meal_capture.drivers.media.opencv import OpenCVGatewayConfig, OpenCVMediaGateway
from meal_capture.drivers.media.twin import (
    DigitalTwinMediaConfig,
    DigitalTwinMediaGateway,
    PermissionMode,
)
from meal_capture.drivers.media.types import (
    ConstraintError,
    DeviceErrored,
    DeviceUnavailableError,
    FacingMode,
    FrameReported,
    MediaDeviceError,
    MediaDeviceGateway,
    MediaEventListener,
    MediaSignal,
    MediaStreamHandle,
    PermissionDeniedError,
    PermissionResolved,
    StreamConstraints,
    TrackCapabilities,
    TrackConstraint,
    VideoTrackHandle,
)

__all__ = [
    # Protocol and handles
    "MediaDeviceGateway",
    "MediaStreamHandle",
    "VideoTrackHandle",
    "StreamConstraints",
    "FacingMode",
    "TrackCapabilities",
    "TrackConstraint",
    # Signals
    "MediaSignal",
    "MediaEventListener",
    "PermissionResolved",
    "FrameReported",
    "DeviceErrored",
    # Exceptions
    "MediaDeviceError",
    "PermissionDeniedError",
    "DeviceUnavailableError",
    "ConstraintError",
    # Implementations
    "DigitalTwinMediaGateway",
    "DigitalTwinMediaConfig",
    "PermissionMode",
    "OpenCVMediaGateway",
    "OpenCVGatewayConfig",
]
