"""Media device type definitions and protocols.

Base types, signals, exceptions and the gateway protocol for video
capture devices. Kept apart from the implementations so the controller
and each gateway can import them without circular imports.

Types defined here:
- FacingMode: Which physical camera a stream should prefer
- StreamConstraints: Parameters for a stream request
- VideoTrackHandle / MediaStreamHandle: Opaque device handles
- TrackCapabilities / TrackConstraint: Torch and zoom negotiation
- PermissionResolved / FrameReported / DeviceErrored: Normalized signals
- MediaDeviceGateway: Protocol every device backend implements

Example:
    from meal_capture.drivers.media.types import (
        FrameReported,
        MediaDeviceGateway,
        StreamConstraints,
    )

    async def open_rear_camera(gateway: MediaDeviceGateway) -> None:
        stream = await gateway.request_stream(StreamConstraints(), print)
        ...
        gateway.stop_stream(stream)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from numpy.typing import NDArray


class FacingMode(Enum):
    """Preferred camera direction for a stream request."""

    ENVIRONMENT = "environment"  # rear camera, pointed at the meal
    USER = "user"  # front camera


@dataclass(frozen=True, slots=True)
class StreamConstraints:
    """Parameters for MediaDeviceGateway.request_stream().

    Attributes:
        facing_mode: Preferred camera direction. Gateways fall back to
            their default device when the preference cannot be met.
        device_index: Explicit device to open, overriding facing_mode.
    """

    facing_mode: FacingMode = FacingMode.ENVIRONMENT
    device_index: int | None = None


@dataclass(frozen=True, slots=True)
class VideoTrackHandle:
    """Reference to the video track of a granted stream.

    Used for capability queries and constraint changes only; its
    lifetime is bounded by the owning MediaStreamHandle.
    """

    track_id: str
    label: str = ""


@dataclass(frozen=True, slots=True)
class MediaStreamHandle:
    """Opaque ownership token for a granted device stream.

    Attributes:
        stream_id: Gateway-unique identifier.
        video_track: The stream's video track.
        tracks: Every track in the stream (video track included).
    """

    stream_id: str
    video_track: VideoTrackHandle
    tracks: tuple[VideoTrackHandle, ...] = field(default=())


@dataclass(frozen=True, slots=True)
class TrackCapabilities:
    """Optional features reported by a video track.

    Attributes:
        torch: Device has a controllable torch (flash) light.
        torch_on: Current torch setting.
        zoom_min: Lowest zoom factor, None when zoom is unsupported.
        zoom_max: Highest zoom factor, None when zoom is unsupported.
        zoom_step: Zoom increment (0 when continuous).
        zoom_current: Current zoom setting, None when unreported.
    """

    torch: bool = False
    torch_on: bool = False
    zoom_min: float | None = None
    zoom_max: float | None = None
    zoom_step: float = 0.0
    zoom_current: float | None = None

    @property
    def has_zoom(self) -> bool:
        """True when a usable zoom range was reported."""
        return (
            self.zoom_min is not None
            and self.zoom_max is not None
            and self.zoom_max >= self.zoom_min
        )


@dataclass(frozen=True, slots=True)
class TrackConstraint:
    """A single constraint change for apply_constraint().

    Exactly the fields that are not None are applied.
    """

    torch: bool | None = None
    zoom: float | None = None


# =============================================================================
# Normalized signals
# =============================================================================


@dataclass(frozen=True, slots=True)
class PermissionResolved:
    """Outcome of the permission prompt for a stream request."""

    granted: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class FrameReported:
    """A rendered frame with the given pixel dimensions is available."""

    width: int
    height: int

    @property
    def is_valid(self) -> bool:
        """True when both dimensions are non-zero."""
        return self.width > 0 and self.height > 0


@dataclass(frozen=True, slots=True)
class DeviceErrored:
    """The device failed after acquisition (disconnect, driver fault)."""

    reason: str


MediaSignal = PermissionResolved | FrameReported | DeviceErrored

#: Callback receiving FrameReported / DeviceErrored signals from a stream.
#: Gateways invoke it on the event loop thread.
MediaEventListener = Callable[[MediaSignal], None]


# =============================================================================
# Exceptions
# =============================================================================


class MediaDeviceError(Exception):
    """Base exception for media gateway operations."""

    pass


class PermissionDeniedError(MediaDeviceError):
    """Raised when the user or OS refuses camera access."""

    pass


class DeviceUnavailableError(MediaDeviceError):
    """Raised when no camera can be opened (missing, busy, driver fault)."""

    pass


class ConstraintError(MediaDeviceError):
    """Raised when a track constraint cannot be applied."""

    pass


# =============================================================================
# Gateway protocol
# =============================================================================


@runtime_checkable
class MediaDeviceGateway(Protocol):  # pragma: no cover
    """Protocol for video capture device backends.

    Implemented by DigitalTwinMediaGateway (simulation) and
    OpenCVMediaGateway (webcams). The capture controller depends only on
    this protocol, so the same state machine runs against a fake device
    in tests and a real camera in production.
    """

    async def request_stream(
        self,
        constraints: StreamConstraints,
        listener: MediaEventListener,
    ) -> MediaStreamHandle:
        """Acquire a live video stream.

        The only operation that suspends: it waits for the permission
        decision (user prompt, OS policy, device open). A returned handle
        means permission was granted; it does not mean a frame is ready.
        Frames and later device failures are announced through
        ``listener`` as FrameReported / DeviceErrored signals.

        Business context: Meal photos are taken with the rear camera, so
        callers pass FacingMode.ENVIRONMENT. Backends without a notion of
        facing fall back to their default device.

        Args:
            constraints: Requested facing mode / device index.
            listener: Receives signals for this stream for as long as
                the gateway holds it, including after the caller has
                abandoned the request.

        Returns:
            Handle the caller exclusively owns until stop_stream().

        Raises:
            PermissionDeniedError: Access refused.
            DeviceUnavailableError: No device could be opened.

        Example:
            >>> stream = await gateway.request_stream(StreamConstraints(), on_signal)
        """
        ...

    def stop_track(self, track: VideoTrackHandle) -> None:
        """Stop a single track. Stopping a stopped track is a no-op.

        Args:
            track: Track to stop.
        """
        ...

    def stop_stream(self, stream: MediaStreamHandle) -> None:
        """Stop every track of a stream and release the device.

        Idempotent. After return no more signals are delivered for new
        frames of this stream.

        Args:
            stream: Stream to release.
        """
        ...

    def query_capabilities(self, track: VideoTrackHandle) -> TrackCapabilities:
        """Report optional features and current settings of a track.

        Args:
            track: Track of a live stream.

        Returns:
            TrackCapabilities; unsupported features are False / None.

        Raises:
            MediaDeviceError: If the track is gone.
        """
        ...

    def apply_constraint(
        self, track: VideoTrackHandle, constraint: TrackConstraint
    ) -> None:
        """Apply a torch or zoom change to a live track.

        Args:
            track: Track of a live stream.
            constraint: Fields to change.

        Raises:
            ConstraintError: If the device rejected the change.
        """
        ...

    def read_frame(self, stream: MediaStreamHandle) -> NDArray[Any] | None:
        """Return the most recent frame of a stream.

        Args:
            stream: Live stream.

        Returns:
            HxWx3 uint8 BGR array (the caller must not mutate it), or
            None when no frame has arrived or the stream is stopped.
        """
        ...
