"""Digital Twin Media Gateway - Simulated Camera for Testing.

Implements the MediaDeviceGateway protocol without hardware. The twin
grants or denies permission according to its configuration, reports
frames, fails on demand, and records every release call so tests can
assert on resource ownership.

Permission Modes:
    GRANT: Grant immediately (after an optional delay)
    DENY: Raise PermissionDeniedError
    UNAVAILABLE: Raise DeviceUnavailableError
    MANUAL: Park the request until the test calls grant()/deny()/fail()

Classes:
    DigitalTwinMediaConfig: Behaviour switches for the simulated device
    DigitalTwinMediaGateway: The gateway itself
    PendingRequest: A stream request parked in MANUAL mode

Example:
    from meal_capture.drivers.media.twin import (
        DigitalTwinMediaConfig,
        DigitalTwinMediaGateway,
        PermissionMode,
    )

    gateway = DigitalTwinMediaGateway(
        DigitalTwinMediaConfig(permission=PermissionMode.MANUAL, auto_frames=False)
    )
    task = asyncio.create_task(controller.enter_camera_mode())
    await asyncio.sleep(0)
    gateway.grant()
    await task
    gateway.emit_frame(1280, 720)
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

from meal_capture.drivers.media.types import (
    ConstraintError,
    DeviceErrored,
    DeviceUnavailableError,
    FrameReported,
    MediaDeviceError,
    MediaEventListener,
    MediaSignal,
    MediaStreamHandle,
    PermissionDeniedError,
    StreamConstraints,
    TrackCapabilities,
    TrackConstraint,
    VideoTrackHandle,
)
from meal_capture.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_DENY_REASON",
    "DigitalTwinMediaConfig",
    "DigitalTwinMediaGateway",
    "PendingRequest",
    "PermissionMode",
]

DEFAULT_DENY_REASON = "Permission denied by user"

_SYNTHETIC_GRID_SPACING = 40
_PLATE_RADIUS_RATIO = 0.3


class PermissionMode(Enum):
    """How the twin answers stream requests."""

    GRANT = "grant"
    DENY = "deny"
    UNAVAILABLE = "unavailable"
    MANUAL = "manual"


@dataclass
class DigitalTwinMediaConfig:
    """Configuration for the simulated camera.

    Attributes:
        permission: How stream requests are answered.
        permission_delay_s: Delay before GRANT/DENY/UNAVAILABLE answers.
        frame_width: Width of frames reported after grant.
        frame_height: Height of frames reported after grant.
        auto_frames: Report one frame right after grant. Disable to drive
            frames from a test with emit_frame().
        torch_supported: Report a controllable torch.
        zoom_range: (min, max, step) or None for no zoom support.
        zoom_current: Zoom reported as current setting, None = unreported.
        fail_constraints: Make apply_constraint() raise ConstraintError.
        deny_reason: Message carried by PermissionDeniedError.
    """

    permission: PermissionMode = PermissionMode.GRANT
    permission_delay_s: float = 0.0
    frame_width: int = 1280
    frame_height: int = 720
    auto_frames: bool = True
    torch_supported: bool = True
    zoom_range: tuple[float, float, float] | None = (1.0, 5.0, 0.1)
    zoom_current: float | None = None
    fail_constraints: bool = False
    deny_reason: str = DEFAULT_DENY_REASON


@dataclass
class PendingRequest:
    """A stream request waiting for grant()/deny()/fail() in MANUAL mode."""

    request_id: int
    constraints: StreamConstraints
    listener: MediaEventListener
    future: asyncio.Future[MediaStreamHandle]


@dataclass
class _TwinStream:
    """Internal state of one granted stream."""

    handle: MediaStreamHandle
    listener: MediaEventListener
    width: int
    height: int
    torch_on: bool = False
    zoom: float | None = None
    stopped_tracks: set[str] = field(default_factory=set)
    stopped: bool = False


class DigitalTwinMediaGateway:
    """Simulated MediaDeviceGateway.

    Besides the protocol methods, exposes test controls (grant, deny,
    fail, emit_frame, emit_error) and inspection state (call_log,
    active_streams, acquisition_count).

    Example:
        gateway = DigitalTwinMediaGateway()
        stream = await gateway.request_stream(StreamConstraints(), print)
        frame = gateway.read_frame(stream)
        gateway.stop_stream(stream)
    """

    def __init__(self, config: DigitalTwinMediaConfig | None = None) -> None:
        """Create a twin with the given behaviour.

        Args:
            config: Behaviour switches. Defaults grant immediately with a
                1280x720 frame, torch and 1-5x zoom.
        """
        self.config = config or DigitalTwinMediaConfig()
        self.call_log: list[tuple[str, str]] = []
        self.constraints_applied: list[TrackConstraint] = []
        self._pending: list[PendingRequest] = []
        self._streams: dict[str, _TwinStream] = {}
        self._track_owner: dict[str, str] = {}
        self._request_ids = itertools.count(1)
        self._stream_ids = itertools.count(1)
        logger.info(
            "Digital twin media gateway initialized",
            permission=self.config.permission.value,
            frame_width=self.config.frame_width,
            frame_height=self.config.frame_height,
        )

    def __repr__(self) -> str:
        """Return a compact description for debugging."""
        return (
            f"DigitalTwinMediaGateway(permission={self.config.permission.value}, "
            f"active_streams={len(self.active_streams)})"
        )

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def pending_requests(self) -> list[PendingRequest]:
        """Requests parked in MANUAL mode, oldest first."""
        return list(self._pending)

    @property
    def streams(self) -> list[MediaStreamHandle]:
        """Every stream ever granted, in grant order."""
        return [s.handle for s in self._streams.values()]

    @property
    def active_streams(self) -> list[MediaStreamHandle]:
        """Granted streams that have not been stopped."""
        return [s.handle for s in self._streams.values() if not s.stopped]

    @property
    def acquisition_count(self) -> int:
        """Number of streams granted so far."""
        return len(self._streams)

    def calls(self, kind: str) -> list[str]:
        """Return the ids recorded in call_log for one call kind.

        Args:
            kind: "request", "grant", "deny", "cancel", "stop_track",
                "stop_stream" or "apply_constraint".
        """
        return [target for name, target in self.call_log if name == kind]

    def is_stopped(self, stream: MediaStreamHandle) -> bool:
        """True once stop_stream() released the stream."""
        return self._streams[stream.stream_id].stopped

    # -------------------------------------------------------------------------
    # MediaDeviceGateway protocol
    # -------------------------------------------------------------------------

    async def request_stream(
        self,
        constraints: StreamConstraints,
        listener: MediaEventListener,
    ) -> MediaStreamHandle:
        """Answer a stream request according to config.permission.

        Args:
            constraints: Recorded but otherwise ignored; the twin has one
                simulated camera.
            listener: Receives FrameReported / DeviceErrored signals.

        Returns:
            Handle of the granted stream.

        Raises:
            PermissionDeniedError: In DENY mode or when deny() is called.
            DeviceUnavailableError: In UNAVAILABLE mode or on fail().
        """
        request_id = next(self._request_ids)
        self.call_log.append(("request", f"req-{request_id}"))
        mode = self.config.permission
        logger.debug(
            "Twin stream requested",
            request_id=request_id,
            mode=mode.value,
            facing_mode=constraints.facing_mode.value,
        )

        if mode is PermissionMode.MANUAL:
            future: asyncio.Future[MediaStreamHandle] = (
                asyncio.get_running_loop().create_future()
            )
            pending = PendingRequest(request_id, constraints, listener, future)
            self._pending.append(pending)
            try:
                return await future
            except asyncio.CancelledError:
                self._abandon(pending)
                raise

        if self.config.permission_delay_s > 0:
            await asyncio.sleep(self.config.permission_delay_s)

        if mode is PermissionMode.DENY:
            self.call_log.append(("deny", f"req-{request_id}"))
            raise PermissionDeniedError(self.config.deny_reason)
        if mode is PermissionMode.UNAVAILABLE:
            raise DeviceUnavailableError("No camera device found")

        return self._create_stream(listener)

    def stop_track(self, track: VideoTrackHandle) -> None:
        """Mark a track stopped; unknown or stopped tracks are ignored."""
        self.call_log.append(("stop_track", track.track_id))
        stream_id = self._track_owner.get(track.track_id)
        if stream_id is not None:
            self._streams[stream_id].stopped_tracks.add(track.track_id)

    def stop_stream(self, stream: MediaStreamHandle) -> None:
        """Stop every track of the stream and mark it released."""
        self.call_log.append(("stop_stream", stream.stream_id))
        state = self._streams.get(stream.stream_id)
        if state is None or state.stopped:
            return
        state.stopped_tracks.update(t.track_id for t in stream.tracks)
        state.stopped = True
        logger.debug("Twin stream stopped", stream_id=stream.stream_id)

    def query_capabilities(self, track: VideoTrackHandle) -> TrackCapabilities:
        """Report torch/zoom support from the configuration.

        Raises:
            MediaDeviceError: If the track was stopped.
        """
        state = self._live_state_for_track(track)
        zoom_range = self.config.zoom_range
        if zoom_range is None:
            return TrackCapabilities(
                torch=self.config.torch_supported, torch_on=state.torch_on
            )
        zoom_min, zoom_max, zoom_step = zoom_range
        return TrackCapabilities(
            torch=self.config.torch_supported,
            torch_on=state.torch_on,
            zoom_min=zoom_min,
            zoom_max=zoom_max,
            zoom_step=zoom_step,
            zoom_current=state.zoom,
        )

    def apply_constraint(
        self, track: VideoTrackHandle, constraint: TrackConstraint
    ) -> None:
        """Apply torch/zoom to the simulated track.

        Raises:
            ConstraintError: When fail_constraints is set, the feature is
                unsupported, or zoom is outside the configured range.
        """
        self.call_log.append(("apply_constraint", track.track_id))
        state = self._live_state_for_track(track)

        if self.config.fail_constraints:
            raise ConstraintError("Simulated device rejected the constraint")

        if constraint.torch is not None:
            if not self.config.torch_supported:
                raise ConstraintError("Torch is not supported by this device")
            state.torch_on = constraint.torch

        if constraint.zoom is not None:
            if self.config.zoom_range is None:
                raise ConstraintError("Zoom is not supported by this device")
            zoom_min, zoom_max, _ = self.config.zoom_range
            if not zoom_min <= constraint.zoom <= zoom_max:
                raise ConstraintError(
                    f"Zoom {constraint.zoom} outside [{zoom_min}, {zoom_max}]"
                )
            state.zoom = constraint.zoom

        self.constraints_applied.append(constraint)

    def read_frame(self, stream: MediaStreamHandle) -> NDArray[Any] | None:
        """Render a synthetic frame at the stream's current dimensions.

        Returns:
            HxWx3 uint8 array, or None once the stream is stopped. A
            zero dimension yields an empty array of that shape.
        """
        state = self._streams.get(stream.stream_id)
        if state is None or state.stopped:
            return None
        return _render_synthetic(state.width, state.height, stream.stream_id)

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def grant(self, request_id: int | None = None) -> MediaStreamHandle | None:
        """Grant a parked request (oldest when request_id is None).

        Returns:
            The new stream handle, or None when the requester was
            cancelled before the grant arrived.

        Raises:
            LookupError: If no matching request is pending.
        """
        pending = self._pop_pending(request_id)
        if pending.future.cancelled():
            return None
        handle = self._create_stream(pending.listener)
        pending.future.set_result(handle)
        return handle

    def deny(self, request_id: int | None = None, reason: str | None = None) -> None:
        """Deny a parked request with PermissionDeniedError."""
        pending = self._pop_pending(request_id)
        self.call_log.append(("deny", f"req-{pending.request_id}"))
        if not pending.future.cancelled():
            pending.future.set_exception(
                PermissionDeniedError(reason or self.config.deny_reason)
            )

    def fail(self, request_id: int | None = None, reason: str = "Camera busy") -> None:
        """Fail a parked request with DeviceUnavailableError."""
        pending = self._pop_pending(request_id)
        if not pending.future.cancelled():
            pending.future.set_exception(DeviceUnavailableError(reason))

    def emit_frame(
        self, width: int, height: int, stream: MediaStreamHandle | None = None
    ) -> None:
        """Report a frame of the given size on a stream.

        Delivered even when the stream was already stopped, which is how
        tests simulate a late callback from an abandoned attempt.

        Args:
            width: Frame width in pixels (0 allowed).
            height: Frame height in pixels (0 allowed).
            stream: Target stream, defaults to the most recent one.
        """
        state = self._target(stream)
        state.width = width
        state.height = height
        self._deliver(state, FrameReported(width, height))

    def emit_error(self, reason: str, stream: MediaStreamHandle | None = None) -> None:
        """Report a device failure on a stream (most recent by default)."""
        self._deliver(self._target(stream), DeviceErrored(reason))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _create_stream(self, listener: MediaEventListener) -> MediaStreamHandle:
        number = next(self._stream_ids)
        track = VideoTrackHandle(
            track_id=f"twin-track-{number}", label="Digital Twin Rear Camera"
        )
        handle = MediaStreamHandle(
            stream_id=f"twin-{number}", video_track=track, tracks=(track,)
        )
        state = _TwinStream(
            handle=handle,
            listener=listener,
            width=self.config.frame_width,
            height=self.config.frame_height,
            zoom=self.config.zoom_current,
        )
        self._streams[handle.stream_id] = state
        self._track_owner[track.track_id] = handle.stream_id
        self.call_log.append(("grant", handle.stream_id))
        logger.debug("Twin stream granted", stream_id=handle.stream_id)

        if self.config.auto_frames:
            asyncio.get_running_loop().call_soon(
                self._deliver, state, FrameReported(state.width, state.height)
            )
        return handle

    def _deliver(self, state: _TwinStream, signal: MediaSignal) -> None:
        state.listener(signal)

    def _target(self, stream: MediaStreamHandle | None) -> _TwinStream:
        if stream is not None:
            return self._streams[stream.stream_id]
        if not self._streams:
            raise LookupError("No stream has been granted yet")
        return next(reversed(self._streams.values()))

    def _live_state_for_track(self, track: VideoTrackHandle) -> _TwinStream:
        stream_id = self._track_owner.get(track.track_id)
        if stream_id is None:
            raise MediaDeviceError(f"Unknown track {track.track_id}")
        state = self._streams[stream_id]
        if state.stopped or track.track_id in state.stopped_tracks:
            raise MediaDeviceError(f"Track {track.track_id} has ended")
        return state

    def _abandon(self, pending: PendingRequest) -> None:
        """Forget a cancelled request; stop its stream if it was granted."""
        self.call_log.append(("cancel", f"req-{pending.request_id}"))
        if pending in self._pending:
            self._pending.remove(pending)
        future = pending.future
        if future.done() and not future.cancelled() and future.exception() is None:
            handle = future.result()
            self.stop_track(handle.video_track)
            self.stop_stream(handle)

    def _pop_pending(self, request_id: int | None) -> PendingRequest:
        for index, pending in enumerate(self._pending):
            if request_id is None or pending.request_id == request_id:
                return self._pending.pop(index)
        raise LookupError(f"No pending stream request {request_id}")


def _render_synthetic(width: int, height: int, label: str) -> NDArray[Any]:
    """Draw a plate-on-table test pattern.

    Args:
        width: Frame width; 0 produces an empty array.
        height: Frame height; 0 produces an empty array.
        label: Text drawn in the corner (stream id).

    Returns:
        HxWx3 uint8 BGR image.
    """
    img: NDArray[Any] = np.zeros((max(height, 0), max(width, 0), 3), dtype=np.uint8)
    if width <= 0 or height <= 0:
        return img

    img[:, :] = (40, 70, 110)  # table
    img[::_SYNTHETIC_GRID_SPACING, :] = (30, 55, 90)
    img[:, ::_SYNTHETIC_GRID_SPACING] = (30, 55, 90)

    center = (width // 2, height // 2)
    radius = max(1, int(min(width, height) * _PLATE_RADIUS_RATIO))
    cv2.circle(img, center, radius, (235, 235, 235), -1)
    cv2.circle(img, center, max(1, radius // 2), (60, 160, 80), -1)

    cv2.putText(
        img,
        f"DIGITAL TWIN {label} {width}x{height}",
        (10, min(30, height - 1)),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.6,
        (255, 255, 255),
        1,
    )
    return img
