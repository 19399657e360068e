"""Capture controller: camera lifecycle and snapshot production.

The CaptureController owns one camera session at a time. It acquires a
stream from an injected MediaDeviceGateway, waits for the first frame
with non-zero dimensions, negotiates optional torch and zoom controls,
produces JPEG snapshots, and releases the device through a single
idempotent teardown path on every exit route (user exit, permission
denial, device failure, readiness timeout, close).

State machine:
    IDLE -> REQUESTING          enter_camera_mode()
    REQUESTING -> STREAMING     permission granted and a valid frame seen
    REQUESTING -> DENIED        permission refused
    REQUESTING -> ERRORED       device error or readiness timeout
    STREAMING -> ERRORED        device error (after teardown)
    STREAMING -> IDLE           exit_camera_mode() / close()
    DENIED | ERRORED -> REQUESTING   retry()

Device events arrive as PermissionResolved / FrameReported /
DeviceErrored signals, each bound to the attempt id it was issued under.
Signals from a superseded or abandoned attempt are dropped.

Example:
    gateway = DigitalTwinMediaGateway()
    async with CaptureController(gateway) as controller:
        await controller.enter_camera_mode()
        await controller.wait_until_settled()
        snapshot = controller.capture()
"""

from __future__ import annotations

import asyncio
import functools
import math
import time
from dataclasses import dataclass, field
from types import TracebackType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

from meal_capture.devices.session import (
    CaptureCapabilities,
    CaptureSession,
    CaptureState,
    FailureKind,
)
from meal_capture.devices.snapshot import JPEG_MIME_TYPE, Snapshot, SnapshotSource
from meal_capture.drivers.media.types import (
    DeviceErrored,
    FrameReported,
    MediaDeviceError,
    MediaDeviceGateway,
    MediaSignal,
    MediaStreamHandle,
    PermissionDeniedError,
    PermissionResolved,
    StreamConstraints,
    TrackConstraint,
)
from meal_capture.observability import CaptureStats, LogContext, get_logger
from meal_capture.utils.image import (
    DEFAULT_JPEG_QUALITY,
    CV2ImageEncoder,
    ImageEncoder,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_READINESS_TIMEOUT_S",
    "PERMISSION_DENIED_MESSAGE",
    "CapabilityApplyError",
    "CaptureController",
    "CaptureControllerConfig",
    "CaptureError",
    "CaptureFailedError",
    "CaptureHooks",
    "CaptureStateError",
    "NullPreviewSink",
    "PreviewSink",
]

DEFAULT_READINESS_TIMEOUT_S = 10.0

PERMISSION_DENIED_MESSAGE = (
    "Camera access denied. Please enable camera permissions in your device settings."
)


# --- Configuration ---


@dataclass(slots=True)
class CaptureControllerConfig:
    """Settings for a CaptureController.

    Attributes:
        readiness_timeout_s: Seconds allowed between permission grant and
            the first frame with non-zero dimensions.
        jpeg_quality: JPEG quality (1-100) for camera snapshots.
        constraints: Stream request parameters (rear camera by default).

    Raises:
        ValueError: If the timeout is not a positive finite number or the
            quality is outside 1-100.
    """

    readiness_timeout_s: float = DEFAULT_READINESS_TIMEOUT_S
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    constraints: StreamConstraints = field(default_factory=StreamConstraints)

    def __post_init__(self) -> None:
        if not math.isfinite(self.readiness_timeout_s) or self.readiness_timeout_s <= 0:
            raise ValueError(
                f"readiness_timeout_s must be positive, got {self.readiness_timeout_s}"
            )
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be 1-100, got {self.jpeg_quality}")


# --- Preview sink ---


@runtime_checkable
class PreviewSink(Protocol):  # pragma: no cover
    """Display surface for a live stream (a viewfinder)."""

    def attach(self, stream: MediaStreamHandle) -> None:
        """Start showing the stream. Called on entering STREAMING."""
        ...

    def detach(self) -> None:
        """Stop showing the current stream. Called during teardown."""
        ...


class NullPreviewSink:
    """Preview sink that displays nothing."""

    def attach(self, stream: MediaStreamHandle) -> None:
        """Accept and ignore the stream."""
        pass

    def detach(self) -> None:
        """Nothing to detach."""
        pass


# --- Event Hooks ---


class OnStateChangeCallback(Protocol):  # pragma: no cover
    """Callback protocol for state transitions."""

    def __call__(self, state: CaptureState, session: CaptureSession) -> None:
        """Called after every state transition.

        Args:
            state: The new state.
            session: Session after the transition (read only).
        """
        ...


class OnSnapshotCallback(Protocol):  # pragma: no cover
    """Callback protocol for successful captures."""

    def __call__(self, snapshot: Snapshot) -> None:
        """Called with each snapshot before capture() returns it."""
        ...


class OnWarningCallback(Protocol):  # pragma: no cover
    """Callback protocol for non-fatal problems."""

    def __call__(self, message: str) -> None:
        """Called with a user-facing message when a capture or capability
        change fails without ending the session.
        """
        ...


@dataclass(slots=True)
class CaptureHooks:
    """Optional callbacks for controller events.

    Exceptions raised by a hook are logged and never interrupt the
    controller.

    Attributes:
        on_state_change: Called after each state transition
        on_snapshot: Called for each snapshot produced
        on_warning: Called for capture and capability failures
    """

    on_state_change: OnStateChangeCallback | None = None
    on_snapshot: OnSnapshotCallback | None = None
    on_warning: OnWarningCallback | None = None


# --- Exceptions ---


class CaptureError(Exception):
    """Base exception for capture controller operations.

    Attributes:
        reason: Human-readable description of the failure.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CaptureFailedError(CaptureError):
    """Raised when capture() cannot produce a snapshot."""

    pass


class CapabilityApplyError(CaptureError):
    """Raised when a torch or zoom change is rejected by the device."""

    pass


class CaptureStateError(CaptureError):
    """Raised when an operation is not valid in the current state."""

    pass


# --- Controller ---


class CaptureController:
    """Camera acquisition and capture state machine.

    Injectable Dependencies:
        - gateway: Media device access (required)
        - config: Timeout, JPEG quality, stream constraints
        - encoder: JPEG encoder (default: CV2ImageEncoder)
        - preview_sink: Viewfinder surface (default: NullPreviewSink)
        - hooks: Event callbacks
        - stats: Acquisition/capture statistics collector

    All methods run on the event loop thread. request_stream() is the
    only awaited gateway call; everything else is synchronous.

    Example:
        controller = CaptureController(DigitalTwinMediaGateway())
        attempt = await controller.enter_camera_mode()
        state = await controller.wait_until_settled()
        if state is CaptureState.STREAMING:
            snapshot = controller.capture()
        controller.exit_camera_mode()
    """

    def __init__(
        self,
        gateway: MediaDeviceGateway,
        config: CaptureControllerConfig | None = None,
        *,
        encoder: ImageEncoder | None = None,
        preview_sink: PreviewSink | None = None,
        hooks: CaptureHooks | None = None,
        stats: CaptureStats | None = None,
    ) -> None:
        """Create a controller in IDLE holding no device resources.

        Args:
            gateway: Media device gateway to acquire streams from.
            config: Controller settings. Defaults to a 10 s readiness
                timeout, JPEG quality 92, rear camera.
            encoder: Image encoder. Defaults to CV2ImageEncoder.
            preview_sink: Viewfinder to attach live streams to.
            hooks: Event callbacks.
            stats: Statistics collector to record outcomes into.
        """
        self._gateway = gateway
        self._config = config or CaptureControllerConfig()
        self._encoder = encoder or CV2ImageEncoder()
        self._preview_sink: PreviewSink = preview_sink or NullPreviewSink()
        self._hooks = hooks or CaptureHooks()
        self._stats = stats
        self._session = CaptureSession()
        self._timer: asyncio.TimerHandle | None = None
        self._request: asyncio.Future[MediaStreamHandle] | None = None
        self._sink_attached = False
        self._request_started: float | None = None
        self._settled = asyncio.Event()
        self._settled.set()
        self._closed = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> CaptureControllerConfig:
        """Controller configuration."""
        return self._config

    @property
    def session(self) -> CaptureSession:
        """Current session record. Treat as read-only."""
        return self._session

    @property
    def state(self) -> CaptureState:
        """Current lifecycle state."""
        return self._session.state

    @property
    def attempt_id(self) -> int:
        """Id of the most recent acquisition attempt (0 before the first)."""
        return self._session.attempt_id

    @property
    def capabilities(self) -> CaptureCapabilities | None:
        """Negotiated capabilities, None unless streaming."""
        return self._session.capabilities

    @property
    def last_error(self) -> str | None:
        """Reason for the current DENIED / ERRORED state."""
        return self._session.last_error

    @property
    def failure_kind(self) -> FailureKind | None:
        """Classification of the current failure."""
        return self._session.failure_kind

    @property
    def is_streaming(self) -> bool:
        """True when captures are possible."""
        return self._session.state is CaptureState.STREAMING

    @property
    def stats(self) -> CaptureStats | None:
        """Injected statistics collector, if any."""
        return self._stats

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def enter_camera_mode(self) -> int:
        """Start a fresh acquisition of the camera.

        Anything still held from an earlier attempt is torn down first, so
        at most one stream is ever owned. The attempt id is incremented,
        failure details are cleared and the state becomes REQUESTING. The
        method then waits for the permission decision; readiness (first
        valid frame) is reported later through the gateway's signals and
        bounded by the readiness timer.

        Business context: A user tapping "take photo" should see the
        viewfinder as soon as the device delivers a frame, or a clear
        message (denied, no camera, timed out) instead of a frozen screen.

        Returns:
            The attempt id this call started.

        Raises:
            CaptureStateError: If the controller has been closed.

        Example:
            >>> attempt = await controller.enter_camera_mode()
            >>> controller.state in (CaptureState.REQUESTING, CaptureState.STREAMING)
            True
        """
        if self._closed:
            raise CaptureStateError("Capture controller is closed")

        session = self._session
        session.attempt_id += 1
        attempt = session.attempt_id

        previous = self._request
        if previous is not None and not previous.done():
            previous.cancel()
            try:
                await asyncio.wait({previous})
            except asyncio.CancelledError:
                if self._is_current(attempt):
                    self._teardown()
                    self._set_state(CaptureState.IDLE)
                raise
            if session.attempt_id != attempt or self._closed:
                return attempt

        if self._teardown():
            logger.info(
                "Released previous attempt before new acquisition",
                previous_attempt=attempt - 1,
            )

        session.capabilities = None
        session.last_error = None
        session.failure_kind = None
        session.frame_width = 0
        session.frame_height = 0
        self._request_started = time.monotonic()

        with LogContext(attempt_id=attempt):
            self._set_state(CaptureState.REQUESTING)
            constraints = self._config.constraints
            logger.info(
                "Requesting camera stream",
                facing_mode=constraints.facing_mode.value,
                device_index=constraints.device_index,
            )

            listener = functools.partial(self._on_signal, attempt)
            request = asyncio.ensure_future(
                self._gateway.request_stream(constraints, listener)
            )
            self._request = request
            try:
                stream = await request
            except PermissionDeniedError as e:
                self._on_signal(attempt, PermissionResolved(granted=False, reason=str(e)))
                return attempt
            except MediaDeviceError as e:
                self._on_signal(attempt, DeviceErrored(str(e)))
                return attempt
            except asyncio.CancelledError:
                self._release_finished(request)
                current = asyncio.current_task()
                if current is None or not current.cancelling():
                    logger.info("Camera request abandoned")
                    return attempt
                if self._is_current(attempt):
                    logger.info("Camera request cancelled")
                    self._teardown()
                    self._set_state(CaptureState.IDLE)
                raise
            except Exception as e:
                logger.error("Camera request failed unexpectedly", exc_info=True)
                self._on_signal(attempt, DeviceErrored(f"{type(e).__name__}: {e}"))
                return attempt
            finally:
                if self._request is request:
                    self._request = None

            if not self._is_current(attempt):
                logger.info(
                    "Releasing stream granted to abandoned attempt",
                    stream_id=stream.stream_id,
                    current_attempt=session.attempt_id,
                )
                self._release(stream)
                return attempt

            session.stream = stream
            session.video_track = stream.video_track
            self._on_signal(attempt, PermissionResolved(granted=True))
            return attempt

    async def retry(self) -> int:
        """Start a new acquisition after a denial, error or exit.

        Returns:
            The new attempt id.

        Raises:
            CaptureStateError: While REQUESTING or STREAMING.
        """
        if self._session.state.is_live:
            raise CaptureStateError(
                f"Cannot retry while {self._session.state.value}"
            )
        logger.info("Retrying camera acquisition", previous_attempt=self.attempt_id)
        return await self.enter_camera_mode()

    def exit_camera_mode(self) -> None:
        """Leave camera mode and release every held resource.

        Runs the teardown procedure and ends in IDLE. Calling it again, or
        calling it while IDLE with nothing held, has no effect. A stream
        request still waiting for permission is cancelled, and a stream
        granted to it anyway is released immediately.
        """
        released = self._teardown()
        session = self._session
        if session.state is CaptureState.IDLE:
            return
        if session.state.is_failed:
            session.last_error = None
            session.failure_kind = None
        with LogContext(attempt_id=session.attempt_id):
            self._set_state(CaptureState.IDLE)
            logger.info("Camera mode exited", released=released)

    async def wait_until_settled(self, timeout: float | None = None) -> CaptureState:
        """Wait while the controller is REQUESTING.

        Args:
            timeout: Seconds to wait; None waits until the readiness timer
                or the device settles the attempt.

        Returns:
            The settled state (STREAMING, DENIED, ERRORED or IDLE).

        Raises:
            TimeoutError: If ``timeout`` elapsed first.
        """
        if self._session.state is CaptureState.REQUESTING:
            await asyncio.wait_for(self._settled.wait(), timeout)
        return self._session.state

    def close(self) -> None:
        """Tear down and refuse further acquisitions. Idempotent."""
        if self._closed:
            return
        self.exit_camera_mode()
        self._closed = True
        logger.debug("Capture controller closed")

    async def __aenter__(self) -> CaptureController:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def toggle_flash(self) -> bool | None:
        """Invert the torch.

        Returns:
            The new torch state, or None when no torch is available
            (including when not streaming).

        Raises:
            CapabilityApplyError: If the device rejected the change. The
                session stays STREAMING and flash_on is unchanged.
        """
        caps = self._live_capabilities()
        if caps is None or not caps.has_flash:
            return None
        desired = not caps.flash_on
        self._apply_constraint(TrackConstraint(torch=desired), "flash")
        caps.flash_on = desired
        logger.info("Flash toggled", flash_on=desired)
        return desired

    def set_zoom(self, value: float) -> float | None:
        """Set the zoom factor, clamped into the supported range.

        Args:
            value: Requested zoom factor.

        Returns:
            The applied (clamped) zoom, or None when zoom is unsupported.

        Raises:
            ValueError: If value is NaN or infinite.
            CapabilityApplyError: If the device rejected the change. The
                current zoom is left unchanged.

        Example:
            >>> controller.set_zoom(99.0)  # range 1-5
            5.0
        """
        value = float(value)
        if not math.isfinite(value):
            raise ValueError(f"Zoom must be a finite number, got {value}")
        caps = self._live_capabilities()
        if caps is None or caps.zoom is None:
            return None
        clamped = caps.zoom.clamp(value)
        self._apply_constraint(TrackConstraint(zoom=clamped), "zoom")
        caps.zoom.current = clamped
        logger.info("Zoom set", requested=value, zoom=clamped)
        return clamped

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def capture(self) -> Snapshot:
        """Encode the current frame as a JPEG snapshot.

        Copies the frame into a raster of exactly the frame's pixel size,
        encodes it and returns a Snapshot with those dimensions. The
        session state is not changed, so capture can be repeated.

        Business context: The snapshot is what the nutrition analysis
        service sees; it is taken at native resolution regardless of how
        the preview is scaled on screen.

        Returns:
            Snapshot with source CAMERA.

        Raises:
            CaptureFailedError: When not STREAMING, when the frame has a
                zero dimension, when no frame can be read, or when
                encoding fails.
        """
        started = time.perf_counter()
        session = self._session
        stream = session.stream

        if session.state is not CaptureState.STREAMING or stream is None:
            raise self._capture_error(
                "camera_not_ready",
                f"Camera not ready (state: {session.state.value})",
                started,
            )
        if not session.has_valid_frame:
            raise self._capture_error(
                "zero_dimension_frame",
                f"Camera reported a zero-dimension frame "
                f"({session.frame_width}x{session.frame_height})",
                started,
            )

        try:
            frame = self._gateway.read_frame(stream)
        except MediaDeviceError as e:
            raise self._capture_error(
                "frame_read_failed", f"Could not read camera frame: {e}", started
            ) from e
        if frame is None:
            raise self._capture_error(
                "frame_read_failed", "Camera returned no frame", started
            )

        height, width = int(frame.shape[0]), int(frame.shape[1])
        if width <= 0 or height <= 0:
            raise self._capture_error(
                "zero_dimension_frame",
                f"Camera delivered a zero-dimension frame ({width}x{height})",
                started,
            )

        surface = np.empty_like(frame)
        np.copyto(surface, frame)
        try:
            encoded = self._encoder.encode_jpeg(surface, self._config.jpeg_quality)
        except ValueError as e:
            raise self._capture_error(
                "encode_failed", f"Could not encode snapshot: {e}", started
            ) from e

        snapshot = Snapshot(
            encoded_image=encoded,
            width=width,
            height=height,
            mime_type=JPEG_MIME_TYPE,
            source=SnapshotSource.CAMERA,
        )
        duration_ms = (time.perf_counter() - started) * 1000
        if self._stats:
            self._stats.record_capture(duration_ms, success=True)
        logger.info(
            "Snapshot captured",
            attempt_id=session.attempt_id,
            width=width,
            height=height,
            size_bytes=snapshot.size_bytes,
            duration_ms=round(duration_ms, 2),
        )
        self._call_hook("on_snapshot", snapshot)
        return snapshot

    def read_preview_frame(self) -> NDArray[Any] | None:
        """Return the latest frame for a viewfinder, None unless streaming."""
        stream = self._session.stream
        if self._session.state is not CaptureState.STREAMING or stream is None:
            return None
        return self._gateway.read_frame(stream)

    # -------------------------------------------------------------------------
    # Signal handling
    # -------------------------------------------------------------------------

    def _is_current(self, attempt: int) -> bool:
        return (
            not self._closed
            and attempt == self._session.attempt_id
            and self._session.state.is_live
        )

    def _on_signal(self, attempt: int, signal: MediaSignal) -> None:
        """Single entry point for device signals of one attempt."""
        if not self._is_current(attempt):
            logger.debug(
                "Discarding stale signal",
                signal=type(signal).__name__,
                signal_attempt=attempt,
                current_attempt=self._session.attempt_id,
                state=self._session.state.value,
            )
            return

        with LogContext(attempt_id=attempt):
            if isinstance(signal, PermissionResolved):
                self._on_permission(attempt, signal)
            elif isinstance(signal, FrameReported):
                self._on_frame(signal)
            elif isinstance(signal, DeviceErrored):
                self._fail(FailureKind.DEVICE_ERROR, f"Camera error: {signal.reason}")

    def _on_permission(self, attempt: int, signal: PermissionResolved) -> None:
        if not signal.granted:
            logger.warning("Camera permission denied", reason=signal.reason)
            self._fail(FailureKind.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE)
            return

        timeout = self._config.readiness_timeout_s
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout, self._on_readiness_timeout, attempt)
        logger.info("Camera permission granted", readiness_timeout_s=timeout)
        self._maybe_ready()

    def _on_frame(self, signal: FrameReported) -> None:
        session = self._session
        session.frame_width = signal.width
        session.frame_height = signal.height
        if session.state is CaptureState.REQUESTING:
            self._maybe_ready()
        elif not signal.is_valid:
            logger.warning(
                "Streaming camera reported a zero-dimension frame",
                width=signal.width,
                height=signal.height,
            )

    def _maybe_ready(self) -> None:
        """Enter STREAMING once the stream is held and a valid frame seen."""
        session = self._session
        if (
            session.state is not CaptureState.REQUESTING
            or session.stream is None
            or not session.has_valid_frame
        ):
            return

        self._cancel_timer()
        try:
            self._preview_sink.attach(session.stream)
            self._sink_attached = True
        except Exception as e:
            logger.error("Preview sink attach failed", exc_info=True)
            self._fail(FailureKind.DEVICE_ERROR, f"Preview could not be shown: {e}")
            return
        session.capabilities = self._negotiate_capabilities()
        self._record_acquisition("streaming")
        self._set_state(CaptureState.STREAMING)
        logger.info(
            "Camera streaming",
            stream_id=session.stream.stream_id,
            width=session.frame_width,
            height=session.frame_height,
        )

    def _negotiate_capabilities(self) -> CaptureCapabilities:
        track = self._session.video_track
        if track is None:
            return CaptureCapabilities()
        try:
            reported = self._gateway.query_capabilities(track)
        except Exception as e:
            logger.warning("Capability query failed", error=str(e))
            return CaptureCapabilities()
        caps = CaptureCapabilities.from_track(reported)
        logger.debug(
            "Capabilities negotiated",
            has_flash=caps.has_flash,
            zoom=caps.zoom is not None,
        )
        return caps

    def _on_readiness_timeout(self, attempt: int) -> None:
        self._timer = None
        if not self._is_current(attempt):
            return
        if self._session.state is not CaptureState.REQUESTING:
            return
        with LogContext(attempt_id=attempt):
            timeout = self._config.readiness_timeout_s
            self._fail(
                FailureKind.READINESS_TIMEOUT,
                f"Camera did not produce a frame within {timeout:g} seconds",
            )

    def _fail(self, kind: FailureKind, message: str) -> None:
        """Tear down, then settle in DENIED or ERRORED."""
        was_requesting = self._session.state is CaptureState.REQUESTING
        self._teardown()
        session = self._session
        session.last_error = message
        session.failure_kind = kind
        if was_requesting:
            self._record_acquisition(kind.value)
        if kind is FailureKind.PERMISSION_DENIED:
            self._set_state(CaptureState.DENIED)
        else:
            logger.error("Camera session failed", failure_kind=kind.value, reason=message)
            self._set_state(CaptureState.ERRORED)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def _teardown(self) -> bool:
        """Release everything the session holds.

        Order: pending stream request, readiness timer, video track,
        stream tracks, preview sink, capabilities. Gateway errors are
        logged and the remaining steps still run. The caller decides the
        resulting state.

        Returns:
            True if anything was released, False when nothing was held.
        """
        session = self._session
        request = self._request
        cancelled = request is not None and not request.done()
        if cancelled:
            request.cancel()
        if (
            not cancelled
            and self._timer is None
            and session.stream is None
            and session.video_track is None
            and not self._sink_attached
            and session.capabilities is None
        ):
            return False

        self._cancel_timer()

        track, stream = session.video_track, session.stream
        session.video_track = None
        session.stream = None
        if track is not None:
            try:
                self._gateway.stop_track(track)
            except Exception as e:
                logger.warning(
                    "Failed to stop video track", track_id=track.track_id, error=str(e)
                )
        if stream is not None:
            try:
                self._gateway.stop_stream(stream)
            except Exception as e:
                logger.warning(
                    "Failed to stop stream", stream_id=stream.stream_id, error=str(e)
                )

        if self._sink_attached:
            self._sink_attached = False
            try:
                self._preview_sink.detach()
            except Exception as e:
                logger.warning("Preview sink detach failed", error=str(e))

        session.capabilities = None
        session.frame_width = 0
        session.frame_height = 0
        logger.debug(
            "Camera resources released",
            stream_id=stream.stream_id if stream else None,
        )
        return True

    def _release(self, stream: MediaStreamHandle) -> None:
        """Release a stream the session never took ownership of."""
        try:
            self._gateway.stop_track(stream.video_track)
            self._gateway.stop_stream(stream)
        except Exception as e:
            logger.warning(
                "Failed to release orphaned stream",
                stream_id=stream.stream_id,
                error=str(e),
            )

    def _release_finished(self, request: asyncio.Future[MediaStreamHandle]) -> None:
        """Release the stream of a request that completed as it was cancelled."""
        if request.done() and not request.cancelled() and request.exception() is None:
            self._release(request.result())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _live_capabilities(self) -> CaptureCapabilities | None:
        if self._session.state is not CaptureState.STREAMING:
            return None
        if self._session.video_track is None:
            return None
        return self._session.capabilities

    def _apply_constraint(self, constraint: TrackConstraint, feature: str) -> None:
        track = self._session.video_track
        if track is None:
            raise CaptureStateError(f"Cannot change {feature} without a live track")
        try:
            self._gateway.apply_constraint(track, constraint)
        except Exception as e:
            message = f"Could not change {feature}: {e}"
            logger.warning("Capability change failed", feature=feature, error=str(e))
            self._call_hook("on_warning", message)
            raise CapabilityApplyError(message) from e

    def _capture_error(
        self, error_type: str, message: str, started: float
    ) -> CaptureFailedError:
        duration_ms = (time.perf_counter() - started) * 1000
        if self._stats:
            self._stats.record_capture(duration_ms, success=False, error_type=error_type)
        logger.warning("Capture failed", error_type=error_type, reason=message)
        self._call_hook("on_warning", message)
        return CaptureFailedError(message)

    def _record_acquisition(self, outcome: str) -> None:
        if self._stats is None or self._request_started is None:
            return
        duration_ms = (time.monotonic() - self._request_started) * 1000
        self._stats.record_acquisition(outcome, duration_ms)

    def _set_state(self, state: CaptureState) -> None:
        previous = self._session.state
        self._session.state = state
        if state is CaptureState.REQUESTING:
            self._settled.clear()
        else:
            self._settled.set()
        logger.info(
            "Capture state changed",
            from_state=previous.value,
            to_state=state.value,
            attempt_id=self._session.attempt_id,
        )
        self._call_hook("on_state_change", state, self._session)

    def _call_hook(self, name: str, *args: Any) -> None:
        hook = getattr(self._hooks, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.error("Capture hook failed", hook=name, exc_info=True)

    def __repr__(self) -> str:
        return (
            f"CaptureController(state={self._session.state.value}, "
            f"attempt_id={self._session.attempt_id})"
        )
