"""OpenCV media gateway for USB and built-in webcams.

Opens devices with cv2.VideoCapture and runs one reader thread per
stream that keeps the latest frame. Frames and device failures are
handed back to the event loop with call_soon_threadsafe, so the
controller sees the same FrameReported / DeviceErrored signals it gets
from the digital twin.

OpenCV has no permission prompt: an operating system refusal surfaces as
a device that will not open, reported as DeviceUnavailableError.

Example:
    gateway = OpenCVMediaGateway(OpenCVGatewayConfig(device_index=0))
    controller = CaptureController(gateway)
    await controller.enter_camera_mode()
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import cv2

from meal_capture.drivers.media.types import (
    ConstraintError,
    DeviceErrored,
    DeviceUnavailableError,
    FacingMode,
    FrameReported,
    MediaDeviceError,
    MediaEventListener,
    MediaSignal,
    MediaStreamHandle,
    StreamConstraints,
    TrackCapabilities,
    TrackConstraint,
    VideoTrackHandle,
)
from meal_capture.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = ["OpenCVGatewayConfig", "OpenCVMediaGateway"]

_READ_RETRY_DELAY_S = 0.01


@dataclass
class OpenCVGatewayConfig:
    """Configuration for OpenCVMediaGateway.

    Attributes:
        device_index: Device opened when no better match exists.
        facing_indices: Device index per facing mode, for machines with
            both a front and a rear camera.
        zoom_range: (min, max, step) when the device honours
            CAP_PROP_ZOOM, None otherwise.
        read_failure_limit: Consecutive failed reads before the stream
            is reported as errored.
        frame_interval_s: Pause between reads (0 = as fast as the
            device delivers).
        join_timeout_s: How long stop waits for the reader thread.
    """

    device_index: int = 0
    facing_indices: Mapping[FacingMode, int] = field(default_factory=dict)
    zoom_range: tuple[float, float, float] | None = None
    read_failure_limit: int = 30
    frame_interval_s: float = 0.0
    join_timeout_s: float = 2.0

    def resolve_index(self, constraints: StreamConstraints) -> int:
        """Pick the device index for a stream request."""
        if constraints.device_index is not None:
            return constraints.device_index
        return self.facing_indices.get(constraints.facing_mode, self.device_index)


class _FrameReader:
    """Reader thread holding the latest frame of one VideoCapture.

    Every call on the VideoCapture goes through ``_cap_lock``, so property
    reads and writes from the event loop never run inside ``cap.read()``.
    The capture is released by whichever side finishes last: release()
    when the thread has already exited, otherwise the thread on its way
    out. ``_state_lock`` guards that hand-over and is never held across a
    device call, so release() does not wait on a hung read.
    """

    def __init__(
        self,
        cap: Any,
        stream_id: str,
        listener: MediaEventListener,
        loop: asyncio.AbstractEventLoop,
        config: OpenCVGatewayConfig,
    ) -> None:
        self.cap = cap
        self.stream_id = stream_id
        self._listener = listener
        self._loop = loop
        self._config = config
        self._lock = threading.Lock()
        self._cap_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._frame: NDArray[Any] | None = None
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"frame-reader-{stream_id}", daemon=True
        )
        self._reading = False
        self._release_requested = False
        self._released = False

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        with self._state_lock:
            self._reading = True
        self._thread.start()

    def latest(self) -> NDArray[Any] | None:
        if self.stopped:
            return None
        with self._lock:
            return self._frame

    def get_property(self, prop: int) -> float:
        with self._cap_lock:
            if self._released:
                raise MediaDeviceError(f"Stream {self.stream_id} is released")
            return float(self.cap.get(prop))

    def set_property(self, prop: int, value: float) -> bool:
        with self._cap_lock:
            if self._released:
                raise MediaDeviceError(f"Stream {self.stream_id} is released")
            return bool(self.cap.set(prop, value))

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._config.join_timeout_s)

    def release(self) -> None:
        self.stop()
        with self._state_lock:
            self._release_requested = True
            deferred = self._reading
        if deferred:
            logger.warning(
                "Reader thread still running, deferring release",
                stream_id=self.stream_id,
            )
            return
        self._release_cap()

    def _release_cap(self) -> None:
        with self._cap_lock:
            if not self._released:
                self._released = True
                self.cap.release()

    def _run(self) -> None:
        try:
            self._read_loop()
        finally:
            with self._state_lock:
                self._reading = False
                release = self._release_requested
            if release:
                self._release_cap()

    def _read_loop(self) -> None:
        failures = 0
        last_size: tuple[int, int] | None = None
        while not self._stop_event.is_set():
            with self._cap_lock:
                if self._stop_event.is_set():
                    return
                ok, frame = self.cap.read()
            if not ok or frame is None:
                failures += 1
                if failures >= self._config.read_failure_limit:
                    logger.warning(
                        "Camera stopped delivering frames",
                        stream_id=self.stream_id,
                        failures=failures,
                    )
                    self._notify(
                        DeviceErrored(f"{failures} consecutive frame reads failed")
                    )
                    return
                self._stop_event.wait(_READ_RETRY_DELAY_S)
                continue

            failures = 0
            with self._lock:
                self._frame = frame
            size = (int(frame.shape[1]), int(frame.shape[0]))
            if size != last_size:
                last_size = size
                self._notify(FrameReported(width=size[0], height=size[1]))
            if self._config.frame_interval_s > 0:
                self._stop_event.wait(self._config.frame_interval_s)

    def _notify(self, signal: MediaSignal) -> None:
        if self._stop_event.is_set() or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._listener, signal)
        except RuntimeError:
            # Loop closed between the check and the call.
            logger.debug("Dropped signal for closed loop", stream_id=self.stream_id)


class OpenCVMediaGateway:
    """MediaDeviceGateway backed by cv2.VideoCapture.

    Each granted stream owns one VideoCapture and one reader thread.
    Torch control is not exposed by OpenCV; zoom is offered when
    OpenCVGatewayConfig.zoom_range is set.
    """

    def __init__(self, config: OpenCVGatewayConfig | None = None) -> None:
        """Create a gateway.

        Args:
            config: Device selection and reader settings.
        """
        self.config = config or OpenCVGatewayConfig()
        self._readers: dict[str, _FrameReader] = {}
        self._track_owner: dict[str, str] = {}
        self._stream_ids = itertools.count(1)

    async def request_stream(
        self,
        constraints: StreamConstraints,
        listener: MediaEventListener,
    ) -> MediaStreamHandle:
        """Open the device in a worker thread and start its reader.

        Args:
            constraints: Facing mode / explicit device index.
            listener: Receives FrameReported and DeviceErrored signals.

        Returns:
            Handle of the opened stream.

        Raises:
            DeviceUnavailableError: If the device could not be opened.
        """
        index = self.config.resolve_index(constraints)
        loop = asyncio.get_running_loop()
        logger.info("Opening camera", device_index=index)
        opening = loop.run_in_executor(None, _open_capture, index)
        try:
            cap = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; release what it opens.
            opening.add_done_callback(_release_abandoned)
            raise

        number = next(self._stream_ids)
        track = VideoTrackHandle(
            track_id=f"cv-track-{index}-{number}", label=f"OpenCV camera {index}"
        )
        handle = MediaStreamHandle(
            stream_id=f"cv-{index}-{number}", video_track=track, tracks=(track,)
        )
        reader = _FrameReader(cap, handle.stream_id, listener, loop, self.config)
        self._readers[handle.stream_id] = reader
        self._track_owner[track.track_id] = handle.stream_id
        reader.start()
        logger.info("Camera opened", device_index=index, stream_id=handle.stream_id)
        return handle

    def stop_track(self, track: VideoTrackHandle) -> None:
        """Stop the reader thread behind a track."""
        reader = self._reader_for_track(track)
        if reader is not None:
            reader.stop()

    def stop_stream(self, stream: MediaStreamHandle) -> None:
        """Stop the reader and release the VideoCapture. Idempotent."""
        reader = self._readers.pop(stream.stream_id, None)
        if reader is None:
            return
        for track in stream.tracks:
            self._track_owner.pop(track.track_id, None)
        reader.release()
        logger.info("Camera released", stream_id=stream.stream_id)

    def query_capabilities(self, track: VideoTrackHandle) -> TrackCapabilities:
        """Report zoom support from configuration; torch is never offered.

        Raises:
            MediaDeviceError: If the track is not live.
        """
        reader = self._live_reader(track)
        if self.config.zoom_range is None:
            return TrackCapabilities()
        zoom_min, zoom_max, zoom_step = self.config.zoom_range
        current = reader.get_property(cv2.CAP_PROP_ZOOM)
        return TrackCapabilities(
            zoom_min=zoom_min,
            zoom_max=zoom_max,
            zoom_step=zoom_step,
            zoom_current=current if zoom_min <= current <= zoom_max else None,
        )

    def apply_constraint(
        self, track: VideoTrackHandle, constraint: TrackConstraint
    ) -> None:
        """Apply zoom through CAP_PROP_ZOOM.

        Raises:
            ConstraintError: For torch changes, when zoom is not
                configured, or when the driver rejects the value.
        """
        reader = self._live_reader(track)
        if constraint.torch is not None:
            raise ConstraintError("Torch control is not available through OpenCV")
        if constraint.zoom is not None:
            if self.config.zoom_range is None:
                raise ConstraintError("Zoom is not supported by this device")
            if not reader.set_property(cv2.CAP_PROP_ZOOM, float(constraint.zoom)):
                raise ConstraintError(f"Driver rejected zoom {constraint.zoom}")

    def read_frame(self, stream: MediaStreamHandle) -> NDArray[Any] | None:
        """Return the latest frame read by the stream's reader thread."""
        reader = self._readers.get(stream.stream_id)
        if reader is None:
            return None
        return reader.latest()

    def close(self) -> None:
        """Release every open device."""
        for stream_id in list(self._readers):
            reader = self._readers.pop(stream_id)
            reader.release()
        self._track_owner.clear()

    def _reader_for_track(self, track: VideoTrackHandle) -> _FrameReader | None:
        stream_id = self._track_owner.get(track.track_id)
        return self._readers.get(stream_id) if stream_id else None

    def _live_reader(self, track: VideoTrackHandle) -> _FrameReader:
        reader = self._reader_for_track(track)
        if reader is None or reader.stopped:
            raise MediaDeviceError(f"Track {track.track_id} is not live")
        return reader


def _open_capture(index: int) -> Any:
    """Open a VideoCapture, raising when the device is unusable."""
    cap = cv2.VideoCapture(index)
    if not cap.isOpened():
        cap.release()
        raise DeviceUnavailableError(f"Failed to open camera device {index}")
    return cap


def _release_abandoned(opening: asyncio.Future[Any]) -> None:
    """Release a capture whose requester was cancelled while it opened."""
    if opening.cancelled() or opening.exception() is not None:
        return
    opening.result().release()
    logger.info("Released camera opened for a cancelled request")
