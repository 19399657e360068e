"""Capture session state.

The CaptureSession is the single mutable record owned by a
CaptureController: lifecycle state, the attempt counter that guards
stale device callbacks, the owned stream handle, negotiated capabilities
and the last failure.

Example:
    session = CaptureSession()
    assert session.state is CaptureState.IDLE
    print(session.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from meal_capture.drivers.media.types import (
    MediaStreamHandle,
    TrackCapabilities,
    VideoTrackHandle,
)

__all__ = [
    "CaptureCapabilities",
    "CaptureSession",
    "CaptureState",
    "FailureKind",
    "ZoomState",
]


class CaptureState(Enum):
    """Lifecycle state of a capture session."""

    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    DENIED = "denied"
    ERRORED = "errored"

    @property
    def is_live(self) -> bool:
        """True while an acquisition is in flight or streaming."""
        return self in (CaptureState.REQUESTING, CaptureState.STREAMING)

    @property
    def is_failed(self) -> bool:
        """True for the two terminal failure states."""
        return self in (CaptureState.DENIED, CaptureState.ERRORED)


class FailureKind(Enum):
    """Why a session ended up DENIED or ERRORED."""

    PERMISSION_DENIED = "permission_denied"
    DEVICE_ERROR = "device_error"
    READINESS_TIMEOUT = "readiness_timeout"


@dataclass(slots=True)
class ZoomState:
    """Zoom range reported by the device plus the current setting."""

    min: float
    max: float
    step: float
    current: float

    def clamp(self, value: float) -> float:
        """Clamp a requested zoom into [min, max]."""
        return min(max(value, self.min), self.max)


@dataclass(slots=True)
class CaptureCapabilities:
    """Optional features negotiated after the stream became ready.

    Attributes:
        has_flash: Device exposes a controllable torch.
        flash_on: Current torch state (always False without a torch).
        zoom: Zoom range and setting, None when zoom is unsupported.
    """

    has_flash: bool = False
    flash_on: bool = False
    zoom: ZoomState | None = None

    @classmethod
    def from_track(cls, reported: TrackCapabilities) -> CaptureCapabilities:
        """Build capabilities from what a track reported.

        The zoom setting defaults to 1 when the device reports a range but
        no current value, and is clamped into the range either way.

        Args:
            reported: Result of MediaDeviceGateway.query_capabilities().

        Returns:
            CaptureCapabilities with only supported features populated.

        Example:
            >>> caps = CaptureCapabilities.from_track(
            ...     TrackCapabilities(zoom_min=2.0, zoom_max=8.0, zoom_step=0.5)
            ... )
            >>> caps.zoom.current
            2.0
        """
        zoom = None
        if reported.zoom_min is not None and reported.zoom_max is not None:
            if reported.has_zoom:
                zoom = ZoomState(
                    min=reported.zoom_min,
                    max=reported.zoom_max,
                    step=reported.zoom_step,
                    current=1.0,
                )
                if reported.zoom_current is not None:
                    zoom.current = reported.zoom_current
                zoom.current = zoom.clamp(zoom.current)
        return cls(
            has_flash=reported.torch,
            flash_on=reported.torch and reported.torch_on,
            zoom=zoom,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable view."""
        return {
            "has_flash": self.has_flash,
            "flash_on": self.flash_on,
            "zoom": (
                {
                    "min": self.zoom.min,
                    "max": self.zoom.max,
                    "step": self.zoom.step,
                    "current": self.zoom.current,
                }
                if self.zoom
                else None
            ),
        }


@dataclass
class CaptureSession:
    """Mutable state of the one live session a controller owns.

    Attributes:
        state: Current lifecycle state.
        attempt_id: Incremented on every fresh acquisition; signals issued
            under an older id are ignored.
        stream: Exclusively owned device stream, released exactly once.
        video_track: Track of ``stream`` used for capabilities only.
        capabilities: Populated on entering STREAMING.
        last_error: Human-readable reason for DENIED / ERRORED.
        failure_kind: Classification of the failure.
        frame_width: Width of the most recent frame report.
        frame_height: Height of the most recent frame report.
    """

    state: CaptureState = CaptureState.IDLE
    attempt_id: int = 0
    stream: MediaStreamHandle | None = None
    video_track: VideoTrackHandle | None = None
    capabilities: CaptureCapabilities | None = None
    last_error: str | None = None
    failure_kind: FailureKind | None = None
    frame_width: int = 0
    frame_height: int = 0

    @property
    def holds_resources(self) -> bool:
        """True while a stream is owned."""
        return self.stream is not None

    @property
    def has_valid_frame(self) -> bool:
        """True when the last frame report had non-zero dimensions."""
        return self.frame_width > 0 and self.frame_height > 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable status view.

        Example:
            >>> CaptureSession().to_dict()["state"]
            'idle'
        """
        return {
            "state": self.state.value,
            "attempt_id": self.attempt_id,
            "stream_id": self.stream.stream_id if self.stream else None,
            "capabilities": self.capabilities.to_dict() if self.capabilities else None,
            "last_error": self.last_error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
        }
