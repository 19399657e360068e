"""Logical device layer - capture lifecycle independent of camera backend."""

from meal_capture.devices.capture_controller import (
    DEFAULT_READINESS_TIMEOUT_S,
    PERMISSION_DENIED_MESSAGE,
    CapabilityApplyError,
    CaptureController,
    CaptureControllerConfig,
    CaptureError,
    CaptureFailedError,
    CaptureHooks,
    CaptureStateError,
    NullPreviewSink,
    PreviewSink,
)
from meal_capture.devices.session import (
    CaptureCapabilities,
    CaptureSession,
    CaptureState,
    FailureKind,
    ZoomState,
)
from meal_capture.devices.snapshot import (
    Snapshot,
    SnapshotSource,
    UploadError,
    snapshot_from_bytes,
    snapshot_from_file,
)

__all__ = [
    # Controller
    "CaptureController",
    "CaptureControllerConfig",
    "CaptureHooks",
    "PreviewSink",
    "NullPreviewSink",
    "DEFAULT_READINESS_TIMEOUT_S",
    "PERMISSION_DENIED_MESSAGE",
    # Session
    "CaptureSession",
    "CaptureState",
    "CaptureCapabilities",
    "FailureKind",
    "ZoomState",
    # Snapshot
    "Snapshot",
    "SnapshotSource",
    "snapshot_from_bytes",
    "snapshot_from_file",
    # Exceptions
    "CaptureError",
    "CaptureFailedError",
    "CapabilityApplyError",
    "CaptureStateError",
    "UploadError",
]
