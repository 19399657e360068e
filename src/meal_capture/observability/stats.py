"""Capture statistics collection and reporting.

Tracks two kinds of outcomes for a capture controller:
- Acquisitions: how long a device took to produce its first valid frame,
  and how often acquisition ended in denial, device error or timeout
- Captures: snapshot encode duration and failure reasons

Thread-safe; a single CaptureStats instance may be shared by several
controllers and read from an HTTP handler thread.

Example:
    stats = CaptureStats()

    stats.record_acquisition(outcome="streaming", duration_ms=420.0)
    stats.record_acquisition(outcome="permission_denied", duration_ms=1800.0)
    stats.record_capture(duration_ms=12.5, success=True)
    stats.record_capture(duration_ms=0, success=False,
                         error_type="zero_dimension_frame")

    summary = stats.get_capture_summary()
    print(f"Success rate: {summary.success_rate:.1%}")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Records kept per rolling window. Counters are cumulative regardless.
DEFAULT_STATS_WINDOW_SIZE: int = 1000

#: Acquisition outcome label for a session that reached streaming.
OUTCOME_STREAMING = "streaming"


def _utc_now() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class StatsSummary:
    """Summary statistics for one kind of operation.

    Attributes:
        kind: "acquisition" or "capture".
        total: Total attempts recorded.
        successful: Attempts that succeeded.
        failed: Attempts that failed.
        success_rate: successful / total (0.0 when empty).
        min_duration_ms: Fastest successful attempt in the window.
        max_duration_ms: Slowest successful attempt in the window.
        avg_duration_ms: Mean of successful attempts in the window.
        p95_duration_ms: 95th percentile of successful attempts.
        error_counts: Failures keyed by error type / outcome label.
        last_time: UTC time of the most recent record.
        uptime_seconds: Seconds since creation or last reset.
    """

    kind: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert the summary to a JSON-serializable dict.

        Returns:
            Dict with every field; ``last_time`` rendered as ISO 8601
            (None when nothing was recorded). Durations are rounded to
            two decimals.

        Example:
            >>> summary = stats.get_capture_summary()
            >>> summary.to_dict()["success_rate"]
            1.0
        """
        return {
            "kind": self.kind,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "min_duration_ms": round(self.min_duration_ms, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "p95_duration_ms": round(self.p95_duration_ms, 2),
            "error_counts": self.error_counts.copy(),
            "last_time": self.last_time.isoformat() if self.last_time else None,
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass
class OutcomeRecord:
    """Single acquisition or capture record."""

    timestamp: float  # monotonic time
    duration_ms: float
    success: bool
    error_type: str | None = None


class OutcomeCollector:
    """Rolling window of outcome records for one operation kind.

    Cumulative counters give the all-time success rate; the window holds
    recent records for duration statistics.
    """

    def __init__(self, kind: str, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty collector.

        Args:
            kind: Label used in summaries ("acquisition" or "capture").
            window_size: Maximum records retained for duration stats.
        """
        self.kind = kind
        self._records: deque[OutcomeRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total = 0
        self._successful = 0
        self._start_time = time.monotonic()
        self._last_time: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one outcome.

        Args:
            duration_ms: Time taken. For failures, time until the failure
                was detected (0 when unknown).
            success: Whether the operation succeeded.
            error_type: Failure label, counted in ``error_counts``.
        """
        record = OutcomeRecord(
            timestamp=time.monotonic(),
            duration_ms=duration_ms,
            success=success,
            error_type=error_type,
        )

        with self._lock:
            self._records.append(record)
            self._total += 1
            if success:
                self._successful += 1
            elif error_type:
                self._error_counts[error_type] = (
                    self._error_counts.get(error_type, 0) + 1
                )
            self._last_time = _utc_now()

    def get_summary(self) -> StatsSummary:
        """Compute a summary snapshot.

        Data is copied under the lock; sorting for the percentile
        happens outside it.

        Returns:
            StatsSummary for this collector.
        """
        with self._lock:
            total = self._total
            successful = self._successful
            error_counts = self._error_counts.copy()
            last_time = self._last_time
            start_time = self._start_time
            durations = [
                r.duration_ms for r in self._records if r.success and r.duration_ms > 0
            ]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return StatsSummary(
            kind=self.kind,
            total=total,
            successful=successful,
            failed=total - successful,
            success_rate=successful / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            error_counts=error_counts,
            last_time=last_time,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all records and counters."""
        with self._lock:
            self._records.clear()
            self._error_counts.clear()
            self._total = 0
            self._successful = 0
            self._start_time = time.monotonic()
            self._last_time = None


class CaptureStats:
    """Statistics for acquisitions and captures of a capture controller.

    Inject into CaptureController; the controller records one
    acquisition outcome per attempt that settles (streaming, denied,
    errored, timed out) and one capture outcome per capture() call.

    Usage:
        stats = CaptureStats()
        controller = CaptureController(gateway, stats=stats)
        ...
        print(stats.to_dict())
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create empty acquisition and capture collectors.

        Args:
            window_size: Rolling window size for each collector.
        """
        self._acquisitions = OutcomeCollector("acquisition", window_size)
        self._captures = OutcomeCollector("capture", window_size)

    def record_acquisition(self, outcome: str, duration_ms: float) -> None:
        """Record how an acquisition attempt settled.

        Args:
            outcome: "streaming" for success, otherwise the failure label
                ("permission_denied", "device_error", "readiness_timeout").
            duration_ms: Milliseconds from the acquisition request until
                the attempt settled.

        Example:
            >>> stats.record_acquisition("streaming", 380.0)
            >>> stats.record_acquisition("readiness_timeout", 10_000.0)
        """
        success = outcome == OUTCOME_STREAMING
        self._acquisitions.record(
            duration_ms, success, error_type=None if success else outcome
        )

    def record_capture(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record a capture() outcome.

        Args:
            duration_ms: Time spent reading and encoding the frame.
            success: Whether a Snapshot was produced.
            error_type: Failure label such as "camera_not_ready".
        """
        self._captures.record(duration_ms, success, error_type)

    def get_acquisition_summary(self) -> StatsSummary:
        """Return the acquisition summary."""
        return self._acquisitions.get_summary()

    def get_capture_summary(self) -> StatsSummary:
        """Return the capture summary."""
        return self._captures.get_summary()

    def reset(self) -> None:
        """Clear both collectors."""
        self._acquisitions.reset()
        self._captures.reset()

    def to_dict(self) -> dict[str, Any]:
        """Export both summaries for status endpoints.

        Returns:
            {"acquisitions": {...}, "captures": {...}, "timestamp": iso}
        """
        return {
            "acquisitions": self.get_acquisition_summary().to_dict(),
            "captures": self.get_capture_summary().to_dict(),
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Calculate a percentile from pre-sorted data with linear interpolation.

    Args:
        sorted_data: Ascending values. Empty input returns 0.0.
        p: Percentile in [0, 100].

    Returns:
        The interpolated percentile value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([1.0, 2.0, 3.0, 4.0, 5.0], 50)
        3.0
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")

    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)

    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction
