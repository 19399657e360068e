"""Tests for structured logging and capture statistics."""

import asyncio
import io
import json
import logging
import threading

import pytest

from meal_capture.observability import (
    CaptureStats,
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from meal_capture.observability.logging import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    StructuredFormatter,
    _format_value,
)
from meal_capture.observability.stats import OutcomeCollector, _percentile


@pytest.fixture
def log_buffer() -> io.StringIO:
    """Capture meal_capture log output as text."""
    buffer = io.StringIO()
    configure_logging(level="DEBUG", stream=buffer, force=True)
    return buffer


@pytest.fixture
def json_buffer() -> io.StringIO:
    """Capture meal_capture log output as JSON lines."""
    buffer = io.StringIO()
    configure_logging(level="DEBUG", json_format=True, stream=buffer, force=True)
    return buffer


def _json_lines(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


class TestGetLogger:
    """Tests for get_logger()."""

    def test_returns_structured_logger(self) -> None:
        """Loggers accept keyword arguments."""
        logger = get_logger("meal_capture.test")
        assert isinstance(logger, StructuredLogger)

    def test_swaps_class_of_existing_logger(self) -> None:
        """A plain logger created earlier is upgraded."""
        plain = logging.Logger.manager.getLogger("meal_capture.preexisting")
        plain.__class__ = logging.Logger

        logger = get_logger("meal_capture.preexisting")

        assert logger is plain
        assert isinstance(logger, StructuredLogger)

    def test_configures_on_first_use(self) -> None:
        """get_logger() installs a handler when nothing is configured."""
        reset_logging()
        get_logger("meal_capture.lazy")
        assert logging.getLogger(ROOT_LOGGER_NAME).handlers


class TestConfigureLogging:
    """Tests for configure_logging() and reset_logging()."""

    def test_text_output_has_structured_pairs(self, log_buffer: io.StringIO) -> None:
        """Keyword arguments render as key=value after the message."""
        get_logger("meal_capture.test").info("Snapshot captured", width=1280, height=720)

        line = log_buffer.getvalue().strip()
        assert "INFO - Snapshot captured | width=1280 height=720" in line

    def test_json_output(self, json_buffer: io.StringIO) -> None:
        """JSON mode emits one object per record with fields at top level."""
        get_logger("meal_capture.test").warning("Capture failed", error_type="encode_failed")

        [record] = _json_lines(json_buffer)
        assert record["level"] == "WARNING"
        assert record["logger"] == "meal_capture.test"
        assert record["message"] == "Capture failed"
        assert record["error_type"] == "encode_failed"

    def test_level_filters(self) -> None:
        """Records below the configured level are dropped."""
        buffer = io.StringIO()
        configure_logging(level="WARNING", stream=buffer, force=True)
        logger = get_logger("meal_capture.test")

        logger.info("hidden")
        logger.warning("shown")

        assert "hidden" not in buffer.getvalue()
        assert "shown" in buffer.getvalue()

    def test_idempotent_without_force(self) -> None:
        """A second call without force keeps the first handler."""
        first = io.StringIO()
        configure_logging(stream=first, force=True)
        configure_logging(stream=io.StringIO())

        get_logger("meal_capture.test").info("once")

        assert "once" in first.getvalue()
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 1

    def test_reset_removes_handlers(self, log_buffer: io.StringIO) -> None:
        """reset_logging() detaches the configured handler."""
        reset_logging()
        assert logging.getLogger(ROOT_LOGGER_NAME).handlers == []

    def test_exception_in_json(self, json_buffer: io.StringIO) -> None:
        """exc_info=True adds the traceback."""
        logger = get_logger("meal_capture.test")
        try:
            raise RuntimeError("driver crashed")
        except RuntimeError:
            logger.error("Camera request failed unexpectedly", exc_info=True)

        [record] = _json_lines(json_buffer)
        assert "RuntimeError: driver crashed" in record["exception"]


class TestLogContext:
    """Tests for LogContext."""

    def test_context_fields_added(self, json_buffer: io.StringIO) -> None:
        """Fields from the context appear on every record inside it."""
        logger = get_logger("meal_capture.test")
        with LogContext(attempt_id=3):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _json_lines(json_buffer)
        assert inside["attempt_id"] == 3
        assert "attempt_id" not in outside

    def test_nested_and_override(self, json_buffer: io.StringIO) -> None:
        """Inner contexts add fields; explicit kwargs win."""
        logger = get_logger("meal_capture.test")
        with LogContext(attempt_id=1), LogContext(stream_id="twin-1"):
            logger.info("nested")
            logger.info("override", attempt_id=2)

        nested, override = _json_lines(json_buffer)
        assert nested["attempt_id"] == 1
        assert nested["stream_id"] == "twin-1"
        assert override["attempt_id"] == 2

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_context(self, json_buffer: io.StringIO) -> None:
        """Each asyncio task keeps its own attempt id.

        Business context: Two overlapping acquisition attempts log at the
        same time; their records must not be attributed to each other.
        """
        logger = get_logger("meal_capture.test")

        async def attempt(n: int) -> None:
            with LogContext(attempt_id=n):
                await asyncio.sleep(0)
                logger.info("step", n=n)

        await asyncio.gather(attempt(1), attempt(2))

        for record in _json_lines(json_buffer):
            assert record["attempt_id"] == record["n"]


class TestFormatters:
    """Tests for formatter helpers."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            ("twin-1", "twin-1"),
            ("camera not ready", '"camera not ready"'),
            ({"zoom": 2.0}, '{"zoom": 2.0}'),
            ([1, 2], "[1, 2]"),
            (1.5, "1.5"),
        ],
    )
    def test_format_value(self, value: object, expected: str) -> None:
        """Values render compactly for key=value output."""
        assert _format_value(value) == expected

    def _record(self, **structured: object) -> logging.LogRecord:
        record = logging.LogRecord(
            name="meal_capture.test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Frame reported",
            args=(),
            exc_info=None,
        )
        record.structured_data = structured
        return record

    def test_structured_formatter_without_fields(self) -> None:
        """A record without structured fields is the bare line."""
        formatter = StructuredFormatter(fmt="%(message)s")
        assert formatter.format(self._record()) == "Frame reported"
        assert formatter.format(self._record(width=640)) == "Frame reported | width=640"

    def test_records_point_at_the_caller(self, log_buffer: io.StringIO) -> None:
        """funcName is the function that logged, not the logger internals."""
        handler = logging.getLogger(ROOT_LOGGER_NAME).handlers[0]
        handler.setFormatter(StructuredFormatter(fmt="%(funcName)s"))

        get_logger("meal_capture.test").info("Snapshot captured", width=1)

        assert log_buffer.getvalue().splitlines() == [
            "test_records_point_at_the_caller | width=1"
        ]

    def test_json_formatter_stringifies_unknown_values(self) -> None:
        """Non-JSON values fall back to str()."""
        formatter = JSONFormatter()
        payload = json.loads(formatter.format(self._record(obj=object)))
        assert payload["obj"].startswith("<class")


class TestCaptureStats:
    """Tests for CaptureStats."""

    def test_empty_summary(self) -> None:
        """A fresh collector reports zeros."""
        summary = CaptureStats().get_capture_summary()
        assert summary.kind == "capture"
        assert summary.total == 0
        assert summary.success_rate == 0.0
        assert summary.last_time is None

    def test_acquisition_outcomes(self) -> None:
        """'streaming' counts as success, other outcomes as errors.

        Business context: The denial rate tells product whether the
        permission prompt is explained well enough.
        """
        stats = CaptureStats()
        stats.record_acquisition("streaming", 400.0)
        stats.record_acquisition("streaming", 600.0)
        stats.record_acquisition("permission_denied", 2000.0)
        stats.record_acquisition("readiness_timeout", 10000.0)

        summary = stats.get_acquisition_summary()
        assert summary.total == 4
        assert summary.successful == 2
        assert summary.failed == 2
        assert summary.success_rate == 0.5
        assert summary.avg_duration_ms == 500.0
        assert summary.error_counts == {"permission_denied": 1, "readiness_timeout": 1}

    def test_capture_durations(self) -> None:
        """Duration stats cover successful captures only."""
        stats = CaptureStats()
        for duration in (10.0, 20.0, 30.0):
            stats.record_capture(duration, success=True)
        stats.record_capture(500.0, success=False, error_type="encode_failed")

        summary = stats.get_capture_summary()
        assert summary.min_duration_ms == 10.0
        assert summary.max_duration_ms == 30.0
        assert summary.p95_duration_ms == pytest.approx(29.0)

    def test_reset(self) -> None:
        """reset() clears both collectors."""
        stats = CaptureStats()
        stats.record_acquisition("streaming", 1.0)
        stats.record_capture(1.0, success=True)

        stats.reset()

        assert stats.get_acquisition_summary().total == 0
        assert stats.get_capture_summary().total == 0

    def test_to_dict(self) -> None:
        """Export has both summaries and a timestamp."""
        stats = CaptureStats()
        stats.record_capture(12.3456, success=True)

        data = stats.to_dict()

        assert set(data) == {"acquisitions", "captures", "timestamp"}
        assert data["captures"]["avg_duration_ms"] == 12.35
        assert data["captures"]["last_time"] is not None
        assert data["acquisitions"]["last_time"] is None

    def test_window_bounds_durations_not_counters(self) -> None:
        """Old records leave the window; totals keep counting."""
        collector = OutcomeCollector("capture", window_size=2)
        for duration in (100.0, 1.0, 2.0):
            collector.record(duration, success=True)

        summary = collector.get_summary()
        assert summary.total == 3
        assert summary.max_duration_ms == 2.0

    def test_concurrent_recording(self) -> None:
        """Records from several threads are all counted."""
        stats = CaptureStats()

        def worker() -> None:
            for _ in range(100):
                stats.record_capture(1.0, success=True)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert stats.get_capture_summary().total == 400


class TestPercentile:
    """Tests for _percentile()."""

    def test_interpolates(self) -> None:
        assert _percentile([100.0, 150.0, 200.0], 95) == pytest.approx(195.0)

    def test_median(self) -> None:
        assert _percentile([1.0, 2.0, 3.0, 4.0, 5.0], 50) == 3.0

    def test_empty(self) -> None:
        assert _percentile([], 50) == 0.0

    @pytest.mark.parametrize("p", [-1, 101])
    def test_out_of_range(self, p: float) -> None:
        with pytest.raises(ValueError, match="between 0 and 100"):
            _percentile([1.0], p)
