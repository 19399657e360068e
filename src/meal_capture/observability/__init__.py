"""Observability module for meal-capture.

Provides structured logging and capture statistics.

Example:
    from meal_capture.observability import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Controller created")

    with LogContext(attempt_id=1):
        logger.info("Stream granted", stream_id="twin-1")

Statistics Example:
    from meal_capture.observability import CaptureStats

    stats = CaptureStats()
    controller = CaptureController(gateway, stats=stats)
    print(stats.get_capture_summary().success_rate)
"""

from meal_capture.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from meal_capture.observability.stats import (
    CaptureStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "CaptureStats",
    "StatsSummary",
]
