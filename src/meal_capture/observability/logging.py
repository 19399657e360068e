"""Structured logging for meal-capture.

Every logger returned by get_logger() accepts keyword arguments and
renders them after the message as ``key=value`` pairs, or as top-level
fields in JSON mode. LogContext adds fields such as ``attempt_id`` to
every record emitted inside it; the fields live in a contextvar, so two
acquisition attempts running as separate asyncio tasks never mix.

Device labels and upload file names come from outside the process. Pass
them as keyword arguments, never formatted into the message:

    logger.info("Stream granted", label=track.label)

Example:
    logger = get_logger(__name__)
    with LogContext(attempt_id=3):
        logger.info("Frame reported", width=1280, height=720)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from datetime import UTC, datetime
from typing import IO, Any, cast

ROOT_LOGGER_NAME = "meal_capture"

_fields: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "meal_capture_log_fields", default={}
)
_configured = False
_config_lock = threading.Lock()


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept structured keyword arguments.

    Keywords other than the stdlib ones (exc_info, extra, stack_info,
    stacklevel) are merged over the active LogContext and stored on the
    record as ``structured_data``.
    """

    def debug(self, msg: object, *args: Any, **fields: Any) -> None:
        self._emit(logging.DEBUG, msg, args, **fields)

    def info(self, msg: object, *args: Any, **fields: Any) -> None:
        self._emit(logging.INFO, msg, args, **fields)

    def warning(self, msg: object, *args: Any, **fields: Any) -> None:
        self._emit(logging.WARNING, msg, args, **fields)

    def error(self, msg: object, *args: Any, **fields: Any) -> None:
        self._emit(logging.ERROR, msg, args, **fields)

    def _emit(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...],
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        extra = {**(extra or {}), "structured_data": {**_fields.get(), **fields}}
        # Skip _emit and the level method so the record points at the caller.
        self._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 2,
        )


class StructuredFormatter(logging.Formatter):
    """Text lines: ``time - logger - LEVEL - message | key=value ...``."""

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(
            fmt or "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not structured:
            return line
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{line} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, structured fields at the top level.

    Values json cannot encode (enums, exceptions, numpy scalars) are
    written with ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "structured_data", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _format_value(value: Any) -> str:
    """Render one value for key=value output.

    None becomes ``null``, strings with spaces are quoted and containers
    are written as JSON.
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"' if " " in value else value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


class LogContext:
    """Add fields to every record logged inside the ``with`` block.

    Contexts nest, inner values win. The controller opens one per
    acquisition attempt:

        with LogContext(attempt_id=4):
            logger.info("Requesting stream")
    """

    def __init__(self, **fields: Any) -> None:
        self._new = fields
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _fields.set({**_fields.get(), **self._new})
        return self

    def __exit__(self, *exc: object) -> None:
        if self._token is not None:
            _fields.reset(self._token)
            self._token = None


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: IO[str] | None = None,
    force: bool = False,
) -> None:
    """Install the ``meal_capture`` handler.

    Only the first call takes effect unless ``force`` is set, which
    replaces the existing handler. The CLI calls this with ``force=True``
    so ``--log-level`` and ``--json-logs`` override the lazy default
    installed by get_logger().

    Args:
        level: Minimum level, as a number or a name such as "DEBUG".
        json_format: Emit JSON lines instead of text.
        stream: Destination, sys.stderr when None.
        force: Reconfigure even when already configured.
    """
    with _config_lock:
        if force:
            _detach_handlers()
        _install(level, json_format, stream)


def reset_logging() -> None:
    """Detach the handler; the next get_logger() installs the default again."""
    with _config_lock:
        _detach_handlers()


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger, configuring defaults on first use."""
    if not _configured:
        with _config_lock:
            _install(logging.INFO, False, None)

    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Created before setLoggerClass ran.
        logger.__class__ = StructuredLogger
    return cast(StructuredLogger, logger)


def _install(level: int | str, json_format: bool, stream: IO[str] | None) -> None:
    global _configured
    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def _detach_handlers() -> None:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _configured = False
