"""CLI entry point for meal-capture.

Provides the ``meal-capture`` console script with subcommands:

- ``serve`` - Run the HTTP capture service
- ``snap`` - Take one photo and write it to a JPEG file

Usage::

    # Serve the simulated camera on localhost:8080
    meal-capture serve

    # Serve a real webcam
    meal-capture --mode hardware --device 0 serve --port 9000

    # Grab a single frame
    meal-capture --mode hardware snap lunch.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from functools import lru_cache
from pathlib import Path

from meal_capture.devices import CaptureFailedError, CaptureState
from meal_capture.drivers.config import (
    DEFAULT_READINESS_TIMEOUT_S,
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
)
from meal_capture.observability import configure_logging

PROG_NAME = "meal-capture"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Logger with message-only output for CLI feedback."""
    logger = logging.getLogger(f"{PROG_NAME}.cli")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def _log(message: str, *, emoji: str = "") -> None:
    """Print a status line with an optional emoji prefix."""
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def _driver_config(args: argparse.Namespace) -> DriverConfig:
    return DriverConfig(
        mode=DriverMode(args.mode),
        device_index=args.device,
        readiness_timeout_s=args.readiness_timeout,
    )


async def _snap(factory: DriverFactory, output: Path) -> int:
    """Acquire the camera, capture once, release.

    Args:
        factory: Factory for the configured gateway and controller.
        output: File the JPEG is written to.

    Returns:
        0 on success, 1 when the camera did not stream or capture failed.
    """
    async with factory.create_controller() as controller:
        await controller.enter_camera_mode()
        state = await controller.wait_until_settled()
        if state is not CaptureState.STREAMING:
            _log(f"Camera {state.value}: {controller.last_error}", emoji="❌")
            return 1
        try:
            snapshot = controller.capture()
        except CaptureFailedError as e:
            _log(f"Capture failed: {e.reason}", emoji="❌")
            return 1
        finally:
            controller.exit_camera_mode()

    output.write_bytes(snapshot.encoded_image)
    _log(
        f"Saved {snapshot.width}x{snapshot.height} snapshot "
        f"({snapshot.size_bytes} bytes) to {output}",
        emoji="📷",
    )
    return 0


def _serve(host: str, port: int) -> int:
    import uvicorn

    from meal_capture.web.app import create_app

    _log(f"Serving on http://{host}:{port}", emoji="🌐")
    uvicorn.run(create_app(), host=host, port=port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (shared options plus subcommands)."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Meal capture - camera acquisition and snapshot service",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in DriverMode],
        default=DriverMode.DIGITAL_TWIN.value,
        help="Camera backend (default: digital_twin)",
    )
    parser.add_argument(
        "--device",
        type=int,
        default=None,
        help="Camera device index (hardware mode)",
    )
    parser.add_argument(
        "--readiness-timeout",
        type=float,
        default=DEFAULT_READINESS_TIMEOUT_S,
        help="Seconds to wait for the first frame (default: 10)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=DEFAULT_HOST, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Bind port")

    snap_parser = subparsers.add_parser("snap", help="Capture one JPEG to a file")
    snap_parser.add_argument("output", type=Path, help="Output JPEG path")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for meal-capture.

    Args:
        argv: Arguments without the program name (sys.argv[1:] if None).

    Returns:
        Exit code 0 for success, non-zero for errors.

    Raises:
        SystemExit: On --help or argument parsing errors.

    Example:
        >>> main(["snap", "plate.jpg"])
        0
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)
    config = _driver_config(args)
    configure(config)

    if args.command == "serve":
        return _serve(args.host, args.port)

    try:
        return asyncio.run(_snap(DriverFactory(config), args.output))
    except ValueError as e:
        _log(f"Invalid configuration: {e}", emoji="❌")
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
