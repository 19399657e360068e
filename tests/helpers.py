"""Test helper functions for meal-capture.

Provides protocol compliance checks, recording test doubles and small
asyncio utilities shared by the controller, driver and web tests.

Example:
    from tests.helpers import assert_implements_protocol
    from meal_capture.drivers.media import MediaDeviceGateway

    def test_gateway_implements_protocol():
        assert_implements_protocol(DigitalTwinMediaGateway(), MediaDeviceGateway)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from meal_capture.drivers.media import MediaStreamHandle

JPEG_MAGIC = b"\xff\xd8"

#: Readiness timeout used by tests that let the timer fire.
SHORT_TIMEOUT_S = 0.05


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Business context: Gateways, encoders and preview sinks are injected
    into the controller by protocol. A missing method should fail here,
    in a focused test, instead of deep inside a capture flow.

    Args:
        instance: Object to check.
        protocol: Protocol decorated with @runtime_checkable.

    Raises:
        AssertionError: Listing the missing members.

    Example:
        >>> assert_implements_protocol(NullPreviewSink(), PreviewSink)
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    expected = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(attr for attr in expected if not hasattr(instance, attr))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


async def wait_for_condition(
    predicate: Callable[[], bool],
    attempts: int = 200,
    delay: float = 0.0,
) -> None:
    """Yield to the event loop until ``predicate`` holds.

    Args:
        predicate: Condition to wait for.
        attempts: Loop iterations before giving up.
        delay: Sleep per iteration (0 = just yield).

    Raises:
        AssertionError: If the condition never became true.
    """
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(delay)
    raise AssertionError("Condition not reached")


class RecordingEncoder:
    """ImageEncoder double that records what it was asked to encode."""

    def __init__(self, payload: bytes = JPEG_MAGIC + b"recorded") -> None:
        self.payload = payload
        self.encoded_shapes: list[tuple[int, ...]] = []
        self.qualities: list[int] = []
        self.texts: list[str] = []
        self.decoded_size: tuple[int, int] = (640, 480)
        self.fail_encode = False

    def encode_jpeg(self, img: Any, quality: int = 92) -> bytes:
        if self.fail_encode:
            raise ValueError("encoder exploded")
        self.encoded_shapes.append(tuple(img.shape))
        self.qualities.append(quality)
        return self.payload

    def decode_size(self, data: bytes) -> tuple[int, int]:
        if not data.startswith(JPEG_MAGIC):
            raise ValueError("not a jpeg")
        return self.decoded_size

    def put_text(
        self,
        img: Any,
        text: str,
        position: tuple[int, int],
        scale: float,
        color: int | tuple[int, int, int],
        thickness: int,
    ) -> None:
        self.texts.append(text)


class RecordingPreviewSink:
    """PreviewSink double appending attach/detach events to a shared log."""

    def __init__(self, log: list[tuple[str, str]] | None = None) -> None:
        self.log: list[tuple[str, str]] = log if log is not None else []
        self.attached: MediaStreamHandle | None = None

    def attach(self, stream: MediaStreamHandle) -> None:
        self.attached = stream
        self.log.append(("attach", stream.stream_id))

    def detach(self) -> None:
        stream_id = self.attached.stream_id if self.attached else ""
        self.attached = None
        self.log.append(("detach", stream_id))
