"""Snapshot value type and the file upload path.

A Snapshot is the immutable result of either a camera capture or an
uploaded image file. It owns no device resources and is what gets handed
to the food analysis service (as a base64 data URI).

Example:
    snapshot = snapshot_from_file(Path("lunch.jpg"), CV2ImageEncoder())
    payload = snapshot.to_data_uri()
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from meal_capture.observability import get_logger
from meal_capture.utils.image import ImageEncoder

logger = get_logger(__name__)

__all__ = [
    "JPEG_MIME_TYPE",
    "Snapshot",
    "SnapshotSource",
    "UploadError",
    "detect_mime_type",
    "snapshot_from_bytes",
    "snapshot_from_file",
]

JPEG_MIME_TYPE = "image/jpeg"

# Leading bytes of the formats an upload may carry.
_MAGIC_NUMBERS: tuple[tuple[bytes, str], ...] = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


class UploadError(Exception):
    """Raised when an uploaded file is empty or not a decodable image."""

    pass


class SnapshotSource(Enum):
    """Where a snapshot came from."""

    CAMERA = "camera"
    UPLOAD = "upload"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """An encoded still image with its native pixel size.

    Attributes:
        encoded_image: Encoded file bytes (JPEG for camera captures,
            original bytes for uploads).
        width: Pixel width, always > 0.
        height: Pixel height, always > 0.
        mime_type: MIME type of ``encoded_image``.
        captured_at: UTC time the snapshot was taken or uploaded.
        source: CAMERA or UPLOAD.

    Raises:
        ValueError: On construction with an empty payload or a
            non-positive dimension.
    """

    encoded_image: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = JPEG_MIME_TYPE
    captured_at: datetime = field(default_factory=_utc_now)
    source: SnapshotSource = SnapshotSource.CAMERA

    def __post_init__(self) -> None:
        if not self.encoded_image:
            raise ValueError("Snapshot payload must not be empty")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Snapshot dimensions must be positive, got {self.width}x{self.height}"
            )

    @property
    def size_bytes(self) -> int:
        """Length of the encoded payload."""
        return len(self.encoded_image)

    def to_data_uri(self) -> str:
        """Encode as ``data:<mime>;base64,<payload>``.

        Business context: The nutrition analysis service accepts photos
        only in this form, the same string a browser canvas produces.

        Returns:
            The data URI string.

        Example:
            >>> Snapshot(b"\\xff\\xd8\\xff", 1, 1).to_data_uri()[:23]
            'data:image/jpeg;base64,'
        """
        payload = base64.b64encode(self.encoded_image).decode("ascii")
        return f"data:{self.mime_type};base64,{payload}"

    def to_dict(self, include_data: bool = True) -> dict[str, Any]:
        """Return a JSON-serializable view.

        Args:
            include_data: Include the data URI (large) in the result.
        """
        result: dict[str, Any] = {
            "width": self.width,
            "height": self.height,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "captured_at": self.captured_at.isoformat(),
            "source": self.source.value,
        }
        if include_data:
            result["data_uri"] = self.to_data_uri()
        return result


def detect_mime_type(data: bytes, filename: str | None = None) -> str | None:
    """Guess an image MIME type from the filename, then from magic bytes.

    Args:
        data: File contents.
        filename: Original file name, if known.

    Returns:
        An ``image/*`` MIME type, or None when nothing matched.

    Example:
        >>> detect_mime_type(b"\\x89PNG\\r\\n\\x1a\\n...")
        'image/png'
    """
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed and guessed.startswith("image/"):
            return guessed
    for magic, mime in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def snapshot_from_bytes(
    data: bytes,
    encoder: ImageEncoder,
    mime_type: str | None = None,
    filename: str | None = None,
) -> Snapshot:
    """Turn uploaded image bytes into a Snapshot.

    Stateless and independent of any camera session. The bytes are kept
    as they are; decoding only establishes the pixel size.

    Args:
        data: Image file contents.
        encoder: Used to decode the image dimensions.
        mime_type: Declared MIME type. Generic or missing values fall
            back to filename and content sniffing.
        filename: Original file name, used for MIME detection.

    Returns:
        Snapshot with source UPLOAD.

    Raises:
        UploadError: If the data is empty, not an image, or has a zero
            dimension.

    Example:
        >>> snap = snapshot_from_bytes(jpeg_bytes, CV2ImageEncoder())
        >>> snap.source
        <SnapshotSource.UPLOAD: 'upload'>
    """
    if not data:
        raise UploadError("Uploaded file is empty")

    resolved = mime_type if mime_type and mime_type.startswith("image/") else None
    resolved = resolved or detect_mime_type(data, filename)
    if resolved is None:
        raise UploadError("Uploaded file is not a recognized image type")

    try:
        width, height = encoder.decode_size(data)
    except ValueError as e:
        raise UploadError(f"Uploaded image could not be decoded: {e}") from e

    if width <= 0 or height <= 0:
        raise UploadError(f"Uploaded image has invalid size {width}x{height}")

    logger.info(
        "Upload accepted",
        mime_type=resolved,
        width=width,
        height=height,
        size_bytes=len(data),
    )
    return Snapshot(
        encoded_image=bytes(data),
        width=width,
        height=height,
        mime_type=resolved,
        source=SnapshotSource.UPLOAD,
    )


def snapshot_from_file(
    path: Path | str,
    encoder: ImageEncoder,
    mime_type: str | None = None,
) -> Snapshot:
    """Read an image file from disk and turn it into a Snapshot.

    Args:
        path: Image file path.
        encoder: Used to decode the image dimensions.
        mime_type: Optional explicit MIME type.

    Returns:
        Snapshot with source UPLOAD.

    Raises:
        UploadError: If the file cannot be read or is not a valid image.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise UploadError(f"Cannot read {path}: {e}") from e
    return snapshot_from_bytes(data, encoder, mime_type=mime_type, filename=path.name)
