"""Tests for the Snapshot value type and the upload path."""

import base64
from pathlib import Path

import numpy as np
import pytest

from meal_capture.devices import (
    Snapshot,
    SnapshotSource,
    UploadError,
    snapshot_from_bytes,
    snapshot_from_file,
)
from meal_capture.devices.snapshot import detect_mime_type
from meal_capture.utils.image import CV2ImageEncoder


@pytest.fixture
def cv2_encoder() -> CV2ImageEncoder:
    return CV2ImageEncoder()


@pytest.fixture
def jpeg_bytes(cv2_encoder: CV2ImageEncoder) -> bytes:
    """A real 320x240 JPEG."""
    return cv2_encoder.encode_jpeg(np.full((240, 320, 3), 128, dtype=np.uint8))


@pytest.fixture
def png_bytes() -> bytes:
    """A real 50x30 PNG."""
    import cv2

    ok, data = cv2.imencode(".png", np.zeros((30, 50, 3), dtype=np.uint8))
    assert ok
    return data.tobytes()


class TestSnapshot:
    """Tests for the Snapshot dataclass."""

    def test_defaults(self) -> None:
        """Camera JPEG with a UTC timestamp by default."""
        snap = Snapshot(b"\xff\xd8\xff", 10, 20)
        assert snap.mime_type == "image/jpeg"
        assert snap.source is SnapshotSource.CAMERA
        assert snap.captured_at.tzinfo is not None
        assert snap.size_bytes == 3

    @pytest.mark.parametrize(("width", "height"), [(0, 10), (10, 0), (-1, 5)])
    def test_rejects_non_positive_dimensions(self, width: int, height: int) -> None:
        """Zero or negative dimensions never make a snapshot."""
        with pytest.raises(ValueError, match="dimensions must be positive"):
            Snapshot(b"\xff\xd8\xff", width, height)

    def test_rejects_empty_payload(self) -> None:
        """An empty payload is not an image."""
        with pytest.raises(ValueError, match="must not be empty"):
            Snapshot(b"", 10, 10)

    def test_is_immutable(self) -> None:
        """Snapshots cannot be modified after creation."""
        snap = Snapshot(b"\xff\xd8\xff", 10, 20)
        with pytest.raises(AttributeError):
            snap.width = 5  # type: ignore[misc]

    def test_data_uri(self) -> None:
        """Data URI carries the MIME type and base64 payload.

        Business context: This string is the only photo format the
        analysis service accepts.
        """
        payload = b"\xff\xd8\xff\xe0fake"
        snap = Snapshot(payload, 1, 1)
        uri = snap.to_data_uri()

        prefix = "data:image/jpeg;base64,"
        assert uri.startswith(prefix)
        assert base64.b64decode(uri[len(prefix):]) == payload

    def test_to_dict_with_and_without_data(self) -> None:
        """The data URI is optional in the serialized view."""
        snap = Snapshot(b"\xff\xd8\xff", 4, 3, source=SnapshotSource.UPLOAD)

        full = snap.to_dict()
        brief = snap.to_dict(include_data=False)

        assert full["width"] == 4
        assert full["height"] == 3
        assert full["source"] == "upload"
        assert full["size_bytes"] == 3
        assert full["data_uri"].startswith("data:image/jpeg;base64,")
        assert "data_uri" not in brief
        assert brief["captured_at"] == snap.captured_at.isoformat()


class TestDetectMimeType:
    """Tests for detect_mime_type()."""

    def test_filename_wins(self) -> None:
        """An image extension decides the type."""
        assert detect_mime_type(b"anything", "meal.png") == "image/png"

    def test_non_image_filename_falls_back_to_magic(self) -> None:
        """A .txt name does not hide JPEG content."""
        assert detect_mime_type(b"\xff\xd8\xff\xe0", "notes.txt") == "image/jpeg"

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (b"\xff\xd8\xff\xdb", "image/jpeg"),
            (b"\x89PNG\r\n\x1a\n....", "image/png"),
            (b"GIF89a...", "image/gif"),
            (b"GIF87a...", "image/gif"),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
        ],
    )
    def test_magic_numbers(self, data: bytes, expected: str) -> None:
        """Content sniffing recognizes common formats."""
        assert detect_mime_type(data) == expected

    def test_unknown(self) -> None:
        """Unrecognized bytes give None."""
        assert detect_mime_type(b"%PDF-1.7") is None


class TestSnapshotFromBytes:
    """Tests for the upload path."""

    def test_jpeg_upload(self, jpeg_bytes: bytes, cv2_encoder: CV2ImageEncoder) -> None:
        """Uploaded JPEG keeps its bytes and reports its decoded size.

        Business context: Users without a working camera pick a photo
        from their gallery; it feeds the same analysis as a capture.
        """
        snap = snapshot_from_bytes(jpeg_bytes, cv2_encoder, mime_type="image/jpeg")

        assert snap.source is SnapshotSource.UPLOAD
        assert snap.encoded_image == jpeg_bytes
        assert (snap.width, snap.height) == (320, 240)
        assert snap.mime_type == "image/jpeg"

    def test_png_detected_without_mime(
        self, png_bytes: bytes, cv2_encoder: CV2ImageEncoder
    ) -> None:
        """Missing MIME type is sniffed from content."""
        snap = snapshot_from_bytes(png_bytes, cv2_encoder)

        assert snap.mime_type == "image/png"
        assert (snap.width, snap.height) == (50, 30)

    def test_generic_mime_is_ignored(
        self, png_bytes: bytes, cv2_encoder: CV2ImageEncoder
    ) -> None:
        """application/octet-stream falls back to detection."""
        snap = snapshot_from_bytes(
            png_bytes, cv2_encoder, mime_type="application/octet-stream"
        )
        assert snap.mime_type == "image/png"

    def test_empty_upload(self, cv2_encoder: CV2ImageEncoder) -> None:
        """Empty body is rejected."""
        with pytest.raises(UploadError, match="empty"):
            snapshot_from_bytes(b"", cv2_encoder)

    def test_not_an_image(self, cv2_encoder: CV2ImageEncoder) -> None:
        """Unrecognized content is rejected before decoding."""
        with pytest.raises(UploadError, match="not a recognized image type"):
            snapshot_from_bytes(b"%PDF-1.7 ...", cv2_encoder)

    def test_corrupt_image(self, cv2_encoder: CV2ImageEncoder) -> None:
        """A JPEG header with garbage after it cannot be decoded."""
        with pytest.raises(UploadError, match="could not be decoded"):
            snapshot_from_bytes(b"\xff\xd8\xff" + b"\x00" * 32, cv2_encoder)

    def test_zero_size_decoded(self, encoder) -> None:
        """A decoder reporting 0x0 is rejected."""
        encoder.decoded_size = (0, 0)
        with pytest.raises(UploadError, match="invalid size"):
            snapshot_from_bytes(b"\xff\xd8\xff\xe0", encoder)


class TestSnapshotFromFile:
    """Tests for snapshot_from_file()."""

    def test_reads_file(
        self, tmp_path: Path, jpeg_bytes: bytes, cv2_encoder: CV2ImageEncoder
    ) -> None:
        """A JPEG file on disk becomes an upload snapshot."""
        path = tmp_path / "dinner.jpg"
        path.write_bytes(jpeg_bytes)

        snap = snapshot_from_file(path, cv2_encoder)

        assert snap.mime_type == "image/jpeg"
        assert snap.size_bytes == len(jpeg_bytes)

    def test_missing_file(self, tmp_path: Path, cv2_encoder: CV2ImageEncoder) -> None:
        """A missing file is an UploadError, not an OSError."""
        with pytest.raises(UploadError, match="Cannot read"):
            snapshot_from_file(tmp_path / "nope.jpg", cv2_encoder)
