"""Image encoding abstractions for dependency injection.

The ImageEncoder protocol covers the three image operations the capture
pipeline needs: JPEG-encoding a captured surface, decoding an uploaded
file far enough to learn its dimensions, and drawing status text on
placeholder preview frames. CV2ImageEncoder is the OpenCV
implementation; tests inject their own encoders.

Usage:
    encoder = CV2ImageEncoder()
    jpeg_bytes = encoder.encode_jpeg(frame, quality=92)
    width, height = encoder.decode_size(uploaded_bytes)

Architecture:
    ImageEncoder (Protocol) <- CV2ImageEncoder (real)
                            <- recording encoders (tests)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["DEFAULT_JPEG_QUALITY", "ImageEncoder", "CV2ImageEncoder"]

#: Quality used by browser canvases for image/jpeg when none is given.
DEFAULT_JPEG_QUALITY = 92


@runtime_checkable
class ImageEncoder(Protocol):
    """Protocol defining image encoding operations.

    Example:
        >>> class FakeEncoder:
        ...     def encode_jpeg(self, img, quality=92):
        ...         return b'\xff\xd8fake'
        ...     def decode_size(self, data):
        ...         return (640, 480)
        ...     def put_text(self, img, text, position, scale, color, thickness):
        ...         pass
        >>> isinstance(FakeEncoder(), ImageEncoder)
        True
    """

    def encode_jpeg(self, img: NDArray[Any], quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
        """Encode an image array as JPEG bytes.

        Business context: Every meal snapshot passes through here before
        it is handed to the nutrition analysis service, so the encoded
        size directly drives upload time on mobile connections.

        Args:
            img: HxW grayscale or HxWx3 BGR uint8 array.
            quality: JPEG quality 1-100.

        Returns:
            JPEG bytes starting with the 0xFFD8 marker.

        Raises:
            ValueError: If quality is out of range or encoding fails.
        """
        ...  # pragma: no cover

    def decode_size(self, data: bytes) -> tuple[int, int]:
        """Decode an encoded image and return its (width, height).

        Args:
            data: JPEG/PNG/WEBP/GIF file contents.

        Returns:
            (width, height) in pixels.

        Raises:
            ValueError: If the bytes are not a decodable image.
        """
        ...  # pragma: no cover

    def put_text(
        self,
        img: NDArray[Any],
        text: str,
        position: tuple[int, int],
        scale: float,
        color: int | tuple[int, int, int],
        thickness: int,
    ) -> None:
        """Draw text on an image in place (FONT_HERSHEY_SIMPLEX).

        Args:
            img: Image array to draw on.
            text: Text to render.
            position: (x, y) baseline start.
            scale: Font scale factor.
            color: Grayscale int or BGR tuple.
            thickness: Stroke thickness in pixels.
        """
        ...  # pragma: no cover


class CV2ImageEncoder(ImageEncoder):
    """OpenCV-based image encoder.

    The cv2 import is deferred to __init__, so modules that only need
    the protocol never load OpenCV.

    Example:
        >>> encoder = CV2ImageEncoder()
        >>> jpeg = encoder.encode_jpeg(np.zeros((480, 640, 3), dtype=np.uint8))
        >>> encoder.decode_size(jpeg)
        (640, 480)
    """

    def __init__(self) -> None:
        """Import cv2 and numpy.

        Raises:
            ImportError: If opencv-python-headless is not installed.
        """
        import cv2
        import numpy as np

        self._cv2 = cv2
        self._np = np

    def encode_jpeg(self, img: NDArray[Any], quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
        """Encode with cv2.imencode and IMWRITE_JPEG_QUALITY.

        Args:
            img: Grayscale or BGR image array.
            quality: JPEG quality 1-100.

        Returns:
            JPEG bytes.

        Raises:
            ValueError: If quality is out of range, the image is empty,
                or OpenCV reports failure.
        """
        if not 1 <= quality <= 100:
            raise ValueError(f"quality must be 1-100, got {quality}")
        if img.size == 0:
            raise ValueError(f"Cannot encode empty image of shape {img.shape}")
        success, data = self._cv2.imencode(
            ".jpg", img, [self._cv2.IMWRITE_JPEG_QUALITY, quality]
        )
        if not success:
            raise ValueError(
                f"JPEG encoding failed for image shape={img.shape}, dtype={img.dtype}"
            )
        return data.tobytes()

    def decode_size(self, data: bytes) -> tuple[int, int]:
        """Decode with cv2.imdecode and read the array shape.

        Args:
            data: Encoded image bytes.

        Returns:
            (width, height).

        Raises:
            ValueError: If OpenCV cannot decode the bytes.
        """
        if not data:
            raise ValueError("Cannot decode empty image data")
        buffer = self._np.frombuffer(data, dtype=self._np.uint8)
        img = self._cv2.imdecode(buffer, self._cv2.IMREAD_UNCHANGED)
        if img is None:
            raise ValueError("Image data could not be decoded")
        height, width = img.shape[:2]
        return int(width), int(height)

    def put_text(
        self,
        img: NDArray[Any],
        text: str,
        position: tuple[int, int],
        scale: float,
        color: int | tuple[int, int, int],
        thickness: int,
    ) -> None:
        """Draw text with cv2.putText."""
        self._cv2.putText(
            img,
            text,
            position,
            self._cv2.FONT_HERSHEY_SIMPLEX,
            scale,
            color,
            thickness,
        )
