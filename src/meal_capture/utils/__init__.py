"""Utility modules for meal-capture.

Exports are resolved lazily through __getattr__ so importing the package
does not load OpenCV.

Available exports (lazy-loaded):
    ImageEncoder: Protocol for image encoding operations
    CV2ImageEncoder: OpenCV-based implementation
    DEFAULT_JPEG_QUALITY: Default snapshot quality

Example:
    from meal_capture.utils import CV2ImageEncoder
    encoder = CV2ImageEncoder()
"""

from typing import Any

__all__ = ["ImageEncoder", "CV2ImageEncoder", "DEFAULT_JPEG_QUALITY"]


def __getattr__(name: str) -> Any:
    """Import image exports on first access and cache them in globals.

    Args:
        name: Attribute name being accessed.

    Returns:
        The requested export.

    Raises:
        AttributeError: If name is not a public export.
    """
    if name in __all__:
        from meal_capture.utils import image

        for export in __all__:
            globals()[export] = getattr(image, export)
        return globals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Return public API including not-yet-loaded exports."""
    return [*__all__, "__all__", "__doc__", "__name__", "__file__"]
