"""HTTP surface for the capture controller."""

from meal_capture.web.app import create_app

__all__ = ["create_app"]
