"""meal-capture: camera acquisition and snapshot capture for meal logging."""

__version__ = "0.1.0"
