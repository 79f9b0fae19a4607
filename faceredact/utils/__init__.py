"""Utils module - Common utilities and helper functions."""

from .image import ImageDecodeError, ImageUtils

__all__ = [
    "ImageDecodeError",
    "ImageUtils",
]
