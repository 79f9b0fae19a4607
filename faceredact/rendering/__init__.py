"""Rendering module - Pixel redaction of face regions."""

from faceredact.rendering.renderer import (
    RedactionIncompleteError,
    RedactionRenderer,
    TransformError,
    pixel_block_size,
    pixel_rect,
)

__all__ = [
    "RedactionIncompleteError",
    "RedactionRenderer",
    "TransformError",
    "pixel_block_size",
    "pixel_rect",
]
