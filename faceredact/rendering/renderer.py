"""Irreversible pixel transforms over face regions."""

from __future__ import annotations

import logging
import math

import cv2
import numpy as np

from faceredact.config import RenderConfig
from faceredact.core.models import BoundingBox, RedactionMethod, Region
from faceredact.utils.image import ImageUtils

logger = logging.getLogger(__name__)

PIXEL_BLOCK_DIVISOR = 8
PIXEL_BLOCK_MIN = 6
PIXEL_BLOCK_MAX = 16


class TransformError(Exception):
    """A redaction transform could not be applied to one region."""


class RedactionIncompleteError(Exception):
    """An enabled region could not be redacted, not even by blackout."""

    def __init__(self, message: str, region_id: str | None = None) -> None:
        super().__init__(message)
        self.region_id = region_id


def pixel_rect(
    bbox: BoundingBox, surface_width: int, surface_height: int
) -> tuple[int, int, int, int] | None:
    """Integer (x, y, w, h) of a box on a surface, or None for zero area."""
    x = min(max(math.floor(bbox.x), 0), surface_width - 1)
    y = min(max(math.floor(bbox.y), 0), surface_height - 1)
    w = min(math.floor(bbox.width), surface_width - x)
    h = min(math.floor(bbox.height), surface_height - y)
    if w <= 0 or h <= 0:
        return None
    return x, y, w, h


def pixel_block_size(width: int, height: int) -> int:
    return min(PIXEL_BLOCK_MAX, max(PIXEL_BLOCK_MIN, min(width, height) // PIXEL_BLOCK_DIVISOR))


class RedactionRenderer:
    """Applies blur, pixelate or blackout to every enabled region.

    Any failure inside a transform falls back to blackout for that region;
    only a failed blackout escapes, as RedactionIncompleteError.
    """

    def __init__(self, config: RenderConfig | None = None) -> None:
        self.config = config or RenderConfig()

    def blackout(self, roi: np.ndarray) -> None:
        """Opaque fill with the configured colour."""
        if roi.ndim == 2:
            roi[:] = self.config.fill_color[0]
        else:
            roi[:] = self.config.fill_color[: roi.shape[2]]

    def pixelate(self, roi: np.ndarray) -> None:
        """Fill each block with the pixel nearest its centre."""
        height, width = roi.shape[:2]
        block = pixel_block_size(width, height)
        for by in range(0, height, block):
            sy = min(by + block // 2, height - 1)
            for bx in range(0, width, block):
                sx = min(bx + block // 2, width - 1)
                roi[by : by + block, bx : bx + block] = roi[sy, sx]

    def blur(self, roi: np.ndarray) -> None:
        """Successive Gaussian passes; borders replicate the region's own edge."""
        blurred = roi.copy()
        for _ in range(self.config.blur_passes):
            blurred = cv2.GaussianBlur(
                blurred,
                (0, 0),
                self.config.blur_sigma,
                borderType=cv2.BORDER_REPLICATE,
            )
        roi[:] = blurred

    def _transform(self, roi: np.ndarray, method: RedactionMethod) -> None:
        transforms = {
            RedactionMethod.BLUR: self.blur,
            RedactionMethod.PIXELATE: self.pixelate,
            RedactionMethod.BLACKOUT: self.blackout,
        }
        try:
            transforms[method](roi)
        except Exception as e:
            msg = f"{method.value} failed: {e}"
            raise TransformError(msg) from e

    def redact_region(
        self,
        surface: np.ndarray,
        region: Region,
        method: RedactionMethod,
        scale: tuple[float, float] = (1.0, 1.0),
    ) -> bool:
        """Redact one region in place; False if it has no area on the surface."""
        surface_height, surface_width = surface.shape[:2]
        bbox = region.bbox.rescale(*scale) if scale != (1.0, 1.0) else region.bbox
        rect = pixel_rect(bbox, surface_width, surface_height)
        if rect is None:
            logger.debug("Skipping zero-area region %s", region.id[:8])
            return False

        x, y, w, h = rect
        roi = surface[y : y + h, x : x + w]
        try:
            self._transform(roi, method)
        except TransformError as e:
            logger.warning("Region %s: %s, falling back to blackout", region.id[:8], e)
            try:
                self.blackout(roi)
            except Exception as fallback_error:
                msg = f"Region {region.id} left unredacted: {fallback_error}"
                logger.exception(msg)
                raise RedactionIncompleteError(msg, region.id) from fallback_error
        return True

    def apply(
        self,
        surface: np.ndarray,
        regions: list[Region],
        method: RedactionMethod,
        scale: tuple[float, float] = (1.0, 1.0),
    ) -> int:
        """Redact every enabled region in place; returns how many were drawn."""
        drawn = 0
        for region in regions:
            if region.enabled and self.redact_region(surface, region, method, scale):
                drawn += 1
        logger.debug("Redacted %d regions with %s", drawn, method.value)
        return drawn

    def render(
        self,
        image: np.ndarray,
        regions: list[Region],
        method: RedactionMethod,
        max_side: int,
    ) -> np.ndarray:
        """Fresh surface of at most max_side with the regions redacted."""
        surface, _ = ImageUtils.fit_within(image, max_side)
        if surface is image:
            surface = image.copy()

        image_height, image_width = image.shape[:2]
        surface_height, surface_width = surface.shape[:2]
        scale = (surface_width / image_width, surface_height / image_height)
        self.apply(surface, regions, method, scale)
        return surface

    def render_redaction(
        self, image: np.ndarray, regions: list[Region], method: RedactionMethod
    ) -> np.ndarray:
        """Full-resolution export surface."""
        return self.render(image, regions, method, self.config.export_max_side)

    def render_preview(
        self, image: np.ndarray, regions: list[Region], method: RedactionMethod
    ) -> np.ndarray:
        """Low-resolution live preview surface."""
        return self.render(image, regions, method, self.config.preview_max_side)

    def encode_surface(self, surface: np.ndarray, quality: int | None = None) -> bytes:
        """JPEG payload of a surface (export quality by default)."""
        if quality is None:
            quality = self.config.export_quality
        return ImageUtils.encode_image(surface, quality=quality, ext=".jpg")
