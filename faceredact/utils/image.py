"""Image surface primitives: decode, resample, adjust, and encode."""

from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)

ENCODE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


class ImageDecodeError(ValueError):
    """Raised when bytes or a file cannot be decoded into a pixel buffer."""


class ImageUtils:
    """Utilities for decoding, resampling, enhancing and encoding surfaces."""

    @staticmethod
    def decode_image(data: bytes) -> np.ndarray:
        """Decode a compressed payload into a BGR pixel buffer."""
        if not data:
            msg = "Cannot decode empty image payload"
            raise ImageDecodeError(msg)

        buffer = np.frombuffer(data, dtype=np.uint8)
        try:
            image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error as e:
            msg = f"Error decoding image: {e}"
            raise ImageDecodeError(msg) from e

        if image is None or image.size == 0:
            msg = "Payload is not a supported image format"
            raise ImageDecodeError(msg)

        logger.debug("Decoded image with shape %s", image.shape)
        return image

    @staticmethod
    def load_image(image_path: Path) -> np.ndarray:
        """Load an image file into a BGR numpy array."""
        if not image_path.exists():
            msg = f"Image file not found: {image_path}"
            logger.error(msg)
            raise FileNotFoundError(msg)

        return ImageUtils.decode_image(image_path.read_bytes())

    @staticmethod
    def encode_image(image: np.ndarray, quality: int = 90, ext: str = ".jpg") -> bytes:
        """Encode a surface into a compressed payload at a quality factor."""
        if not isinstance(image, np.ndarray):
            msg = "Image must be a numpy array"
            raise TypeError(msg)
        if image.size == 0:
            msg = "Cannot encode empty image"
            raise ValueError(msg)

        ext = ext.lower()
        if ext not in ENCODE_EXTENSIONS:
            msg = f"Unsupported extension: {ext}. Must be one of {ENCODE_EXTENSIONS}"
            raise ValueError(msg)

        encode_params: list[int] = []
        if ext in [".jpg", ".jpeg"]:
            encode_params = [cv2.IMWRITE_JPEG_QUALITY, max(0, min(100, quality))]
        elif ext == ".png":
            # PNG compression level (0-9, where 9 is maximum compression)
            compression = max(0, min(9, (100 - quality) // 11))
            encode_params = [cv2.IMWRITE_PNG_COMPRESSION, compression]
        elif ext == ".webp":
            encode_params = [cv2.IMWRITE_WEBP_QUALITY, max(1, min(100, quality))]

        success, encoded = cv2.imencode(ext, image, encode_params)
        if not success:
            msg = f"Failed to encode image as {ext}"
            logger.error(msg)
            raise RuntimeError(msg)
        return encoded.tobytes()

    @staticmethod
    def save_image(image: np.ndarray, output_path: Path, quality: int = 90) -> None:
        """Encode a surface and write it next to its siblings."""
        payload = ImageUtils.encode_image(image, quality, output_path.suffix or ".jpg")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(payload)
        logger.debug("Saved image to: %s", output_path)

    @staticmethod
    def resize_image(image: np.ndarray, width: int, height: int) -> np.ndarray:
        """Resample to exact dimensions with high-quality interpolation."""
        if image.size == 0:
            msg = "Cannot resize empty image"
            raise ValueError(msg)
        if width <= 0 or height <= 0:
            msg = f"Invalid target dimensions: {width}x{height}"
            raise ValueError(msg)

        original_height, original_width = image.shape[:2]
        shrinking = width * height < original_width * original_height
        interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
        return cv2.resize(image, (width, height), interpolation=interpolation)

    @staticmethod
    def scale_image(image: np.ndarray, scale: float) -> np.ndarray:
        """Resample by a uniform factor, flooring the target dimensions."""
        if scale <= 0:
            msg = f"Scale must be positive, got {scale}"
            raise ValueError(msg)
        height, width = image.shape[:2]
        target_w = max(1, int(width * scale))
        target_h = max(1, int(height * scale))
        if (target_w, target_h) == (width, height):
            return image.copy()
        return ImageUtils.resize_image(image, target_w, target_h)

    @staticmethod
    def fit_within(image: np.ndarray, max_side: int) -> tuple[np.ndarray, float]:
        """Downscale so the longest side is at most max_side.

        Returns the (possibly unchanged) image and the applied scale.
        """
        height, width = image.shape[:2]
        longest = max(width, height)
        if longest <= max_side:
            return image, 1.0
        scale = max_side / longest
        return ImageUtils.scale_image(image, scale), scale

    @staticmethod
    def adjust_contrast(image: np.ndarray, factor: float) -> np.ndarray:
        """Scale distance from mid-grey by factor."""
        return cv2.addWeighted(image, factor, image, 0, 128 * (1 - factor))

    @staticmethod
    def adjust_brightness(image: np.ndarray, factor: float) -> np.ndarray:
        """Multiply every channel by factor, saturating at 255."""
        return cv2.addWeighted(image, factor, image, 0, 0)

    @staticmethod
    def adjust_gamma(image: np.ndarray, gamma: float) -> np.ndarray:
        """Apply a gamma curve; gamma < 1 lifts shadows."""
        if gamma <= 0:
            msg = f"Gamma must be positive, got {gamma}"
            raise ValueError(msg)
        table = np.array(
            [((i / 255.0) ** gamma) * 255 for i in range(256)], dtype=np.uint8
        )
        return cv2.LUT(image, table)

    @staticmethod
    def sharpen(image: np.ndarray, amount: float = 1.0) -> np.ndarray:
        """Unsharp mask with a small Gaussian radius."""
        blurred = cv2.GaussianBlur(image, (0, 0), 1.5)
        return cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)

    @staticmethod
    def apply_variant(image: np.ndarray, name: str, factor: float) -> np.ndarray:
        """Apply one named preprocessing variant to a copy of the image."""
        variants = {
            "high-contrast": ImageUtils.adjust_contrast,
            "brightness-boost": ImageUtils.adjust_brightness,
            "gamma-correction": ImageUtils.adjust_gamma,
            "sharpening": ImageUtils.sharpen,
        }
        if name not in variants:
            msg = f"Invalid variant: {name}. Must be one of {list(variants.keys())}"
            raise ValueError(msg)
        return variants[name](image, factor)
