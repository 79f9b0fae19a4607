"""Base adapter interfaces and common detection functionality."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, Field

from faceredact.core.models import (
    BoundingBox,
    DetectorRole,
    LandmarkSet,
    Point,
    RawDetection,
)
from faceredact.detection.constants import (
    FAST_APPROX_MAX_CANDIDATES,
    HIGH_ACCURACY_MAX_CANDIDATES,
    MAX_PROCESSING_SIDE,
)
from faceredact.utils.image import ImageUtils

logger = logging.getLogger(__name__)

# Constants for frame validation
MIN_FRAME_CHANNELS = 1
STANDARD_RGB_CHANNELS = 3
RGBA_CHANNELS = 4
VALID_FRAME_CHANNELS = [MIN_FRAME_CHANNELS, STANDARD_RGB_CHANNELS, RGBA_CHANNELS]

ROLE_MAX_CANDIDATES = {
    DetectorRole.HIGH_ACCURACY: HIGH_ACCURACY_MAX_CANDIDATES,
    DetectorRole.FAST_APPROX: FAST_APPROX_MAX_CANDIDATES,
}


class DetectionError(Exception):
    """Base exception for detection-related errors."""

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class ModelUnavailableError(DetectionError):
    """A detector or landmark adapter failed to initialise or to run."""


class DetectionUnavailableError(DetectionError):
    """No detector is loaded, so no detection pass can run."""


class AdapterConfig(BaseModel):
    """Per-invocation configuration handed to a detector adapter."""

    mode: Literal["full", "short"] = Field(
        default="full", description="Model resolution/quality mode"
    )
    max_candidates: int = Field(default=200, ge=1)
    score_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = {"frozen": True}


def make_detection(
    x: float,
    y: float,
    width: float,
    height: float,
    score: float,
    keypoints: list[Point] | None = None,
) -> RawDetection | None:
    """Build a RawDetection, or None for boxes that start off-image or are empty."""
    if x < 0 or y < 0 or width <= 0 or height <= 0:
        return None
    return RawDetection(
        bbox=BoundingBox(x=float(x), y=float(y), width=float(width), height=float(height)),
        score=float(max(0.0, min(1.0, score))),
        keypoints=keypoints,
    )


def validate_frame(frame: np.ndarray) -> None:
    """Validate input frame format."""
    if frame.size == 0:
        msg = "Input frame is empty"
        raise ValueError(msg)

    if frame.ndim not in [2, 3]:
        msg = f"Frame must be 2D or 3D array, got {frame.ndim}D"
        raise ValueError(msg)

    if frame.ndim == 3 and frame.shape[2] not in VALID_FRAME_CHANNELS:
        msg = f"Frame must have {VALID_FRAME_CHANNELS} channels, got {frame.shape[2]}"
        raise ValueError(msg)


class DetectorAdapter(ABC):
    """Wraps one pretrained face detection model."""

    def __init__(
        self,
        name: str,
        role: DetectorRole,
        max_processing_side: int = MAX_PROCESSING_SIDE,
        max_candidates: int | None = None,
    ) -> None:
        self.name = name
        self.role = role
        self.max_processing_side = max_processing_side
        self.max_candidates = max_candidates or ROLE_MAX_CANDIDATES[role]
        self.is_loaded = False
        self.detection_stats = {
            "total_detections": 0,
            "total_invocations": 0,
            "failed_invocations": 0,
            "average_detection_time": 0.0,
        }

    @abstractmethod
    def _load(self) -> None:
        """Load model weights; raise on failure."""

    @abstractmethod
    def _infer(self, image: np.ndarray, config: AdapterConfig) -> list[RawDetection]:
        """Run the model on an image no larger than max_processing_side."""

    def load(self) -> None:
        """Load the model, converting any failure into ModelUnavailableError."""
        try:
            self._load()
        except ModelUnavailableError:
            raise
        except Exception as e:
            msg = f"Failed to load {self.name}: {e}"
            raise ModelUnavailableError(msg, "MODEL_LOAD_FAILED") from e
        self.is_loaded = True
        logger.info("%s loaded (%s)", self.name, self.role.value)

    def detect(self, image: np.ndarray, config: AdapterConfig) -> list[RawDetection]:
        """Return boxes with scores in the coordinates of the given image."""
        if not self.is_loaded:
            msg = f"{self.name} is not loaded"
            raise ModelUnavailableError(msg, "MODEL_NOT_LOADED")

        validate_frame(image)
        start_time = time.perf_counter()
        try:
            processed, scale = ImageUtils.fit_within(image, self.max_processing_side)
            raw = self._infer(processed, config)
        except Exception as e:
            self.detection_stats["failed_invocations"] += 1
            msg = f"{self.name} inference failed: {e}"
            raise ModelUnavailableError(msg, "INFERENCE_FAILED") from e

        if scale != 1.0:
            raw = [self._rescale(detection, 1.0 / scale) for detection in raw]

        detections = sorted(
            (d for d in raw if d.score >= config.score_threshold),
            key=lambda d: d.score,
            reverse=True,
        )[: config.max_candidates]

        self._update_stats(len(detections), time.perf_counter() - start_time)
        return detections

    @staticmethod
    def _rescale(detection: RawDetection, factor: float) -> RawDetection:
        keypoints = None
        if detection.keypoints is not None:
            keypoints = [(px * factor, py * factor) for px, py in detection.keypoints]
        return detection.model_copy(
            update={"bbox": detection.bbox.rescale(factor), "keypoints": keypoints}
        )

    def _update_stats(self, detection_count: int, detection_time: float) -> None:
        """Update internal performance statistics."""
        self.detection_stats["total_invocations"] += 1
        self.detection_stats["total_detections"] += detection_count

        # Update running average of detection time
        current_avg = self.detection_stats["average_detection_time"]
        count = self.detection_stats["total_invocations"]
        self.detection_stats["average_detection_time"] = (
            current_avg * (count - 1) + detection_time
        ) / count

    def get_detection_stats(self) -> dict[str, Any]:
        """Get adapter performance statistics."""
        return self.detection_stats.copy()

    def dispose(self) -> None:
        """Release model resources."""
        self.is_loaded = False

    def __repr__(self) -> str:
        """Return detailed representation."""
        return f"{self.__class__.__name__}(name={self.name!r}, role={self.role.value})"


class LandmarkAdapter(ABC):
    """Wraps one pretrained landmark (face mesh) model."""

    def __init__(
        self, name: str, max_processing_side: int = MAX_PROCESSING_SIDE
    ) -> None:
        self.name = name
        self.max_processing_side = max_processing_side
        self.is_loaded = False

    @abstractmethod
    def _load(self) -> None:
        """Load model weights; raise on failure."""

    @abstractmethod
    def _estimate(self, image: np.ndarray) -> list[LandmarkSet]:
        """Run the model on an image no larger than max_processing_side."""

    def load(self) -> None:
        """Load the model, converting any failure into ModelUnavailableError."""
        try:
            self._load()
        except ModelUnavailableError:
            raise
        except Exception as e:
            msg = f"Failed to load {self.name}: {e}"
            raise ModelUnavailableError(msg, "MODEL_LOAD_FAILED") from e
        self.is_loaded = True
        logger.info("%s loaded (landmarks)", self.name)

    def estimate(self, image: np.ndarray) -> list[LandmarkSet]:
        """Return landmark sets in the coordinates of the given image."""
        if not self.is_loaded:
            msg = f"{self.name} is not loaded"
            raise ModelUnavailableError(msg, "MODEL_NOT_LOADED")

        validate_frame(image)
        try:
            processed, scale = ImageUtils.fit_within(image, self.max_processing_side)
            landmarks = self._estimate(processed)
        except Exception as e:
            msg = f"{self.name} landmark estimation failed: {e}"
            raise ModelUnavailableError(msg, "INFERENCE_FAILED") from e

        if scale == 1.0:
            return landmarks
        factor = 1.0 / scale
        return [
            LandmarkSet(
                bbox=mesh.bbox.rescale(factor),
                keypoints=[(px * factor, py * factor) for px, py in mesh.keypoints],
            )
            for mesh in landmarks
        ]

    def dispose(self) -> None:
        """Release model resources."""
        self.is_loaded = False
