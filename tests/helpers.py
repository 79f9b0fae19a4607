"""Fake adapters and builders shared by the test suite."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import numpy as np

from faceredact.core.models import BoundingBox, DetectorRole, LandmarkSet, RawDetection
from faceredact.detection.base import (
    AdapterConfig,
    DetectorAdapter,
    LandmarkAdapter,
    ModelUnavailableError,
)
from faceredact.detection.registry import DetectorRegistry


def raw(x: float, y: float, w: float, h: float, score: float) -> RawDetection:
    return RawDetection(bbox=BoundingBox(x=x, y=y, width=w, height=h), score=score)


def face_at(
    x: float, y: float, w: float, h: float, score: float, width: int = 200
) -> Callable[[np.ndarray], list[RawDetection]]:
    """One face that follows the image through resampling.

    ``width`` is the width of the full image the coordinates refer to.
    """

    def detect(image: np.ndarray) -> list[RawDetection]:
        factor = image.shape[1] / width
        return [raw(x * factor, y * factor, w * factor, h * factor, score)]

    return detect


class FakeDetector(DetectorAdapter):
    """Detector returning canned detections and recording its inputs."""

    def __init__(
        self,
        role: DetectorRole,
        detections: list[RawDetection] | Callable[[np.ndarray], list[RawDetection]] = (),
        name: str | None = None,
        fail_load: bool = False,
        fail_detect: bool = False,
        delay: float = 0.0,
        detect_error: Exception | None = None,
    ) -> None:
        super().__init__(name or f"fake-{role.value}", role)
        self._detections = detections
        self.fail_load = fail_load
        self.fail_detect = fail_detect or detect_error is not None
        self.detect_error = detect_error or RuntimeError("backend crashed")
        self.delay = delay
        self.calls: list[tuple[tuple[int, ...], AdapterConfig]] = []

    def _load(self) -> None:
        if self.fail_load:
            msg = "weights missing"
            raise ModelUnavailableError(msg, "MODEL_FILE_NOT_FOUND")

    def _infer(self, image: np.ndarray, config: AdapterConfig) -> list[RawDetection]:
        self.calls.append((image.shape, config))
        if self.delay:
            time.sleep(self.delay)
        if self.fail_detect:
            raise self.detect_error
        if callable(self._detections):
            return self._detections(image)
        return list(self._detections)


class FakeLandmarks(LandmarkAdapter):
    """Landmark adapter returning canned landmark sets."""

    def __init__(
        self,
        landmark_sets: list[LandmarkSet],
        fail: bool = False,
        error: Exception | None = None,
    ) -> None:
        super().__init__("fake-landmarks")
        self.landmark_sets = landmark_sets
        self.fail = fail or error is not None
        self.error = error or RuntimeError("mesh failed")
        self.calls = 0

    def _load(self) -> None:
        pass

    def _estimate(self, image: np.ndarray) -> list[LandmarkSet]:
        self.calls += 1
        if self.fail:
            raise self.error
        return list(self.landmark_sets)


def make_registry(
    *adapters: DetectorAdapter,
    landmarks: LandmarkAdapter | None = None,
    initialize: bool = True,
) -> DetectorRegistry:
    """Registry with adapters registered in priority order."""
    registry = DetectorRegistry()
    for priority, adapter in enumerate(adapters, start=1):
        registry.register(adapter, priority=priority)
    if landmarks is not None:
        registry.register_landmarks(landmarks)
    if initialize:
        asyncio.run(registry.initialize())
    return registry


def face_like_image(width: int = 200, height: int = 200, seed: int = 0) -> np.ndarray:
    """Noisy BGR image with a checkered block where the fakes report a face.

    The block has texture so blurring it is visible.
    """
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    rows, cols = np.mgrid[0:60, 0:60]
    checker = ((rows // 6 + cols // 6) % 2).astype(np.uint8)
    image[40:100, 40:100] = (160 + 80 * checker)[..., np.newaxis]
    return image
