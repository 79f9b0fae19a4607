"""OpenCV-backed detector and landmark adapters."""

from __future__ import annotations

import logging
import math
from pathlib import Path

import cv2
import numpy as np

from faceredact.core.models import BoundingBox, DetectorRole, LandmarkSet, RawDetection
from faceredact.detection.base import (
    AdapterConfig,
    DetectorAdapter,
    LandmarkAdapter,
    ModelUnavailableError,
    make_detection,
)
from faceredact.utils.image import ImageUtils

logger = logging.getLogger(__name__)

YUNET_INPUT_SIZE = (320, 320)
YUNET_NMS_THRESHOLD = 0.3
YUNET_TOP_K = 5000
YUNET_SHORT_MODE_SIDE = 1024
YUNET_KEYPOINT_COUNT = 5

HAAR_CASCADE_FILE = "haarcascade_frontalface_default.xml"
HAAR_MIN_NEIGHBORS = 4
HAAR_MIN_SIZE = (16, 16)
# Cascade level weights are unbounded; this scale maps them onto [0, 1)
HAAR_WEIGHT_SCALE = 3.0


def _as_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def _create_yunet(model_path: Path | None, score_threshold: float):
    if model_path is None:
        msg = "YuNet requires a model_path to the ONNX weights"
        raise ModelUnavailableError(msg, "NO_MODEL_PATH")
    if not model_path.exists():
        msg = f"Model file not found: {model_path}"
        raise ModelUnavailableError(msg, "MODEL_FILE_NOT_FOUND")
    return cv2.FaceDetectorYN.create(
        str(model_path),
        "",
        YUNET_INPUT_SIZE,
        score_threshold,
        YUNET_NMS_THRESHOLD,
        YUNET_TOP_K,
    )


def _run_yunet(detector, image: np.ndarray) -> np.ndarray:
    """Return YuNet's raw N x 15 output (empty when nothing was found)."""
    height, width = image.shape[:2]
    detector.setInputSize((width, height))
    _, faces = detector.detect(_as_bgr(image))
    if faces is None:
        return np.empty((0, 15), dtype=np.float32)
    return faces


def _yunet_keypoints(row: np.ndarray) -> list[tuple[float, float]]:
    return [
        (float(row[4 + 2 * i]), float(row[5 + 2 * i]))
        for i in range(YUNET_KEYPOINT_COUNT)
    ]


class YuNetDetector(DetectorAdapter):
    """High-accuracy detector backed by OpenCV's YuNet ONNX model."""

    def __init__(
        self,
        model_path: Path | None,
        score_threshold: float = 0.2,
        name: str = "YuNet",
        **kwargs,
    ) -> None:
        super().__init__(name, DetectorRole.HIGH_ACCURACY, **kwargs)
        self.model_path = model_path
        self.score_threshold = score_threshold
        self.model = None

    def _load(self) -> None:
        self.model = _create_yunet(self.model_path, self.score_threshold)

    def _infer(self, image: np.ndarray, config: AdapterConfig) -> list[RawDetection]:
        scale = 1.0
        if config.mode == "short":
            image, scale = ImageUtils.fit_within(image, YUNET_SHORT_MODE_SIDE)

        self.model.setScoreThreshold(config.score_threshold)
        self.model.setTopK(max(config.max_candidates, 1))
        faces = _run_yunet(self.model, image)

        detections = []
        for row in faces:
            x, y, w, h = (float(v) / scale for v in row[:4])
            keypoints = [(px / scale, py / scale) for px, py in _yunet_keypoints(row)]
            detection = make_detection(x, y, w, h, float(row[14]), keypoints)
            if detection is not None:
                detections.append(detection)
        return detections

    def dispose(self) -> None:
        """Release model resources."""
        self.model = None
        super().dispose()


class HaarCascadeDetector(DetectorAdapter):
    """Fast approximate detector using OpenCV's bundled Haar cascade."""

    def __init__(
        self,
        cascade_path: Path | None = None,
        name: str = "Haar Cascade",
        **kwargs,
    ) -> None:
        super().__init__(name, DetectorRole.FAST_APPROX, **kwargs)
        self.cascade_path = cascade_path or Path(cv2.data.haarcascades) / HAAR_CASCADE_FILE
        self.model = None

    def _load(self) -> None:
        if not self.cascade_path.exists():
            msg = f"Cascade file not found: {self.cascade_path}"
            raise ModelUnavailableError(msg, "MODEL_FILE_NOT_FOUND")
        cascade = cv2.CascadeClassifier(str(self.cascade_path))
        if cascade.empty():
            msg = f"Failed to parse cascade: {self.cascade_path}"
            raise ModelUnavailableError(msg, "MODEL_LOAD_FAILED")
        self.model = cascade

    def _infer(self, image: np.ndarray, config: AdapterConfig) -> list[RawDetection]:
        gray = image if image.ndim == 2 else cv2.cvtColor(_as_bgr(image), cv2.COLOR_BGR2GRAY)
        gray = cv2.equalizeHist(gray)
        scale_factor = 1.05 if config.mode == "full" else 1.2

        rects, _, weights = self.model.detectMultiScale3(
            gray,
            scaleFactor=scale_factor,
            minNeighbors=HAAR_MIN_NEIGHBORS,
            minSize=HAAR_MIN_SIZE,
            outputRejectLevels=True,
        )

        detections = []
        for (x, y, w, h), weight in zip(rects, np.ravel(weights), strict=False):
            score = 1.0 - math.exp(-max(float(weight), 0.0) / HAAR_WEIGHT_SCALE)
            detection = make_detection(x, y, w, h, score)
            if detection is not None:
                detections.append(detection)
        return detections

    def dispose(self) -> None:
        """Release model resources."""
        self.model = None
        super().dispose()


class YuNetLandmarkEstimator(LandmarkAdapter):
    """Five-point landmark estimator reusing YuNet's keypoint head."""

    def __init__(
        self,
        model_path: Path | None,
        score_threshold: float = 0.5,
        name: str = "YuNet Landmarks",
        **kwargs,
    ) -> None:
        super().__init__(name, **kwargs)
        self.model_path = model_path
        self.score_threshold = score_threshold
        self.model = None

    def _load(self) -> None:
        self.model = _create_yunet(self.model_path, self.score_threshold)

    def _estimate(self, image: np.ndarray) -> list[LandmarkSet]:
        faces = _run_yunet(self.model, image)
        meshes = []
        for row in faces:
            x, y, w, h = (float(v) for v in row[:4])
            if w <= 0 or h <= 0:
                continue
            meshes.append(
                LandmarkSet(
                    bbox=BoundingBox.from_corners(
                        max(0.0, x), max(0.0, y), max(0.0, x + w), max(0.0, y + h)
                    ),
                    keypoints=_yunet_keypoints(row),
                )
            )
        return meshes

    def dispose(self) -> None:
        """Release model resources."""
        self.model = None
        super().dispose()
