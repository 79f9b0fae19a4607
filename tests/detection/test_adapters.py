"""Tests for the OpenCV detector adapters."""

import math
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from faceredact.core.models import DetectorRole
from faceredact.detection.adapters import (
    HaarCascadeDetector,
    YuNetDetector,
    YuNetLandmarkEstimator,
)
from faceredact.detection.base import AdapterConfig, ModelUnavailableError, make_detection


def yunet_row(x, y, w, h, score):
    keypoints = [x + 0.3 * w, y + 0.4 * h, x + 0.7 * w, y + 0.4 * h,
                 x + 0.5 * w, y + 0.6 * h, x + 0.35 * w, y + 0.8 * h,
                 x + 0.65 * w, y + 0.8 * h]
    return [x, y, w, h, *keypoints, score]


def mock_yunet(rows):
    model = MagicMock()
    faces = np.array(rows, dtype=np.float32) if rows else None
    model.detect.return_value = (1, faces)
    return model


@pytest.fixture
def model_file(tmp_path: Path) -> Path:
    path = tmp_path / "face_detection_yunet.onnx"
    path.write_bytes(b"onnx")
    return path


class TestMakeDetection:
    """Test raw detection construction."""

    def test_drops_invalid_boxes(self):
        """Test negative origins and empty boxes are dropped."""
        assert make_detection(-1, 0, 10, 10, 0.5) is None
        assert make_detection(0, 0, 0, 10, 0.5) is None

    def test_clips_score(self):
        """Test scores are clipped to [0, 1]."""
        assert make_detection(0, 0, 10, 10, 1.3).score == 1.0


class TestYuNetDetector:
    """Test the YuNet adapter."""

    def test_role(self):
        """Test YuNet fills the accurate role."""
        detector = YuNetDetector(None)
        assert detector.role is DetectorRole.HIGH_ACCURACY
        assert detector.max_candidates == 300

    def test_missing_model_path(self):
        """Test loading without weights fails cleanly."""
        detector = YuNetDetector(None)
        with pytest.raises(ModelUnavailableError) as exc_info:
            detector.load()
        assert exc_info.value.error_code == "NO_MODEL_PATH"
        assert not detector.is_loaded

    def test_missing_model_file(self, tmp_path: Path):
        """Test a non-existent weights file fails cleanly."""
        detector = YuNetDetector(tmp_path / "missing.onnx")
        with pytest.raises(ModelUnavailableError) as exc_info:
            detector.load()
        assert exc_info.value.error_code == "MODEL_FILE_NOT_FOUND"

    def test_detect_before_load(self):
        """Test detection requires a loaded model."""
        detector = YuNetDetector(None)
        with pytest.raises(ModelUnavailableError, match="not loaded"):
            detector.detect(np.zeros((64, 64, 3), dtype=np.uint8), AdapterConfig())

    def test_detect_parses_rows(self, model_file):
        """Test YuNet output rows become scored detections with keypoints."""
        model = mock_yunet([yunet_row(10, 20, 40, 50, 0.9), yunet_row(100, 20, 30, 30, 0.4)])
        with patch("faceredact.detection.adapters._create_yunet", return_value=model) as create:
            detector = YuNetDetector(model_file)
            detector.load()

        detections = detector.detect(
            np.zeros((200, 200, 3), dtype=np.uint8),
            AdapterConfig(mode="full", max_candidates=300, score_threshold=0.5),
        )

        create.assert_called_once_with(model_file, 0.2)
        model.setInputSize.assert_called_with((200, 200))
        model.setScoreThreshold.assert_called_with(0.5)
        assert len(detections) == 1
        detection = detections[0]
        assert detection.bbox.x == pytest.approx(10)
        assert detection.bbox.height == pytest.approx(50)
        assert detection.score == pytest.approx(0.9)
        assert len(detection.keypoints) == 5

    def test_short_mode_downscales(self, model_file):
        """Test short mode runs on a reduced copy and maps boxes back."""
        model = mock_yunet([yunet_row(10, 10, 50, 50, 0.9)])
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            detector = YuNetDetector(model_file)
            detector.load()

        detections = detector.detect(
            np.zeros((2048, 2048, 3), dtype=np.uint8),
            AdapterConfig(mode="short", score_threshold=0.1),
        )

        model.setInputSize.assert_called_with((1024, 1024))
        assert detections[0].bbox.width == pytest.approx(100)
        assert detections[0].keypoints[0][0] == pytest.approx(2 * (10 + 0.3 * 50), rel=1e-4)

    def test_large_input_rescaled(self, model_file):
        """Test frames above the processing limit are mapped back to full size."""
        model = mock_yunet([yunet_row(10, 10, 50, 50, 0.9)])
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            detector = YuNetDetector(model_file, max_processing_side=500)
            detector.load()

        detections = detector.detect(np.zeros((1000, 1000, 3), dtype=np.uint8), AdapterConfig())

        assert detections[0].bbox.x == pytest.approx(20)
        assert detections[0].bbox.width == pytest.approx(100)

    def test_no_faces(self, model_file):
        """Test YuNet returning None yields no detections."""
        with patch("faceredact.detection.adapters._create_yunet", return_value=mock_yunet([])):
            detector = YuNetDetector(model_file)
            detector.load()
        assert detector.detect(np.zeros((64, 64, 3), dtype=np.uint8), AdapterConfig()) == []

    def test_candidate_cap(self, model_file):
        """Test results are truncated to the per-call cap, best first."""
        rows = [yunet_row(i * 10, 0, 8, 8, 0.5 + i / 100) for i in range(10)]
        with patch("faceredact.detection.adapters._create_yunet", return_value=mock_yunet(rows)):
            detector = YuNetDetector(model_file)
            detector.load()

        detections = detector.detect(
            np.zeros((128, 128, 3), dtype=np.uint8), AdapterConfig(max_candidates=3)
        )

        assert [round(d.score, 2) for d in detections] == [0.59, 0.58, 0.57]
        assert detector.get_detection_stats()["total_invocations"] == 1

    @pytest.mark.parametrize(
        "error", [RuntimeError("onnx failure"), TypeError("unpack None"), KeyError("output")]
    )
    def test_inference_error_wrapped(self, model_file, error):
        """Test any backend failure surfaces as ModelUnavailableError."""
        model = MagicMock()
        model.detect.side_effect = error
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            detector = YuNetDetector(model_file)
            detector.load()

        with pytest.raises(ModelUnavailableError) as exc_info:
            detector.detect(np.zeros((64, 64, 3), dtype=np.uint8), AdapterConfig())
        assert exc_info.value.error_code == "INFERENCE_FAILED"
        assert detector.get_detection_stats()["failed_invocations"] == 1

    def test_dispose(self, model_file):
        """Test dispose unloads the model."""
        with patch("faceredact.detection.adapters._create_yunet", return_value=mock_yunet([])):
            detector = YuNetDetector(model_file)
            detector.load()
        detector.dispose()
        assert detector.model is None
        assert not detector.is_loaded


class TestHaarCascadeDetector:
    """Test the Haar cascade adapter."""

    def test_bundled_cascade_loads(self):
        """Test the default cascade ships with OpenCV."""
        detector = HaarCascadeDetector()
        detector.load()
        assert detector.is_loaded
        assert detector.role is DetectorRole.FAST_APPROX

    def test_blank_image_has_no_faces(self):
        """Test a flat image produces nothing."""
        detector = HaarCascadeDetector()
        detector.load()
        image = np.full((200, 200, 3), 127, dtype=np.uint8)
        assert detector.detect(image, AdapterConfig(mode="short")) == []

    def test_missing_cascade(self, tmp_path: Path):
        """Test a missing cascade file fails cleanly."""
        detector = HaarCascadeDetector(tmp_path / "missing.xml")
        with pytest.raises(ModelUnavailableError, match="Cascade file not found"):
            detector.load()

    def test_corrupt_cascade(self, tmp_path: Path):
        """Test an unparsable cascade file fails cleanly."""
        path = tmp_path / "broken.xml"
        path.write_text("<opencv_storage></opencv_storage>")
        detector = HaarCascadeDetector(path)
        with pytest.raises(ModelUnavailableError):
            detector.load()

    def test_weights_mapped_to_scores(self):
        """Test cascade level weights become monotone scores in [0, 1)."""
        detector = HaarCascadeDetector()
        detector.model = MagicMock()
        detector.model.detectMultiScale3.return_value = (
            np.array([[10, 10, 40, 40], [60, 60, 30, 30]]),
            np.array([20, 25]),
            np.array([[3.0], [0.5]]),
        )
        detector.is_loaded = True

        detections = detector.detect(
            np.zeros((128, 128, 3), dtype=np.uint8),
            AdapterConfig(mode="full", score_threshold=0.0),
        )

        assert detections[0].score == pytest.approx(1 - math.exp(-1))
        assert detections[1].score == pytest.approx(1 - math.exp(-0.5 / 3))
        kwargs = detector.model.detectMultiScale3.call_args.kwargs
        assert kwargs["scaleFactor"] == 1.05
        assert kwargs["outputRejectLevels"] is True


class TestYuNetLandmarkEstimator:
    """Test the landmark adapter."""

    def test_estimate_returns_keypoints(self, model_file):
        """Test every YuNet row becomes a landmark set."""
        model = mock_yunet([yunet_row(10, 20, 40, 50, 0.9)])
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            estimator = YuNetLandmarkEstimator(model_file)
            estimator.load()

        meshes = estimator.estimate(np.zeros((100, 100, 3), dtype=np.uint8))

        assert len(meshes) == 1
        assert meshes[0].bbox.width == pytest.approx(40)
        assert len(meshes[0].keypoints) == 5

    def test_gray_input_accepted(self, model_file):
        """Test single channel frames are converted before inference."""
        model = mock_yunet([])
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            estimator = YuNetLandmarkEstimator(model_file)
            estimator.load()

        assert estimator.estimate(np.zeros((100, 100), dtype=np.uint8)) == []
        frame = model.detect.call_args.args[0]
        assert frame.shape == (100, 100, 3)

    def test_estimate_error_wrapped(self, model_file):
        """Test landmark backend failures surface as ModelUnavailableError."""
        model = MagicMock()
        model.detect.side_effect = TypeError("unpack None")
        with patch("faceredact.detection.adapters._create_yunet", return_value=model):
            estimator = YuNetLandmarkEstimator(model_file)
            estimator.load()

        with pytest.raises(ModelUnavailableError) as exc_info:
            estimator.estimate(np.zeros((100, 100, 3), dtype=np.uint8))
        assert exc_info.value.error_code == "INFERENCE_FAILED"
