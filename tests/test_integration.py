"""Integration tests for the complete detection and redaction pipeline."""

import asyncio
import json
from pathlib import Path

import numpy as np
import pytest
from helpers import FakeDetector, FakeLandmarks, face_at, face_like_image, make_registry

from faceredact.config import AppConfig, DetectorSettings
from faceredact.core.models import (
    BoundingBox,
    DetectionReport,
    DetectorRole,
    LandmarkSet,
    RedactionMethod,
    SensitivityLevel,
)
from faceredact.detection.registry import build_registry
from faceredact.editing.manual_zone import create_manual_region
from faceredact.pipeline import (
    compute_manual_zone,
    generate_regions,
    render_preview,
    render_redaction,
)
from faceredact.utils.image import ImageUtils


def test_complete_redaction_pipeline(tmp_path: Path) -> None:
    """Test the complete detect, edit and export data flow."""
    image = face_like_image(200, 200)

    # 1. Two detectors that agree on one face, plus a landmark model
    registry = make_registry(
        FakeDetector(DetectorRole.HIGH_ACCURACY, face_at(40, 40, 60, 60, 0.8)),
        FakeDetector(DetectorRole.FAST_APPROX, face_at(42, 41, 58, 60, 0.7)),
        landmarks=FakeLandmarks(
            [LandmarkSet(bbox=BoundingBox(x=40, y=40, width=60, height=60))]
        ),
    )

    # 2. Detection fuses every strategy's candidates into one region
    regions = asyncio.run(generate_regions(image, SensitivityLevel.THOROUGH, registry))
    assert len(regions) == 1
    detected = regions[0]
    assert detected.origin == "detected"
    assert detected.bbox.iou(BoundingBox(x=40, y=40, width=60, height=60)) > 0.8

    # 3. The user adds a manual region elsewhere, sized from the detected face
    side = compute_manual_zone((160, 160), regions, (200, 200))
    assert 40 <= side <= 150
    regions.append(create_manual_region((160, 160), regions, (200, 200)))

    # 4. The report validates that every region fits the image
    report = DetectionReport(regions=regions, image_size=(200, 200), sensitivity=0.9)
    assert report.region_count == 2

    # 5. Export blacks out both regions and leaves the rest untouched
    surface = render_redaction(image, regions, RedactionMethod.BLACKOUT)
    for region in regions:
        x, y = int(region.bbox.x), int(region.bbox.y)
        w, h = int(region.bbox.width), int(region.bbox.height)
        assert (surface[y : y + h, x : x + w] == 0).all()
    np.testing.assert_array_equal(surface[0:30, 0:30], image[0:30, 0:30])

    # 6. Disabling a region restores its pixels in the next export
    regions[0].toggle()
    surface = render_redaction(image, regions, RedactionMethod.BLUR)
    x, y = int(regions[0].bbox.x), int(regions[0].bbox.y)
    np.testing.assert_array_equal(surface[y : y + 10, x : x + 10], image[y : y + 10, x : x + 10])

    # 7. The surface survives an encode/save round trip
    output = tmp_path / "redacted.png"
    ImageUtils.save_image(surface, output)
    assert ImageUtils.load_image(output).shape == image.shape


def test_opencv_registry_on_blank_image() -> None:
    """Test the bundled detectors run end to end without YuNet weights."""
    registry = build_registry(DetectorSettings())
    asyncio.run(registry.initialize())
    try:
        assert [d.name for d in registry.descriptors if d.loaded] == ["Haar Cascade"]
        blank = np.full((240, 320, 3), 128, dtype=np.uint8)
        regions = asyncio.run(generate_regions(blank, SensitivityLevel.BALANCED, registry))
        assert regions == []
    finally:
        registry.dispose()


def test_preview_is_downscaled() -> None:
    """Test previews of large images fit the preview budget."""
    image = np.full((1000, 2000, 3), 90, dtype=np.uint8)
    regions = [create_manual_region((1000, 500), [], (2000, 1000))]

    preview = render_preview(image, regions, RedactionMethod.PIXELATE)

    assert max(preview.shape[:2]) == 800


def test_sensitivity_presets_order() -> None:
    """Test more sensitive presets never find fewer regions on the same input."""
    image = face_like_image(200, 200)
    clear_face = face_at(40, 40, 60, 60, 0.9)
    faint_face = face_at(130, 130, 50, 50, 0.3)

    def detections(img):
        return clear_face(img) + faint_face(img)

    counts = []
    for level in SensitivityLevel:
        registry = make_registry(FakeDetector(DetectorRole.FAST_APPROX, detections))
        counts.append(len(asyncio.run(generate_regions(image, level, registry))))

    assert counts == sorted(counts)
    assert counts[0] == 1
    assert counts[-1] == 2


def test_config_file_round_trip(tmp_path: Path) -> None:
    """Test configuration loads from JSON and rejects bad values."""
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "detectors": {"enable_landmarks": False},
                "render": {"blur_passes": 5, "fill_color": [0, 0, 255]},
                "session": {"detection_debounce": 0.25},
            }
        )
    )

    config = AppConfig.from_file(path)

    assert config.detectors.enable_landmarks is False
    assert config.render.blur_passes == 5
    assert config.render.fill_color == (0, 0, 255)
    assert config.session.detection_debounce == 0.25
    assert config.session.preview_debounce == 0.15

    path.write_text(json.dumps({"render": {"fill_color": [0, 0, 300]}}))
    with pytest.raises(ValueError, match="Fill colour"):
        AppConfig.from_file(path)

    with pytest.raises(FileNotFoundError):
        AppConfig.from_file(tmp_path / "missing.json")
