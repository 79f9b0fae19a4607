"""Tests for the redaction renderer."""

from unittest.mock import patch

import numpy as np
import pytest
from helpers import face_like_image

from faceredact.config import RenderConfig
from faceredact.core.models import BoundingBox, RedactionMethod, Region
from faceredact.rendering.renderer import (
    RedactionIncompleteError,
    RedactionRenderer,
    pixel_block_size,
    pixel_rect,
)


def region(x, y, w, h, enabled=True):
    return Region(bbox=BoundingBox(x=x, y=y, width=w, height=h), enabled=enabled)


@pytest.fixture
def renderer() -> RedactionRenderer:
    return RedactionRenderer(RenderConfig())


@pytest.fixture
def image() -> np.ndarray:
    return face_like_image(200, 200, seed=3)


class TestGeometry:
    """Test pixel geometry helpers."""

    def test_pixel_rect_floors(self):
        """Test fractional boxes are floored."""
        assert pixel_rect(BoundingBox(x=10.7, y=5.2, width=20.9, height=10.1), 100, 100) == (
            10,
            5,
            20,
            10,
        )

    def test_pixel_rect_clamps(self):
        """Test boxes are cut at the surface edge."""
        assert pixel_rect(BoundingBox(x=90, y=90, width=20, height=20), 100, 100) == (
            90,
            90,
            10,
            10,
        )

    def test_pixel_rect_zero_area(self):
        """Test sub-pixel boxes have no area."""
        assert pixel_rect(BoundingBox(x=10, y=10, width=0.5, height=10), 100, 100) is None

    def test_block_size_bounds(self):
        """Test block size stays within [6, 16]."""
        assert pixel_block_size(20, 20) == 6
        assert pixel_block_size(80, 100) == 10
        assert pixel_block_size(400, 400) == 16


class TestTransforms:
    """Test the three redaction methods."""

    def test_blackout_fills(self, renderer, image):
        """Test blackout paints the configured colour."""
        surface = image.copy()
        renderer.apply(surface, [region(40, 40, 60, 60)], RedactionMethod.BLACKOUT)
        assert (surface[40:100, 40:100] == 0).all()
        np.testing.assert_array_equal(surface[:40], image[:40])

    def test_blackout_custom_colour(self, image):
        """Test a configured fill colour is used."""
        renderer = RedactionRenderer(RenderConfig(fill_color=(255, 0, 0)))
        surface = image.copy()
        renderer.apply(surface, [region(0, 0, 10, 10)], RedactionMethod.BLACKOUT)
        assert (surface[0:10, 0:10] == [255, 0, 0]).all()

    def test_pixelate_uniform_blocks(self, renderer, image):
        """Test pixelation produces flat blocks."""
        surface = image.copy()
        renderer.apply(surface, [region(100, 100, 64, 64)], RedactionMethod.PIXELATE)
        block = surface[100:108, 100:108]
        assert (block == block[0, 0]).all()

    def test_blur_smooths(self, renderer, image):
        """Test blur removes most of the noise variance."""
        surface = image.copy()
        renderer.apply(surface, [region(120, 120, 60, 60)], RedactionMethod.BLUR)
        assert surface[120:180, 120:180].std() < image[120:180, 120:180].std() / 4
        np.testing.assert_array_equal(surface[:120], image[:120])

    def test_disabled_regions_untouched(self, renderer, image):
        """Test disabled regions are not redacted."""
        surface = image.copy()
        drawn = renderer.apply(
            surface, [region(40, 40, 60, 60, enabled=False)], RedactionMethod.BLACKOUT
        )
        assert drawn == 0
        np.testing.assert_array_equal(surface, image)

    def test_zero_area_skipped(self, renderer, image):
        """Test regions with no pixels are skipped silently."""
        surface = image.copy()
        assert renderer.apply(surface, [region(10, 10, 0.4, 0.4)], RedactionMethod.BLUR) == 0


class TestIdempotence:
    """Re-redacting a redacted region changes nothing visible."""

    @pytest.mark.parametrize("method", [RedactionMethod.BLACKOUT, RedactionMethod.PIXELATE])
    def test_exact(self, renderer, image, method):
        """Test blackout and pixelate are exactly idempotent."""
        regions = [region(30, 30, 70, 50)]
        once = renderer.render_redaction(image, regions, method)
        twice = renderer.render_redaction(once, regions, method)
        np.testing.assert_array_equal(once, twice)

    def test_blur_within_tolerance(self, renderer, image):
        """Test a second blur moves pixels by at most 3 levels on average."""
        regions = [region(120, 120, 60, 60)]
        once = renderer.render_redaction(image, regions, RedactionMethod.BLUR)
        twice = renderer.render_redaction(once, regions, RedactionMethod.BLUR)
        diff = np.abs(once.astype(np.int16) - twice.astype(np.int16))
        assert diff.mean() <= 3


class TestFallback:
    """Test transform failures never leave regions unredacted."""

    @pytest.mark.parametrize(
        "error",
        [ValueError("kernel"), RuntimeError("oom"), TypeError("bad roi"), MemoryError()],
    )
    def test_blur_failure_falls_back_to_blackout(self, renderer, image, error):
        """Test any failing blur yields exactly the blackout result."""
        regions = [region(40, 40, 60, 60)]
        expected = renderer.render_redaction(image, regions, RedactionMethod.BLACKOUT)

        with patch("cv2.GaussianBlur", side_effect=error):
            result = renderer.render_redaction(image, regions, RedactionMethod.BLUR)

        np.testing.assert_array_equal(result, expected)

    @pytest.mark.parametrize("error", [ValueError("fill"), RuntimeError("device lost")])
    def test_blackout_failure_raises(self, renderer, image, error):
        """Test a failed blackout surfaces as RedactionIncompleteError."""
        target = region(40, 40, 60, 60)
        with patch.object(RedactionRenderer, "blackout", side_effect=error):
            with pytest.raises(RedactionIncompleteError) as exc_info:
                renderer.render_redaction(image, [target], RedactionMethod.BLACKOUT)
        assert exc_info.value.region_id == target.id


class TestSurfaces:
    """Test preview and export surfaces."""

    def test_export_does_not_mutate_input(self, renderer, image):
        """Test rendering works on a copy."""
        original = image.copy()
        renderer.render_redaction(image, [region(40, 40, 60, 60)], RedactionMethod.BLACKOUT)
        np.testing.assert_array_equal(image, original)

    def test_preview_scales_regions(self, renderer):
        """Test preview surfaces are reduced and regions scaled with them."""
        image = np.full((1200, 1600, 3), 200, dtype=np.uint8)
        preview = renderer.render_preview(
            image, [region(100, 100, 200, 200)], RedactionMethod.BLACKOUT
        )
        assert preview.shape == (600, 800, 3)
        assert (preview[50:150, 50:150] == 0).all()
        assert (preview[150:160, 150:160] == 200).all()

    def test_export_keeps_resolution(self, renderer, image):
        """Test export surfaces keep the source size."""
        surface = renderer.render_redaction(image, [], RedactionMethod.BLUR)
        assert surface.shape == image.shape

    def test_encode_surface_jpeg(self, renderer, image):
        """Test encoded surfaces are JPEG payloads."""
        payload = renderer.encode_surface(image)
        assert payload[:2] == b"\xff\xd8"
