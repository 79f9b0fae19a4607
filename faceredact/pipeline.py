"""Entry points for callers that do not need an interactive session."""

from __future__ import annotations

import logging

import numpy as np

from faceredact.config import RenderConfig
from faceredact.core.models import RedactionMethod, Region, SensitivityLevel
from faceredact.detection.fusion import FusionEngine
from faceredact.detection.generator import CandidateGenerator
from faceredact.detection.registry import DetectorRegistry
from faceredact.editing.manual_zone import compute_manual_zone
from faceredact.rendering.renderer import RedactionRenderer

logger = logging.getLogger(__name__)

__all__ = [
    "compute_manual_zone",
    "generate_regions",
    "render_preview",
    "render_redaction",
]


async def generate_regions(
    image: np.ndarray, level: SensitivityLevel, registry: DetectorRegistry
) -> list[Region]:
    """Detected regions for an image at a sensitivity preset.

    The registry must already be initialized.
    """
    sensitivity = SensitivityLevel(level).scalar
    candidates = await CandidateGenerator(registry).generate(image, sensitivity)
    height, width = image.shape[:2]
    regions = FusionEngine().fuse(candidates, (width, height), sensitivity)
    logger.info("Generated %d regions from %d candidates", len(regions), len(candidates))
    return regions


def render_redaction(
    image: np.ndarray,
    regions: list[Region],
    method: RedactionMethod,
    config: RenderConfig | None = None,
) -> np.ndarray:
    """Export surface with every enabled region redacted."""
    return RedactionRenderer(config).render_redaction(image, regions, RedactionMethod(method))


def render_preview(
    image: np.ndarray,
    regions: list[Region],
    method: RedactionMethod,
    config: RenderConfig | None = None,
) -> np.ndarray:
    """Low-resolution preview surface with every enabled region redacted."""
    return RedactionRenderer(config).render_preview(image, regions, RedactionMethod(method))
