"""The four candidate generation strategies.

Every strategy takes the full image, the sensitivity scalar and the registry,
and returns provenance-tagged candidates in full-image coordinates. Detector
calls and resamples run in worker threads; each adapter is used by at most
one invocation at a time.
"""

from __future__ import annotations

import asyncio
import logging
import math

import numpy as np

from faceredact.core.models import Candidate, DetectorRole, RawDetection
from faceredact.detection.base import AdapterConfig, DetectorAdapter
from faceredact.detection.constants import (
    DOWNSCALE_CONTRAST,
    FAST_APPROX_WEIGHT_DEFAULT,
    FAST_APPROX_WEIGHT_LOW_SENSITIVITY,
    HIGH_ACCURACY_WEIGHT_DEFAULT,
    HIGH_ACCURACY_WEIGHT_HIGH_SENSITIVITY,
    HIGH_SENSITIVITY,
    LARGE_SCALE_LIMIT,
    LOW_SENSITIVITY,
    PREPROCESSING_DISCOUNT,
    PREPROCESSING_MIN_SENSITIVITY,
    PREPROCESSING_VARIANTS,
    PYRAMID_ACCURATE_SENSITIVITY,
    PYRAMID_SCALES_DEFAULT,
    PYRAMID_SCALES_HIGH,
    SCALE_BOOST,
    SCORE_FLOOR_BASE,
    SCORE_FLOOR_MIN,
    SCORE_FLOOR_SLOPE,
    SMALL_SCALE_LIMIT,
    SMALL_TILE_AREA,
    SMALL_TILE_BOOST,
    TILE_AREA_DIVISOR,
    TILE_HIGH_SENSITIVITY_SHRINK,
    TILE_MAX_SIDE,
    TILE_MIN_EXTENT,
    TILE_MIN_SIDE,
    TILE_OVERLAP_RATIO,
)
from faceredact.detection.registry import DetectorRegistry
from faceredact.utils.image import ImageUtils

logger = logging.getLogger(__name__)


def detector_weight(role: DetectorRole, sensitivity: float) -> float:
    """Ensemble weight for a detector role at a sensitivity."""
    weights = {
        DetectorRole.HIGH_ACCURACY: (
            HIGH_ACCURACY_WEIGHT_HIGH_SENSITIVITY
            if sensitivity > HIGH_SENSITIVITY
            else HIGH_ACCURACY_WEIGHT_DEFAULT
        ),
        DetectorRole.FAST_APPROX: (
            FAST_APPROX_WEIGHT_LOW_SENSITIVITY
            if sensitivity < LOW_SENSITIVITY
            else FAST_APPROX_WEIGHT_DEFAULT
        ),
    }
    return weights[role]


def score_floor(sensitivity: float) -> float:
    """Minimum raw detector score kept from a single invocation."""
    return max(SCORE_FLOOR_MIN, SCORE_FLOOR_BASE - sensitivity * SCORE_FLOOR_SLOPE)


def pyramid_scales(sensitivity: float) -> tuple[float, ...]:
    return PYRAMID_SCALES_HIGH if sensitivity > HIGH_SENSITIVITY else PYRAMID_SCALES_DEFAULT


def pyramid_role(scale: float, sensitivity: float) -> DetectorRole:
    """Small scales always go to the accurate model."""
    if scale <= SMALL_SCALE_LIMIT or sensitivity > PYRAMID_ACCURATE_SENSITIVITY:
        return DetectorRole.HIGH_ACCURACY
    return DetectorRole.FAST_APPROX


def pyramid_weight(scale: float, sensitivity: float) -> float:
    if sensitivity > HIGH_SENSITIVITY and (
        scale <= SMALL_SCALE_LIMIT or scale >= LARGE_SCALE_LIMIT
    ):
        return SCALE_BOOST
    return 1.0


def tile_side(width: int, height: int, sensitivity: float) -> float:
    """Tile side adapted to image area, shrunk at high sensitivity."""
    base = min(TILE_MAX_SIDE, max(TILE_MIN_SIDE, math.sqrt(width * height) / TILE_AREA_DIVISOR))
    if sensitivity > HIGH_SENSITIVITY:
        return base * TILE_HIGH_SENSITIVITY_SHRINK
    return base


def tile_grid(width: int, height: int, sensitivity: float) -> list[tuple[int, int, int, int]]:
    """Overlapping tiles as (x, y, w, h), skipping slivers at the edges."""
    side = tile_side(width, height, sensitivity)
    step = side - side * TILE_OVERLAP_RATIO

    tiles = []
    y = 0.0
    while y < height:
        x = 0.0
        while x < width:
            tile_w = int(min(side, width - x))
            tile_h = int(min(side, height - y))
            if tile_w >= TILE_MIN_EXTENT and tile_h >= TILE_MIN_EXTENT:
                tiles.append((int(x), int(y), tile_w, tile_h))
            x += step
        y += step
    return tiles


def tile_weight(tile_w: int, tile_h: int, sensitivity: float) -> float:
    if sensitivity > HIGH_SENSITIVITY and tile_w * tile_h < SMALL_TILE_AREA:
        return SMALL_TILE_BOOST
    return 1.0


def adapter_config(adapter: DetectorAdapter, sensitivity: float) -> AdapterConfig:
    """Per-invocation config: model mode, candidate cap and score floor."""
    return AdapterConfig(
        mode="full" if adapter.role is DetectorRole.HIGH_ACCURACY else "short",
        max_candidates=adapter.max_candidates,
        score_threshold=score_floor(sensitivity),
    )


class InvocationTally:
    """Outcome counts of the adapter invocations made during one pass."""

    def __init__(self) -> None:
        self.succeeded = 0
        self.failed = 0

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0


async def invoke(
    registry: DetectorRegistry,
    adapter: DetectorAdapter,
    image: np.ndarray,
    sensitivity: float,
    tally: InvocationTally | None = None,
) -> list[RawDetection]:
    """Run one adapter on one image; failures yield zero detections."""
    config = adapter_config(adapter, sensitivity)
    async with registry.lock_for(adapter):
        try:
            detections = await asyncio.to_thread(adapter.detect, image, config)
        except Exception as e:
            logger.warning("%s invocation failed: %s", adapter.name, e)
            if tally is not None:
                tally.failed += 1
            return []
    if tally is not None:
        tally.succeeded += 1
    return detections


def to_candidates(
    detections: list[RawDetection],
    adapter: DetectorAdapter,
    source: str,
    weight: float = 1.0,
    scale: float = 1.0,
    offset: tuple[int, int] = (0, 0),
) -> list[Candidate]:
    """Map raw detections back to full-image coordinates as candidates."""
    candidates = []
    for detection in detections:
        bbox = detection.bbox
        if scale != 1.0:
            bbox = bbox.rescale(1.0 / scale)
        if offset != (0, 0):
            bbox = bbox.translate(*offset)
        candidates.append(
            Candidate(
                bbox=bbox,
                confidence=min(1.0, detection.score * weight),
                source=source,
                detector=adapter.role,
            )
        )
    return candidates


async def model_ensemble(
    image: np.ndarray,
    sensitivity: float,
    registry: DetectorRegistry,
    tally: InvocationTally | None = None,
) -> list[Candidate]:
    """Every loaded detector on the full image, weighted by role."""

    async def run(adapter: DetectorAdapter) -> list[Candidate]:
        detections = await invoke(registry, adapter, image, sensitivity, tally)
        return to_candidates(
            detections,
            adapter,
            f"ensemble:{adapter.name}",
            weight=detector_weight(adapter.role, sensitivity),
        )

    results = await asyncio.gather(*(run(a) for a in registry.loaded_adapters()))
    return [c for batch in results for c in batch]


async def scale_pyramid(
    image: np.ndarray,
    sensitivity: float,
    registry: DetectorRegistry,
    tally: InvocationTally | None = None,
) -> list[Candidate]:
    """Re-run detection on resampled copies to catch small and large faces."""
    candidates = []
    for scale in pyramid_scales(sensitivity):
        adapter = registry.resolve(pyramid_role(scale, sensitivity))
        if adapter is None:
            break

        try:
            scaled = await asyncio.to_thread(ImageUtils.scale_image, image, scale)
            if scale < 1.0:
                scaled = ImageUtils.adjust_contrast(scaled, DOWNSCALE_CONTRAST)
        except Exception as e:
            logger.warning("Scale %.1f failed: %s", scale, e)
            continue

        detections = await invoke(registry, adapter, scaled, sensitivity, tally)
        batch = to_candidates(
            detections,
            adapter,
            f"pyramid:{adapter.name}@{scale}",
            weight=pyramid_weight(scale, sensitivity),
            scale=scale,
        )
        logger.debug("Scale %.1f: %d faces", scale, len(batch))
        candidates.extend(batch)
    return candidates


async def adaptive_tiling(
    image: np.ndarray,
    sensitivity: float,
    registry: DetectorRegistry,
    tally: InvocationTally | None = None,
) -> list[Candidate]:
    """Scan overlapping tiles so small faces reach the detector at full size."""
    height, width = image.shape[:2]
    role = DetectorRole.HIGH_ACCURACY if sensitivity > HIGH_SENSITIVITY else DetectorRole.FAST_APPROX
    adapter = registry.resolve(role)
    if adapter is None:
        return []

    tiles = tile_grid(width, height, sensitivity)
    candidates = []
    for x, y, tile_w, tile_h in tiles:
        tile = image[y : y + tile_h, x : x + tile_w]
        detections = await invoke(registry, adapter, tile, sensitivity, tally)
        candidates.extend(
            to_candidates(
                detections,
                adapter,
                f"tile:{adapter.name}@{x},{y}",
                weight=tile_weight(tile_w, tile_h, sensitivity),
                offset=(x, y),
            )
        )
    logger.debug("Processed %d tiles: %d candidates", len(tiles), len(candidates))
    return candidates


async def preprocessing_variants(
    image: np.ndarray,
    sensitivity: float,
    registry: DetectorRegistry,
    tally: InvocationTally | None = None,
) -> list[Candidate]:
    """Re-run the most accurate detector on contrast and exposure variants."""
    if sensitivity <= PREPROCESSING_MIN_SENSITIVITY:
        return []

    adapter = registry.most_accurate()
    if adapter is None:
        return []

    candidates = []
    for name, factor in PREPROCESSING_VARIANTS:
        try:
            variant = await asyncio.to_thread(ImageUtils.apply_variant, image, name, factor)
        except Exception as e:
            logger.warning("Preprocessing %s failed: %s", name, e)
            continue

        detections = await invoke(registry, adapter, variant, sensitivity, tally)
        batch = to_candidates(
            detections,
            adapter,
            f"variant:{adapter.name}/{name}",
            weight=PREPROCESSING_DISCOUNT,
        )
        logger.debug("%s: %d faces", name, len(batch))
        candidates.extend(batch)
    return candidates


STRATEGIES = {
    "ensemble": model_ensemble,
    "pyramid": scale_pyramid,
    "tiling": adaptive_tiling,
    "preprocessing": preprocessing_variants,
}
