"""Sizing heuristic for regions the user adds by pointing at the image."""

from __future__ import annotations

import logging
import math
import statistics

from faceredact.core.models import BoundingBox, Point, Region

logger = logging.getLogger(__name__)

# Tier 1: nearby regions
NEARBY_RADIUS_RATIO = 0.3
NEARBY_MIN_SIDE = 32.0
NEARBY_MAX_SIDE = 200.0

# Tier 2: global region statistics
GLOBAL_MIN_SIDE = 40.0
GLOBAL_MAX_SIDE = 150.0

# Tier 3: adaptive default
DENSITY_DIVISOR = 1000.0
DENSITY_SIDE = 35.0
CENTER_FACTOR_MIN = 0.7
CENTER_FACTOR_RANGE = 0.6
DEFAULT_MIN_SIDE = 40.0
DEFAULT_MAX_SIDE = 120.0

# Hit testing for clicks on existing regions
MIN_HIT_SIDE = 16.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _distance(a: Point, b: Point) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def center_factor(point: Point, image_size: tuple[int, int]) -> float:
    """1.3 at the image centre falling linearly to 0.7 at a corner."""
    width, height = image_size
    center = (width / 2, height / 2)
    max_distance = math.hypot(*center)
    if max_distance == 0:
        return CENTER_FACTOR_MIN + CENTER_FACTOR_RANGE
    ratio = min(1.0, _distance(point, center) / max_distance)
    return CENTER_FACTOR_MIN + CENTER_FACTOR_RANGE * (1 - ratio)


def compute_manual_zone(
    point: Point, regions: list[Region], image_size: tuple[int, int]
) -> float:
    """Side length of a new square region at a point.

    Tiers are tried in order: the mean size of nearby regions, then the
    mean/median blend of all regions, then a default from image density and
    position. The result is always within [32, 200].
    """
    width, height = image_size
    if width <= 0 or height <= 0:
        msg = f"Invalid image size: {width}x{height}"
        raise ValueError(msg)

    radius = min(width, height) * NEARBY_RADIUS_RATIO
    nearby = [r.bbox.side for r in regions if _distance(r.bbox.center, point) < radius]
    if nearby:
        side = _clamp(statistics.fmean(nearby), NEARBY_MIN_SIDE, NEARBY_MAX_SIDE)
        logger.debug("Using nearby face context: %.0fpx", side)
        return side

    if regions:
        sides = [r.bbox.side for r in regions]
        blended = (statistics.fmean(sides) + statistics.median(sides)) / 2
        side = _clamp(blended, GLOBAL_MIN_SIDE, GLOBAL_MAX_SIDE)
        logger.debug("Using global face statistics: %.0fpx", side)
        return side

    density = math.sqrt(width * height) / DENSITY_DIVISOR
    factor = center_factor(point, image_size)
    side = _clamp(density * DENSITY_SIDE * factor, DEFAULT_MIN_SIDE, DEFAULT_MAX_SIDE)
    logger.debug(
        "Using adaptive sizing: %.0fpx (density %.1f, center factor %.2f)",
        side,
        density,
        factor,
    )
    return side


def manual_zone_box(
    point: Point, side: float, image_size: tuple[int, int]
) -> BoundingBox | None:
    """Square of the given side centred on the point, clamped to the image."""
    width, height = image_size
    return BoundingBox.centered(point, side).clamp(width, height)


def create_manual_region(
    point: Point, regions: list[Region], image_size: tuple[int, int]
) -> Region:
    """A manual region sized for the point; ValueError for points off the image."""
    width, height = image_size
    px, py = point
    if not (0 <= px < width and 0 <= py < height):
        msg = f"Point {point} is outside the {width}x{height} image"
        raise ValueError(msg)

    side = compute_manual_zone(point, regions, image_size)
    bbox = manual_zone_box(point, side, image_size)
    if bbox is None:
        msg = f"Manual zone at {point} has no area inside the image"
        raise ValueError(msg)
    return Region(bbox=bbox, confidence=1.0, enabled=True, origin="manual")


def region_at(point: Point, regions: list[Region]) -> Region | None:
    """First region under a point; tiny regions get a minimum hit area."""
    px, py = point
    for region in regions:
        cx, cy = region.bbox.center
        half_w = max(region.bbox.width, MIN_HIT_SIDE) / 2
        half_h = max(region.bbox.height, MIN_HIT_SIDE) / 2
        if abs(px - cx) <= half_w and abs(py - cy) <= half_h:
            return region
    return None
