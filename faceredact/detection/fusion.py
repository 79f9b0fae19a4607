"""Fusion of raw candidates into the final region list."""

from __future__ import annotations

import logging
import math

from faceredact.core.models import BoundingBox, Candidate, DetectorRole, Region
from faceredact.detection.constants import (
    CLUSTER_IOU_DEFAULT,
    CLUSTER_IOU_HIGH,
    CONFIDENCE_FLOOR_BASE,
    CONFIDENCE_FLOOR_MIN,
    CONFIDENCE_FLOOR_SLOPE,
    HIGH_ACCURACY_BONUS,
    HIGH_SENSITIVITY,
    LANDMARK_BONUS,
    MAX_ASPECT_RATIO,
    MAX_REGIONS,
    MAX_SIZE_RATIO,
    MIN_ASPECT_RATIO,
    MIN_SIZE_RATIO_DEFAULT,
    MIN_SIZE_RATIO_HIGH,
    NMS_IOU_DEFAULT,
    NMS_IOU_HIGH,
    NMS_MAX_KEPT,
    NMS_SIZE_PENALTY,
    NMS_SIZE_RATIO,
)

logger = logging.getLogger(__name__)


def confidence_floor(sensitivity: float) -> float:
    """Lowest candidate confidence that survives the quality filter."""
    return max(CONFIDENCE_FLOOR_MIN, CONFIDENCE_FLOOR_BASE - sensitivity * CONFIDENCE_FLOOR_SLOPE)


def cluster_threshold(sensitivity: float) -> float:
    return CLUSTER_IOU_HIGH if sensitivity > HIGH_SENSITIVITY else CLUSTER_IOU_DEFAULT


def passes_quality(
    candidate: Candidate, image_width: int, image_height: int, sensitivity: float
) -> bool:
    """Size, aspect, confidence and bounds checks for one candidate."""
    bbox = candidate.bbox
    short_side = min(image_width, image_height)
    min_ratio = MIN_SIZE_RATIO_HIGH if sensitivity > HIGH_SENSITIVITY else MIN_SIZE_RATIO_DEFAULT
    min_size = short_side * min_ratio
    max_size = short_side * MAX_SIZE_RATIO

    if min(bbox.width, bbox.height) < min_size:
        return False
    if max(bbox.width, bbox.height) > max_size:
        return False
    if not MIN_ASPECT_RATIO <= bbox.aspect_ratio <= MAX_ASPECT_RATIO:
        return False
    if candidate.confidence < confidence_floor(sensitivity):
        return False
    return bbox.within(image_width, image_height)


def quality_filter(
    candidates: list[Candidate], image_width: int, image_height: int, sensitivity: float
) -> list[Candidate]:
    return [
        c for c in candidates if passes_quality(c, image_width, image_height, sensitivity)
    ]


def representative_score(candidate: Candidate) -> float:
    """Cluster election score: confidence with provenance bonuses."""
    score = candidate.confidence
    if candidate.detector is DetectorRole.HIGH_ACCURACY:
        score *= HIGH_ACCURACY_BONUS
    if candidate.has_landmarks:
        score *= LANDMARK_BONUS
    return score


def cluster_candidates(
    candidates: list[Candidate], sensitivity: float
) -> list[list[Candidate]]:
    """Greedy clustering against each cluster's first (most confident) member."""
    threshold = cluster_threshold(sensitivity)
    clusters: list[list[Candidate]] = []
    for candidate in sorted(candidates, key=lambda c: c.confidence, reverse=True):
        for cluster in clusters:
            if candidate.bbox.iou(cluster[0].bbox) > threshold:
                cluster.append(candidate)
                break
        else:
            clusters.append([candidate])
    return clusters


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def select_representative(cluster: list[Candidate]) -> Candidate:
    """Winning member's score on the cluster's mean geometry."""
    best = max(cluster, key=representative_score)
    count = len(cluster)
    bbox = BoundingBox(
        x=_round_half_up(sum(c.bbox.x for c in cluster) / count),
        y=_round_half_up(sum(c.bbox.y for c in cluster) / count),
        width=_round_half_up(sum(c.bbox.width for c in cluster) / count),
        height=_round_half_up(sum(c.bbox.height for c in cluster) / count),
    )
    return best.model_copy(
        update={"bbox": bbox, "confidence": min(1.0, representative_score(best))}
    )


def nms_threshold(a: BoundingBox, b: BoundingBox, sensitivity: float) -> float:
    """IoU above which the smaller-confidence box is suppressed."""
    threshold = NMS_IOU_HIGH if sensitivity > HIGH_SENSITIVITY else NMS_IOU_DEFAULT
    larger = max(a.area, b.area)
    if larger > 0 and min(a.area, b.area) / larger < NMS_SIZE_RATIO:
        threshold *= NMS_SIZE_PENALTY
    return threshold


def adaptive_nms(candidates: list[Candidate], sensitivity: float) -> list[Candidate]:
    keep: list[Candidate] = []
    for candidate in sorted(candidates, key=lambda c: c.confidence, reverse=True):
        suppressed = any(
            candidate.bbox.iou(kept.bbox) > nms_threshold(candidate.bbox, kept.bbox, sensitivity)
            for kept in keep
        )
        if not suppressed:
            keep.append(candidate)
        if len(keep) >= NMS_MAX_KEPT:
            break
    return keep


class FusionEngine:
    """Quality filter, confidence clustering and adaptive NMS."""

    def __init__(self) -> None:
        self.last_stats: dict[str, int] = {}

    def fuse(
        self,
        candidates: list[Candidate],
        image_size: tuple[int, int],
        sensitivity: float,
    ) -> list[Region]:
        """Turn raw candidates into detected regions inside the image."""
        image_width, image_height = image_size
        if not candidates:
            self.last_stats = {"input": 0, "filtered": 0, "clustered": 0, "kept": 0}
            return []

        filtered = quality_filter(candidates, image_width, image_height, sensitivity)
        logger.debug("Quality filter: %d -> %d", len(candidates), len(filtered))

        clustered = [
            select_representative(cluster)
            for cluster in cluster_candidates(filtered, sensitivity)
        ]
        logger.debug("Clustering: %d -> %d", len(filtered), len(clustered))

        kept = adaptive_nms(clustered, sensitivity)[:MAX_REGIONS]
        logger.debug("Final NMS: %d -> %d", len(clustered), len(kept))

        regions = []
        for candidate in kept:
            bbox = candidate.bbox.clamp(image_width, image_height)
            if bbox is None:
                logger.debug("Skipping zero-area region from %s", candidate.source)
                continue
            regions.append(
                Region(bbox=bbox, confidence=candidate.confidence, origin="detected")
            )

        self.last_stats = {
            "input": len(candidates),
            "filtered": len(filtered),
            "clustered": len(clustered),
            "kept": len(regions),
        }
        return regions
