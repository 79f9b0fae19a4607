"""Candidate generation across all strategies plus landmark validation."""

from __future__ import annotations

import asyncio
import logging
import time

import numpy as np

from faceredact.core.models import Candidate, LandmarkSet
from faceredact.detection.base import (
    DetectionUnavailableError,
    validate_frame,
)
from faceredact.detection.constants import LANDMARK_BOOST, LANDMARK_IOU_THRESHOLD
from faceredact.detection.registry import DetectorRegistry
from faceredact.detection.strategies import STRATEGIES, InvocationTally

logger = logging.getLogger(__name__)


def find_matching_landmarks(
    candidate: Candidate, landmark_sets: list[LandmarkSet]
) -> LandmarkSet | None:
    """First landmark set whose box overlaps the candidate enough."""
    for landmark_set in landmark_sets:
        if candidate.bbox.iou(landmark_set.bbox) > LANDMARK_IOU_THRESHOLD:
            return landmark_set
    return None


def apply_landmarks(
    candidates: list[Candidate], landmark_sets: list[LandmarkSet]
) -> list[Candidate]:
    """Boost candidates confirmed by a landmark set and attach its keypoints."""
    validated = []
    for candidate in candidates:
        match = find_matching_landmarks(candidate, landmark_sets)
        if match is None:
            validated.append(candidate)
            continue
        validated.append(
            candidate.model_copy(
                update={
                    "confidence": min(1.0, candidate.confidence * LANDMARK_BOOST),
                    "landmarks": list(match.keypoints),
                }
            )
        )
    return validated


class CandidateGenerator:
    """Runs the detection strategies concurrently and validates the union."""

    def __init__(self, registry: DetectorRegistry) -> None:
        self.registry = registry
        self.last_counts: dict[str, int] = {}
        self.last_generation_time = 0.0
        self.last_invocations: dict[str, int] = {}

    async def generate(self, image: np.ndarray, sensitivity: float) -> list[Candidate]:
        """Produce raw candidates for one image at one sensitivity.

        Candidates from different strategies are concatenated without
        deduplication; fusion handles overlap.

        Raises:
            DetectionUnavailableError: If no detector is loaded, or every
                detector invocation of the pass failed.
            ValueError: If the image is malformed.

        """
        if not self.registry.has_detectors:
            msg = "Face detection unavailable: no detector is loaded"
            raise DetectionUnavailableError(msg, "NO_DETECTORS")
        if not 0.0 <= sensitivity <= 1.0:
            msg = f"Sensitivity must be in [0, 1], got {sensitivity}"
            raise ValueError(msg)
        validate_frame(image)

        start_time = time.perf_counter()
        names = list(STRATEGIES)
        tally = InvocationTally()
        results = await asyncio.gather(
            *(STRATEGIES[name](image, sensitivity, self.registry, tally) for name in names)
        )
        self.last_invocations = {"succeeded": tally.succeeded, "failed": tally.failed}
        if tally.all_failed:
            msg = f"Face detection unavailable: all {tally.failed} detector invocations failed"
            raise DetectionUnavailableError(msg, "ALL_DETECTORS_FAILED")

        candidates: list[Candidate] = []
        self.last_counts = {}
        for name, batch in zip(names, results, strict=True):
            self.last_counts[name] = len(batch)
            candidates.extend(batch)
            logger.debug("%s: %d candidates", name, len(batch))

        candidates = await self.validate_with_landmarks(candidates, image)
        self.last_generation_time = time.perf_counter() - start_time
        logger.info(
            "Generated %d candidates in %.3fs", len(candidates), self.last_generation_time
        )
        return candidates

    async def validate_with_landmarks(
        self, candidates: list[Candidate], image: np.ndarray
    ) -> list[Candidate]:
        """Single landmark query over the whole image; failures pass through."""
        adapter = self.registry.landmarks
        if adapter is None or not candidates:
            return candidates

        async with self.registry.landmark_lock:
            try:
                landmark_sets = await asyncio.to_thread(adapter.estimate, image)
            except Exception as e:
                logger.warning("Landmark validation failed: %s", e)
                return candidates

        logger.debug("Landmark validation: %d landmark sets found", len(landmark_sets))
        return apply_landmarks(candidates, landmark_sets)
