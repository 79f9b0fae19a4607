"""Registry of loaded detector and landmark adapters for one session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from faceredact.core.models import DetectorDescriptor, DetectorRole
from faceredact.detection.adapters import (
    HaarCascadeDetector,
    YuNetDetector,
    YuNetLandmarkEstimator,
)
from faceredact.detection.base import (
    DetectionUnavailableError,
    DetectorAdapter,
    LandmarkAdapter,
    ModelUnavailableError,
)

if TYPE_CHECKING:
    from faceredact.config import DetectorSettings

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


class DetectorRegistry:
    """Holds at most one adapter per role plus an optional landmark adapter.

    The registry is an explicit value owned by a session; nothing here is
    module-level state.
    """

    def __init__(self) -> None:
        self._adapters: dict[DetectorRole, DetectorAdapter] = {}
        self._descriptors: dict[DetectorRole, DetectorDescriptor] = {}
        self._locks: dict[DetectorRole, asyncio.Lock] = {}
        self._landmarks: LandmarkAdapter | None = None
        self._landmark_lock = asyncio.Lock()

    def register(
        self, adapter: DetectorAdapter, priority: int, best_for: str = ""
    ) -> DetectorDescriptor:
        """Register an adapter for its role."""
        if adapter.role in self._adapters:
            msg = f"Role {adapter.role.value} already has an adapter"
            raise ValueError(msg)

        descriptor = DetectorDescriptor(
            name=adapter.name,
            role=adapter.role,
            priority=priority,
            best_for=best_for,
            loaded=adapter.is_loaded,
        )
        self._adapters[adapter.role] = adapter
        self._descriptors[adapter.role] = descriptor
        self._locks[adapter.role] = asyncio.Lock()
        return descriptor

    def register_landmarks(self, adapter: LandmarkAdapter) -> None:
        """Attach the landmark adapter used for candidate validation."""
        self._landmarks = adapter

    async def initialize(self, on_status: StatusCallback | None = None) -> None:
        """Load every registered adapter concurrently.

        Individual failures are logged and leave that adapter unloaded. Raises
        DetectionUnavailableError if no detector could be loaded.
        """

        def notify(status: str) -> None:
            logger.info("Loading status: %s", status)
            if on_status is not None:
                on_status(status)

        async def load_detector(role: DetectorRole) -> None:
            adapter = self._adapters[role]
            notify(f"Loading {adapter.name} ({role.description})...")
            try:
                await asyncio.to_thread(adapter.load)
            except ModelUnavailableError as e:
                logger.warning("%s failed to load: %s", adapter.name, e)
                return
            self._descriptors[role] = self._descriptors[role].model_copy(
                update={"loaded": True}
            )

        async def load_landmarks() -> None:
            notify(f"Loading {self._landmarks.name} (validation)...")
            try:
                await asyncio.to_thread(self._landmarks.load)
            except ModelUnavailableError as e:
                logger.warning("%s failed to load: %s", self._landmarks.name, e)

        tasks = [load_detector(role) for role in self._adapters]
        if self._landmarks is not None:
            tasks.append(load_landmarks())
        await asyncio.gather(*tasks)

        loaded = [d.name for d in self.descriptors if d.loaded]
        if not loaded:
            notify("Model initialization failed")
            msg = "No models loaded successfully - face detection unavailable"
            raise DetectionUnavailableError(msg, "NO_DETECTORS")

        logger.info("Available models: %s", ", ".join(loaded))
        notify(f"Ready: {len(loaded)} models loaded")

    @property
    def descriptors(self) -> list[DetectorDescriptor]:
        """Descriptors ordered by priority (1 is preferred)."""
        return sorted(self._descriptors.values(), key=lambda d: d.priority)

    @property
    def loaded_roles(self) -> list[DetectorRole]:
        """Roles whose adapter is loaded, in priority order."""
        return [
            d.role for d in self.descriptors if self._adapters[d.role].is_loaded
        ]

    @property
    def has_detectors(self) -> bool:
        """Check whether at least one detector is usable."""
        return bool(self.loaded_roles)

    def loaded_adapters(self) -> list[DetectorAdapter]:
        """Loaded adapters in priority order."""
        return [self._adapters[role] for role in self.loaded_roles]

    def resolve(self, preferred: DetectorRole) -> DetectorAdapter | None:
        """Adapter for a role, falling back to the best other loaded role."""
        adapter = self._adapters.get(preferred)
        if adapter is not None and adapter.is_loaded:
            return adapter

        fallback = next(iter(self.loaded_roles), None)
        if fallback is None:
            return None
        logger.debug("Role %s unavailable, using %s", preferred.value, fallback.value)
        return self._adapters[fallback]

    def most_accurate(self) -> DetectorAdapter | None:
        """The highest-accuracy detector that is available."""
        return self.resolve(DetectorRole.HIGH_ACCURACY)

    def lock_for(self, adapter: DetectorAdapter) -> asyncio.Lock:
        """Lock serialising invocations of one adapter instance."""
        return self._locks[adapter.role]

    @property
    def landmarks(self) -> LandmarkAdapter | None:
        """The landmark adapter, if registered and loaded."""
        if self._landmarks is not None and self._landmarks.is_loaded:
            return self._landmarks
        return None

    @property
    def landmark_lock(self) -> asyncio.Lock:
        """Lock serialising landmark queries."""
        return self._landmark_lock

    def dispose(self) -> None:
        """Release every adapter."""
        for adapter in self._adapters.values():
            adapter.dispose()
        if self._landmarks is not None:
            self._landmarks.dispose()
        self._descriptors = {
            role: d.model_copy(update={"loaded": False})
            for role, d in self._descriptors.items()
        }
        logger.debug("Registry disposed")


def build_registry(settings: DetectorSettings) -> DetectorRegistry:
    """Create an unloaded registry with the OpenCV adapters from settings."""
    registry = DetectorRegistry()
    registry.register(
        YuNetDetector(
            settings.yunet_model_path,
            score_threshold=settings.high_accuracy_score_threshold,
            max_processing_side=settings.max_processing_side,
            max_candidates=settings.high_accuracy_max_candidates,
        ),
        priority=1,
        best_for="High accuracy, crowd scenes",
    )
    registry.register(
        HaarCascadeDetector(
            settings.haar_cascade_path,
            max_processing_side=settings.max_processing_side,
            max_candidates=settings.fast_approx_max_candidates,
        ),
        priority=2,
        best_for="Speed, clear faces",
    )
    if settings.enable_landmarks and settings.yunet_model_path is not None:
        registry.register_landmarks(
            YuNetLandmarkEstimator(
                settings.yunet_model_path,
                score_threshold=settings.landmark_score_threshold,
                max_processing_side=settings.max_processing_side,
            )
        )
    return registry
