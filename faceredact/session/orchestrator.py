"""Per-image editing session: debounced detection, live preview and commit."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any

import numpy as np

from faceredact.config import AppConfig
from faceredact.core.models import (
    DetectionReport,
    Point,
    RedactionMethod,
    Region,
    SensitivityLevel,
)
from faceredact.detection.base import DetectionUnavailableError
from faceredact.detection.fusion import FusionEngine
from faceredact.detection.generator import CandidateGenerator
from faceredact.detection.registry import DetectorRegistry
from faceredact.editing.manual_zone import create_manual_region, region_at
from faceredact.rendering.renderer import RedactionRenderer
from faceredact.session.events import EventChannel, EventKind
from faceredact.utils.image import ImageUtils

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a redaction session."""

    IDLE = "idle"
    DETECTING = "detecting"
    READY = "ready"
    REDACTING = "redacting"
    DONE = "done"
    ERROR = "error"


EDITABLE_STATES = {SessionState.READY, SessionState.DONE}


class SessionStateError(Exception):
    """Operation not allowed in the session's current state."""

    def __init__(self, message: str, state: SessionState) -> None:
        super().__init__(message)
        self.state = state


class RedactionSession:
    """Coordinates detection, edits, preview and export for one image.

    At most one detection pass runs at a time; requests arriving during a
    pass are dropped and the pass, if superseded, is discarded and
    rescheduled. Detection and commit never overlap.
    """

    def __init__(
        self,
        registry: DetectorRegistry,
        config: AppConfig | None = None,
        events: EventChannel | None = None,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.config = config or AppConfig()
        self.registry = registry
        self.events = events or EventChannel(self.config.session.event_queue_size)
        self.generator = CandidateGenerator(registry)
        self.fusion = FusionEngine()
        self.renderer = RedactionRenderer(self.config.render)

        self.state = SessionState.IDLE
        self.image: np.ndarray | None = None
        self.sensitivity = SensitivityLevel.BALANCED
        self.method = RedactionMethod.BLUR
        self.regions: list[Region] = []
        self.report: DetectionReport | None = None
        self.preview: np.ndarray | None = None
        self.preview_bytes: bytes | None = None
        self.last_error: str | None = None

        self._initialized = False
        self._closed = False
        self._generation = 0
        self._completed_generation = 0
        self._detecting = False
        self._detection_timer: asyncio.Task | None = None
        self._detection_task: asyncio.Task | None = None
        self._preview_timer: asyncio.Task | None = None
        self._preview_task: asyncio.Task | None = None
        self._preview_lock = asyncio.Lock()
        self._export_lock = asyncio.Lock()

    @property
    def image_size(self) -> tuple[int, int] | None:
        """(width, height) of the loaded image."""
        if self.image is None:
            return None
        height, width = self.image.shape[:2]
        return width, height

    @property
    def is_detecting(self) -> bool:
        return self._detecting

    @property
    def detection_pending(self) -> bool:
        """A detection pass is scheduled or running."""
        return self._detecting or any(
            task is not None and not task.done()
            for task in (self._detection_timer, self._detection_task)
        )

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug("Session %s: %s -> %s", self.id[:8], self.state.value, state.value)
        self.state = state
        self.events.publish(EventKind.STATE, state=state.value)

    def _fail(self, error: Exception) -> None:
        self.last_error = str(error)
        self._set_state(SessionState.ERROR)
        self.events.publish(
            EventKind.ERROR,
            message=str(error),
            error_type=type(error).__name__,
            error_code=getattr(error, "error_code", None),
        )

    def _ensure_open(self) -> None:
        if self._closed:
            msg = f"Session {self.id} is closed"
            raise SessionStateError(msg, self.state)

    async def initialize(self) -> None:
        """Load the registry's models, publishing progress as loading events."""
        self._ensure_open()
        if self._initialized:
            return

        def on_status(status: str) -> None:
            self.events.publish(EventKind.LOADING, status=status)

        try:
            await self.registry.initialize(on_status)
        except DetectionUnavailableError as e:
            self._fail(e)
            raise
        self._initialized = True

    async def start(self, image: np.ndarray | bytes) -> None:
        """Load a new image and schedule detection after the debounce delay.

        Raises:
            ImageDecodeError: If the payload cannot be decoded.
            DetectionUnavailableError: If no detector could be loaded.
            SessionStateError: If an export is in progress.

        """
        self._ensure_open()
        if self.state is SessionState.REDACTING:
            msg = "Cannot load a new image while exporting"
            raise SessionStateError(msg, self.state)

        if isinstance(image, bytes | bytearray):
            image = await asyncio.to_thread(ImageUtils.decode_image, bytes(image))

        await self.initialize()

        self.image = image
        self.regions = []
        self.report = None
        self.preview = None
        self.preview_bytes = None
        self.last_error = None
        self._set_state(SessionState.IDLE)
        width, height = self.image_size
        logger.info("Session %s: loaded %dx%d image", self.id[:8], width, height)
        self._request_detection()

    async def set_sensitivity(self, level: SensitivityLevel) -> None:
        """Change sensitivity; re-runs detection when an image is loaded."""
        self._ensure_open()
        self.sensitivity = SensitivityLevel(level)
        if self.image is not None:
            self._request_detection()

    def _request_detection(self) -> None:
        self._generation += 1
        self._schedule_detection()

    def _schedule_detection(self, delay: float | None = None) -> None:
        """Replace any pending (not yet started) pass with a fresh timer."""
        if delay is None:
            delay = self.config.session.detection_debounce
        if self._detection_timer is not None and not self._detection_timer.done():
            self._detection_timer.cancel()
        self._detection_timer = asyncio.create_task(self._detection_after(delay))

    async def _detection_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._detecting:
            logger.debug("Detection already in progress, dropping request")
            return
        if self._export_lock.locked():
            logger.debug("Export in progress, detection deferred")
            return
        self._detection_task = asyncio.create_task(self._run_detection())

    async def _run_detection(self) -> None:
        if self.image is None or self._detecting:
            return

        self._detecting = True
        generation = self._generation
        image = self.image
        sensitivity = self.sensitivity.scalar
        self._set_state(SessionState.DETECTING)
        start_time = time.perf_counter()

        try:
            candidates = await self.generator.generate(image, sensitivity)
            height, width = image.shape[:2]
            regions = self.fusion.fuse(candidates, (width, height), sensitivity)
        except Exception as e:
            failure = e
        else:
            failure = None
        finally:
            self._detecting = False

        if generation == self._generation and failure is not None:
            logger.warning("Detection pass failed: %s", failure)
            self._fail(failure)
            return

        if generation != self._generation:
            logger.debug(
                "Discarding stale pass %d (current %d)", generation, self._generation
            )
            if self.image is not None:
                self._schedule_detection()
            return

        self._completed_generation = generation
        self.regions = regions
        self.report = DetectionReport(
            regions=regions,
            image_size=(width, height),
            sensitivity=sensitivity,
            detection_time=time.perf_counter() - start_time,
            candidate_counts=dict(self.generator.last_counts),
            models_used=[d.name for d in self.registry.descriptors if d.loaded],
            pass_id=generation,
            metadata={
                "fusion": dict(self.fusion.last_stats),
                "invocations": dict(self.generator.last_invocations),
            },
        )
        logger.info("Session %s: %s", self.id[:8], self.report)
        self._set_state(SessionState.READY)
        self.events.publish(
            EventKind.DETECTION,
            pass_id=generation,
            region_count=len(regions),
            detection_time=self.report.detection_time,
        )
        self._schedule_preview(delay=0.0)

    def _schedule_preview(self, delay: float | None = None) -> None:
        """Collapse rapid edits into a single preview regeneration."""
        if delay is None:
            delay = self.config.session.preview_debounce
        if self._preview_timer is not None and not self._preview_timer.done():
            self._preview_timer.cancel()
        self._preview_timer = asyncio.create_task(self._preview_after(delay))

    async def _preview_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._preview_task = asyncio.create_task(self._render_preview())

    async def _render_preview(self) -> None:
        async with self._preview_lock:
            image = self.image
            if image is None:
                return
            regions = [region.model_copy() for region in self.regions]
            method = self.method
            try:
                surface = await asyncio.to_thread(
                    self.renderer.render_preview, image, regions, method
                )
                payload = await asyncio.to_thread(
                    self.renderer.encode_surface,
                    surface,
                    self.config.render.preview_quality,
                )
            except Exception as e:
                logger.exception("Preview rendering failed")
                self._fail(e)
                return

            if image is not self.image:
                return
            self.preview = surface
            self.preview_bytes = payload
            height, width = surface.shape[:2]
            self.events.publish(
                EventKind.PREVIEW,
                width=width,
                height=height,
                enabled_regions=sum(1 for r in regions if r.enabled),
            )

    def _require_editable(self, action: str) -> None:
        self._ensure_open()
        if self.state not in EDITABLE_STATES:
            msg = f"Cannot {action} while session is {self.state.value}"
            raise SessionStateError(msg, self.state)
        if self.image is None:
            msg = f"Cannot {action} without an image"
            raise SessionStateError(msg, self.state)

    def _after_edit(self) -> None:
        self._set_state(SessionState.READY)
        self._schedule_preview()

    def get_region(self, region_id: str) -> Region:
        for region in self.regions:
            if region.id == region_id:
                return region
        msg = f"Region not found: {region_id}"
        raise KeyError(msg)

    def toggle_region(self, region_id: str) -> Region:
        """Flip a region's enabled flag and refresh the preview."""
        self._require_editable("toggle a region")
        region = self.get_region(region_id)
        region.toggle()
        self._after_edit()
        return region

    def add_manual_region(self, point: Point) -> Region:
        """Add a square region sized by the manual zone heuristic."""
        self._require_editable("add a region")
        region = create_manual_region(point, self.regions, self.image_size)
        self.regions.append(region)
        logger.info("Session %s: added manual region %s", self.id[:8], region)
        self._after_edit()
        return region

    def click(self, point: Point) -> Region:
        """Toggle the region under a point, or add a manual one there."""
        self._require_editable("edit regions")
        hit = region_at(point, self.regions)
        if hit is not None:
            return self.toggle_region(hit.id)
        return self.add_manual_region(point)

    def set_method(self, method: RedactionMethod) -> None:
        """Choose the redaction method used by preview and commit."""
        self._ensure_open()
        self.method = RedactionMethod(method)
        if self.image is not None and self.state in EDITABLE_STATES:
            self._after_edit()

    async def commit(self, method: RedactionMethod | None = None) -> np.ndarray:
        """Render the full-resolution redacted surface.

        Raises:
            SessionStateError: If detection is pending or running, or no
                detection pass has completed for the current image.
            RedactionIncompleteError: If an enabled region could not be
                redacted.

        """
        self._require_editable("commit")
        if self.detection_pending:
            msg = "Cannot commit while detection is pending"
            raise SessionStateError(msg, self.state)
        if method is not None:
            self.method = RedactionMethod(method)

        async with self._export_lock:
            self._set_state(SessionState.REDACTING)
            regions = [region.model_copy() for region in self.regions]
            try:
                surface = await asyncio.to_thread(
                    self.renderer.render_redaction, self.image, regions, self.method
                )
            except Exception as e:
                self._fail(e)
                raise
            self._set_state(SessionState.DONE)

        logger.info(
            "Session %s: committed %d regions with %s",
            self.id[:8],
            sum(1 for r in regions if r.enabled),
            self.method.value,
        )
        if self._completed_generation != self._generation and self.image is not None:
            self._schedule_detection()
        return surface

    async def commit_bytes(self, method: RedactionMethod | None = None) -> bytes:
        """Commit and encode at export quality."""
        surface = await self.commit(method)
        return await asyncio.to_thread(
            self.renderer.encode_surface, surface, self.config.render.export_quality
        )

    def _cancel_timers(self) -> None:
        for timer in (self._detection_timer, self._preview_timer):
            if timer is not None and not timer.done():
                timer.cancel()

    def reset(self) -> None:
        """Drop the image and all regions; any in-flight pass becomes stale."""
        self._ensure_open()
        if self._export_lock.locked():
            msg = "Cannot reset while exporting"
            raise SessionStateError(msg, self.state)
        self._cancel_timers()
        self._generation += 1
        self._completed_generation = self._generation
        self.image = None
        self.regions = []
        self.report = None
        self.preview = None
        self.preview_bytes = None
        self.last_error = None
        self._set_state(SessionState.IDLE)

    def _pending_tasks(self) -> list[asyncio.Task]:
        tasks = (
            self._detection_timer,
            self._detection_task,
            self._preview_timer,
            self._preview_task,
        )
        return [task for task in tasks if task is not None and not task.done()]

    async def wait_until_settled(self) -> None:
        """Wait for pending timers, detection passes and previews to finish."""
        while pending := self._pending_tasks():
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Finish outstanding work, then release models and subscribers."""
        if self._closed:
            return
        self._cancel_timers()
        self._generation += 1
        self.image = None
        await self.wait_until_settled()
        self._closed = True
        self.regions = []
        self.registry.dispose()
        self.events.close()
        logger.info("Session %s closed", self.id[:8])

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the session for API responses."""
        return {
            "id": self.id,
            "state": self.state.value,
            "sensitivity": self.sensitivity.value,
            "method": self.method.value,
            "image_size": self.image_size,
            "regions": [region.model_dump() for region in self.regions],
            "detection_pending": self.detection_pending,
            "last_error": self.last_error,
            "report": (
                self.report.model_dump(exclude={"regions"}) if self.report else None
            ),
        }
