"""Core data models for the face redaction engine."""

from __future__ import annotations

import math
import uuid
from enum import Enum
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

from faceredact.core.constants import (
    DETECTOR_ROLES,
    REDACTION_METHODS,
    REGION_ORIGINS,
    SENSITIVITY_PRESETS,
)

Point = tuple[float, float]


class DetectorRole(str, Enum):
    """Closed set of detector roles an adapter can fill."""

    HIGH_ACCURACY = "high_accuracy"
    FAST_APPROX = "fast_approx"

    @property
    def description(self) -> str:
        """Human readable description of the role."""
        return DETECTOR_ROLES[self.value]


class SensitivityLevel(str, Enum):
    """User-facing sensitivity presets."""

    FAST = "fast"
    BALANCED = "balanced"
    THOROUGH = "thorough"

    @property
    def scalar(self) -> float:
        """Sensitivity scalar in [0, 1] used to parameterise the pipeline."""
        return SENSITIVITY_PRESETS[self.value]


class RedactionMethod(str, Enum):
    """Pixel transforms available to the renderer."""

    BLUR = "blur"
    PIXELATE = "pixelate"
    BLACKOUT = "blackout"

    @property
    def description(self) -> str:
        """Human readable description of the method."""
        return REDACTION_METHODS[self.value]


class BoundingBox(BaseModel):
    """Axis-aligned rectangle in pixel coordinates."""

    x: float = Field(..., ge=0, description="Left coordinate (0-based)")
    y: float = Field(..., ge=0, description="Top coordinate (0-based)")
    width: float = Field(..., ge=0, description="Box width")
    height: float = Field(..., ge=0, description="Box height")

    model_config = {"frozen": True}

    @property
    def area(self) -> float:
        """Calculate the area of the bounding box."""
        return self.width * self.height

    @property
    def center(self) -> Point:
        """Get the center coordinates of the bounding box."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def x2(self) -> float:
        """Get the right coordinate."""
        return self.x + self.width

    @property
    def y2(self) -> float:
        """Get the bottom coordinate."""
        return self.y + self.height

    @property
    def side(self) -> float:
        """Mean of width and height, used as a face size estimate."""
        return (self.width + self.height) / 2

    @property
    def aspect_ratio(self) -> float:
        """Width divided by height (inf for zero-height boxes)."""
        if self.height == 0:
            return math.inf
        return self.width / self.height

    def contains(self, point: Point) -> bool:
        """Check if a point is inside this bounding box."""
        px, py = point
        return self.x <= px < self.x2 and self.y <= py < self.y2

    def overlaps(self, other: BoundingBox) -> bool:
        """Check if this bounding box overlaps with another."""
        return not (
            self.x2 <= other.x
            or other.x2 <= self.x
            or self.y2 <= other.y
            or other.y2 <= self.y
        )

    def intersection_area(self, other: BoundingBox) -> float:
        """Area shared with another bounding box (0 when disjoint)."""
        if not self.overlaps(other):
            return 0.0
        w = min(self.x2, other.x2) - max(self.x, other.x)
        h = min(self.y2, other.y2) - max(self.y, other.y)
        return w * h

    def iou(self, other: BoundingBox) -> float:
        """Calculate Intersection over Union with another bounding box."""
        intersection = self.intersection_area(other)
        if intersection <= 0:
            return 0.0
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0

    def translate(self, dx: float, dy: float) -> BoundingBox:
        """Shift the box by (dx, dy); the result must stay non-negative."""
        return BoundingBox(
            x=self.x + dx, y=self.y + dy, width=self.width, height=self.height
        )

    def rescale(self, scale_x: float, scale_y: float | None = None) -> BoundingBox:
        """Multiply all coordinates by the given factors."""
        if scale_y is None:
            scale_y = scale_x
        return BoundingBox(
            x=self.x * scale_x,
            y=self.y * scale_y,
            width=self.width * scale_x,
            height=self.height * scale_y,
        )

    def within(self, frame_width: float, frame_height: float) -> bool:
        """Check the box lies completely inside a frame."""
        return self.x2 <= frame_width and self.y2 <= frame_height

    def clamp(self, frame_width: float, frame_height: float) -> BoundingBox | None:
        """Intersect with the frame; None when nothing is left."""
        x1 = min(self.x, frame_width)
        y1 = min(self.y, frame_height)
        x2 = min(self.x2, frame_width)
        y2 = min(self.y2, frame_height)
        if x2 <= x1 or y2 <= y1:
            return None
        return BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> BoundingBox:
        """Create from corner coordinates."""
        return cls(
            x=min(x1, x2),
            y=min(y1, y2),
            width=abs(x2 - x1),
            height=abs(y2 - y1),
        )

    @classmethod
    def centered(cls, point: Point, side: float) -> BoundingBox:
        """Square of the given side centred on a point, cut at the origin."""
        cx, cy = point
        half = side / 2
        return cls.from_corners(
            max(0.0, cx - half), max(0.0, cy - half), cx + half, cy + half
        )

    def __str__(self) -> str:
        """Return string representation."""
        return (
            f"BoundingBox(x={self.x:.0f}, y={self.y:.0f}, "
            f"w={self.width:.0f}, h={self.height:.0f})"
        )


def iou(box1: BoundingBox, box2: BoundingBox) -> float:
    """Intersection over Union of two boxes."""
    return box1.iou(box2)


class RawDetection(BaseModel):
    """Single box reported by a detector adapter."""

    bbox: BoundingBox
    score: float = Field(..., ge=0.0, le=1.0)
    keypoints: list[Point] | None = None

    model_config = {"frozen": True}


class LandmarkSet(BaseModel):
    """Landmark mesh reported by a landmark adapter."""

    bbox: BoundingBox
    keypoints: list[Point] = Field(default_factory=list)

    model_config = {"frozen": True}


class Candidate(BaseModel):
    """Unvalidated, provenance-tagged face rectangle from one strategy run."""

    bbox: BoundingBox
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str = Field(..., min_length=1, description="strategy/model/variant tag")
    detector: DetectorRole
    landmarks: list[Point] | None = None

    model_config = {"frozen": True}

    @property
    def has_landmarks(self) -> bool:
        """Check whether a landmark set validated this candidate."""
        return bool(self.landmarks)

    def with_confidence(self, confidence: float) -> Candidate:
        """Create a copy with updated confidence (capped at 1.0)."""
        return self.model_copy(update={"confidence": min(1.0, confidence)})

    def __str__(self) -> str:
        """Return string representation."""
        return f"Candidate({self.source}, {self.bbox}, conf={self.confidence:.2f})"


class DetectorDescriptor(BaseModel):
    """Registration record of one detector adapter."""

    name: str
    role: DetectorRole
    priority: int = Field(..., ge=1)
    best_for: str = ""
    loaded: bool = False

    model_config = {"frozen": True}


class Region(BaseModel):
    """Final, user-toggleable face rectangle."""

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier (UUID4)",
    )
    bbox: BoundingBox
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    enabled: bool = True
    origin: str = Field(default="detected", description="detected or manual")

    model_config = {"validate_assignment": True}

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Validate origin against supported values."""
        if v not in REGION_ORIGINS:
            msg = f"Unsupported region origin: {v}. Must be one of {REGION_ORIGINS}"
            raise ValueError(msg)
        return v

    @field_validator("id")
    @classmethod
    def validate_uuid(cls, v: str) -> str:
        """Validate UUID format."""
        try:
            uuid.UUID(v)
        except ValueError as e:
            msg = f"Invalid UUID format: {v}"
            raise ValueError(msg) from e
        return v

    @property
    def is_manual(self) -> bool:
        """Check if the user added this region by hand."""
        return self.origin == "manual"

    def toggle(self) -> None:
        """Flip the enabled flag."""
        self.enabled = not self.enabled

    def __str__(self) -> str:
        """Return string representation."""
        state = "on" if self.enabled else "off"
        return f"Region({self.origin} {self.bbox}, conf={self.confidence:.2f}, {state})"


class DetectionReport(BaseModel):
    """Outcome of one complete detection pass."""

    regions: list[Region] = Field(default_factory=list)
    image_size: tuple[int, int] = Field(..., description="(width, height)")
    sensitivity: float = Field(..., ge=0.0, le=1.0)
    detection_time: float = Field(default=0.0, ge=0)
    candidate_counts: dict[str, int] = Field(default_factory=dict)
    models_used: list[str] = Field(default_factory=list)
    pass_id: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_regions_in_bounds(self) -> Self:
        """Every region must lie inside the image."""
        width, height = self.image_size
        for region in self.regions:
            if not region.bbox.within(width, height):
                msg = f"Region {region.id[:8]} exceeds image bounds {width}x{height}"
                raise ValueError(msg)
        return self

    @property
    def region_count(self) -> int:
        """Get the number of regions."""
        return len(self.regions)

    @property
    def total_candidates(self) -> int:
        """Raw candidates produced before fusion."""
        return sum(self.candidate_counts.values())

    def __str__(self) -> str:
        """Return string representation."""
        return (
            f"DetectionReport({self.region_count} regions from "
            f"{self.total_candidates} candidates, time={self.detection_time:.3f}s)"
        )
