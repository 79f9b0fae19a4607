"""Configuration models for detectors, rendering and sessions."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from faceredact.detection.constants import (
    FAST_APPROX_MAX_CANDIDATES,
    HIGH_ACCURACY_MAX_CANDIDATES,
    MAX_PROCESSING_SIDE,
)

logger = logging.getLogger(__name__)


class DetectorSettings(BaseModel):
    """Which detector models to load and how."""

    yunet_model_path: Path | None = Field(
        default=None, description="Path to the YuNet ONNX weights"
    )
    haar_cascade_path: Path | None = Field(
        default=None, description="Override for the bundled frontal face cascade"
    )
    enable_landmarks: bool = Field(
        default=True, description="Load the landmark estimator when weights exist"
    )
    high_accuracy_score_threshold: float = Field(0.2, ge=0.0, le=1.0)
    landmark_score_threshold: float = Field(0.5, ge=0.0, le=1.0)
    max_processing_side: int = Field(MAX_PROCESSING_SIDE, ge=256)
    high_accuracy_max_candidates: int = Field(HIGH_ACCURACY_MAX_CANDIDATES, ge=1)
    fast_approx_max_candidates: int = Field(FAST_APPROX_MAX_CANDIDATES, ge=1)

    @field_validator("yunet_model_path", "haar_cascade_path")
    @classmethod
    def _to_path(cls, v: Path | None) -> Path | None:
        return Path(v) if v is not None else None


class RenderConfig(BaseModel):
    """Redaction transform and output surface settings."""

    blur_passes: int = Field(3, ge=1, le=10)
    blur_sigma: float = Field(8.0, gt=0)
    fill_color: tuple[int, int, int] = Field(
        (0, 0, 0), description="Blackout colour (BGR)"
    )
    preview_max_side: int = Field(800, ge=64)
    export_max_side: int = Field(4096, ge=64)
    preview_quality: int = Field(80, ge=1, le=100)
    export_quality: int = Field(90, ge=1, le=100)

    @field_validator("fill_color")
    @classmethod
    def validate_fill_color(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        """Each channel must be a byte value."""
        if any(not 0 <= channel <= 255 for channel in v):
            msg = f"Fill colour channels must be in [0, 255], got {v}"
            raise ValueError(msg)
        return v


class SessionConfig(BaseModel):
    """Timing and buffering of the editing session."""

    detection_debounce: float = Field(
        0.5, ge=0, description="Delay before a scheduled detection pass (seconds)"
    )
    preview_debounce: float = Field(
        0.15, ge=0, description="Delay before regenerating the preview (seconds)"
    )
    event_queue_size: int = Field(64, ge=1)


class AppConfig(BaseModel):
    """Top-level configuration bundle."""

    detectors: DetectorSettings = Field(default_factory=DetectorSettings)
    render: RenderConfig = Field(default_factory=RenderConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    @classmethod
    def from_file(cls, path: Path) -> AppConfig:
        """Load configuration from a JSON file."""
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        data = json.loads(path.read_text(encoding="utf-8"))
        logger.info("Loaded configuration from %s", path)
        return cls.model_validate(data)
