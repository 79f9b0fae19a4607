"""Core module - Fundamental data structures and models."""

from faceredact.core.constants import (
    DETECTOR_ROLES,
    REDACTION_METHODS,
    SENSITIVITY_PRESETS,
)
from faceredact.core.models import (
    BoundingBox,
    Candidate,
    DetectionReport,
    DetectorDescriptor,
    DetectorRole,
    LandmarkSet,
    RawDetection,
    RedactionMethod,
    Region,
    SensitivityLevel,
    iou,
)

__all__ = [
    # Models
    "BoundingBox",
    "Candidate",
    "DetectionReport",
    "DetectorDescriptor",
    "DetectorRole",
    "LandmarkSet",
    "RawDetection",
    "RedactionMethod",
    "Region",
    "SensitivityLevel",
    "iou",
    # Constants
    "DETECTOR_ROLES",
    "REDACTION_METHODS",
    "SENSITIVITY_PRESETS",
]
