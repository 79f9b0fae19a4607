"""Detection module - Candidate generation and fusion for face regions."""

from faceredact.detection import constants
from faceredact.detection.adapters import (
    HaarCascadeDetector,
    YuNetDetector,
    YuNetLandmarkEstimator,
)
from faceredact.detection.base import (
    AdapterConfig,
    DetectionError,
    DetectionUnavailableError,
    DetectorAdapter,
    LandmarkAdapter,
    ModelUnavailableError,
    make_detection,
)
from faceredact.detection.fusion import FusionEngine, confidence_floor
from faceredact.detection.generator import CandidateGenerator
from faceredact.detection.registry import DetectorRegistry, build_registry

__all__ = [
    # Adapter framework
    "AdapterConfig",
    "DetectorAdapter",
    "LandmarkAdapter",
    "make_detection",
    # Errors
    "DetectionError",
    "DetectionUnavailableError",
    "ModelUnavailableError",
    # OpenCV adapters
    "HaarCascadeDetector",
    "YuNetDetector",
    "YuNetLandmarkEstimator",
    # Registry
    "DetectorRegistry",
    "build_registry",
    # Pipeline stages
    "CandidateGenerator",
    "FusionEngine",
    "confidence_floor",
    "constants",
]
