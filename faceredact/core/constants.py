"""System-wide constants for the face redaction engine."""

# Detector roles known to the engine
DETECTOR_ROLES = {
    "high_accuracy": "Slower full-range model, best for crowds and small faces",
    "fast_approx": "Speed-optimised model, best for clear frontal faces",
}

# Redaction methods
REDACTION_METHODS = {
    "blur": "Successive Gaussian low-pass passes",
    "pixelate": "Block mosaic sampled from each block centre",
    "blackout": "Opaque fill; universal fallback",
}

# Sensitivity presets mapped to the scalar used by every threshold
SENSITIVITY_PRESETS = {
    "fast": 0.25,
    "balanced": 0.6,
    "thorough": 0.9,
}

REGION_ORIGINS = ["detected", "manual"]
