"""Tuning constants for candidate generation and fusion."""

# Sensitivity breakpoints
HIGH_SENSITIVITY = 0.7
LOW_SENSITIVITY = 0.4
PREPROCESSING_MIN_SENSITIVITY = 0.5
PYRAMID_ACCURATE_SENSITIVITY = 0.6

# Per-invocation raw score floor: max(SCORE_FLOOR_MIN, BASE - s * SLOPE)
SCORE_FLOOR_MIN = 0.1
SCORE_FLOOR_BASE = 0.5
SCORE_FLOOR_SLOPE = 0.35

# Model ensemble weights
HIGH_ACCURACY_WEIGHT_HIGH_SENSITIVITY = 1.2
HIGH_ACCURACY_WEIGHT_DEFAULT = 1.0
FAST_APPROX_WEIGHT_LOW_SENSITIVITY = 1.1
FAST_APPROX_WEIGHT_DEFAULT = 0.9

# Scale pyramid
PYRAMID_SCALES_HIGH = (0.5, 0.7, 1.0, 1.3, 1.6, 2.0)
PYRAMID_SCALES_DEFAULT = (0.8, 1.0, 1.2)
SMALL_SCALE_LIMIT = 0.7
LARGE_SCALE_LIMIT = 1.5
SCALE_BOOST = 1.1
DOWNSCALE_CONTRAST = 1.1

# Adaptive tiling
TILE_MIN_SIDE = 256
TILE_MAX_SIDE = 512
TILE_AREA_DIVISOR = 4
TILE_HIGH_SENSITIVITY_SHRINK = 0.8
TILE_OVERLAP_RATIO = 0.4
TILE_MIN_EXTENT = 128
SMALL_TILE_AREA = 150_000
SMALL_TILE_BOOST = 1.15

# Preprocessing variants: (name, factor)
PREPROCESSING_VARIANTS = (
    ("high-contrast", 1.8),
    ("brightness-boost", 1.4),
    ("gamma-correction", 0.7),
    ("sharpening", 1.0),
)
PREPROCESSING_DISCOUNT = 0.9

# Landmark validation
LANDMARK_IOU_THRESHOLD = 0.3
LANDMARK_BOOST = 1.1

# Quality filter
MIN_SIZE_RATIO_HIGH = 0.008
MIN_SIZE_RATIO_DEFAULT = 0.015
MAX_SIZE_RATIO = 0.8
MIN_ASPECT_RATIO = 0.4
MAX_ASPECT_RATIO = 2.5
CONFIDENCE_FLOOR_MIN = 0.1
CONFIDENCE_FLOOR_BASE = 0.6
CONFIDENCE_FLOOR_SLOPE = 0.4

# Clustering
CLUSTER_IOU_HIGH = 0.3
CLUSTER_IOU_DEFAULT = 0.5
HIGH_ACCURACY_BONUS = 1.1
LANDMARK_BONUS = 1.15

# Adaptive non-max suppression
NMS_IOU_DEFAULT = 0.4
NMS_IOU_HIGH = 0.25
NMS_SIZE_RATIO = 0.5
NMS_SIZE_PENALTY = 0.8
NMS_MAX_KEPT = 200
MAX_REGIONS = 250

# Adapter defaults
MAX_PROCESSING_SIDE = 2048
HIGH_ACCURACY_MAX_CANDIDATES = 300
FAST_APPROX_MAX_CANDIDATES = 200
