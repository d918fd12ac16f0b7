"""Trim package public API.

Expose pure numpy trim helpers as `catalog_images.trim`.
"""

from catalog_images.trim.trim import (
    NO_TRIM,
    AutoCropResult,
    AutoTrimDetector,
    TrimResult,
    compute_aspect_crop,
    detect_border_trim,
    estimate_background,
)

__all__ = [
    "NO_TRIM",
    "AutoCropResult",
    "AutoTrimDetector",
    "TrimResult",
    "compute_aspect_crop",
    "detect_border_trim",
    "estimate_background",
]
