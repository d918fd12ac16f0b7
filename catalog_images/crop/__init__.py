"""Crop package public API.

Expose pure crop-box math for external import as `catalog_images.crop`.

Important: keep this module lightweight.
Do NOT import the Qt-backed engine here; the server side imports this package.
If you need the interactive engine, import it directly:
    - `from catalog_images.crop.engine import CropGeometryEngine`
"""

from .box import (
    FULL_IMAGE,
    MIN_SIZE,
    NormalizedCropBox,
    centered_box,
    crop_box_from_payload,
    fit_box,
    initial_crop_box,
    normalized_aspect,
    validate_crop_box,
)
from .geometry import DragMode, conform_box, cursor_for, move_box, resize_with_aspect, zoom_box

__all__ = [
    "FULL_IMAGE",
    "MIN_SIZE",
    "DragMode",
    "NormalizedCropBox",
    "centered_box",
    "conform_box",
    "crop_box_from_payload",
    "cursor_for",
    "fit_box",
    "initial_crop_box",
    "move_box",
    "normalized_aspect",
    "resize_with_aspect",
    "validate_crop_box",
    "zoom_box",
]
