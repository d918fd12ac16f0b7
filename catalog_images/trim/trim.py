from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from catalog_images.config import PipelineConfig
from catalog_images.crop.box import centered_box
from catalog_images.logger import get_logger

_logger = get_logger("trim")

RGB_CHANNELS = 3

PixelRect = tuple[int, int, int, int]  # (left, top, width, height)


@dataclass(frozen=True, slots=True)
class TrimResult:
    """Pixels removed from each side of the source before the aspect crop."""

    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0

    @property
    def trim_applied(self) -> bool:
        return any((self.top, self.bottom, self.left, self.right))

    def to_dict(self) -> dict:
        return {
            "trim_top": self.top,
            "trim_bottom": self.bottom,
            "trim_left": self.left,
            "trim_right": self.right,
            "trim_applied": self.trim_applied,
        }


NO_TRIM = TrimResult()


@dataclass(frozen=True, slots=True)
class AutoCropResult:
    rect: PixelRect
    trim: TrimResult

    @property
    def trim_applied(self) -> bool:
        return self.trim.trim_applied


def estimate_background(arr: np.ndarray) -> np.ndarray:
    """Most common RGB value along the outer one-pixel frame."""
    edge_samples = np.vstack([arr[0, :, :], arr[-1, :, :], arr[:, 0, :], arr[:, -1, :]]).reshape(-1, RGB_CHANNELS)
    if edge_samples.size == 0:
        return np.array([255, 255, 255], dtype=np.uint8)
    packed = edge_samples.astype(np.uint32)
    key = (packed[:, 0] << 16) | (packed[:, 1] << 8) | packed[:, 2]
    vals, counts = np.unique(key, return_counts=True)
    m = int(vals[np.argmax(counts)])
    return np.array([(m >> 16) & 0xFF, (m >> 8) & 0xFF, m & 0xFF], dtype=np.uint8)


def detect_border_trim(arr: np.ndarray, tolerance: int = 12, noise_fraction: float = 0.01) -> TrimResult:
    """Find contiguous near-uniform border rows/columns.

    A row or column counts as border when at most `noise_fraction` of its pixels
    differ from the estimated background by more than `tolerance` on any channel.
    A fully uniform image has no content to keep and is never trimmed.
    """
    if arr.ndim != 3 or arr.shape[2] < RGB_CHANNELS:
        raise ValueError(f"expected HxWx3 array, got shape {arr.shape}")
    rgb = arr[..., :RGB_CHANNELS]
    h, w = rgb.shape[:2]
    if h == 0 or w == 0:
        return NO_TRIM

    bg = estimate_background(rgb).astype(np.int16)
    mask = (np.abs(rgb.astype(np.int16) - bg).max(axis=2) > tolerance)

    rows = mask.mean(axis=1) > noise_fraction
    cols = mask.mean(axis=0) > noise_fraction
    if not rows.any() or not cols.any():
        _logger.debug("detect_border_trim: uniform image, no content found")
        return NO_TRIM

    row_idx = np.flatnonzero(rows)
    col_idx = np.flatnonzero(cols)
    return TrimResult(
        top=int(row_idx[0]),
        bottom=int(h - 1 - row_idx[-1]),
        left=int(col_idx[0]),
        right=int(w - 1 - col_idx[-1]),
    )


def compute_aspect_crop(width: int, height: int, aspect: float) -> PixelRect:
    """Largest centered rect of the target aspect inside width x height.

    The longer axis is cropped symmetrically; nothing is ever upscaled here.
    Pixels come from NormalizedCropBox.to_pixels, the same rounding a manual
    box goes through.
    """
    if width <= 0 or height <= 0 or aspect <= 0:
        raise ValueError(f"invalid region {width}x{height} @ {aspect}")
    return centered_box(width, height, aspect).to_pixels(width, height)


def _scale_trim(trim: TrimResult, sx: float, sy: float) -> TrimResult:
    # Floor so a downscaled analysis never eats into content at full size.
    return TrimResult(
        top=int(math.floor(trim.top * sy)),
        bottom=int(math.floor(trim.bottom * sy)),
        left=int(math.floor(trim.left * sx)),
        right=int(math.floor(trim.right * sx)),
    )


class AutoTrimDetector:
    """Trim uniform borders, then center-crop what remains to the target aspect."""

    def __init__(self, config: PipelineConfig):
        self._tolerance = int(config.trim_tolerance)
        self._noise_fraction = float(config.trim_noise_fraction)
        self._min_region = int(config.auto_trim_min_region_px)

    def detect(self, analysis: np.ndarray, width: int, height: int, aspect: float) -> AutoCropResult:
        """Compute the auto crop rect in full-resolution source pixels.

        Args:
            analysis: HxWx3 uint8 pixels of the (possibly downscaled) source
            width: full-resolution source width
            height: full-resolution source height
            aspect: target aspect (width / height)
        """
        a_h, a_w = analysis.shape[:2]
        trim = detect_border_trim(analysis, self._tolerance, self._noise_fraction)
        if trim.trim_applied and (a_w != width or a_h != height):
            trim = _scale_trim(trim, width / a_w, height / a_h)

        region_w = width - trim.left - trim.right
        region_h = height - trim.top - trim.bottom
        if trim.trim_applied and (region_w < self._min_region or region_h < self._min_region):
            _logger.debug(
                "auto trim discarded: region %dx%d below %dpx floor",
                region_w,
                region_h,
                self._min_region,
            )
            trim = NO_TRIM
            region_w, region_h = width, height

        left, top, crop_w, crop_h = compute_aspect_crop(region_w, region_h, aspect)
        rect = (trim.left + left, trim.top + top, crop_w, crop_h)
        _logger.debug("auto crop %dx%d @ %.4f -> %s trim=%s", width, height, aspect, rect, trim)
        return AutoCropResult(rect=rect, trim=trim)
