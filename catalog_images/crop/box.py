from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from catalog_images.errors import ValidationError

MIN_SIZE = 0.1
EPS = 1e-9

# Normalized aspects outside this range cannot hold MIN_SIZE on both axes.
MIN_NORMALIZED_ASPECT = MIN_SIZE
MAX_NORMALIZED_ASPECT = 1.0 / MIN_SIZE


@dataclass(frozen=True, slots=True)
class NormalizedCropBox:
    """Crop rect in fractions (0..1) of the image, (x, y, w, h) form."""

    x: float
    y: float
    w: float
    h: float

    @property
    def x2(self) -> float:
        return self.x + self.w

    @property
    def y2(self) -> float:
        return self.y + self.h

    @property
    def cx(self) -> float:
        return self.x + self.w / 2.0

    @property
    def cy(self) -> float:
        return self.y + self.h / 2.0

    def is_valid(self) -> bool:
        values = (self.x, self.y, self.w, self.h)
        if not all(math.isfinite(v) for v in values):
            return False
        return (
            self.x >= -EPS
            and self.y >= -EPS
            and self.w >= MIN_SIZE - EPS
            and self.h >= MIN_SIZE - EPS
            and self.x2 <= 1.0 + EPS
            and self.y2 <= 1.0 + EPS
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    def to_pixels(self, width: int, height: int) -> tuple[int, int, int, int]:
        """Scale into (left, top, width, height) pixel space, clamped to the image."""
        left = round(self.x * width)
        top = round(self.y * height)
        px_w = round(self.w * width)
        px_h = round(self.h * height)

        left = max(0, min(left, width - 1))
        top = max(0, min(top, height - 1))
        px_w = max(1, min(px_w, width - left))
        px_h = max(1, min(px_h, height - top))
        return left, top, px_w, px_h


FULL_IMAGE = NormalizedCropBox(0.0, 0.0, 1.0, 1.0)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def fit_box(x: float, y: float, w: float, h: float) -> NormalizedCropBox:
    """Final bounds pass: size into [MIN_SIZE, 1], then shift the position inside [0, 1]."""
    w = _clamp(w, MIN_SIZE, 1.0)
    h = _clamp(h, MIN_SIZE, 1.0)
    x = _clamp(x, 0.0, 1.0 - w)
    y = _clamp(y, 0.0, 1.0 - h)
    # Float noise: 0.7 + 0.3 may land just above 1.0
    if x + w > 1.0:
        w = 1.0 - x
    if y + h > 1.0:
        h = 1.0 - y
    return NormalizedCropBox(x, y, w, h)


def validate_crop_box(box: NormalizedCropBox, *, field: str = "crop") -> NormalizedCropBox:
    """Raise ValidationError unless the box satisfies every bounds/min-size invariant."""
    if not box.is_valid():
        raise ValidationError(
            f"Invalid {field}: {box.to_dict()} (need x,y >= 0, x+w <= 1, y+h <= 1, w,h >= {MIN_SIZE})"
        )
    return box


def crop_box_from_payload(payload: Any, *, field: str = "crop") -> NormalizedCropBox | None:
    """Parse a `{x, y, w, h}` mapping (or None) into a validated box."""
    if payload is None:
        return None
    if isinstance(payload, NormalizedCropBox):
        return validate_crop_box(payload, field=field)
    if not isinstance(payload, Mapping):
        raise ValidationError(f"Invalid {field}: expected an object with x, y, w, h")
    try:
        box = NormalizedCropBox(
            float(payload["x"]),
            float(payload["y"]),
            float(payload["w"]),
            float(payload["h"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {field}: {e}") from e
    return validate_crop_box(box, field=field)


def normalized_aspect(target_aspect: float, image_width: int, image_height: int) -> float:
    """Pixel aspect (w/h) expressed in normalized units for a given image."""
    if image_width <= 0 or image_height <= 0:
        raise ValidationError(f"Invalid image size {image_width}x{image_height}")
    if target_aspect <= 0:
        raise ValidationError(f"Invalid target aspect {target_aspect}")
    return float(target_aspect) * float(image_height) / float(image_width)


def min_width_for(aspect: float) -> float:
    """Smallest normalized width that keeps both sides >= MIN_SIZE at this aspect."""
    return max(MIN_SIZE, MIN_SIZE * aspect)


def max_width_for(aspect: float) -> float:
    return min(1.0, aspect)


def centered_box(image_width: int, image_height: int, target_aspect: float) -> NormalizedCropBox:
    """Largest centered box of the target aspect, without the MIN_SIZE clamp.

    The auto crop converts this box with to_pixels, so it lands on the same
    pixels as the editor's default box for the same image.
    """
    if image_width <= 0 or image_height <= 0 or target_aspect <= 0:
        raise ValidationError(f"Cannot build crop box for {image_width}x{image_height} @ {target_aspect}")
    image_aspect = image_width / image_height

    if image_aspect >= target_aspect:
        h = 1.0
        w = target_aspect / image_aspect
    else:
        w = 1.0
        h = image_aspect / target_aspect

    return NormalizedCropBox((1.0 - w) / 2.0, (1.0 - h) / 2.0, w, h)


def initial_crop_box(image_width: int, image_height: int, target_aspect: float) -> NormalizedCropBox:
    """Largest centered box matching the target aspect (the editor's default)."""
    box = centered_box(image_width, image_height, target_aspect)
    return fit_box(box.x, box.y, box.w, box.h)
