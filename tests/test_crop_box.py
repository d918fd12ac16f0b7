from __future__ import annotations

import math

import pytest

from catalog_images.crop.box import (
    FULL_IMAGE,
    NormalizedCropBox,
    crop_box_from_payload,
    fit_box,
    initial_crop_box,
    normalized_aspect,
    validate_crop_box,
)
from catalog_images.errors import ValidationError
from catalog_images.trim.trim import compute_aspect_crop


def test_valid_box_passes() -> None:
    box = NormalizedCropBox(0.1, 0.2, 0.5, 0.5)
    assert box.is_valid()
    assert validate_crop_box(box) is box
    assert box.x2 == pytest.approx(0.6)
    assert box.cy == pytest.approx(0.45)


@pytest.mark.parametrize(
    "box",
    [
        NormalizedCropBox(-0.01, 0.0, 0.5, 0.5),
        NormalizedCropBox(0.0, -0.01, 0.5, 0.5),
        NormalizedCropBox(0.6, 0.0, 0.5, 0.5),
        NormalizedCropBox(0.0, 0.6, 0.5, 0.5),
        NormalizedCropBox(0.0, 0.0, 0.05, 0.5),
        NormalizedCropBox(0.0, 0.0, 0.5, 0.09),
        NormalizedCropBox(math.nan, 0.0, 0.5, 0.5),
        NormalizedCropBox(0.0, 0.0, math.inf, 0.5),
    ],
)
def test_invalid_boxes_are_rejected(box: NormalizedCropBox) -> None:
    assert not box.is_valid()
    with pytest.raises(ValidationError):
        validate_crop_box(box)


def test_float_noise_at_edge_is_tolerated() -> None:
    # 0.7 + 0.3 lands a hair above 1.0 in binary floating point
    box = NormalizedCropBox(0.7, 0.0, 0.3000000001, 0.5)
    assert box.is_valid()


def test_payload_parsing() -> None:
    assert crop_box_from_payload(None) is None
    box = crop_box_from_payload({"x": 0.1, "y": 0.1, "w": 0.5, "h": "0.5"})
    assert box == NormalizedCropBox(0.1, 0.1, 0.5, 0.5)
    assert crop_box_from_payload(box) is box


@pytest.mark.parametrize(
    "payload",
    [
        {"x": 0.1, "y": 0.1, "w": 0.5},
        {"x": "a", "y": 0.1, "w": 0.5, "h": 0.5},
        {"x": 0.9, "y": 0.1, "w": 0.5, "h": 0.5},
        "0.1,0.1,0.5,0.5",
        [0.1, 0.1, 0.5, 0.5],
    ],
)
def test_payload_rejections(payload) -> None:
    with pytest.raises(ValidationError, match="manual_crop_card"):
        crop_box_from_payload(payload, field="manual_crop_card")


def test_fit_box_clamps_size_then_position() -> None:
    shifted = fit_box(0.95, 0.95, 0.3, 0.3)
    assert (shifted.x, shifted.y, shifted.w, shifted.h) == pytest.approx((0.7, 0.7, 0.3, 0.3))
    assert shifted.is_valid()
    out = fit_box(0.0, 0.0, 0.05, 2.0)
    assert out.w == pytest.approx(0.1)
    assert out.h == pytest.approx(1.0)
    assert out.is_valid()


def test_to_pixels_rounds_and_clamps() -> None:
    box = NormalizedCropBox(0.125, 0.0, 0.75, 1.0)
    assert box.to_pixels(400, 300) == (50, 0, 300, 300)
    assert FULL_IMAGE.to_pixels(3000, 2000) == (0, 0, 3000, 2000)
    # Never produces an empty rect
    tiny = NormalizedCropBox(0.9, 0.9, 0.1, 0.1)
    assert tiny.to_pixels(3, 3)[2:] == (1, 1)


def test_normalized_aspect() -> None:
    assert normalized_aspect(1.0, 400, 300) == pytest.approx(0.75)
    assert normalized_aspect(4 / 3, 400, 300) == pytest.approx(1.0)
    with pytest.raises(ValidationError):
        normalized_aspect(1.0, 0, 300)


def test_initial_box_is_largest_centered() -> None:
    assert initial_crop_box(400, 300, 4 / 3) == FULL_IMAGE
    wide = initial_crop_box(400, 300, 1.0)
    assert (wide.x, wide.y, wide.w, wide.h) == pytest.approx((0.125, 0.0, 0.75, 1.0))
    tall = initial_crop_box(300, 400, 1.0)
    assert (tall.x, tall.y, tall.w, tall.h) == pytest.approx((0.0, 0.125, 1.0, 0.75))


@pytest.mark.parametrize(
    "size,aspect",
    [
        ((400, 300), 1.0),
        ((400, 300), 4 / 3),
        ((3000, 2000), 1.0),
        ((3000, 2000), 4 / 3),
        ((900, 500), 4 / 3),
        ((1200, 1600), 4 / 3),
    ],
)
def test_initial_box_matches_auto_center_crop_without_border(size, aspect) -> None:
    w, h = size
    assert initial_crop_box(w, h, aspect).to_pixels(w, h) == compute_aspect_crop(w, h, aspect)
