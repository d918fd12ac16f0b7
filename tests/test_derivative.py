from __future__ import annotations

import io

import pytest

pyvips = pytest.importorskip("pyvips")
np = pytest.importorskip("numpy")
Image = pytest.importorskip("PIL.Image")
pytestmark = pytest.mark.imaging

from catalog_images.config import PipelineConfig  # noqa: E402
from catalog_images.crop.box import NormalizedCropBox, initial_crop_box  # noqa: E402
from catalog_images.errors import ProcessingError, ValidationError  # noqa: E402
from catalog_images.metrics import metrics  # noqa: E402
from catalog_images.render.decoder import decode_source, to_numpy  # noqa: E402
from catalog_images.render.derivative import CROP_MODE_AUTO, CROP_MODE_MANUAL, DerivativeGenerator  # noqa: E402
from catalog_images.trim.trim import NO_TRIM, AutoCropResult  # noqa: E402

from conftest import make_image_bytes  # noqa: E402


def _dims(data: bytes) -> tuple[int, int]:
    img = pyvips.Image.new_from_buffer(data, "")
    return img.width, img.height


def test_default_targets_have_exact_dimensions() -> None:
    gen = DerivativeGenerator(PipelineConfig())
    rendered = gen.render_all(make_image_bytes(900, 500, fmt="JPEG"))
    assert _dims(rendered.derivatives["square"].data) == (1024, 1024)
    assert _dims(rendered.derivatives["card"].data) == (1440, 1080)
    # Original keeps the source size
    assert _dims(rendered.original) == (900, 500)
    assert (rendered.source_width, rendered.source_height) == (900, 500)


def test_output_is_webp(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    rendered = gen.render_all(make_image_bytes(120, 90))
    for result in rendered.derivatives.values():
        assert result.data[:4] == b"RIFF"
        assert result.data[8:12] == b"WEBP"


def test_render_is_deterministic(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    src = make_image_bytes(300, 200, border=20)
    box = {"square": NormalizedCropBox(0.2, 0.1, 0.4, 0.6)}
    first = gen.render_all(src, box)
    second = gen.render_all(src, box)
    assert first.original == second.original
    for key in first.derivatives:
        assert first.derivatives[key].data == second.derivatives[key].data


def test_manual_box_wins_over_auto(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    src = make_image_bytes(400, 300, border=50)
    rendered = gen.render_all(src, {"square": NormalizedCropBox(0.25, 0.0, 0.5, 0.6)})
    square = rendered.derivatives["square"]
    card = rendered.derivatives["card"]
    assert square.crop_mode == CROP_MODE_MANUAL
    assert square.trim == NO_TRIM
    assert square.pixel_rect == (100, 0, 200, 180)
    assert card.crop_mode == CROP_MODE_AUTO
    assert card.trim_applied
    assert rendered.trim_applied


def test_auto_trim_rect_in_source_pixels(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    source = gen.decode(make_image_bytes(400, 300, border=50))
    result = gen.render(source, small_config.derivative("square"))
    assert result.pixel_rect == (100, 50, 200, 200)
    assert result.trim.to_dict()["trim_top"] == 50


def test_exif_orientation_is_applied() -> None:
    source = decode_source(make_image_bytes(200, 100, fmt="JPEG", exif_orientation=6))
    assert (source.width, source.height) == (100, 200)


def test_alpha_is_flattened_onto_white() -> None:
    source = decode_source(make_image_bytes(32, 32, (0, 0, 0, 0), mode="RGBA"))
    arr = to_numpy(source.image)
    assert arr.shape == (32, 32, 3)
    assert int(arr.min()) == 255


def test_grayscale_source_becomes_rgb() -> None:
    source = decode_source(make_image_bytes(40, 30, 128, mode="L"))
    assert source.image.bands == 3


def test_analysis_pixels_are_downscaled() -> None:
    source = decode_source(make_image_bytes(2000, 1000))
    arr = source.analysis_pixels(500)
    assert arr.shape == (250, 500, 3)
    assert source.analysis_pixels(500) is arr


@pytest.mark.parametrize("data", [b"", b"definitely not an image", b"\x89PNG\r\n\x1a\n\x00\x00"])
def test_undecodable_input_fails_at_decode(small_config, data: bytes) -> None:
    gen = DerivativeGenerator(small_config)
    with pytest.raises(ProcessingError) as exc:
        gen.render_all(data)
    assert exc.value.stage == "decode"
    assert exc.value.to_dict()["stage"] == "decode"
    assert exc.value.took_effect is False


def test_bad_crop_rect_fails_at_crop(small_config) -> None:
    class _OutOfBounds:
        def detect(self, analysis, width, height, aspect):
            return AutoCropResult(rect=(0, 0, width * 10, height * 10), trim=NO_TRIM)

    gen = DerivativeGenerator(small_config, detector=_OutOfBounds())
    with pytest.raises(ProcessingError) as exc:
        gen.render_all(make_image_bytes(100, 80))
    assert exc.value.stage == "crop"


def test_unknown_encoder_fails_at_encode(small_config) -> None:
    gen = DerivativeGenerator(small_config.with_overrides(output_extension="notaformat"))
    with pytest.raises(ProcessingError) as exc:
        gen.render_all(make_image_bytes(100, 80))
    assert exc.value.stage == "encode"


def test_unknown_derivative_key_is_validation_error(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    with pytest.raises(ValidationError):
        gen.render_all(make_image_bytes(100, 80), {"banner": NormalizedCropBox(0, 0, 1, 1)})
    with pytest.raises(ValidationError):
        gen.preview(make_image_bytes(100, 80), "banner")


def test_preview_reports_mode_and_source_size(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    preview = gen.preview(make_image_bytes(300, 200), "card", NormalizedCropBox(0.0, 0.0, 0.5, 0.5))
    assert preview.derivative.crop_mode == CROP_MODE_MANUAL
    assert (preview.original_width, preview.original_height) == (300, 200)
    assert _dims(preview.derivative.data) == (80, 60)


def test_regenerate_can_reuse_encoded_original(small_config) -> None:
    gen = DerivativeGenerator(small_config)
    original = make_image_bytes(100, 80)
    rendered = gen.render_all(original, original=original)
    assert rendered.original is original


def _noise_png(width: int, height: int) -> bytes:
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()


@pytest.mark.parametrize("size", [(900, 500), (600, 800)])
def test_auto_without_border_renders_like_manual_center_crop(small_config, size) -> None:
    w, h = size
    gen = DerivativeGenerator(small_config)
    src = _noise_png(w, h)
    manual_boxes = {spec.key: initial_crop_box(w, h, spec.aspect) for spec in small_config.derivatives}

    auto = gen.render_all(src)
    manual = gen.render_all(src, manual_boxes)

    assert not auto.trim_applied
    for key, result in auto.derivatives.items():
        assert result.crop_mode == CROP_MODE_AUTO
        assert manual.derivatives[key].crop_mode == CROP_MODE_MANUAL
        assert result.pixel_rect == manual.derivatives[key].pixel_rect
        assert result.data == manual.derivatives[key].data


def test_render_records_stage_timings(small_config) -> None:
    metrics.reset()
    gen = DerivativeGenerator(small_config)
    gen.render_all(make_image_bytes(120, 90))
    for key in ("square", "card"):
        stages = metrics.render_stage_summary(key)
        assert set(stages) == {"crop", "resize", "encode"}
        assert all(s["count"] == 1 for s in stages.values())


@pytest.mark.parametrize("size", [(37, 29), (2000, 150), (150, 2000), (64, 64)])
@pytest.mark.parametrize("box", [None, NormalizedCropBox(0.0, 0.0, 1.0, 1.0), NormalizedCropBox(0.3, 0.4, 0.1, 0.5)])
def test_output_size_ignores_source_resolution(small_config, size, box) -> None:
    gen = DerivativeGenerator(small_config)
    crops = {} if box is None else {"square": box, "card": box}
    rendered = gen.render_all(make_image_bytes(*size), crops)
    for spec in small_config.derivatives:
        assert _dims(rendered.derivatives[spec.key].data) == (spec.target_width, spec.target_height)
