"""Derivative rendering: crop, resize to exact target size, encode WebP.

Pure with respect to storage: nothing here writes anywhere. Every failure is a
ProcessingError tagged with the stage that broke.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from catalog_images.config import DerivativeSpec, PipelineConfig
from catalog_images.crop.box import NormalizedCropBox, validate_crop_box
from catalog_images.errors import ProcessingError, ValidationError
from catalog_images.logger import get_logger
from catalog_images.metrics import metrics
from catalog_images.render.decoder import SourceImage, _get_pyvips_module, decode_source, vips_message
from catalog_images.trim.trim import NO_TRIM, AutoTrimDetector, PixelRect, TrimResult

_logger = get_logger("derivative")

CROP_MODE_MANUAL = "manual"
CROP_MODE_AUTO = "auto"


@dataclass(frozen=True, slots=True)
class DerivativeResult:
    key: str
    data: bytes
    width: int
    height: int
    crop_mode: str
    trim: TrimResult
    pixel_rect: PixelRect

    @property
    def trim_applied(self) -> bool:
        return self.trim.trim_applied


@dataclass(frozen=True, slots=True)
class RenderedSet:
    """Encoded original plus every derivative, in config order."""

    original: bytes
    source_width: int
    source_height: int
    derivatives: dict[str, DerivativeResult] = field(default_factory=dict)

    @property
    def trim_applied(self) -> bool:
        return any(d.trim_applied for d in self.derivatives.values())


@dataclass(frozen=True, slots=True)
class PreviewResult:
    derivative: DerivativeResult
    original_width: int
    original_height: int


class DerivativeGenerator:
    def __init__(self, config: PipelineConfig, detector: AutoTrimDetector | None = None) -> None:
        self._config = config
        self._detector = detector or AutoTrimDetector(config)

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def decode(self, data: bytes) -> SourceImage:
        with metrics.timed("render.decode"):
            return decode_source(data)

    def encode_original(self, source: SourceImage) -> bytes:
        """Rotation-normalized full-size copy at the higher original quality."""
        with metrics.timed("render.original"):
            return self._encode(source.image, self._config.original_quality)

    def crop_rect(self, source: SourceImage, spec: DerivativeSpec, manual_box: NormalizedCropBox | None):
        """Resolve the pixel rect for one derivative: (rect, crop_mode, trim)."""
        if manual_box is not None:
            validate_crop_box(manual_box, field=f"manual_crop_{spec.key}")
            return manual_box.to_pixels(source.width, source.height), CROP_MODE_MANUAL, NO_TRIM
        analysis = source.analysis_pixels(self._config.analysis_max_side)
        auto = self._detector.detect(analysis, source.width, source.height, spec.aspect)
        return auto.rect, CROP_MODE_AUTO, auto.trim

    def render(
        self,
        source: SourceImage,
        spec: DerivativeSpec,
        manual_box: NormalizedCropBox | None = None,
    ) -> DerivativeResult:
        with metrics.timed(f"render.{spec.key}"):
            rect, mode, trim = self.crop_rect(source, spec, manual_box)
            pyvips = _get_pyvips_module()

            left, top, width, height = rect
            try:
                with metrics.render_stage(spec.key, "crop"):
                    cropped = source.image.crop(left, top, width, height)
            except pyvips.Error as e:
                raise ProcessingError("crop", f"{spec.key} rect {rect}: {vips_message(e)}") from e

            try:
                with metrics.render_stage(spec.key, "resize"):
                    resized = cropped.thumbnail_image(
                        spec.target_width, height=spec.target_height, size=pyvips.Size.FORCE
                    )
                if resized.width != spec.target_width or resized.height != spec.target_height:
                    raise ProcessingError(
                        "resize",
                        f"{spec.key} produced {resized.width}x{resized.height}, "
                        f"expected {spec.target_width}x{spec.target_height}",
                    )
            except pyvips.Error as e:
                raise ProcessingError("resize", f"{spec.key}: {vips_message(e)}") from e

            with metrics.render_stage(spec.key, "encode"):
                data = self._encode(resized, self._config.derivative_quality)

        _logger.debug("rendered %s: mode=%s rect=%s trim=%s bytes=%d", spec.key, mode, rect, trim, len(data))
        return DerivativeResult(
            key=spec.key,
            data=data,
            width=spec.target_width,
            height=spec.target_height,
            crop_mode=mode,
            trim=trim,
            pixel_rect=rect,
        )

    def render_all(
        self,
        data: bytes,
        crops: Mapping[str, NormalizedCropBox | None] | None = None,
        original: bytes | None = None,
    ) -> RenderedSet:
        """Decode once, then encode the original and every configured derivative.

        Pass `original` to reuse an already-encoded original instead of re-encoding.
        """
        crops = dict(crops or {})
        unknown = set(crops) - set(self._config.derivative_keys)
        if unknown:
            raise ValidationError(f"Unknown derivative key(s): {sorted(unknown)}")

        source = self.decode(data)
        if original is None:
            original = self.encode_original(source)
        rendered: dict[str, DerivativeResult] = {}
        for spec in self._config.derivatives:
            rendered[spec.key] = self.render(source, spec, crops.get(spec.key))
        return RenderedSet(
            original=original,
            source_width=source.width,
            source_height=source.height,
            derivatives=rendered,
        )

    def preview(self, data: bytes, key: str, manual_box: NormalizedCropBox | None = None) -> PreviewResult:
        try:
            spec = self._config.derivative(key)
        except KeyError:
            raise ValidationError(f"Unknown derivative key: {key!r}") from None
        source = self.decode(data)
        result = self.render(source, spec, manual_box)
        metrics.inc("render.preview")
        return PreviewResult(derivative=result, original_width=source.width, original_height=source.height)

    def _encode(self, image: Any, quality: int) -> bytes:
        pyvips = _get_pyvips_module()
        try:
            return bytes(image.write_to_buffer(f".{self._config.output_extension}", Q=int(quality), strip=True))
        except pyvips.Error as e:
            raise ProcessingError("encode", vips_message(e)) from e
