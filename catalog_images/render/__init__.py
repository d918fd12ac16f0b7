from catalog_images.render.decoder import SourceImage, decode_source
from catalog_images.render.derivative import (
    CROP_MODE_AUTO,
    CROP_MODE_MANUAL,
    DerivativeGenerator,
    DerivativeResult,
    PreviewResult,
    RenderedSet,
)

__all__ = [
    "CROP_MODE_AUTO",
    "CROP_MODE_MANUAL",
    "DerivativeGenerator",
    "DerivativeResult",
    "PreviewResult",
    "RenderedSet",
    "SourceImage",
    "decode_source",
]
