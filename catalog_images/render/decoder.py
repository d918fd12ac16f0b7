"""Source decoding using pyvips.

Turns upload bytes into an orientation-normalized, 8-bit sRGB, 3-band image
held in memory, so every derivative crops from the same pixels.
"""

from __future__ import annotations

import contextlib
from typing import Any

import numpy as np

from catalog_images.errors import ProcessingError
from catalog_images.logger import get_logger

_logger = get_logger("decoder")

RGB_CHANNELS = 3
WHITE = [255, 255, 255]

_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        # Configure pyvips caches to avoid memory growth
        with contextlib.suppress(Exception):
            pyvips.cache_set_max(0)
            pyvips.cache_set_max_mem(0)
            pyvips.cache_set_max_files(0)
        _pyvips = pyvips
    return _pyvips


def vips_message(exc: Exception) -> str:
    """First line of a libvips error; the rest is a multi-line log dump."""
    text = str(exc).strip()
    return text.splitlines()[0] if text else exc.__class__.__name__


def to_numpy(image: Any) -> np.ndarray:
    mem = image.write_to_memory()
    array = np.frombuffer(mem, dtype=np.uint8).reshape(image.height, image.width, image.bands)
    return array.copy()


class SourceImage:
    """A decoded source. `image` is a pyvips.Image already rotated and flattened."""

    def __init__(self, image: Any) -> None:
        self.image = image
        self.width = int(image.width)
        self.height = int(image.height)
        self._analysis: dict[int, np.ndarray] = {}

    def analysis_pixels(self, max_side: int) -> np.ndarray:
        """RGB pixels downscaled so the long side is at most `max_side`."""
        cached = self._analysis.get(max_side)
        if cached is not None:
            return cached
        pyvips = _get_pyvips_module()
        image = self.image
        long_side = max(self.width, self.height)
        if max_side > 0 and long_side > max_side:
            scale = max_side / long_side
            tw = max(1, round(self.width * scale))
            th = max(1, round(self.height * scale))
            image = image.thumbnail_image(tw, height=th, size=pyvips.Size.FORCE)
        array = to_numpy(image)
        self._analysis[max_side] = array
        return array


def _normalize(image: Any) -> Any:
    pyvips = _get_pyvips_module()
    image = image.autorot()
    if image.interpretation != "srgb":
        image = image.colourspace("srgb")
    if image.hasalpha():
        image = image.flatten(background=WHITE)
    if image.bands > RGB_CHANNELS:
        image = image.extract_band(0, n=RGB_CHANNELS)
    elif image.bands < RGB_CHANNELS:
        image = pyvips.Image.bandjoin([image] * RGB_CHANNELS)
    if image.format != "uchar":
        image = image.cast("uchar")
    return image.copy_memory()


def decode_source(data: bytes) -> SourceImage:
    """Decode raw upload bytes.

    Raises:
        ProcessingError: stage "decode" for empty, truncated or unsupported input
    """
    if not data:
        raise ProcessingError("decode", "empty source")
    pyvips = _get_pyvips_module()
    try:
        image = pyvips.Image.new_from_buffer(bytes(data), "")
        image = _normalize(image)
    except pyvips.Error as e:
        _logger.debug("decode failed: %s", e)
        raise ProcessingError("decode", vips_message(e)) from e
    _logger.debug("decoded source %dx%d", image.width, image.height)
    return SourceImage(image)
