from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True, slots=True)
class DerivativeSpec:
    """One fixed display purpose (platform-defined, never user-defined)."""

    key: str
    target_width: int
    target_height: int
    aspect: float


SQUARE = DerivativeSpec("square", 1024, 1024, 1.0)
CARD = DerivativeSpec("card", 1440, 1080, 4 / 3)

DEFAULT_DERIVATIVES: tuple[DerivativeSpec, ...] = (SQUARE, CARD)


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Explicit pipeline configuration, passed into every service at construction."""

    bucket: str = "catalog-images"
    items_prefix: str = "items"
    public_base_url: str = "http://localhost:8000/static"
    derivatives: tuple[DerivativeSpec, ...] = field(default=DEFAULT_DERIVATIVES)
    primary_derivative: str = "card"
    output_extension: str = "webp"
    output_content_type: str = "image/webp"
    derivative_quality: int = 80
    original_quality: int = 90
    allowed_extensions: tuple[str, ...] = ("webp", "jpg", "jpeg", "png")
    default_upload_extension: str = "webp"
    max_inline_bytes: int = 10 * 1024 * 1024
    upload_url_ttl_seconds: int = 600
    analysis_max_side: int = 1024
    trim_tolerance: int = 12
    trim_noise_fraction: float = 0.01
    auto_trim_min_region_px: int = 64

    def __post_init__(self) -> None:
        keys = [d.key for d in self.derivatives]
        if len(set(keys)) != len(keys):
            raise ValueError(f"duplicate derivative keys: {keys}")
        if self.primary_derivative not in keys:
            raise ValueError(f"primary derivative {self.primary_derivative!r} not in {keys}")
        if self.default_upload_extension not in self.allowed_extensions:
            raise ValueError("default upload extension must be allowed")

    def derivative(self, key: str) -> DerivativeSpec:
        for spec in self.derivatives:
            if spec.key == key:
                return spec
        raise KeyError(key)

    @property
    def derivative_keys(self) -> tuple[str, ...]:
        return tuple(d.key for d in self.derivatives)

    def with_overrides(self, **changes) -> PipelineConfig:
        return replace(self, **changes)
