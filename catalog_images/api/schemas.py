"""
Pydantic schemas for the image routes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CropBoxIn(BaseModel):
    """Normalized crop box; bounds are checked by the pipeline, not here."""

    x: float
    y: float
    w: float
    h: float


class ErrorOut(BaseModel):
    error: str
    error_type: str
    took_effect: bool = False
    retryable: bool = False
    stage: str | None = None


class UploadUrlRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    file_extension: str | None = Field(None, description="webp (default), jpg, jpeg or png")


class UploadUrlResponse(BaseModel):
    write_url: str
    storage_path: str
    expires_in_seconds: int


class ApplyFromStorageRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    storage_path: str = Field(..., min_length=1, description="Path returned by /images/upload-url")
    manual_crop_square: CropBoxIn | None = None
    manual_crop_card: CropBoxIn | None = None


class ApplyResponse(BaseModel):
    item_id: str
    canonical_url: str
    square_url: str | None = None
    card_url: str | None = None
    storage_paths: dict[str, str]
    trim_applied: bool
    deleted_files: list[str] = Field(default_factory=list)
    cleanup_pending: bool = False


class DiscardUploadRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    storage_path: str = Field(..., min_length=1)


class DiscardUploadResponse(BaseModel):
    deleted: bool


class DeleteImagesResponse(BaseModel):
    deleted_count: int
    cleanup_pending: bool = False


class PreviewResponse(BaseModel):
    image_base64: str
    width: int
    height: int
    derivative: str
    trim_applied: bool
    crop_mode_used: str
    original_width: int
    original_height: int


class RegenerateRequest(BaseModel):
    item_ids: list[str] = Field(..., min_length=1)


class RegenerateItemResult(BaseModel):
    item_id: str
    success: bool
    canonical_url: str | None = None
    error: str | None = None
    error_type: str | None = None
    took_effect: bool | None = None
    retryable: bool | None = None
    stage: str | None = None


class RegenerateResponse(BaseModel):
    results: list[RegenerateItemResult]
    regenerated: int
    failed: int


class StorageUploadResponse(BaseModel):
    storage_path: str
