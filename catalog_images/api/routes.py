from __future__ import annotations

import base64
import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from catalog_images.crop.box import crop_box_from_payload
from catalog_images.errors import ValidationError
from catalog_images.logger import get_logger
from catalog_images.storage.backends import LocalStorageBackend

from .schemas import (
    ApplyFromStorageRequest,
    ApplyResponse,
    DeleteImagesResponse,
    DiscardUploadRequest,
    DiscardUploadResponse,
    PreviewResponse,
    RegenerateRequest,
    RegenerateResponse,
    StorageUploadResponse,
    UploadUrlRequest,
    UploadUrlResponse,
)
from .services import ImageServices, get_services

_logger = get_logger("api")

router = APIRouter(prefix="/images", tags=["images"])
storage_router = APIRouter(prefix="/storage", tags=["storage"])

# ---- DI alias (no default value allowed) ----
Services = Annotated[ImageServices, Depends(get_services)]


def _parse_crop_field(raw: str | None, field: str) -> dict[str, Any] | None:
    """Multipart crop fields arrive as JSON strings."""
    if raw is None or not raw.strip() or raw.strip() == "null":
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid {field}: not valid JSON ({e.msg})") from e
    if not isinstance(value, dict):
        raise ValidationError(f"Invalid {field}: expected an object with x, y, w, h")
    return value


def _read_upload(file: UploadFile, limit: int) -> bytes:
    # limit + 1 bytes is enough to detect an oversize body.
    data = file.file.read(limit + 1)
    if len(data) > limit:
        raise ValidationError(f"File too large (max {limit} bytes); use a direct upload")
    return data


@router.post("/upload-url", response_model=UploadUrlResponse)
def create_upload_url(body: UploadUrlRequest, services: Services):
    grant = services.broker.request_upload(body.item_id, body.file_extension)
    return grant.to_dict()


@router.post("/apply-from-storage", response_model=ApplyResponse)
def apply_from_storage(body: ApplyFromStorageRequest, services: Services):
    crops = {
        "square": body.manual_crop_square.model_dump() if body.manual_crop_square else None,
        "card": body.manual_crop_card.model_dump() if body.manual_crop_card else None,
    }
    result = services.manager.apply_from_path(body.item_id, body.storage_path, crops)
    return result.to_dict()


@router.post("/apply", response_model=ApplyResponse)
def apply_inline(
    services: Services,
    file: UploadFile = File(...),
    item_id: str = Form(...),
    manual_crop_square: str | None = Form(None),
    manual_crop_card: str | None = Form(None),
):
    crops = {
        "square": _parse_crop_field(manual_crop_square, "manual_crop_square"),
        "card": _parse_crop_field(manual_crop_card, "manual_crop_card"),
    }
    data = _read_upload(file, services.config.max_inline_bytes)
    result = services.manager.apply_inline(item_id, data, crops)
    return result.to_dict()


@router.post("/discard-upload", response_model=DiscardUploadResponse)
def discard_upload(body: DiscardUploadRequest, services: Services):
    return {"deleted": services.broker.discard(body.item_id, body.storage_path)}


@router.delete("/{item_id}", response_model=DeleteImagesResponse)
def delete_images(item_id: str, services: Services):
    result = services.manager.remove(item_id)
    return {"deleted_count": result.deleted_count, "cleanup_pending": result.cleanup_pending}


@router.post("/preview", response_model=PreviewResponse)
def preview(
    services: Services,
    item_id: str = Form(...),
    derivative: str = Form("card"),
    file: UploadFile | None = File(None),
    storage_path: str | None = Form(None),
    manual_crop: str | None = Form(None),
):
    """Render one derivative without writing anything to storage."""
    services.items.require(item_id)
    if file is not None:
        data = _read_upload(file, services.config.max_inline_bytes)
    elif storage_path:
        services.broker.validate_sandbox_path(item_id, storage_path)
        try:
            data = services.backend.download(storage_path)
        except FileNotFoundError:
            raise ValidationError(f"Uploaded file not found: {storage_path}") from None
    else:
        raise ValidationError("Provide either file or storage_path")
    if not data:
        raise ValidationError("Empty file")

    box = crop_box_from_payload(_parse_crop_field(manual_crop, "manual_crop"), field="manual_crop")
    result = services.generator.preview(data, derivative, box)
    d = result.derivative
    return {
        "image_base64": base64.b64encode(d.data).decode("ascii"),
        "width": d.width,
        "height": d.height,
        "derivative": d.key,
        "trim_applied": d.trim_applied,
        "crop_mode_used": d.crop_mode,
        "original_width": result.original_width,
        "original_height": result.original_height,
    }


@router.post("/regenerate", response_model=RegenerateResponse)
def regenerate(body: RegenerateRequest, services: Services):
    report = services.manager.regenerate_many(body.item_ids)
    return report.to_dict()


@storage_router.put("/upload/{token}", response_model=StorageUploadResponse)
async def accept_upload(token: str, request: Request, services: Services):
    """Redeem a local single-use upload token (local backend only)."""
    backend = services.backend
    if not isinstance(backend, LocalStorageBackend):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Direct uploads go to object storage")
    data = await request.body()
    path = await run_in_threadpool(backend.accept_signed_upload, token, data)
    _logger.info("direct upload stored: %s (%d bytes)", path, len(data))
    return {"storage_path": path}
