from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from catalog_images.errors import (
    ImageError,
    ItemNotFoundError,
    ProcessingError,
    ReferenceUpdateError,
    StorageWriteError,
    ValidationError,
)
from catalog_images.logger import get_logger
from catalog_images.metrics import metrics
from catalog_images.settings_manager import SettingsManager
from catalog_images.storage.backends import LocalStorageBackend

from .routes import router, storage_router
from .services import ImageServices, build_services

_logger = get_logger("api")

# Most specific first: ItemNotFoundError is a ValidationError.
_STATUS_BY_ERROR: tuple[tuple[type[ImageError], int], ...] = (
    (ItemNotFoundError, 404),
    (ValidationError, 400),
    (ProcessingError, 422),
    (StorageWriteError, 502),
    (ReferenceUpdateError, 500),
)


def status_for(exc: ImageError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def image_error_handler(request: Request, exc: ImageError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        _logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        _logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationError(f"Invalid request: {problems}").to_dict(),
    )


def create_app(services: ImageServices | None = None, settings: SettingsManager | None = None) -> FastAPI:
    """Build the API app around explicit services (tests) or settings (CLI)."""
    if services is None:
        services = build_services(settings or SettingsManager())

    app = FastAPI(
        title="Catalog Images API",
        description="Versioned square/card derivatives for catalog items",
        version="1.0",
    )
    app.state.services = services
    app.add_exception_handler(ImageError, image_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)
    app.include_router(storage_router)

    @app.get("/health")
    def health_check():
        return {
            "status": "healthy",
            "backend": type(services.backend).__name__,
            "render_timings": metrics.timing_summary("render."),
        }

    if isinstance(services.backend, LocalStorageBackend):
        # Public URLs are <public_base_url>/<bucket>/<path>; serve the bucket's parent.
        app.mount("/static", StaticFiles(directory=services.backend.root.parent), name="static")

    return app
