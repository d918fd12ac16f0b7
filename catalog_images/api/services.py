from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from catalog_images.config import PipelineConfig
from catalog_images.logger import get_logger
from catalog_images.render.derivative import DerivativeGenerator
from catalog_images.settings_manager import SettingsManager
from catalog_images.storage.backends import LocalStorageBackend, S3StorageBackend, StorageBackend
from catalog_images.storage.items import ItemRepository
from catalog_images.storage.uploads import DirectUploadBroker
from catalog_images.storage.versioned import VersionedStorageManager

_logger = get_logger("services")


@dataclass(slots=True)
class ImageServices:
    """Everything the routes need, wired once per app."""

    config: PipelineConfig
    backend: StorageBackend
    items: ItemRepository
    generator: DerivativeGenerator
    manager: VersionedStorageManager
    broker: DirectUploadBroker

    @classmethod
    def create(cls, config: PipelineConfig, backend: StorageBackend, items: ItemRepository) -> ImageServices:
        generator = DerivativeGenerator(config)
        return cls(
            config=config,
            backend=backend,
            items=items,
            generator=generator,
            manager=VersionedStorageManager(backend, items, generator),
            broker=DirectUploadBroker(backend, items, config),
        )


def build_backend(settings: SettingsManager, config: PipelineConfig) -> StorageBackend:
    kind = str(settings.get("storage_backend")).lower()
    if kind == "local":
        host = settings.get("host")
        port = settings.get("port")
        return LocalStorageBackend(
            root=settings.get("storage_root"),
            bucket=config.bucket,
            public_base_url=config.public_base_url,
            upload_base_url=f"http://{host}:{port}/storage/upload",
        )
    if kind == "s3":
        return S3StorageBackend(
            bucket=config.bucket,
            public_base_url=config.public_base_url,
            endpoint_url=settings.get("s3_endpoint_url"),
            region_name=settings.get("s3_region"),
        )
    raise ValueError(f"Unsupported storage backend: {kind}")


def build_services(settings: SettingsManager) -> ImageServices:
    config = settings.pipeline_config()
    backend = build_backend(settings, config)
    items = ItemRepository(settings.get("database_path"))
    _logger.info("services ready: backend=%s bucket=%s", type(backend).__name__, config.bucket)
    return ImageServices.create(config, backend, items)


def get_services(request: Request) -> ImageServices:
    return request.app.state.services
