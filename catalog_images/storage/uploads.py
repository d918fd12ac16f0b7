"""Direct-to-storage uploads.

The client asks for a short-lived write URL, PUTs the source bytes straight
into the item's `uploads/` sandbox, then calls apply-from-storage (or discard).
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from catalog_images.config import PipelineConfig
from catalog_images.errors import ValidationError
from catalog_images.logger import format_image_op, get_logger
from catalog_images.metrics import metrics

from .backends import StorageBackend
from .items import ItemRepository
from .layout import StorageLayout

_logger = get_logger("uploads")

CONTENT_TYPES = {
    "webp": "image/webp",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
}


@dataclass(frozen=True, slots=True)
class UploadGrant:
    write_url: str
    storage_path: str
    expires_in_seconds: int

    def to_dict(self) -> dict:
        return {
            "write_url": self.write_url,
            "storage_path": self.storage_path,
            "expires_in_seconds": self.expires_in_seconds,
        }


class DirectUploadBroker:
    def __init__(
        self,
        backend: StorageBackend,
        items: ItemRepository,
        config: PipelineConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._items = items
        self._config = config
        self._layout = StorageLayout(config)
        self._clock = clock

    def normalize_extension(self, extension: str | None) -> str:
        ext = (extension or self._config.default_upload_extension).strip().lstrip(".").lower()
        if ext not in self._config.allowed_extensions:
            raise ValidationError(
                f"Extension {ext!r} not allowed; use one of {list(self._config.allowed_extensions)}"
            )
        return ext

    def request_upload(self, item_id: str, extension: str | None = None) -> UploadGrant:
        """Mint a write credential for a fresh path in the item's upload sandbox."""
        self._items.require(item_id)
        ext = self.normalize_extension(extension)
        filename = f"{int(self._clock() * 1000)}_{secrets.token_hex(3)}.{ext}"
        path = self._layout.upload_path(item_id, filename)
        ttl = int(self._config.upload_url_ttl_seconds)
        url = self._backend.create_signed_upload(path, CONTENT_TYPES.get(ext, "application/octet-stream"), ttl)
        metrics.inc("uploads.granted")
        _logger.info("upload url issued for %s: %s (ttl=%ds)", item_id, path, ttl)
        return UploadGrant(write_url=url, storage_path=path, expires_in_seconds=ttl)

    def validate_sandbox_path(self, item_id: str, path: str) -> str:
        return self._layout.validate_upload_path(item_id, path)

    def discard(self, item_id: str, path: str) -> bool:
        """Delete an abandoned temp upload. Already-absent files return False."""
        self.validate_sandbox_path(item_id, path)
        if not self._backend.exists(path):
            _logger.info(format_image_op("discard_upload", item_id, success=True, deleted_count=0))
            return False
        removed = self._backend.delete([path])
        metrics.inc("uploads.discarded")
        _logger.info(format_image_op("discard_upload", item_id, success=True, deleted_count=len(removed)))
        return bool(removed)
