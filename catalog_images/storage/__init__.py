"""Storage package public API: backends, item records, versioned publishing, uploads."""

from .backends import LocalStorageBackend, S3StorageBackend, StorageBackend
from .items import ItemRecord, ItemRepository
from .layout import StorageLayout, validate_item_id
from .uploads import DirectUploadBroker, UploadGrant
from .versioned import ApplyResult, CleanupResult, RegenerateReport, RemoveResult, VersionedStorageManager

__all__ = [
    "ApplyResult",
    "CleanupResult",
    "DirectUploadBroker",
    "ItemRecord",
    "ItemRepository",
    "LocalStorageBackend",
    "RegenerateReport",
    "RemoveResult",
    "S3StorageBackend",
    "StorageBackend",
    "StorageLayout",
    "UploadGrant",
    "VersionedStorageManager",
    "validate_item_id",
]
