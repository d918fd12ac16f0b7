"""Object key layout for one item's image folder.

    <items_prefix>/<item_id>/orig.webp
    <items_prefix>/<item_id>/<version>_<key>.webp
    <items_prefix>/<item_id>/uploads/<ms>_<hex>.<ext>
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from catalog_images.config import PipelineConfig
from catalog_images.errors import ValidationError

ORIGINAL_STEM = "orig"
UPLOADS_DIR = "uploads"

_ITEM_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
_DERIVATIVE_RE = re.compile(r"^(?P<version>\d+)_(?P<key>[A-Za-z0-9-]+)\.(?P<ext>[A-Za-z0-9]+)$")


def validate_item_id(item_id: str) -> str:
    if not isinstance(item_id, str) or not _ITEM_ID_RE.match(item_id) or ".." in item_id:
        raise ValidationError(f"Invalid item_id: {item_id!r}")
    return item_id


class StorageLayout:
    def __init__(self, config: PipelineConfig) -> None:
        self._prefix = config.items_prefix.strip("/")
        self._ext = config.output_extension
        self._allowed = tuple(e.lower() for e in config.allowed_extensions)

    def folder(self, item_id: str) -> str:
        return f"{self._prefix}/{validate_item_id(item_id)}"

    def original_path(self, item_id: str) -> str:
        return f"{self.folder(item_id)}/{ORIGINAL_STEM}.{self._ext}"

    def derivative_path(self, item_id: str, version: int, key: str) -> str:
        return f"{self.folder(item_id)}/{int(version)}_{key}.{self._ext}"

    def uploads_prefix(self, item_id: str) -> str:
        return f"{self.folder(item_id)}/{UPLOADS_DIR}/"

    def upload_path(self, item_id: str, filename: str) -> str:
        return f"{self.uploads_prefix(item_id)}{filename}"

    def parse_derivative(self, path: str) -> tuple[int, str] | None:
        """(version, key) for a versioned derivative directly in an item folder, else None."""
        name = PurePosixPath(path).name
        m = _DERIVATIVE_RE.match(name)
        if not m or m.group("ext") != self._ext:
            return None
        return int(m.group("version")), m.group("key")

    def is_derivative_file(self, item_id: str, path: str) -> bool:
        parent = str(PurePosixPath(path).parent)
        return parent == self.folder(item_id) and self.parse_derivative(path) is not None

    def validate_upload_path(self, item_id: str, path: str) -> str:
        """Reject any path outside `<folder>/uploads/` before it reaches storage.

        Raises:
            ValidationError: traversal, doubled or back slashes, nested or empty
                filename, or a disallowed extension
        """
        if not isinstance(path, str) or not path:
            raise ValidationError("storage_path is required")
        prefix = self.uploads_prefix(item_id)
        if ".." in path or "//" in path or "\\" in path:
            raise ValidationError(f"Invalid storage_path: {path!r}")
        if not path.startswith(prefix):
            raise ValidationError(f"storage_path must be under {prefix}")
        filename = path[len(prefix):]
        if not filename or "/" in filename or filename.startswith("."):
            raise ValidationError(f"Invalid upload filename in storage_path: {path!r}")
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if ext not in self._allowed:
            raise ValidationError(f"Extension {ext!r} not allowed; use one of {list(self._allowed)}")
        return path
