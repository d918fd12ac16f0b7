"""Versioned derivative publishing with crash-safe ordering.

Every apply runs one sequential chain:

    render -> upload original -> upload derivatives -> switch reference -> cleanup

New files always land before the canonical reference switches, and nothing is
deleted until after the switch. A failure before the switch leaves the old
reference (and its files) fully intact; a failure after it is only logged.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from catalog_images.config import PipelineConfig
from catalog_images.crop.box import NormalizedCropBox, crop_box_from_payload
from catalog_images.errors import (
    CleanupError,
    ImageError,
    ReferenceUpdateError,
    StorageWriteError,
    ValidationError,
)
from catalog_images.logger import format_image_op, get_logger
from catalog_images.metrics import metrics
from catalog_images.render.derivative import DerivativeGenerator, RenderedSet

from .backends import StorageBackend
from .items import ItemRepository
from .layout import StorageLayout

_logger = get_logger("versioned")


@dataclass(frozen=True, slots=True)
class CleanupResult:
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def pending(self) -> bool:
        return bool(self.failed)


@dataclass(frozen=True, slots=True)
class ApplyResult:
    item_id: str
    version: int
    old_url: str | None
    canonical_url: str
    urls: dict[str, str]
    storage_paths: dict[str, str]
    crop_modes: dict[str, str]
    trim_applied: bool
    deleted_files: list[str]
    cleanup_pending: bool

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"item_id": self.item_id, "canonical_url": self.canonical_url}
        for key, url in self.urls.items():
            data[f"{key}_url"] = url
        data.update(
            {
                "storage_paths": dict(self.storage_paths),
                "trim_applied": self.trim_applied,
                "deleted_files": list(self.deleted_files),
                "cleanup_pending": self.cleanup_pending,
            }
        )
        return data


@dataclass(frozen=True, slots=True)
class RemoveResult:
    item_id: str
    deleted_count: int
    cleanup_pending: bool


@dataclass(frozen=True, slots=True)
class RegenerateReport:
    regenerated: list[ApplyResult] = field(default_factory=list)
    failed: list[tuple[str, ImageError]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        results: list[dict[str, Any]] = [
            {"item_id": r.item_id, "success": True, "canonical_url": r.canonical_url} for r in self.regenerated
        ]
        results.extend(
            {"item_id": item_id, "success": False, **err.to_dict()} for item_id, err in self.failed
        )
        return {"results": results, "regenerated": len(self.regenerated), "failed": len(self.failed)}


def _summarize_modes(modes: Mapping[str, str]) -> str:
    distinct = set(modes.values())
    return distinct.pop() if len(distinct) == 1 else "mixed"


class VersionedStorageManager:
    def __init__(
        self,
        backend: StorageBackend,
        items: ItemRepository,
        generator: DerivativeGenerator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._items = items
        self._generator = generator
        self._config: PipelineConfig = generator.config
        self._layout = StorageLayout(self._config)
        self._clock = clock
        self._versions: dict[str, int] = {}
        self._version_lock = threading.Lock()

    @property
    def layout(self) -> StorageLayout:
        return self._layout

    # ---- version tokens ----
    def mint_version(self, item_id: str, existing_paths: Iterable[str] = ()) -> int:
        """Strictly greater than every version issued here or present in the folder."""
        seen = [v for v, _ in filter(None, (self._layout.parse_derivative(p) for p in existing_paths))]
        with self._version_lock:
            last_known = max([self._versions.get(item_id, 0), *seen])
            version = max(int(self._clock() * 1000), last_known + 1)
            self._versions[item_id] = version
        return version

    # ---- entry points ----
    def resolve_crops(self, crops: Mapping[str, Any] | None) -> dict[str, NormalizedCropBox]:
        """Validate manual boxes per derivative key; None values mean auto."""
        resolved: dict[str, NormalizedCropBox] = {}
        for key, payload in (crops or {}).items():
            if key not in self._config.derivative_keys:
                raise ValidationError(f"Unknown derivative key: {key!r}")
            box = crop_box_from_payload(payload, field=f"manual_crop_{key}")
            if box is not None:
                resolved[key] = box
        return resolved

    def apply(
        self,
        item_id: str,
        source_bytes: bytes,
        crops: Mapping[str, Any] | None = None,
        temp_path: str | None = None,
        operation: str = "apply",
    ) -> ApplyResult:
        """Render and publish a new version of the item's images.

        Raises:
            ItemNotFoundError: unknown item
            ValidationError: malformed crop box
            ProcessingError: decode/crop/resize/encode failure, nothing written
            StorageWriteError: an upload failed, reference untouched
            ReferenceUpdateError: uploads succeeded, reference switch failed
        """
        self._layout.folder(item_id)
        record = self._items.require(item_id)
        boxes = self.resolve_crops(crops)
        try:
            rendered = self._generator.render_all(source_bytes, boxes)
        except ImageError as e:
            self._log_failure(operation, item_id, record.image_url, e)
            raise
        return self._publish(item_id, rendered, record.image_url, temp_path, operation)

    def apply_from_path(self, item_id: str, storage_path: str, crops: Mapping[str, Any] | None = None) -> ApplyResult:
        """Apply a temp upload already in the item's sandbox; it is consumed on success."""
        self._layout.validate_upload_path(item_id, storage_path)
        self._items.require(item_id)
        try:
            data = self._backend.download(storage_path)
        except FileNotFoundError:
            raise ValidationError(f"Uploaded file not found: {storage_path}") from None
        return self.apply(item_id, data, crops, temp_path=storage_path, operation="apply_from_storage")

    def apply_inline(self, item_id: str, data: bytes, crops: Mapping[str, Any] | None = None) -> ApplyResult:
        if not data:
            raise ValidationError("Empty file")
        if len(data) > self._config.max_inline_bytes:
            raise ValidationError(
                f"File too large: {len(data)} bytes (max {self._config.max_inline_bytes}); use a direct upload"
            )
        return self.apply(item_id, data, crops, operation="apply_inline")

    def regenerate(self, item_id: str, crops: Mapping[str, Any] | None = None) -> ApplyResult:
        """Re-derive from the stored original; the original itself is re-published unchanged."""
        record = self._items.require(item_id)
        boxes = self.resolve_crops(crops)
        try:
            original = self._backend.download(self._layout.original_path(item_id))
        except FileNotFoundError:
            raise ValidationError(f"No stored original for item {item_id}") from None
        try:
            rendered = self._generator.render_all(original, boxes, original=original)
        except ImageError as e:
            self._log_failure("regenerate", item_id, record.image_url, e)
            raise
        return self._publish(item_id, rendered, record.image_url, None, "regenerate")

    def regenerate_many(self, item_ids: Iterable[str]) -> RegenerateReport:
        report = RegenerateReport()
        for item_id in item_ids:
            try:
                report.regenerated.append(self.regenerate(item_id))
            except ImageError as e:
                _logger.warning("regenerate failed for %s: %s", item_id, e)
                report.failed.append((item_id, e))
        return report

    def remove(self, item_id: str) -> RemoveResult:
        """Clear the reference, then delete every object in the item folder."""
        self._layout.folder(item_id)
        record = self._items.require(item_id)
        try:
            self._items.clear_image_url(item_id)
        except Exception as e:
            err = ReferenceUpdateError(item_id, str(e))
            self._log_failure("delete", item_id, record.image_url, err)
            raise err from e

        prefix = self._layout.folder(item_id) + "/"
        paths: list[str] = []
        try:
            paths = self._backend.list(prefix)
            deleted = self._backend.delete(paths)
        except Exception as e:
            self._report_cleanup_failure(CleanupError(paths or [prefix], str(e)))
            _logger.info(format_image_op("delete", item_id, success=True, old_url=record.image_url, deleted_count=0))
            return RemoveResult(item_id=item_id, deleted_count=0, cleanup_pending=True)

        metrics.inc("versioned.files_deleted", len(deleted))
        _logger.info(
            format_image_op("delete", item_id, success=True, old_url=record.image_url, deleted_count=len(deleted))
        )
        return RemoveResult(item_id=item_id, deleted_count=len(deleted), cleanup_pending=False)

    # ---- cleanup ----
    def cleanup(self, item_id: str, keep: Iterable[str], temp_path: str | None = None) -> CleanupResult:
        """Delete every versioned derivative not in `keep`, plus the consumed temp upload.

        Never raises: failures are logged as CleanupError and reported as pending.
        """
        keep_set = set(keep)
        stale: list[str] = []
        try:
            listing = self._backend.list(self._layout.folder(item_id) + "/")
        except Exception as e:
            self._report_cleanup_failure(CleanupError([self._layout.folder(item_id)], f"listing failed: {e}"))
            return CleanupResult(failed=[self._layout.folder(item_id)])

        stale = [p for p in listing if p not in keep_set and self._layout.is_derivative_file(item_id, p)]
        if temp_path and temp_path not in keep_set and temp_path != self._layout.original_path(item_id):
            if temp_path in listing:
                stale.append(temp_path)
        if not stale:
            return CleanupResult()

        try:
            deleted = self._backend.delete(stale)
        except Exception as e:
            self._report_cleanup_failure(CleanupError(stale, str(e)))
            return CleanupResult(failed=stale)
        metrics.inc("versioned.files_deleted", len(deleted))
        return CleanupResult(deleted=deleted)

    # ---- internals ----
    def _publish(
        self,
        item_id: str,
        rendered: RenderedSet,
        old_url: str | None,
        temp_path: str | None,
        operation: str,
    ) -> ApplyResult:
        folder = self._layout.folder(item_id)
        try:
            existing = self._backend.list(folder + "/")
        except Exception as e:
            err = StorageWriteError(folder, f"listing failed: {e}")
            self._log_failure(operation, item_id, old_url, err)
            raise err from e
        version = self.mint_version(item_id, existing)

        content_type = self._config.output_content_type
        original_path = self._layout.original_path(item_id)
        storage_paths: dict[str, str] = {"original": original_path}
        written: list[str] = []

        uploads = [(original_path, rendered.original)]
        for key, result in rendered.derivatives.items():
            path = self._layout.derivative_path(item_id, version, key)
            storage_paths[key] = path
            uploads.append((path, result.data))

        for path, data in uploads:
            try:
                with metrics.timed("versioned.upload"):
                    self._backend.upload(path, data, content_type)
            except Exception as e:
                metrics.inc("versioned.upload_failed")
                err = StorageWriteError(path, str(e), orphaned=[p for p in written if p != original_path])
                self._log_failure(operation, item_id, old_url, err)
                raise err from e
            written.append(path)

        new_versioned = [p for p in written if p != original_path]
        primary_path = storage_paths[self._config.primary_derivative]
        canonical_url = self._backend.public_url(primary_path)
        try:
            self._items.set_image_url(item_id, canonical_url)
        except Exception as e:
            err = ReferenceUpdateError(item_id, str(e), orphaned=new_versioned)
            self._log_failure(operation, item_id, old_url, err)
            raise err from e

        cleanup = self.cleanup(item_id, keep=written, temp_path=temp_path)

        crop_modes = {key: r.crop_mode for key, r in rendered.derivatives.items()}
        metrics.inc("versioned.apply_success")
        _logger.info(
            format_image_op(
                operation,
                item_id,
                success=True,
                old_url=old_url,
                new_url=canonical_url,
                deleted_count=len(cleanup.deleted),
                mode=_summarize_modes(crop_modes),
            )
        )
        return ApplyResult(
            item_id=item_id,
            version=version,
            old_url=old_url,
            canonical_url=canonical_url,
            urls={key: self._backend.public_url(storage_paths[key]) for key in rendered.derivatives},
            storage_paths=storage_paths,
            crop_modes=crop_modes,
            trim_applied=rendered.trim_applied,
            deleted_files=cleanup.deleted,
            cleanup_pending=cleanup.pending,
        )

    def _report_cleanup_failure(self, err: CleanupError) -> None:
        metrics.inc("versioned.cleanup_failed")
        _logger.warning("%s (paths=%s)", err, err.paths)

    def _log_failure(self, operation: str, item_id: str, old_url: str | None, err: ImageError) -> None:
        metrics.inc("versioned.apply_failed")
        _logger.error(
            format_image_op(operation, item_id, success=False, old_url=old_url, error=f"{err.error_type}: {err}")
        )
