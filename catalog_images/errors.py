"""Error hierarchy for the image pipeline.

Every error raised to a caller means the change did NOT take effect
(`took_effect` is False). `CleanupError` is the only post-switch failure and is
logged by the storage manager rather than raised.
"""

from __future__ import annotations

from collections.abc import Sequence


class ImageError(Exception):
    """Base class for pipeline failures."""

    error_type = "image_error"
    took_effect = False
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_type": self.error_type,
            "took_effect": self.took_effect,
            "retryable": self.retryable,
        }


class ValidationError(ImageError):
    """Malformed request field or out-of-sandbox storage path; nothing was touched."""

    error_type = "validation"


class ItemNotFoundError(ValidationError):
    error_type = "item_not_found"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class ProcessingError(ImageError):
    """Decode/crop/resize/encode failure. Raised before any storage write."""

    error_type = "processing"
    STAGES = ("decode", "crop", "resize", "encode")

    def __init__(self, stage: str, message: str) -> None:
        if stage not in self.STAGES:
            raise ValueError(f"unknown processing stage: {stage}")
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["stage"] = self.stage
        return data


class StorageWriteError(ImageError):
    """An upload failed; the old canonical reference is untouched.

    `orphaned` lists new-version files that were written before the failure and
    are now unreferenced garbage.
    """

    error_type = "storage_write"
    retryable = True

    def __init__(self, path: str, message: str, orphaned: Sequence[str] = ()) -> None:
        super().__init__(f"Upload failed for {path}: {message}")
        self.path = path
        self.orphaned = list(orphaned)


class ReferenceUpdateError(ImageError):
    """The canonical-reference switch failed after every upload succeeded."""

    error_type = "reference_update"
    retryable = True

    def __init__(self, item_id: str, message: str, orphaned: Sequence[str] = ()) -> None:
        super().__init__(f"Reference update failed for {item_id}: {message}")
        self.item_id = item_id
        self.orphaned = list(orphaned)


class CleanupError(ImageError):
    """Stale-file deletion failed after a successful switch."""

    error_type = "cleanup"
    took_effect = True

    def __init__(self, paths: Sequence[str], message: str) -> None:
        super().__init__(f"Cleanup failed for {len(paths)} file(s): {message}")
        self.paths = list(paths)
