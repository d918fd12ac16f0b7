"""Object storage backends.

Paths are bucket-relative POSIX keys such as `items/42/orig.webp`. A missing
object raises FileNotFoundError from every backend.
"""

from __future__ import annotations

import os
import secrets
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from botocore.exceptions import ClientError

from catalog_images.errors import ValidationError
from catalog_images.logger import get_logger

_logger = get_logger("storage")

S3_DELETE_BATCH = 1000
_MISSING_CODES = ("404", "NoSuchKey", "NotFound")


def _is_missing(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _MISSING_CODES


class StorageBackend(ABC):
    bucket: str

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write (or overwrite) one object."""

    @abstractmethod
    def download(self, path: str) -> bytes: ...

    @abstractmethod
    def list(self, prefix: str) -> list[str]:
        """Every object key under `prefix`, recursively, sorted."""

    @abstractmethod
    def delete(self, paths: Sequence[str]) -> list[str]:
        """Remove objects; return the keys that were removed. Absent keys are not an error."""

    @abstractmethod
    def exists(self, path: str) -> bool: ...

    @abstractmethod
    def public_url(self, path: str) -> str: ...

    @abstractmethod
    def create_signed_upload(self, path: str, content_type: str, expires_in: int) -> str:
        """Short-lived URL a client can PUT the object body to."""


@dataclass(frozen=True, slots=True)
class _PendingUpload:
    path: str
    content_type: str
    expires_at: float


class LocalStorageBackend(StorageBackend):
    """Filesystem storage under `<root>/<bucket>/`.

    Signed uploads are single-use tokens redeemed through `accept_signed_upload`
    (served by the `PUT /storage/upload/{token}` route).
    """

    def __init__(
        self,
        root: Path | str,
        bucket: str,
        public_base_url: str,
        upload_base_url: str = "http://localhost:8000/storage/upload",
    ) -> None:
        self.bucket = bucket
        self._root = (Path(root) / bucket).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._public_base = public_base_url.rstrip("/")
        self._upload_base = upload_base_url.rstrip("/")
        self._tokens: dict[str, _PendingUpload] = {}
        self._lock = threading.RLock()

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if target != self._root and self._root not in target.parents:
            raise ValueError(f"path escapes storage root: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # Sibling temp file + rename: readers never observe a partial object.
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".tmp_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        _logger.debug("local upload %s (%d bytes, %s)", path, len(data), content_type)

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        return target.read_bytes()

    def list(self, prefix: str) -> list[str]:
        base = self._resolve(prefix.rstrip("/")) if prefix.strip("/") else self._root
        if not base.is_dir():
            return []
        keys = []
        for p in base.rglob("*"):
            if p.is_file() and not p.name.startswith(".tmp_"):
                keys.append(p.relative_to(self._root).as_posix())
        return sorted(keys)

    def delete(self, paths: Sequence[str]) -> list[str]:
        removed = []
        for path in paths:
            target = self._resolve(path)
            if target.is_file():
                target.unlink()
                removed.append(path)
        return removed

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def public_url(self, path: str) -> str:
        return f"{self._public_base}/{self.bucket}/{path}"

    def create_signed_upload(self, path: str, content_type: str, expires_in: int) -> str:
        self._resolve(path)
        token = secrets.token_urlsafe(24)
        with self._lock:
            now = time.time()
            # Purge expired tokens on every issue.
            for t in [t for t, p in self._tokens.items() if p.expires_at < now]:
                del self._tokens[t]
            self._tokens[token] = _PendingUpload(path, content_type, now + int(expires_in))
        return f"{self._upload_base}/{token}"

    def accept_signed_upload(self, token: str, data: bytes) -> str:
        """Redeem a token once; returns the storage path written."""
        with self._lock:
            pending = self._tokens.pop(token, None)
        if pending is None:
            raise ValidationError("Unknown or already used upload token")
        if pending.expires_at < time.time():
            raise ValidationError("Upload token expired")
        if not data:
            raise ValidationError("Empty upload body")
        self.upload(pending.path, data, pending.content_type)
        return pending.path


class S3StorageBackend(StorageBackend):
    """S3-compatible storage via boto3 (AWS, MinIO, R2)."""

    def __init__(
        self,
        bucket: str,
        public_base_url: str,
        client: Any | None = None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
    ) -> None:
        if client is None:
            import boto3

            client = boto3.client("s3", endpoint_url=endpoint_url or None, region_name=region_name or None)
        self.bucket = bucket
        self._client = client
        self._public_base = public_base_url.rstrip("/")

    @property
    def client(self) -> Any:
        return self._client

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self._client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        _logger.debug("s3 upload %s/%s (%d bytes)", self.bucket, path, len(data))

    def download(self, path: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_missing(e):
                raise FileNotFoundError(path) from e
            raise
        return resp["Body"].read()

    def list(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    def delete(self, paths: Sequence[str]) -> list[str]:
        removed: list[str] = []
        paths = list(paths)
        for i in range(0, len(paths), S3_DELETE_BATCH):
            batch = paths[i : i + S3_DELETE_BATCH]
            resp = self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": False},
            )
            errors = resp.get("Errors", [])
            removed.extend(d["Key"] for d in resp.get("Deleted", []))
            if errors:
                failed = ", ".join(f"{e.get('Key')}: {e.get('Code')}" for e in errors)
                raise OSError(f"S3 delete failed for {failed}")
        return removed

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_missing(e):
                return False
            raise
        return True

    def public_url(self, path: str) -> str:
        return f"{self._public_base}/{self.bucket}/{path}"

    def create_signed_upload(self, path: str, content_type: str, expires_in: int) -> str:
        return self._client.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": path, "ContentType": content_type},
            ExpiresIn=int(expires_in),
        )
