from __future__ import annotations

import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from catalog_images.errors import ItemNotFoundError
from catalog_images.logger import get_logger

from .migrations import apply_migrations

_logger = get_logger("items")


@dataclass(frozen=True, slots=True)
class ItemRecord:
    item_id: str
    name: str
    image_url: str | None
    image_updated_at: float | None


class ItemRepository:
    """Catalog item records; the pipeline only touches `image_url`.

    Usage:
        with ItemRepository(path) as repo:
            repo.create("42", "Flat white")
            repo.set_image_url("42", url)
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self._path = str(db_path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        with self._lock:
            apply_migrations(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> ItemRepository:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - trivial
        self.close()

    def get_user_version(self) -> int:
        with self._lock:
            row = self._conn.execute("PRAGMA user_version").fetchone()
            return int(row[0]) if row else 0

    def create(self, item_id: str, name: str = "", image_url: str | None = None) -> ItemRecord:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO items (id, name, image_url) VALUES (?, ?, ?)",
                (item_id, name, image_url),
            )
            self._conn.commit()
        return self.require(item_id)

    def get(self, item_id: str) -> ItemRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, image_url, image_updated_at FROM items WHERE id = ?",
                (item_id,),
            ).fetchone()
        if not row:
            return None
        return ItemRecord(row[0], row[1], row[2], row[3])

    def require(self, item_id: str) -> ItemRecord:
        record = self.get(item_id)
        if record is None:
            raise ItemNotFoundError(item_id)
        return record

    def list_ids(self) -> list[str]:
        with self._lock:
            return [r[0] for r in self._conn.execute("SELECT id FROM items ORDER BY id").fetchall()]

    def set_image_url(self, item_id: str, url: str | None) -> None:
        """Switch the canonical reference. Last writer wins."""
        with self._lock:
            cur = self._conn.execute(
                "UPDATE items SET image_url = ?, image_updated_at = ? WHERE id = ?",
                (url, time.time(), item_id),
            )
            self._conn.commit()
        if cur.rowcount == 0:
            raise ItemNotFoundError(item_id)
        _logger.debug("image_url %s -> %s", item_id, url)

    def clear_image_url(self, item_id: str) -> None:
        self.set_image_url(item_id, None)
