from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable

from catalog_images.metrics import metrics

# Migration function signature: (conn: sqlite3.Connection) -> None
MigrationFn = Callable[[sqlite3.Connection], None]


def _upgrade_to_1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS items (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            image_url TEXT
        )
        """
    )
    conn.commit()
    conn.execute("PRAGMA user_version = 1")
    conn.commit()


def _upgrade_to_2(conn: sqlite3.Connection) -> None:
    # Track when the canonical reference last switched
    cols = [c[1] for c in conn.execute("PRAGMA table_info(items)").fetchall()]
    if "image_updated_at" not in cols:
        conn.execute("ALTER TABLE items ADD COLUMN image_updated_at REAL")
        conn.execute(
            "UPDATE items SET image_updated_at = ? WHERE image_url IS NOT NULL",
            (time.time(),),
        )
    conn.commit()
    conn.execute("PRAGMA user_version = 2")
    conn.commit()


MIGRATIONS_UPGRADE: dict[int, MigrationFn] = {1: _upgrade_to_1, 2: _upgrade_to_2}


def get_latest_version() -> int:
    return max(MIGRATIONS_UPGRADE.keys()) if MIGRATIONS_UPGRADE else 0


def apply_migrations(conn: sqlite3.Connection) -> None:
    """Apply migrations to bring DB to latest user_version."""
    row = conn.execute("PRAGMA user_version").fetchone()
    current = int(row[0]) if row else 0
    latest = get_latest_version()

    if current >= latest:
        return

    for v in range(current + 1, latest + 1):
        fn = MIGRATIONS_UPGRADE.get(v)
        if fn:
            with metrics.timed(f"migrations.apply_v{v}_duration"):
                fn(conn)
            metrics.inc(f"migrations.applied_v{v}")
