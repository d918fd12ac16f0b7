import json
import logging
import os
import sys
from typing import Any


def setup_logger(level: int = logging.INFO, name: str = "catalog_images") -> logging.Logger:
    """Create or update the project logger.

    - Respects env overrides CATALOG_IMAGES_LOG_LEVEL/CATALOG_IMAGES_LOG_CATS on every call
      (so late CLI parsing can still take effect).
    - Ensures there is exactly one StreamHandler on the base logger and updates
      its formatter/filters instead of bailing out early.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("CATALOG_IMAGES_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(env_level, level)
    logger.setLevel(level)

    # Exactly one stderr StreamHandler; uvicorn owns its own handlers.
    stream_handler: logging.StreamHandler | None = None
    for h in list(logger.handlers):
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            stream_handler = h

    if stream_handler is None:
        stream_handler = logging.StreamHandler(stream=sys.stderr)
        logger.addHandler(stream_handler)

    fmt = logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    stream_handler.setFormatter(fmt)

    stream_handler.filters.clear()
    cats = (os.getenv("CATALOG_IMAGES_LOG_CATS") or "").strip()
    if cats:
        allowed = {c.strip() for c in cats.split(",") if c.strip()}

        class _CategoryFilter(logging.Filter):
            def filter(self, record: logging.LogRecord) -> bool:
                # record.name like: catalog_images.versioned, catalog_images.trim
                parts = (record.name or "").split(".")
                suffix = parts[-1] if parts else record.name
                return suffix in allowed

        stream_handler.addFilter(_CategoryFilter())

    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = setup_logger()
    return base if not name else base.getChild(name)


def format_image_op(
    operation: str,
    item_id: str,
    *,
    success: bool,
    old_url: str | None = None,
    new_url: str | None = None,
    deleted_count: int | None = None,
    mode: str | None = None,
    error: str | None = None,
) -> str:
    """Render one structured `[IMAGE_OP]` line for apply/regenerate/delete/discard."""
    entry: dict[str, Any] = {"operation": operation, "item_id": item_id}
    if old_url is not None:
        entry["old_url"] = old_url
    if new_url is not None:
        entry["new_url"] = new_url
    if deleted_count is not None:
        entry["deleted_count"] = int(deleted_count)
    if mode is not None:
        entry["mode"] = mode
    entry["success"] = bool(success)
    if error is not None:
        entry["error"] = error
    return f"[IMAGE_OP] {json.dumps(entry, ensure_ascii=False, sort_keys=False)}"
