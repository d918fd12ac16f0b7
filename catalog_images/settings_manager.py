from __future__ import annotations

import json
import os
from typing import Any

from .config import PipelineConfig
from .logger import get_logger

_logger = get_logger("settings")

_ENV_PREFIX = "CATALOG_IMAGES_"


class SettingsManager:
    def __init__(self, settings_path: str | None = None):
        self.settings_path = settings_path
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "storage_backend": "local",
        "storage_root": "data/storage",
        "database_path": "data/catalog.db",
        "bucket": "catalog-images",
        "items_prefix": "items",
        "public_base_url": "http://localhost:8000/static",
        "s3_endpoint_url": None,
        "s3_region": "us-east-1",
        "max_inline_bytes": 10 * 1024 * 1024,
        "upload_url_ttl_seconds": 600,
        "allowed_extensions": ["webp", "jpg", "jpeg", "png"],
        "derivative_quality": 80,
        "original_quality": 90,
        "host": "127.0.0.1",
        "port": 8000,
    }

    def load(self) -> None:
        try:
            if self.settings_path and os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except Exception as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        if not self.settings_path:
            return
        try:
            parent = os.path.dirname(self.settings_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except Exception as e:
            _logger.error("settings save failed: %s", e)

    def _env_value(self, key: str) -> Any:
        raw = os.getenv(_ENV_PREFIX + key.upper())
        if raw is None:
            return None
        default = self.DEFAULTS.get(key)
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            try:
                return int(raw)
            except ValueError:
                _logger.warning("ignoring non-integer env %s%s=%r", _ENV_PREFIX, key.upper(), raw)
                return None
        if isinstance(default, list):
            return [part.strip() for part in raw.split(",") if part.strip()]
        return raw

    def get(self, key: str, default: Any = None) -> Any:
        env = self._env_value(key)
        if env is not None:
            return env
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    def pipeline_config(self) -> PipelineConfig:
        """Build the explicit config value handed to the pipeline services."""
        exts = tuple(str(e).lower().lstrip(".") for e in self.get("allowed_extensions"))
        return PipelineConfig(
            bucket=str(self.get("bucket")),
            items_prefix=str(self.get("items_prefix")).strip("/"),
            public_base_url=str(self.get("public_base_url")).rstrip("/"),
            max_inline_bytes=int(self.get("max_inline_bytes")),
            upload_url_ttl_seconds=int(self.get("upload_url_ttl_seconds")),
            allowed_extensions=exts,
            default_upload_extension="webp" if "webp" in exts else exts[0],
            derivative_quality=int(self.get("derivative_quality")),
            original_quality=int(self.get("original_quality")),
        )
