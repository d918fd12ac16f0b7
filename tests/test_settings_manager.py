from __future__ import annotations

import json
from pathlib import Path

from catalog_images.settings_manager import SettingsManager


def test_defaults_without_a_file() -> None:
    sm = SettingsManager()
    assert sm.get("storage_backend") == "local"
    assert sm.get("port") == 8000
    assert sm.get("unknown_key", "fallback") == "fallback"
    assert not sm.has("port")


def test_file_values_override_defaults(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"bucket": "shop-images", "port": 9000}), encoding="utf-8")
    sm = SettingsManager(str(settings_path))
    assert sm.get("bucket") == "shop-images"
    assert sm.get("port") == 9000
    assert sm.has("bucket")


def test_unreadable_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")
    sm = SettingsManager(str(settings_path))
    assert sm.data == {}
    assert sm.get("bucket") == "catalog-images"


def test_set_persists(tmp_path: Path) -> None:
    settings_path = tmp_path / "nested" / "settings.json"
    sm = SettingsManager(str(settings_path))
    sm.set("storage_backend", "s3")
    assert json.loads(settings_path.read_text(encoding="utf-8")) == {"storage_backend": "s3"}
    assert SettingsManager(str(settings_path)).get("storage_backend") == "s3"


def test_env_overrides_are_typed(monkeypatch, tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(json.dumps({"port": 9000}), encoding="utf-8")
    monkeypatch.setenv("CATALOG_IMAGES_PORT", "9100")
    monkeypatch.setenv("CATALOG_IMAGES_ALLOWED_EXTENSIONS", "png, jpg")
    monkeypatch.setenv("CATALOG_IMAGES_MAX_INLINE_BYTES", "lots")
    monkeypatch.setenv("CATALOG_IMAGES_S3_ENDPOINT_URL", "http://minio:9000")

    sm = SettingsManager(str(settings_path))
    assert sm.get("port") == 9100
    assert sm.get("allowed_extensions") == ["png", "jpg"]
    assert sm.get("max_inline_bytes") == 10 * 1024 * 1024
    assert sm.get("s3_endpoint_url") == "http://minio:9000"


def test_pipeline_config(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text(
        json.dumps(
            {
                "bucket": "shop-images",
                "items_prefix": "/products/",
                "public_base_url": "https://cdn.example.com/",
                "allowed_extensions": ["PNG", ".jpg"],
                "derivative_quality": 70,
            }
        ),
        encoding="utf-8",
    )
    config = SettingsManager(str(settings_path)).pipeline_config()
    assert config.bucket == "shop-images"
    assert config.items_prefix == "products"
    assert config.public_base_url == "https://cdn.example.com"
    assert config.allowed_extensions == ("png", "jpg")
    assert config.default_upload_extension == "png"
    assert config.derivative_quality == 70
    assert config.derivative_keys == ("square", "card")
