from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from catalog_images.main import build_parser, main


@pytest.fixture
def settings_file(tmp_path: Path) -> str:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "database_path": str(tmp_path / "catalog.db"),
                "storage_root": str(tmp_path / "storage"),
            }
        ),
        encoding="utf-8",
    )
    return str(path)


def test_parser() -> None:
    args = build_parser().parse_args(["--log-level", "debug", "serve", "--port", "9000"])
    assert args.command == "serve"
    assert args.port == 9000
    assert args.host is None
    assert args.log_level == "debug"

    args = build_parser().parse_args(["regenerate", "1", "2"])
    assert args.item_ids == ["1", "2"]


def test_add_item(settings_file, capsys) -> None:
    assert main(["--settings", settings_file, "add-item", "42", "Flat white"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"item_id": "42", "name": "Flat white", "image_url": None}


def test_add_item_rejects_bad_id(settings_file) -> None:
    assert main(["--settings", settings_file, "add-item", "../etc"]) == 2


def test_regenerate_reports_failures(settings_file, capsys) -> None:
    main(["--settings", settings_file, "add-item", "42"])
    capsys.readouterr()

    assert main(["--settings", settings_file, "regenerate", "42", "404"]) == 1
    report = json.loads(capsys.readouterr().out)
    assert report["regenerated"] == 0
    assert report["failed"] == 2
    assert [r["error_type"] for r in report["results"]] == ["validation", "item_not_found"]


def test_logging_flags_reach_the_environment(settings_file, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CATALOG_IMAGES_LOG_LEVEL", "warning")
    monkeypatch.setenv("CATALOG_IMAGES_LOG_CATS", "main")
    main(["--settings", settings_file, "--log-level", "error", "--log-cats", "versioned", "add-item", "7"])

    assert os.environ["CATALOG_IMAGES_LOG_LEVEL"] == "error"
    assert os.environ["CATALOG_IMAGES_LOG_CATS"] == "versioned"
