import json
import logging
import sys

from catalog_images.logger import format_image_op, get_logger, setup_logger


def test_setup_logger_keeps_a_single_stderr_handler():
    setup_logger()
    logger = setup_logger()
    handlers = [h for h in logger.handlers if getattr(h, "stream", None) is sys.stderr]
    assert len(handlers) == 1
    assert logger.propagate is False


def test_get_logger_returns_children():
    assert get_logger().name == "catalog_images"
    assert get_logger("versioned").name == "catalog_images.versioned"


def test_env_level_and_category_filter(monkeypatch):
    monkeypatch.setenv("CATALOG_IMAGES_LOG_LEVEL", "debug")
    monkeypatch.setenv("CATALOG_IMAGES_LOG_CATS", "trim, versioned")
    logger = setup_logger()
    try:
        assert logger.level == logging.DEBUG
        handler = next(h for h in logger.handlers if getattr(h, "stream", None) is sys.stderr)

        def _record(name):
            return logging.LogRecord(name, logging.INFO, __file__, 1, "msg", None, None)

        assert handler.filter(_record("catalog_images.trim"))
        assert handler.filter(_record("catalog_images.versioned"))
        assert not handler.filter(_record("catalog_images.api"))
    finally:
        monkeypatch.delenv("CATALOG_IMAGES_LOG_LEVEL")
        monkeypatch.delenv("CATALOG_IMAGES_LOG_CATS")
        setup_logger()


def test_format_image_op_success_line():
    line = format_image_op(
        "apply",
        "42",
        success=True,
        old_url="http://cdn/items/42/1_card.webp",
        new_url="http://cdn/items/42/2_card.webp",
        deleted_count=2,
        mode="mixed",
    )
    assert line.startswith("[IMAGE_OP] ")
    assert json.loads(line[len("[IMAGE_OP] ") :]) == {
        "operation": "apply",
        "item_id": "42",
        "old_url": "http://cdn/items/42/1_card.webp",
        "new_url": "http://cdn/items/42/2_card.webp",
        "deleted_count": 2,
        "mode": "mixed",
        "success": True,
    }


def test_format_image_op_omits_unset_fields():
    line = format_image_op("delete", "42", success=False, error="reference_update: locked")
    assert json.loads(line[len("[IMAGE_OP] ") :]) == {
        "operation": "delete",
        "item_id": "42",
        "success": False,
        "error": "reference_update: locked",
    }
