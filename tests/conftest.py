"""Pytest configuration.

The crop engine is a PySide6 QObject. Signals work without a GUI, but Qt
expects a core application to exist before QObjects are created, so we create a
single `QCoreApplication` for the whole session and shut it down at the end.

Shared fixtures build small images with Pillow and a storage stack rooted in
`tmp_path`.
"""

from __future__ import annotations

import io
from typing import Any

import pytest

from catalog_images.config import DerivativeSpec, PipelineConfig

_APP: Any | None = None


def pytest_configure(config) -> None:  # noqa: ARG001
    """Ensure a QCoreApplication exists before collecting/running tests."""

    # Import lazily so non-Qt environments can still import this conftest.
    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    global _APP

    app = QCoreApplication.instance()
    if app is None:
        # Keep a strong ref so it isn't GC'd mid-session.
        _APP = QCoreApplication([])
    else:
        _APP = app


def pytest_sessionfinish(session, exitstatus) -> None:  # noqa: ARG001
    """Attempt a clean Qt shutdown to avoid lingering threads at interpreter exit."""

    try:
        from PySide6.QtCore import QCoreApplication
    except ImportError:
        return

    app = QCoreApplication.instance()
    if app is None:
        return

    app.quit()
    app.processEvents()


@pytest.fixture(autouse=True)
def _restore_base_logger_level():
    """Keep one test's CLI/env log level from leaking into later tests."""
    import logging

    base = logging.getLogger("catalog_images")
    level = base.level
    yield
    base.setLevel(level)


SMALL_SQUARE = DerivativeSpec("square", 64, 64, 1.0)
SMALL_CARD = DerivativeSpec("card", 80, 60, 4 / 3)


def make_image_bytes(
    width: int,
    height: int,
    color: tuple[int, ...] = (200, 40, 40),
    *,
    fmt: str = "PNG",
    mode: str = "RGB",
    border: int = 0,
    border_color: tuple[int, ...] = (255, 255, 255),
    exif_orientation: int | None = None,
) -> bytes:
    """Encode a solid (optionally bordered) test image with Pillow."""
    Image = pytest.importorskip("PIL.Image")

    if border:
        img = Image.new(mode, (width, height), border_color)
        inner = Image.new(mode, (width - 2 * border, height - 2 * border), color)
        img.paste(inner, (border, border))
    else:
        img = Image.new(mode, (width, height), color)

    buf = io.BytesIO()
    kwargs: dict[str, Any] = {}
    if exif_orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        kwargs["exif"] = exif
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    return make_image_bytes


@pytest.fixture
def small_config() -> PipelineConfig:
    return PipelineConfig(derivatives=(SMALL_SQUARE, SMALL_CARD))


@pytest.fixture
def local_backend(tmp_path, small_config):
    from catalog_images.storage.backends import LocalStorageBackend

    return LocalStorageBackend(
        root=tmp_path / "storage",
        bucket=small_config.bucket,
        public_base_url="http://testserver/static",
        upload_base_url="http://testserver/storage/upload",
    )


@pytest.fixture
def items():
    from catalog_images.storage.items import ItemRepository

    repo = ItemRepository()
    repo.create("42", "Flat white")
    yield repo
    repo.close()
