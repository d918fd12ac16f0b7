"""Command-line entry point: serve the API or run maintenance over stored images."""

from __future__ import annotations

import argparse
import json
import os
import sys

from catalog_images.errors import ImageError
from catalog_images.logger import get_logger
from catalog_images.settings_manager import SettingsManager

# --- CLI logging options -----------------------------------------------------
# Reflected into environment variables (CATALOG_IMAGES_LOG_LEVEL,
# CATALOG_IMAGES_LOG_CATS) so every child logger picks them up.


def _apply_logging_options(args: argparse.Namespace) -> None:
    if args.log_level:
        os.environ["CATALOG_IMAGES_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["CATALOG_IMAGES_LOG_CATS"] = args.log_cats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catalog-images", description="Catalog image pipeline")
    parser.add_argument("--settings", help="Path to a JSON settings file")
    parser.add_argument("--log-level", help="Set log level (debug, info, warning, error)")
    parser.add_argument("--log-cats", help="Comma-separated log categories, e.g. versioned,trim")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, help="Bind port (default from settings)")

    regen = sub.add_parser("regenerate", help="Re-derive images from stored originals")
    regen.add_argument("item_ids", nargs="+")

    add = sub.add_parser("add-item", help="Register an item record")
    add.add_argument("item_id")
    add.add_argument("name", nargs="?", default="")
    return parser


def _serve(settings: SettingsManager, args: argparse.Namespace) -> int:
    import uvicorn

    from catalog_images.api import create_app

    host = args.host or settings.get("host")
    port = args.port or int(settings.get("port"))
    app = create_app(settings=settings)
    uvicorn.run(app, host=host, port=port)
    return 0


def _regenerate(settings: SettingsManager, args: argparse.Namespace) -> int:
    from catalog_images.api.services import build_services

    services = build_services(settings)
    report = services.manager.regenerate_many(args.item_ids)
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if not report.failed else 1


def _add_item(settings: SettingsManager, args: argparse.Namespace) -> int:
    from catalog_images.storage.items import ItemRepository
    from catalog_images.storage.layout import validate_item_id

    validate_item_id(args.item_id)
    with ItemRepository(settings.get("database_path")) as repo:
        record = repo.create(args.item_id, args.name)
    print(json.dumps({"item_id": record.item_id, "name": record.name, "image_url": record.image_url}))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _apply_logging_options(args)
    logger = get_logger("main")

    settings = SettingsManager(args.settings)
    command = args.command or "serve"
    if command == "serve" and args.command is None:
        args.host = None
        args.port = None
    logger.debug("command=%s settings=%s", command, args.settings)

    handlers = {"serve": _serve, "regenerate": _regenerate, "add-item": _add_item}
    try:
        return handlers[command](settings, args)
    except ImageError as e:
        logger.error("%s failed: %s", command, e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
