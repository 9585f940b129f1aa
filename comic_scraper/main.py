"""CLI entry point."""

import argparse
import dataclasses
import logging
import signal
import sys

from .concurrency import CancelToken
from .config import clamp_concurrency, load_config
from .errors import ScraperError
from .logger import setup_logger
from .manager import SourceManager
from .models import SourceInput

# argparse dest -> SourceInput field
SOURCE_OPTIONS = {
    "name": "name",
    "author": "author",
    "description": "description",
    "url": "url",
    "first_page_url": "first_page_url",
    "selector_image": "selector_image",
    "selector_title": "selector_title",
    "selector_next": "selector_next",
}


def _add_source_options(parser, require_name: bool):
    parser.add_argument("--name", required=require_name, help="Display name (also the folder name)")
    parser.add_argument("--author", help="Author credit")
    parser.add_argument("--description", help="Free-text description")
    parser.add_argument("--url", help="Home page of the comic")
    parser.add_argument("--first-page-url", dest="first_page_url",
                        help="Page where a fresh crawl starts")
    parser.add_argument("--selector-image", dest="selector_image",
                        help="CSS selector for the page images")
    parser.add_argument("--selector-title", dest="selector_title",
                        help="CSS selector for the page title")
    parser.add_argument("--selector-next", dest="selector_next",
                        help="CSS selector for the link to the next page")


def _source_input(args, base: SourceInput = None) -> SourceInput:
    values = dataclasses.asdict(base) if base is not None else {}
    for dest, field_name in SOURCE_OPTIONS.items():
        value = getattr(args, dest, None)
        if value is not None:
            values[field_name] = value
    return SourceInput(**values)


def _install_sigint(token: CancelToken):
    def handler(signum, frame):
        print("\nCancelling, finishing in-flight work...")
        token.cancel()
        # A second Ctrl-C falls back to the default KeyboardInterrupt
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handler)


def list_sources(manager: SourceManager):
    sources = manager.catalog.list_sources()
    if not sources:
        print("No sources.")
        return
    print(f"{'ID':>4}  {'Name':<30} {'Author':<20} {'First page'}")
    print("-" * 90)
    for s in sources:
        print(f"{s.id:>4}  {s.name[:30]:<30} {s.author[:20]:<20} {s.first_page_url}")


def show_stats(manager: SourceManager):
    """Display per-source page, image and download counts."""
    print("\n" + "=" * 70)
    print("  CATALOG STATISTICS")
    print("=" * 70)
    print(f"{'Source':<30} {'Pages':>8} {'Images':>10} {'Downloaded':>12} {'Done':>6}")
    print("-" * 70)

    total_pages = total_images = total_downloaded = 0
    for name, pages, images, downloaded in manager.catalog.get_stats():
        print(f"{name[:30]:<30} {pages:>8} {images:>10} {downloaded:>12} "
              f"{_format_percent(downloaded, images):>6}")
        total_pages += pages
        total_images += images
        total_downloaded += downloaded

    print("-" * 70)
    print(f"{'TOTAL':<30} {total_pages:>8} {total_images:>10} {total_downloaded:>12} "
          f"{_format_percent(total_downloaded, total_images):>6}")
    print()


def _format_percent(part: int, whole: int) -> str:
    if whole <= 0:
        return "-"
    return f"{100 * part / whole:.0f}%"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comic-scraper", description="Web comic scraper")
    parser.add_argument("--config", type=str, default="config.yaml",
                        help="Path to config file")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Register a new source")
    _add_source_options(p, require_name=True)

    p = sub.add_parser("edit", help="Change a source (renaming moves its folder)")
    p.add_argument("source_id", type=int)
    _add_source_options(p, require_name=False)

    sub.add_parser("list", help="List sources")

    p = sub.add_parser("fetch", help="Crawl new pages of a source")
    p.add_argument("source_id", type=int)
    p.add_argument("--max-pages", dest="max_pages", type=int, default=None,
                   help="Stop after this many new image records")

    p = sub.add_parser("download", help="Download missing images of a source")
    p.add_argument("source_id", type=int)
    p.add_argument("--overwrite", action="store_true", help="Replace existing files")
    p.add_argument("--max-concurrent", dest="max_concurrent", type=int, default=None,
                   help="Parallel downloads (1-24)")

    p = sub.add_parser("sync", help="Crawl and download at the same time")
    p.add_argument("source_id", type=int)
    p.add_argument("--max-pages", dest="max_pages", type=int, default=None)
    p.add_argument("--overwrite", action="store_true")

    p = sub.add_parser("export", help="Write a source profile as JSON")
    p.add_argument("source_id", type=int)
    p.add_argument("--output", type=str, default=None, help="File to write (default: stdout)")

    p = sub.add_parser("import", help="Create a source from a profile file")
    p.add_argument("file", type=str)

    p = sub.add_parser("delete", help="Delete a source")
    p.add_argument("source_id", type=int)
    p.add_argument("--files", action="store_true", help="Also delete the download folder")

    sub.add_parser("stats", help="Show catalog statistics")
    return parser


def run_command(args, manager: SourceManager, token: CancelToken) -> int:
    if args.command == "add":
        source_id = manager.add_source(_source_input(args))
        print(f"Added source {source_id}")
    elif args.command == "edit":
        current = manager.catalog.get_source(args.source_id)
        base = SourceInput(**{f: getattr(current, f) for f in SOURCE_OPTIONS.values()})
        manager.edit_source(args.source_id, _source_input(args, base))
        print(f"Updated source {args.source_id}")
    elif args.command == "list":
        list_sources(manager)
    elif args.command == "fetch":
        added = manager.fetch_pages_for_source(args.source_id, args.max_pages, token)
        print(f"{added} new images recorded")
    elif args.command == "download":
        if args.max_concurrent is not None:
            manager.scheduler.max_concurrent = clamp_concurrency(args.max_concurrent)
        written = manager.download_images_for_source(
            args.source_id, overwrite=args.overwrite or None, token=token,
        )
        print(f"{written} files written")
    elif args.command == "sync":
        added, written = manager.sync_source(
            args.source_id, args.max_pages, overwrite=args.overwrite or None, token=token,
        )
        print(f"{added} new images recorded, {written} files written")
    elif args.command == "export":
        document = manager.export_profile(args.source_id)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(document)
            print(f"Exported source {args.source_id} to {args.output}")
        else:
            print(document)
    elif args.command == "import":
        with open(args.file, "rb") as f:
            source_id = manager.import_profile(f.read())
        print(f"Imported source {source_id}")
    elif args.command == "delete":
        manager.delete_source(args.source_id, delete_files=args.files)
        print(f"Deleted source {args.source_id}")
    elif args.command == "stats":
        show_stats(manager)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    logger = setup_logger(config.log_dir, logging.DEBUG if args.verbose else logging.INFO)
    manager = SourceManager.from_config(config)

    token = CancelToken()
    _install_sigint(token)
    try:
        return run_command(args, manager, token)
    except (ScraperError, OSError) as e:
        logger.error(str(e))
        return 1
    finally:
        manager.close()


if __name__ == "__main__":
    sys.exit(main())
