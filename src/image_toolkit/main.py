"""Main module for the image toolkit CLI."""

import sys
import argparse
from typing import List, Optional

from . import __version__
from .core.config import get_settings
from .core.logging_config import setup_logger
from .core.storage import CleanupScheduler, LocalStorage


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="image-toolkit",
        description="Image Toolkit - upload, resize and re-encode images over HTTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP service with settings from the environment
  image-toolkit serve

  # Run on another port with auto-reload
  image-toolkit serve --port 8080 --reload

  # Purge expired temporary files once
  image-toolkit sweep

  # Show version
  image-toolkit version
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    sweep_parser = subparsers.add_parser(
        "sweep", help="Delete expired files from the uploads and processed areas"
    )
    sweep_parser.add_argument(
        "--ttl-minutes",
        type=float,
        default=None,
        help="Age threshold in minutes (default: FILE_TTL_MINUTES)",
    )

    subparsers.add_parser("version", help="Show version information")
    return parser


def run_sweep(ttl_minutes: Optional[float] = None) -> int:
    """Sweep the storage areas once and return the number of deleted files."""
    settings = get_settings()
    storage = LocalStorage(settings.STORAGE_ROOT)
    storage.ensure_directories()
    ttl_seconds = ttl_minutes * 60 if ttl_minutes is not None else settings.file_ttl_seconds
    scheduler = CleanupScheduler(
        storage,
        interval_seconds=settings.cleanup_interval_seconds,
        ttl_seconds=ttl_seconds,
    )
    return scheduler.run_once()


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the command-line interface of the Image Toolkit.
    """
    parser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    if args.command == "serve":
        import uvicorn

        from .api import create_app

        settings = get_settings()
        setup_logger(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
        if args.reload:
            uvicorn.run(
                "image_toolkit.api.app:create_app",
                factory=True,
                host=args.host or settings.HOST,
                port=args.port or settings.PORT,
                reload=True,
            )
        else:
            uvicorn.run(
                create_app(settings),
                host=args.host or settings.HOST,
                port=args.port or settings.PORT,
            )

    elif args.command == "sweep":
        deleted = run_sweep(args.ttl_minutes)
        print(f"Deleted {deleted} expired file(s)")

    elif args.command == "version":
        print("Image Toolkit")
        print(f"Version {__version__}")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
