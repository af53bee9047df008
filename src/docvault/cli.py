"""
docvault CLI - command-line interface for the docvault package.

Provides subcommands:
- docvault serve: Start the command endpoint
- docvault upload: Store a local file through the storage router
- docvault ls: List a folder on the active backend
- docvault move-folder: Move a folder of documents
- docvault version: Display version information
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from docvault.config import Settings
from docvault.errors import ConfigurationError, DocVaultError, FolderMoveError
from docvault.folder_move import FolderMover
from docvault.logging_setup import configure_logging
from docvault.router import StorageRouter, StoreOptions
from docvault.storage.backend import UploadRequest


def get_version() -> str:
    """Get the package version."""
    try:
        from importlib.metadata import version

        return version("docvault")
    except Exception:
        return "0.0.1"


def _load_settings() -> Settings:
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)
    configure_logging(settings.log_level)
    return settings


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_version(args):
    """Handle the 'version' subcommand."""
    print(f"docvault version {get_version()}")
    print(f"Python {sys.version}")


def cmd_serve(args):
    """Handle the 'serve' subcommand."""
    import uvicorn

    from docvault.server import Services, create_app

    settings = _load_settings()
    services = Services.from_settings(settings)

    print("=" * 50)
    print(f"docvault v{get_version()}")
    print(f"HTTP Server:  http://{args.host}:{args.port}")
    if settings.nas.enabled:
        print(f"Storage: NAS ({settings.nas.base_path})")
        if settings.s3.enabled:
            print(f"Fallback: S3 (s3://{settings.s3.bucket}/{settings.s3.prefix})")
    else:
        print(f"Storage: S3 (s3://{settings.s3.bucket}/{settings.s3.prefix})")
    if settings.dev_dir:
        print(f"Dev mirror: {settings.dev_dir}")
    print("=" * 50)

    uvicorn.run(
        create_app(services),
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
    )


async def _run_with_router(settings: Settings, operation):
    router = StorageRouter.from_settings(settings)
    try:
        return await operation(router)
    finally:
        await router.close()


def cmd_upload(args):
    """Handle the 'upload' subcommand."""
    settings = _load_settings()
    source = Path(args.file).expanduser()
    if not source.is_file():
        print(f"Error: {source} is not a file")
        sys.exit(1)

    request = UploadRequest(payload=source.read_bytes(), relative_path=args.relative_path)
    options = StoreOptions(print=args.print, printer_name=args.printer)

    try:
        result = asyncio.run(
            _run_with_router(settings, lambda router: router.store(request, options))
        )
    except DocVaultError as e:
        logger.error(f"Upload failed: {e}")
        sys.exit(1)
    _print_json(result.to_dict())


def cmd_ls(args):
    """Handle the 'ls' subcommand."""
    settings = _load_settings()
    try:
        entries = asyncio.run(
            _run_with_router(settings, lambda router: router.list(args.path))
        )
    except DocVaultError as e:
        logger.error(f"Listing failed: {e}")
        sys.exit(1)

    for entry in entries:
        marker = "/" if entry.is_dir else ""
        size = "" if entry.size is None else f"  {entry.size}"
        print(f"{entry.relative_path}{marker}{size}")


def cmd_move_folder(args):
    """Handle the 'move-folder' subcommand."""
    settings = _load_settings()

    async def move(router: StorageRouter):
        return await FolderMover(router).move_folder(args.old, args.new)

    try:
        result = asyncio.run(_run_with_router(settings, move))
    except FolderMoveError as e:
        logger.error(f"Folder move stopped part way: {e}")
        for path in e.unprocessed:
            print(f"unprocessed: {path}")
        sys.exit(2)
    except DocVaultError as e:
        logger.error(f"Folder move failed: {e}")
        sys.exit(1)
    _print_json(result.to_dict())


def main():
    """Main CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="docvault",
        description="docvault - document storage router for NAS and S3",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
    )

    # 'serve' subcommand
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the command endpoint",
        description="Start the docvault HTTP command endpoint",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docvault serve                       # Defaults (0.0.0.0:3000)
  docvault serve --port 8000           # Custom HTTP port
  DOCVAULT_NAS_ENABLED=true docvault serve  # NAS primary, S3 fallback
        """,
    )
    serve_parser.add_argument(
        "--port", type=int, default=3000, help="HTTP server port (default: 3000)"
    )
    serve_parser.add_argument(
        "--host", type=str, default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)"
    )
    serve_parser.set_defaults(func=cmd_serve)

    # 'upload' subcommand
    upload_parser = subparsers.add_parser(
        "upload",
        help="Store a local file",
        description="Store a local file on the active backend",
    )
    upload_parser.add_argument("file", help="Local file to upload")
    upload_parser.add_argument(
        "relative_path",
        help="Destination, e.g. klanten/acme/2025/facturen/INV-001.pdf",
    )
    upload_parser.add_argument(
        "--print", action="store_true", help="Send the stored document to the printer"
    )
    upload_parser.add_argument(
        "--printer", type=str, default=None, help="Printer name (default printer if omitted)"
    )
    upload_parser.set_defaults(func=cmd_upload)

    # 'ls' subcommand
    ls_parser = subparsers.add_parser(
        "ls",
        help="List a folder",
        description="List a folder on the active backend",
    )
    ls_parser.add_argument("path", help="Folder to list (relative path or reference)")
    ls_parser.set_defaults(func=cmd_ls)

    # 'move-folder' subcommand
    move_parser = subparsers.add_parser(
        "move-folder",
        help="Move a folder of documents",
        description="Move every document under OLD to NEW on the active backend",
    )
    move_parser.add_argument("old", help="Current folder")
    move_parser.add_argument("new", help="New folder")
    move_parser.set_defaults(func=cmd_move_folder)

    # 'version' subcommand
    version_parser = subparsers.add_parser(
        "version",
        help="Display version information",
        description="Display docvault version and Python version",
    )
    version_parser.set_defaults(func=cmd_version)

    # Parse arguments and dispatch to handler
    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
