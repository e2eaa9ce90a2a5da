#!/usr/bin/env python
"""Administrative command line for the note storage engine."""
import argparse
import atexit
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from notestore import __version__
from notestore.config import config
from notestore.exceptions import NoteStoreError
from notestore.observability import configure_logging, metrics
from notestore.services.note_service import NoteService


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Note storage engine administration")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTESTORE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTESTORE_LOG_LEVEL", "WARNING")
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="Create the database and seed metadata")
    subparsers.add_parser("size", help="Report total size and capacity")
    export_parser = subparsers.add_parser("export", help="Export all notes as JSON")
    export_parser.add_argument("--path", help="Output file", type=str)
    import_parser = subparsers.add_parser("import", help="Import notes from JSON")
    import_parser.add_argument("--path", help="Input file", type=str)
    subparsers.add_parser("recount", help="Verify and repair size accounting")
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)


def _save_metrics_on_exit():
    """Save metrics to disk on shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def run_command(service: NoteService, args) -> Any:
    """Run one subcommand and return its JSON-serializable result."""
    if args.command == "init":
        return service.metadata.get_metadata().model_dump()
    if args.command == "size":
        size = service.get_size()
        return {**size.model_dump(), "available": size.available}
    if args.command == "export":
        return {"exported": len(service.export_notes(args.path))}
    if args.command == "import":
        return {"imported": service.import_notes(args.path)}
    if args.command == "recount":
        return service.recount_total_size()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the notestore command line."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        log_path = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
        metrics.metrics_file = log_path / "metrics.json"
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)
    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        service = NoteService()
        result = run_command(service, args)
    except NoteStoreError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_dict(), indent=2))
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
