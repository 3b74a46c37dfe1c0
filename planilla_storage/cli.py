"""
Command line maintenance tool for a planilla store.

Usage:
    python -m planilla_storage list
    python -m planilla_storage show <id>
    python -m planilla_storage orphans [--delete] [--min-age SECONDS]

Storage locations come from the same environment variables the service
uses (UPLOADS_DIR, DB_FILE, DOMAIN). The Cosmos mirror is never contacted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import StorageConfig
from .exceptions import PlanillaStorageError
from .logging_utils import configure_structured_logging
from .records import RecordStore

logger = logging.getLogger(__name__)


async def list_records(store: RecordStore) -> int:
    records = await store.list_records()
    for record in records:
        print(
            f"{record.id}  {record.sync_status.value:<8}  "
            f"{len(record.images)} image(s)  {record.snapshot.filename}"
        )
    print(f"\n{len(records)} planilla(s)")
    return 0


async def show_record(store: RecordStore, record_id: str) -> int:
    record = await store.get_record(record_id)
    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def report_orphans(store: RecordStore, delete: bool, min_age: float) -> int:
    report = await store.cleanup_orphans(dry_run=not delete, min_age=min_age)

    print("=" * 70)
    print("ORPHANED FILES")
    print("=" * 70)
    for name in report.snapshots:
        print(f"snapshot    {name}")
    for name in report.attachments:
        print(f"attachment  {name}")
    print(f"\nTotal: {report.total}")
    if delete:
        print(f"Removed: {report.removed}")
    return 0


async def run(args: argparse.Namespace) -> int:
    config = StorageConfig.from_environment()
    # Maintenance runs stay local
    config.cosmos_endpoint = None

    async with RecordStore.from_config(config) as store:
        if args.command == "list":
            return await list_records(store)
        if args.command == "show":
            return await show_record(store, args.record_id)
        return await report_orphans(store, args.delete, args.min_age)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="planilla_storage",
        description="Inspect and maintain a local planilla store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # List records with their sync status
    DB_FILE=./db.json UPLOADS_DIR=./uploads python -m planilla_storage list

    # Preview, then remove, files no planilla references
    python -m planilla_storage orphans
    python -m planilla_storage orphans --delete
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List all planillas")

    show = subparsers.add_parser("show", help="Print one planilla as JSON")
    show.add_argument("record_id", help="Planilla id")

    orphans = subparsers.add_parser("orphans", help="Find files no planilla references")
    orphans.add_argument("--delete", action="store_true", help="Remove the files found")
    orphans.add_argument(
        "--min-age",
        type=float,
        default=60.0,
        help="Skip files modified within this many seconds (default: 60)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_structured_logging(
        logging.DEBUG if args.verbose else logging.WARNING, stream=sys.stderr
    )

    try:
        return asyncio.run(run(args))
    except PlanillaStorageError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
