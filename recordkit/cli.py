"""
Command line entry point.

    recordkit up [--to N]            apply pending migrations
    recordkit down [--steps N]       reverse the most recent migrations
    recordkit status                 list migrations and whether they ran
    recordkit deactivate-pos FEED    flag POs missing from an O.E. export
    recordkit normalize-pos          canonical spelling of real PO numbers
    recordkit index-drawings ROOT    add drawing PDFs under ROOT to drawing_file
    recordkit locate QUERY           resolve a drawing number to a file location

Settings come from a ``.env`` file in the working directory or the
environment (see ``recordkit.config``); ``--db`` overrides the database.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import drawings_root, oe_feed_path
from .diagnostics import DiagnosticLog
from .drawings import index_drawing_files
from .errors import RecordkitError
from .feeds import load_oe_numbers
from .identity import IdentityResolver
from .locations import DrawingFileIndex, FolderAliases, FuzzyLocationMatcher, LegacyDrawingIndex
from .migrations.runner import MigrationRunner
from .store.client import SqlClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="recordkit", description="Reconcile and migrate the job tracking database.")
    ap.add_argument("--db", help="SQLite file or SQLAlchemy URL (default: RECORDKIT_DB_URL / RECORDKIT_DB_PATH)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    up = sub.add_parser("up", help="Apply pending migrations")
    up.add_argument("--to", type=int, dest="target", help="Stop after this sequence number")

    down = sub.add_parser("down", help="Reverse applied migrations")
    down.add_argument("--steps", type=int, default=1, help="How many to reverse (default: 1)")

    sub.add_parser("status", help="Show applied and pending migrations")

    deactivate = sub.add_parser("deactivate-pos", help="Deactivate POs absent from an O.E. feed")
    deactivate.add_argument("feed", nargs="?", help="CSV/XLSX export (default: RECORDKIT_OE_FEED)")

    sub.add_parser("normalize-pos", help="Normalize the spelling of real PO numbers")

    index = sub.add_parser("index-drawings", help="Index drawing PDFs into drawing_file")
    index.add_argument("root", nargs="?", help="Folder to scan (default: RECORDKIT_DRAWINGS_ROOT)")

    locate = sub.add_parser("locate", help="Find the drawing file for a part or drawing number")
    locate.add_argument("query")
    locate.add_argument("--customer", help="Restrict fuzzy matches to this customer's folders")
    locate.add_argument(
        "--source", choices=["drawings", "files"], default="drawings",
        help="Legacy drawings table or indexed drawing_file rows (default: drawings)"
    )
    return ap


def make_client(db: str = None) -> SqlClient:
    if db and "://" in db:
        return SqlClient(db_url=db)
    return SqlClient(db_path=db)


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_up(client, args) -> int:
    diagnostics = DiagnosticLog()
    applied = MigrationRunner(client, diagnostics=diagnostics).up(target=args.target)
    for unit in applied:
        print(f"applied  {unit.label}")
    if diagnostics:
        print(f"diagnostics: {diagnostics.summary()}")
    return 0


def cmd_down(client, args) -> int:
    for unit in MigrationRunner(client).down(steps=args.steps):
        print(f"reverted {unit.label}")
    return 0


def cmd_status(client, args) -> int:
    for entry in MigrationRunner(client).status():
        mark = f"applied {entry.applied_at}" if entry.applied else "pending"
        print(f"{entry.sequence:03d}  {entry.name:<40} {mark}")
    return 0


def _require(value, what: str):
    if not value:
        raise RecordkitError(f"No {what} given")
    return value


def cmd_deactivate_pos(client, args) -> int:
    feed = _require(args.feed or oe_feed_path(), "O.E. feed (argument or RECORDKIT_OE_FEED)")
    oe_numbers = load_oe_numbers(feed)
    with client.transaction():
        count = IdentityResolver(client).flag_inactive_purchase_orders(oe_numbers)
    print(f"deactivated {count} purchase orders")
    return 0


def cmd_normalize_pos(client, args) -> int:
    with client.transaction():
        count = IdentityResolver(client).normalize_purchase_orders()
    print(f"normalized {count} PO numbers")
    return 0


def cmd_index_drawings(client, args) -> int:
    root = _require(args.root or drawings_root(), "drawing folder (argument or RECORDKIT_DRAWINGS_ROOT)")
    with client.transaction():
        stats = index_drawing_files(client, root)
    print(f"scanned {stats.scanned}, inserted {stats.inserted}, existing {stats.existing}, rejected {stats.rejected}")
    return 0


def cmd_locate(client, args) -> int:
    with client.transaction():
        index = LegacyDrawingIndex(client) if args.source == "drawings" else DrawingFileIndex(client)
        matcher = FuzzyLocationMatcher(index, FolderAliases.from_database(client))
        match = matcher.locate(args.query, args.customer)
    if match is None:
        print("no location found")
        return 1
    print(f"{match.location}  [{match.tier.name.lower()}]")
    return 0


COMMANDS = {
    "up": cmd_up,
    "down": cmd_down,
    "status": cmd_status,
    "deactivate-pos": cmd_deactivate_pos,
    "normalize-pos": cmd_normalize_pos,
    "index-drawings": cmd_index_drawings,
    "locate": cmd_locate,
}


def main(argv=None) -> int:
    load_dotenv(Path.cwd() / ".env")
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    client = make_client(args.db)
    try:
        return COMMANDS[args.command](client, args)
    except (RecordkitError, FileNotFoundError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
