#!/usr/bin/env python3
"""
ITAM Lifecycle — command-line access to the asset lifecycle register.

Usage:
  python main.py states
  python main.py history AS-2025-000123
  python main.py history AS-2025-000123 --format csv > history.csv
  python main.py sweep
  python main.py sweep --threshold-days 45 --dry-run

Environment variables (see core/config.py):
  DATABASE_URL          SQLAlchemy URL of the asset register (default: local SQLite file)
  LOST_ESCALATION_DAYS  Days an asset may stay Lost before the sweep disposes it (default: 30)
"""

import argparse
import logging
import re
from typing import Optional

from cmdb.escalation import escalate_lost_assets
from cmdb.lifecycle import lifecycle_graph
from cmdb.store import CMDBStore
from core.config import get_settings
from core.formatter import disable_color, print_history, print_states, print_sweep, to_csv, to_json
from core.models import GLOBAL_ASSET_ID_PATTERN

_ASSET_ID_RE = re.compile(GLOBAL_ASSET_ID_PATTERN)


def _open_store(db_url: Optional[str]) -> CMDBStore:
    url = db_url or get_settings().database_url
    return CMDBStore(url) if url else CMDBStore()


def cmd_states(store: CMDBStore, args: argparse.Namespace) -> int:
    print_states(lifecycle_graph(), store.get_state_counts())
    return 0


def cmd_history(store: CMDBStore, args: argparse.Namespace) -> int:
    asset_id = args.asset_id.strip().upper()
    if not _ASSET_ID_RE.match(asset_id):
        print(f"  [!] '{args.asset_id}' doesn't look like a global asset ID. Expected format: AS-YYYY-NNNNNN")
        return 2
    if store.load_asset(asset_id) is None:
        print(f"  [!] Asset {asset_id} not found.")
        return 1

    records = store.get_transition_history(asset_id)
    if args.format == "json":
        print(to_json(records))
    elif args.format == "csv":
        print(to_csv(records), end="")
    else:
        print_history(asset_id, records)
    return 0


def cmd_sweep(store: CMDBStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    threshold = args.threshold_days if args.threshold_days is not None else settings.lost_escalation_days
    if threshold < 1:
        print("  [!] --threshold-days must be at least 1.")
        return 2
    records = escalate_lost_assets(
        store,
        threshold_days=threshold,
        actor=settings.escalation_actor,
        dry_run=args.dry_run,
    )
    print_sweep(records, threshold, dry_run=args.dry_run)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="itam-lifecycle",
        description="Inspect the asset lifecycle register and run the Lost -> Disposed sweep.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py states
  python main.py history AS-2025-000123 --format json
  python main.py sweep --dry-run
  DATABASE_URL=postgresql://itam@db/itam python main.py sweep
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        help="SQLAlchemy database URL (overrides DATABASE_URL)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI color codes in terminal output",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log store and sweep activity to stderr",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    states = sub.add_parser("states", help="List lifecycle states, allowed next states and asset counts")
    states.set_defaults(func=cmd_states)

    history = sub.add_parser("history", help="Show an asset's transition history, newest first")
    history.add_argument("asset_id", metavar="ASSET-ID", help="Global asset ID (AS-YYYY-NNNNNN)")
    history.add_argument(
        "--format",
        choices=["terminal", "json", "csv"],
        default="terminal",
        help="Output format: terminal (default), json, or csv",
    )
    history.set_defaults(func=cmd_history)

    sweep = sub.add_parser("sweep", help="Dispose assets that have been Lost longer than the threshold")
    sweep.add_argument(
        "--threshold-days",
        type=int,
        default=None,
        metavar="N",
        help="Days in Lost before disposal (default: LOST_ESCALATION_DAYS, 30)",
    )
    sweep.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be disposed without writing anything",
    )
    sweep.set_defaults(func=cmd_sweep)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        disable_color()

    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    store = _open_store(args.db_url)
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
