#!/usr/bin/env python3
"""
cli.py — command line for lwwcollection snapshot files

Commands:
  hash   Print the content digest of a snapshot's live entries
  show   Print a normalized snapshot with entry and tombstone counts
  merge  Merge snapshots by timestamp and write the result
"""

from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .canonical_json import canonical_bytes
from .collection import Collection
from .errors import LWWError
from .hashing import sha256_hash

logger = logging.getLogger(__name__)


def _fail_with_error(err: LWWError) -> None:
    """Print a structured error message from an ``LWWError`` and exit.

    Args:
        err: Structured library error.

    Returns:
        None: This function terminates the process.
    """
    context = f" Context: {err.context}." if err.context else ""
    print(
        f"ERROR: {err.code}. {err.message}{context} (See: {err.doc_url})",
        file=sys.stderr,
    )
    sys.exit(1)


def _cli_error(what: str, why: str, fix: str) -> None:
    """Print a CLI error and exit.

    Returns:
        None: This function terminates the process.
    """
    print(f"ERROR: {what}. {why}. Fix: {fix}.", file=sys.stderr)
    sys.exit(1)


def _read_snapshot(path: str) -> str:
    snapshot_path = Path(path)
    if not snapshot_path.is_file():
        _cli_error(
            f"Snapshot not found: {snapshot_path}",
            "The path does not point to a file",
            "pass the path of a JSON file written by 'export'",
        )
    return snapshot_path.read_text(encoding="utf-8")


def cmd_hash(args: argparse.Namespace) -> None:
    """Handle ``lwwcollection hash``."""
    hash_function = sha256_hash if args.sha256 else None
    collection = Collection(hash_function=hash_function)
    try:
        collection.import_snapshot(_read_snapshot(args.path))
    except LWWError as err:
        _fail_with_error(err)
    print(collection.hash)


def cmd_show(args: argparse.Namespace) -> None:
    """Handle ``lwwcollection show``."""
    collection = Collection()
    try:
        collection.import_snapshot(_read_snapshot(args.path))
    except LWWError as err:
        _fail_with_error(err)

    state = collection.export_state()
    print(json.dumps({
        "entry_count": len(state["entries"]),
        "deleted_count": len(state["deletedKeys"]),
        "hash": collection.hash,
        "snapshot": state,
    }, indent=2, sort_keys=True))


def cmd_merge(args: argparse.Namespace) -> None:
    """Handle ``lwwcollection merge``.

    The base snapshot is imported first; each incoming snapshot is merged on
    top of it without clearing, so every key ends at its newest record.
    """
    collection = Collection()
    try:
        collection.import_snapshot(_read_snapshot(args.base))
        for incoming in args.incoming:
            report = collection.import_snapshot(_read_snapshot(incoming), clear_first=False)
            logger.info(
                "Merged %s: %d entries, %d deletions applied",
                incoming,
                report.imported_entries,
                report.imported_deletions,
            )
    except LWWError as err:
        _fail_with_error(err)

    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(canonical_bytes(collection.export_state()) + b"\n")
        print(f"Merged snapshot written: {out_path} (entries={len(collection)}, hash={collection.hash})")
    else:
        print(collection.export())


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entrypoint.

    Parses command-line arguments and routes to a subcommand handler.
    """
    parser = argparse.ArgumentParser(prog="lwwcollection", description="Last-write-wins snapshot tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # hash
    p_hash = sub.add_parser("hash", help="Print the content digest of a snapshot")
    p_hash.add_argument("path", help="Path to snapshot JSON")
    p_hash.add_argument("--sha256", action="store_true", help="Use SHA-256 instead of the 32-bit rolling hash")

    # show
    p_show = sub.add_parser("show", help="Print a normalized snapshot")
    p_show.add_argument("path", help="Path to snapshot JSON")

    # merge
    p_merge = sub.add_parser("merge", help="Merge snapshots by timestamp")
    p_merge.add_argument("base", help="Snapshot to start from")
    p_merge.add_argument("incoming", nargs="+", help="Snapshots merged on top of the base")
    p_merge.add_argument("-o", "--output", help="Write the merged snapshot here instead of stdout")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "hash": cmd_hash(args)
    elif args.command == "show": cmd_show(args)
    elif args.command == "merge": cmd_merge(args)

if __name__ == "__main__":
    main()
