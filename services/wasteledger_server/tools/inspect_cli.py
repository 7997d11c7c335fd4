"""
Inspection CLI for the waste ledger.

This tool reads a ledger database offline, without a running server:
- show: Print an entry with its versions, category, status,
  collaborators and compliance notes
- verify: Compare a digest with the one recorded at registration
- state: Print pause flag, administrator and entry count

Usage:
    wasteledger-inspect --data-dir /var/lib/wasteledger show 1
    wasteledger-inspect verify 1 ab12cd34
    wasteledger-inspect state

Invariants:
    - Never writes to the database
    - Output is deterministic (sorted JSON)
    - verify exits 0 on a match, 1 otherwise

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

from ..records import CanonicalStore, StoreNotInitializedError, WasteLedger
from ..records.models import digest_from_hex

logger = logging.getLogger(__name__)


class InspectCLI:
    """Read-only views over a ledger database.

    Example:
        >>> cli = InspectCLI(WasteLedger(CanonicalStore("/var/lib/wasteledger")))
        >>> cli.show(1)["entry"]["owner"]
        'company_1'
    """

    def __init__(self, ledger: WasteLedger) -> None:
        self.ledger = ledger

    def show(self, entry_id: int) -> dict[str, Any] | None:
        """Collect everything recorded about one entry.

        Returns:
            Dictionary of the entry and its satellites, or None if the
            entry does not exist
        """
        entry = self.ledger.get_entry(entry_id)
        if entry is None:
            return None

        category = self.ledger.get_category(entry_id)
        status = self.ledger.get_status(entry_id)
        return {
            "entry": entry.to_dict(),
            "versions": [v.to_dict() for v in self.ledger.list_versions(entry_id)],
            "category": category.to_dict() if category else None,
            "status": status.to_dict() if status else None,
            "collaborators": [g.to_dict() for g in self.ledger.list_collaborators(entry_id)],
            "notes": [n.to_dict() for n in self.ledger.list_notes(entry_id)],
        }

    def verify(self, entry_id: int, digest_hex: str) -> bool:
        """Check a hex digest against the registration digest.

        Raises:
            ValueError: If digest_hex is not valid hex
        """
        return self.ledger.verify_entry(entry_id, digest_from_hex(digest_hex))

    def state(self) -> dict[str, Any]:
        """Get the global ledger state."""
        return self.ledger.get_state().to_dict()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Waste ledger inspection tool")
    parser.add_argument(
        "--data-dir",
        default=os.getenv("DATA_DIR", "/var/lib/wasteledger"),
        help="Directory holding the ledger database (default: $DATA_DIR)",
    )
    parser.add_argument(
        "--db-name",
        default=os.getenv("LEDGER_DB_NAME", "ledger.db"),
        help="Ledger database file name (default: $LEDGER_DB_NAME)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # show command
    show_parser = subparsers.add_parser("show", help="Print an entry and its records")
    show_parser.add_argument("entry_id", type=int, help="Entry id")

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Compare a digest with an entry")
    verify_parser.add_argument("entry_id", type=int, help="Entry id")
    verify_parser.add_argument("digest", help="Digest, hex encoded")

    # state command
    subparsers.add_parser("state", help="Print pause flag, admin and entry count")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the inspection tool."""
    args = build_parser().parse_args(argv)

    store = CanonicalStore(args.data_dir, db_name=args.db_name, wal_mode=False)
    cli = InspectCLI(WasteLedger(store))

    try:
        if args.command == "show":
            record = cli.show(args.entry_id)
            if record is None:
                print(f"Waste entry {args.entry_id} not found", file=sys.stderr)
                sys.exit(1)
            print(json.dumps(record, indent=2, sort_keys=True))

        elif args.command == "verify":
            try:
                valid = cli.verify(args.entry_id, args.digest)
            except ValueError:
                print("Digest must be hex encoded", file=sys.stderr)
                sys.exit(2)

            if valid:
                print(f"Digest matches waste entry {args.entry_id}")
                sys.exit(0)
            else:
                print(f"Digest does NOT match waste entry {args.entry_id}")
                sys.exit(1)

        elif args.command == "state":
            print(json.dumps(cli.state(), indent=2, sort_keys=True))

    except StoreNotInitializedError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
