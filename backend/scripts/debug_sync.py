#!/usr/bin/env python
"""Manual sync script for troubleshooting bank connections.

Runs a sync for one owner against the configured database and prints the
aggregated result, optionally followed by the newest stored transactions.

Usage:
    python -m scripts.debug_sync --owner driver-123
    python -m scripts.debug_sync --owner driver-123 --connection <id> --verbose
    python -m scripts.debug_sync --owner driver-123 --list
"""

import argparse
import logging
import sys
import time

from database import init_db
from logging_config import setup_logging
from services.bank_sync_service import BankSyncService, SyncResult
from services.exceptions import BankingError


def print_section(title: str) -> None:
    """Print a section header."""
    print(f"\n=== {title} ===")


def print_connections(service: BankSyncService, owner_id: str) -> None:
    connections = service.list_connections(owner_id)
    print_section(f"Connections ({len(connections)})")
    for i, conn in enumerate(connections, 1):
        last = conn.last_sync_at.strftime("%Y-%m-%d %H:%M:%S") if conn.last_sync_at else "never"
        state = "active" if conn.is_active else "inactive"
        print(
            f"  [{i}] {conn.id} | {conn.provider_name} | "
            f"{conn.external_account_number} | {state} | last sync: {last}"
        )


def print_sync_result(result: SyncResult) -> None:
    """Print counts and every error of a sync result."""
    print_section("Sync Result")
    print(f"  Accounts updated:     {result.accounts_updated}")
    print(f"  Transactions added:   {result.transactions_added}")
    print(f"  Transactions updated: {result.transactions_updated}")
    if result.errors:
        print_section(f"Errors ({len(result.errors)})")
        for i, err in enumerate(result.errors, 1):
            print(f"  [{i}] {err}")


def print_recent_transactions(
    service: BankSyncService, owner_id: str, connection_id: str | None, limit: int
) -> None:
    rows, total = service.get_transactions(owner_id, connection_id=connection_id, limit=limit)
    print_section(f"Recent Transactions ({len(rows)} of {total})")
    for txn in rows:
        sign = "-" if txn.direction == "DEBIT" else "+"
        merchant = f" | {txn.normalized_merchant}" if txn.normalized_merchant else ""
        print(
            f"  {txn.occurred_at:%Y-%m-%d} {sign}{txn.amount:>10,.2f} "
            f"{txn.category:<20} {txn.description}{merchant}"
        )


def main(argv: list[str] | None = None, service: BankSyncService | None = None) -> int:
    """Entry point: parse args and run the sync."""
    parser = argparse.ArgumentParser(
        description="Debug sync script - run a bank sync and inspect the result.",
    )
    parser.add_argument("--owner", required=True, help="Owner (driver) id")
    parser.add_argument("--connection", help="Sync only this connection id")
    parser.add_argument("--list", action="store_true", help="List connections and exit")
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Also print the newest stored transactions",
    )
    parser.add_argument("--limit", type=int, default=20, help="Transactions to show with --verbose")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable DEBUG logging")
    args = parser.parse_args(argv)

    setup_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if service is None:
        init_db()
        service = BankSyncService()

    print(f"Owner: {args.owner}")
    print("-" * 60)

    if args.list:
        print_connections(service, args.owner)
        return 0

    start = time.time()
    try:
        result = service.sync(args.owner, connection_id=args.connection)
    except BankingError as e:
        print(f"\nError: {e}")
        return 1
    elapsed = time.time() - start

    print_sync_result(result)
    if args.verbose:
        print_recent_transactions(service, args.owner, args.connection, args.limit)

    print_section("Summary")
    print(f"  Sync time: {elapsed:.2f}s")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
