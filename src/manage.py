"""Storefront commerce management CLI.

Database schema management plus the scheduled maintenance jobs, so an
external scheduler (cron, K8s CronJob) can run them without the API.

Usage:
    python src/manage.py setup-db       # Create all tables
    python src/manage.py drop-db        # Drop all tables
    python src/manage.py sweep-holds    # Expire unsettled holds, restock
    python src/manage.py purge-events   # Delete expired dedupe records
"""

import argparse
import json
import sys


def _init_domain():
    from commerce.domain import commerce

    commerce.init()
    return commerce


def setup_database():
    """Create the database schema for the commerce domain."""
    from commerce.utils.db import setup_db

    commerce = _init_domain()
    print("Creating commerce database schema...")
    setup_db(commerce)
    print("Done.")


def drop_database():
    """Drop the database schema for the commerce domain."""
    from commerce.utils.db import drop_db

    commerce = _init_domain()
    print("Dropping commerce database schema...")
    drop_db(commerce)
    print("Done.")


def sweep_holds(time_budget=None, page_size=None):
    from commerce.hold.expiry import sweep_expired_holds

    commerce = _init_domain()
    with commerce.domain_context():
        result = sweep_expired_holds(time_budget_seconds=time_budget, page_size=page_size)
    print(json.dumps(result.to_dict()))
    return result


def purge_events():
    from commerce.settlement.ledger import purge_expired_events

    commerce = _init_domain()
    with commerce.domain_context():
        deleted = purge_expired_events()
    print(json.dumps({"deleted": deleted}))
    return deleted


def main(argv=None):
    parser = argparse.ArgumentParser(description="Storefront commerce management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    sweep_parser = subparsers.add_parser("sweep-holds", help="Expire holds past their deadline and restock")
    sweep_parser.add_argument("--time-budget", type=float, help="Wall-clock budget in seconds")
    sweep_parser.add_argument("--page-size", type=int, help="Holds fetched per query")

    subparsers.add_parser("purge-events", help="Delete processed-event records past their retention")

    args = parser.parse_args(argv)

    from commerce.utils.logging import configure_logging

    # stdout carries the JSON summaries
    configure_logging(stream=sys.stderr)

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep-holds":
        result = sweep_holds(args.time_budget, args.page_size)
        if result.failed:
            sys.exit(1)
    elif args.command == "purge-events":
        purge_events()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
