"""Sales database management CLI.

Creates or drops the relational schema for the sales domain. Only has an
effect when PROTEAN_ENV selects a relational provider (e.g. production).

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    from sales.domain import sales
    from sales.utils.db import setup_db

    print("Initializing sales domain...")
    sales.init()
    print("Creating sales database schema...")
    setup_db(sales)
    print("Done.")


def drop_database():
    from sales.domain import sales
    from sales.utils.db import drop_db

    print("Initializing sales domain...")
    sales.init()
    print("Dropping sales database schema...")
    drop_db(sales)
    print("Done.")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Sales database management")
    parser.add_argument("command", choices=["setup-db", "drop-db"])
    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_database()
    else:
        drop_database()
    return 0


if __name__ == "__main__":
    sys.exit(main())
