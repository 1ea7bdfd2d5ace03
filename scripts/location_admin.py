#!/usr/bin/env python3
"""
Location admin jobs

Run manually against the database in DATABASE_URL:
    python3 scripts/location_admin.py init-db
    python3 scripts/location_admin.py migrate        # assign markers that have no location
    python3 scripts/location_admin.py fix-orphans    # attach parentless landmarks to cities

Both jobs are idempotent and safe to re-run while the API is serving.
Prints a JSON summary; exit code 1 if anything failed.
"""

import argparse
import json
import logging
import os
import sys

# Add backend directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "backend"))

from dataclasses import asdict

import config
from database import Database
from services.location.engine import LocationEngine

log = logging.getLogger("location_admin")


def cmd_init_db(database: Database, args) -> int:
    database.create_all()
    log.info("Schema ready")
    return 0


def cmd_migrate(database: Database, args) -> int:
    report = LocationEngine(database).assign_unlocated_markers()
    print(json.dumps(asdict(report), indent=2, default=str))
    return 1 if report.failed else 0


def cmd_fix_orphans(database: Database, args) -> int:
    report = LocationEngine(database).run_orphan_repair()
    print(json.dumps(asdict(report), indent=2, default=str))
    return 1 if report.failed else 0


COMMANDS = {
    "init-db": cmd_init_db,
    "migrate": cmd_migrate,
    "fix-orphans": cmd_fix_orphans,
}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Location clustering admin jobs"
    )
    parser.add_argument(
        "command",
        choices=sorted(COMMANDS),
        help="Job to run"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        help="Override DATABASE_URL"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    database = Database(args.database_url)
    try:
        return COMMANDS[args.command](database, args)
    finally:
        database.dispose()


if __name__ == "__main__":
    sys.exit(main())
