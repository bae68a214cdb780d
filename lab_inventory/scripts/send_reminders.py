#!/usr/bin/env python3
"""Daily due-date reminder job.

Schedule once a day, e.g. ``0 9 * * * python -m lab_inventory.scripts.send_reminders``.
"""
from __future__ import annotations

import argparse
import logging
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lab_inventory.services.reminder_service import send_due_reminders
from lab_inventory.services.settings_service import load_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send 3-day, 1-day and overdue return reminders.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("LAB_INVENTORY_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to LAB_INVENTORY_DB_URL env var.",
    )
    return parser


def main() -> int:
    load_dotenv()
    logging.basicConfig(
        level=(os.environ.get("LAB_INVENTORY_LOG_LEVEL") or "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    args = _build_parser().parse_args()
    db_url = args.db_url or os.environ.get("LAB_INVENTORY_DB_URL", "").strip()
    if not db_url:
        raise SystemExit("Missing --db-url and LAB_INVENTORY_DB_URL is not set.")

    engine = create_engine(db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    with session_factory() as db:
        sent = send_due_reminders(db, load_settings(db))

    print(f"OK three_day={sent['threeDay']} one_day={sent['oneDay']} overdue={sent['overdue']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
