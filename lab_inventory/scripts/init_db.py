#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine

from lab_inventory.db.base import Base
from lab_inventory.models import inventory_models  # noqa: F401


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create all lab inventory tables that do not exist yet.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("LAB_INVENTORY_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to LAB_INVENTORY_DB_URL env var.",
    )
    return parser


def main() -> int:
    load_dotenv()
    args = _build_parser().parse_args()
    db_url = args.db_url or os.environ.get("LAB_INVENTORY_DB_URL", "").strip()
    if not db_url:
        raise SystemExit("Missing --db-url and LAB_INVENTORY_DB_URL is not set.")

    engine = create_engine(db_url, pool_pre_ping=True, future=True)
    Base.metadata.create_all(engine)
    print(f"OK tables={len(Base.metadata.tables)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
