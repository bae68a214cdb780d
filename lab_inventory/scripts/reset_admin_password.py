#!/usr/bin/env python3
from __future__ import annotations

import argparse
import getpass
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import Role
from lab_inventory.services.user_service import create_user, find_user_by_email, set_password


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create an ADMIN account or reset its password directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Admin login email")
    parser.add_argument("--name", default="Administrator", help="Display name used when the account is created")
    parser.add_argument(
        "--password",
        default=None,
        help="New password. Omit to be prompted.",
    )
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
    password = args.password or getpass.getpass("New admin password: ")

    engine = create_engine(db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    with session_factory() as db:
        user = find_user_by_email(db, args.email)
        if user is None:
            user = create_user(
                db,
                name=args.name,
                email=args.email,
                role=Role.ADMIN.value,
                password=password,
                is_approved=True,
            )
            action = "created"
        else:
            with atomic(db):
                set_password(user, password)
                user.Role = Role.ADMIN.value
                user.IsApproved = True
                user.IsActive = True
            action = "reset"

    print(f"OK {action} user_id={user.UserID} email={user.Email} role={user.Role}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
