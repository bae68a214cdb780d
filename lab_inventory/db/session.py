import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _engine_options(url: str) -> dict:
    options = {"pool_pre_ping": True, "future": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            # One shared connection, otherwise each checkout sees an empty database.
            options["poolclass"] = StaticPool
    return options


LAB_INVENTORY_DB_URL = _require_env("LAB_INVENTORY_DB_URL")

engine = create_engine(LAB_INVENTORY_DB_URL, **_engine_options(LAB_INVENTORY_DB_URL))

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
