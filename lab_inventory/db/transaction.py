from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lab_inventory.services.errors import InternalError, LabInventoryError


logger = logging.getLogger("lab_inventory.db")


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing.

    Domain errors raised inside the block roll back and propagate unchanged.
    Database failures roll back and surface as ``InternalError``.
    """
    try:
        yield db
        db.commit()
    except LabInventoryError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Transaction rolled back")
        raise InternalError("Database write failed.") from exc
    except Exception:
        db.rollback()
        raise
