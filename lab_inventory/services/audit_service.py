from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lab_inventory.models.inventory_models import AuditLog


logger = logging.getLogger("lab_inventory.audit")


def _to_json(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=True, default=str)
    as_text = str(value).strip()
    return as_text or None


def log_audit(
    db: Session,
    *,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    changes: Any = None,
) -> bool:
    """Append one audit entry in its own commit.

    Runs after the business transaction has committed; a failure here is logged
    and reported as ``False`` but never undoes the change being audited.
    """
    try:
        db.add(
            AuditLog(
                UserID=user_id,
                Action=action,
                EntityType=entity_type,
                EntityID=entity_id,
                Changes=_to_json(changes),
                CreatedAt=datetime.now(),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Audit write failed action=%s entity=%s:%s error=%s", action, entity_type, entity_id, exc)
        return False
    return True


def list_audit_entries(
    db: Session,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    user_id: int | None = None,
    action: str | None = None,
) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.AuditID)
    if user_id is not None:
        stmt = stmt.where(AuditLog.UserID == user_id)
    if action:
        stmt = stmt.where(AuditLog.Action == action.strip().upper())
    if entity_type:
        stmt = stmt.where(AuditLog.EntityType == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.EntityID == entity_id)
    return list(db.execute(stmt).scalars().all())


def serialize_audit_entry(entry: AuditLog) -> dict:
    try:
        changes = json.loads(entry.Changes) if entry.Changes else None
    except (TypeError, ValueError):
        changes = entry.Changes
    return {
        "auditID": entry.AuditID,
        "userID": entry.UserID,
        "action": entry.Action,
        "entityType": entry.EntityType,
        "entityID": entry.EntityID,
        "changes": changes,
        "createdAt": entry.CreatedAt,
    }
