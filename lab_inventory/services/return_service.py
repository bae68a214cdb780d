"""Return processing: item disposition, borrower bans and the resulting notices.

The decision itself is ``policy.decide_return``; this module loads the record,
applies the decision in one transaction and sends the follow-up emails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import DAMAGE_CONDITIONS, STAFF_ROLES, ItemCondition
from lab_inventory.models.inventory_models import IssueRecord, Item, User
from lab_inventory.services.access_service import managed_department_ids, require_department_access, require_role
from lab_inventory.services.audit_service import log_audit
from lab_inventory.services.errors import AlreadyReturnedError, NotFoundError, ValidationError
from lab_inventory.services.issue_service import serialize_issue_record
from lab_inventory.services.mail_service import Notifier, damage_compensation_email, dispatch, late_return_ban_email
from lab_inventory.services.policy import BannedUntil, apply_ban_state, decide_return
from lab_inventory.services.settings_service import LabSettings


logger = logging.getLogger("lab_inventory.returns")


@dataclass
class ReturnOutcome:
    record: IssueRecord
    warnings: dict[str, str | None] = field(default_factory=lambda: {"lateBan": None, "compensationBan": None})
    is_late: bool = False
    days_late: int = 0


def _parse_condition(raw: str | None) -> ItemCondition:
    if not raw or not str(raw).strip():
        raise ValidationError("Return condition is required")
    try:
        return ItemCondition(str(raw).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown return condition: {raw}") from exc


def _load_record(db: Session, issue_record_id: int) -> IssueRecord | None:
    stmt = (
        select(IssueRecord)
        .options(selectinload(IssueRecord.Item), selectinload(IssueRecord.User))
        .where(IssueRecord.IssueRecordID == issue_record_id)
    )
    return db.execute(stmt).scalars().first()


def process_return(
    db: Session,
    actor: User,
    issue_record_id: int,
    *,
    return_condition: str | None,
    damage_remarks: str | None = None,
    is_pending_replacement: bool = False,
    settings: LabSettings,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> ReturnOutcome:
    now = now or datetime.now()
    if not issue_record_id:
        raise ValidationError("Issue record ID and return condition are required")
    condition = _parse_condition(return_condition)
    remarks = (damage_remarks or "").strip() or None
    if condition in DAMAGE_CONDITIONS and not remarks:
        raise ValidationError("Damage remarks are required for damaged items")

    require_role(actor, STAFF_ROLES)
    record = _load_record(db, issue_record_id)
    if not record:
        raise NotFoundError("Issue record not found")
    require_department_access(actor, record.DepartmentID, "You do not have access to this item's department")
    if record.ActualReturnDate is not None:
        raise AlreadyReturnedError("Item already returned")

    item = record.Item
    borrower = record.User
    decision = decide_return(
        expected_return=record.ExpectedReturnDate,
        condition=condition,
        is_pending_replacement=bool(is_pending_replacement),
        settings=settings,
        now=now,
    )

    with atomic(db):
        # Only the caller that flips ActualReturnDate from NULL gets to apply the return.
        result = db.execute(
            update(IssueRecord)
            .where(IssueRecord.IssueRecordID == issue_record_id)
            .where(IssueRecord.ActualReturnDate.is_(None))
            .values(
                ActualReturnDate=now,
                ReturnCondition=condition.value,
                DamageRemarks=remarks,
                IsPendingReplacement=bool(is_pending_replacement),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise AlreadyReturnedError("Item already returned")
        db.execute(
            update(Item)
            .where(Item.ItemID == record.ItemID)
            .values(Status=decision.item_status.value, Condition=decision.item_condition.value, UpdatedDate=now)
            .execution_options(synchronize_session="fetch")
        )
        if decision.ban is not None:
            apply_ban_state(borrower, decision.ban)
            borrower.UpdatedDate = now
    db.refresh(record)

    warnings: dict[str, str | None] = {"lateBan": None, "compensationBan": None}
    if isinstance(decision.ban, BannedUntil):
        banned_until = decision.ban.until.date().isoformat()
        warnings["lateBan"] = f"User banned until {banned_until}"
        dispatch(
            notifier,
            late_return_ban_email(
                to=borrower.Email,
                user_name=borrower.Name,
                item_name=item.Name,
                manual_id=item.ManualID,
                days_late=decision.days_late,
                banned_until=banned_until,
            ),
        )
    if is_pending_replacement:
        # The compensation notice goes out even when the late ban took precedence.
        warnings["compensationBan"] = "User banned pending compensation"
        dispatch(
            notifier,
            damage_compensation_email(
                to=borrower.Email,
                user_name=borrower.Name,
                item_name=item.Name,
                manual_id=item.ManualID,
                damage_remarks=remarks or "Item requires replacement",
                incharge_name=actor.Name,
                incharge_email=actor.Email,
            ),
        )

    logger.info(
        "Return processed record_id=%s item_status=%s late=%s days_late=%s ban=%s",
        issue_record_id,
        decision.item_status.value,
        decision.is_late,
        decision.days_late,
        type(decision.ban).__name__ if decision.ban is not None else "unchanged",
    )
    log_audit(
        db,
        user_id=actor.UserID,
        action="RETURN",
        entity_type="IssueRecord",
        entity_id=issue_record_id,
        changes={
            "returnCondition": condition.value,
            "isLate": decision.is_late,
            "daysLate": decision.days_late,
            "isPendingReplacement": bool(is_pending_replacement),
            "itemName": item.Name,
            "borrower": borrower.Name,
            "banned": warnings["lateBan"] or warnings["compensationBan"],
        },
    )
    return ReturnOutcome(record=record, warnings=warnings, is_late=decision.is_late, days_late=decision.days_late)


def list_outstanding(db: Session, actor: User, *, search: str | None = None, now: datetime | None = None) -> list[dict]:
    """Unreturned issue records, soonest due first, annotated with overdue status."""
    now = now or datetime.now()
    require_role(actor, STAFF_ROLES)
    stmt = (
        select(IssueRecord)
        .join(Item, Item.ItemID == IssueRecord.ItemID)
        .join(User, User.UserID == IssueRecord.UserID)
        .options(selectinload(IssueRecord.Item), selectinload(IssueRecord.User))
        .where(IssueRecord.ActualReturnDate.is_(None))
        .order_by(IssueRecord.ExpectedReturnDate, IssueRecord.IssueRecordID)
    )
    department_ids = managed_department_ids(actor)
    if department_ids is not None:
        stmt = stmt.where(IssueRecord.DepartmentID.in_(department_ids))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.Name.ilike(pattern), User.Email.ilike(pattern), Item.Name.ilike(pattern), Item.ManualID.ilike(pattern)))
    return [serialize_issue_record(record, now) for record in db.execute(stmt).scalars().all()]

