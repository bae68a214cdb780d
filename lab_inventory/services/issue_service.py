from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import STAFF_ROLES, ItemStatus, RequestStatus
from lab_inventory.models.inventory_models import IssueRecord, IssueRequest, Item, User
from lab_inventory.services.access_service import managed_department_ids, require_department_access, require_role
from lab_inventory.services.audit_service import log_audit
from lab_inventory.services.catalog_service import serialize_item
from lab_inventory.services.errors import AlreadyIssuedError, ConflictError
from lab_inventory.services.policy import days_late
from lab_inventory.services.request_service import get_request_or_404


logger = logging.getLogger("lab_inventory.issue")


def issue_request(db: Session, actor: User, request_id: int, now: datetime | None = None) -> IssueRecord:
    """Hand an approved request's item over to the borrower.

    The item is claimed with a conditional update on ``Status == AVAILABLE`` so
    two approved requests for the same item cannot both be issued.
    """
    now = now or datetime.now()
    require_role(actor, STAFF_ROLES)
    issue_request_row = get_request_or_404(db, request_id)
    require_department_access(actor, issue_request_row.Item.DepartmentID)

    if issue_request_row.Status != RequestStatus.APPROVED.value:
        raise ConflictError("Only approved requests can be issued")
    existing = db.execute(select(IssueRecord.IssueRecordID).where(IssueRecord.RequestID == request_id)).first()
    if existing:
        raise AlreadyIssuedError("Request has already been issued")

    item = issue_request_row.Item
    with atomic(db):
        claimed = db.execute(
            update(Item)
            .where(Item.ItemID == item.ItemID)
            .where(Item.Status == ItemStatus.AVAILABLE.value)
            .values(Status=ItemStatus.ISSUED.value, UpdatedDate=now)
            .execution_options(synchronize_session="fetch")
        )
        if claimed.rowcount != 1:
            raise ConflictError("Item is no longer available")
        record = IssueRecord(
            RequestID=request_id,
            UserID=issue_request_row.UserID,
            ItemID=item.ItemID,
            DepartmentID=item.DepartmentID,
            IssuedBy=actor.UserID,
            IssueDate=now,
            ExpectedReturnDate=now + timedelta(days=issue_request_row.RequestedDays),
            IsPendingReplacement=False,
        )
        db.add(record)
    db.refresh(item)
    logger.info(
        "Item issued request_id=%s record_id=%s item_id=%s due=%s",
        request_id,
        record.IssueRecordID,
        item.ItemID,
        record.ExpectedReturnDate.date().isoformat(),
    )
    log_audit(
        db,
        user_id=actor.UserID,
        action="ISSUE",
        entity_type="IssueRecord",
        entity_id=record.IssueRecordID,
        changes={
            "requestId": request_id,
            "itemName": item.Name,
            "userId": issue_request_row.UserID,
            "expectedReturnDate": record.ExpectedReturnDate,
        },
    )
    return record


def list_ready_for_issue(db: Session, actor: User, search: str | None = None) -> list[IssueRequest]:
    require_role(actor, STAFF_ROLES)
    stmt = (
        select(IssueRequest)
        .join(Item, Item.ItemID == IssueRequest.ItemID)
        .join(User, User.UserID == IssueRequest.UserID)
        .outerjoin(IssueRecord, IssueRecord.RequestID == IssueRequest.RequestID)
        .options(selectinload(IssueRequest.Item), selectinload(IssueRequest.User))
        .where(IssueRequest.Status == RequestStatus.APPROVED.value)
        .where(IssueRecord.IssueRecordID.is_(None))
        .order_by(IssueRequest.ApprovalDate, IssueRequest.RequestID)
    )
    department_ids = managed_department_ids(actor)
    if department_ids is not None:
        stmt = stmt.where(Item.DepartmentID.in_(department_ids))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.Name.ilike(pattern), User.Email.ilike(pattern), Item.Name.ilike(pattern), Item.ManualID.ilike(pattern)))
    return list(db.execute(stmt).scalars().all())


def serialize_issue_record(record: IssueRecord, now: datetime | None = None) -> dict:
    payload = {
        "issueRecordID": record.IssueRecordID,
        "requestID": record.RequestID,
        "userID": record.UserID,
        "itemID": record.ItemID,
        "departmentID": record.DepartmentID,
        "issuedBy": record.IssuedBy,
        "issueDate": record.IssueDate,
        "expectedReturnDate": record.ExpectedReturnDate,
        "actualReturnDate": record.ActualReturnDate,
        "returnCondition": record.ReturnCondition,
        "damageRemarks": record.DamageRemarks,
        "isPendingReplacement": bool(record.IsPendingReplacement),
        "item": serialize_item(record.Item) if record.Item else None,
        "user": {"userID": record.User.UserID, "name": record.User.Name, "email": record.User.Email} if record.User else None,
    }
    if now is not None and record.ActualReturnDate is None:
        overdue_days = days_late(record.ExpectedReturnDate, now)
        payload["isOverdue"] = overdue_days > 0
        payload["daysOverdue"] = overdue_days
    return payload
