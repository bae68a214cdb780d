"""JSON reports: overdue loans, issue history and inventory.

Admins and procurement see every department; an incharge only sees the
departments they manage, and asking for another department is forbidden.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lab_inventory.models.enums import STAFF_ROLES, ItemCondition, ItemStatus, Role
from lab_inventory.models.inventory_models import IssueRecord, Item, User
from lab_inventory.services.access_service import managed_department_ids, require_role
from lab_inventory.services.errors import ForbiddenError, ValidationError
from lab_inventory.services.policy import days_late


REPORT_ROLES = STAFF_ROLES | {Role.PROCUREMENT}
UNRESTRICTED_ROLES = (Role.ADMIN, Role.PROCUREMENT)


def _report_scope(actor: User, department_id: int | None) -> Optional[list[int]]:
    require_role(actor, REPORT_ROLES, "Staff role required.")
    allowed = managed_department_ids(actor, UNRESTRICTED_ROLES)
    if department_id is not None:
        if allowed is not None and department_id not in allowed:
            raise ForbiddenError("You do not have access to this department")
        return [department_id]
    return allowed


def _record_row(record: IssueRecord) -> dict:
    return {
        "issueRecordID": record.IssueRecordID,
        "userName": record.User.Name,
        "userEmail": record.User.Email,
        "userRole": record.User.Role,
        "itemName": record.Item.Name,
        "manualID": record.Item.ManualID,
        "departmentID": record.DepartmentID,
        "department": record.Department.Name if record.Department else None,
        "issueDate": record.IssueDate,
        "expectedReturnDate": record.ExpectedReturnDate,
        "actualReturnDate": record.ActualReturnDate,
        "returnCondition": record.ReturnCondition,
    }


def _records_stmt(department_ids: Optional[list[int]]):
    stmt = select(IssueRecord).options(
        selectinload(IssueRecord.Item),
        selectinload(IssueRecord.User),
        selectinload(IssueRecord.Department),
    )
    if department_ids is not None:
        stmt = stmt.where(IssueRecord.DepartmentID.in_(department_ids))
    return stmt


def overdue_report(
    db: Session,
    actor: User,
    *,
    department_id: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    now = now or datetime.now()
    stmt = (
        _records_stmt(_report_scope(actor, department_id))
        .where(IssueRecord.ActualReturnDate.is_(None))
        .where(IssueRecord.ExpectedReturnDate < now)
        .order_by(IssueRecord.ExpectedReturnDate, IssueRecord.IssueRecordID)
    )
    rows = []
    for record in db.execute(stmt).scalars().all():
        row = _record_row(record)
        row["daysOverdue"] = days_late(record.ExpectedReturnDate, now)
        rows.append(row)
    return rows


def issues_report(
    db: Session,
    actor: User,
    *,
    department_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    include_returned: bool = True,
) -> list[dict]:
    """Issue history, newest first. The date range only applies when both ends are given."""
    stmt = _records_stmt(_report_scope(actor, department_id))
    if start_date and end_date:
        if start_date > end_date:
            raise ValidationError("startDate must not be after endDate")
        stmt = stmt.where(IssueRecord.IssueDate >= start_date).where(IssueRecord.IssueDate <= end_date)
    if not include_returned:
        stmt = stmt.where(IssueRecord.ActualReturnDate.is_(None))
    stmt = stmt.order_by(IssueRecord.IssueDate.desc(), IssueRecord.IssueRecordID.desc())
    return [_record_row(record) for record in db.execute(stmt).scalars().all()]


def inventory_report(
    db: Session,
    actor: User,
    *,
    department_id: int | None = None,
    category_id: int | None = None,
    status: str | None = None,
    condition: str | None = None,
) -> list[dict]:
    department_ids = _report_scope(actor, department_id)
    stmt = (
        select(Item)
        .options(selectinload(Item.Category), selectinload(Item.Department))
        .order_by(Item.ManualID)
    )
    if department_ids is not None:
        stmt = stmt.where(Item.DepartmentID.in_(department_ids))
    if category_id is not None:
        stmt = stmt.where(Item.CategoryID == category_id)
    if status:
        try:
            stmt = stmt.where(Item.Status == ItemStatus(status.strip().upper()).value)
        except ValueError as exc:
            raise ValidationError(f"Unknown item status: {status}") from exc
    if condition:
        try:
            stmt = stmt.where(Item.Condition == ItemCondition(condition.strip().upper()).value)
        except ValueError as exc:
            raise ValidationError(f"Unknown item condition: {condition}") from exc
    return [
        {
            "itemID": item.ItemID,
            "manualID": item.ManualID,
            "name": item.Name,
            "category": item.Category.Name if item.Category else None,
            "department": item.Department.Name if item.Department else None,
            "status": item.Status,
            "condition": item.Condition,
            "isConsumable": bool(item.IsConsumable),
            "currentStock": item.CurrentStock,
            "location": item.Location,
        }
        for item in db.execute(stmt).scalars().all()
    ]
