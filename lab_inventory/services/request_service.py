from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import STAFF_ROLES, ItemStatus, RequestStatus
from lab_inventory.models.inventory_models import IssueRecord, IssueRequest, Item, User
from lab_inventory.services.access_service import managed_department_ids, require_department_access, require_role
from lab_inventory.services.audit_service import log_audit
from lab_inventory.services.catalog_service import serialize_item
from lab_inventory.services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from lab_inventory.services.mail_service import Notifier, dispatch, new_request_email, request_status_email
from lab_inventory.services.policy import ban_state_of, describe_ban, is_blocked
from lab_inventory.services.settings_service import LabSettings


logger = logging.getLogger("lab_inventory.requests")

OPEN_REQUEST_STATES = (RequestStatus.PENDING.value, RequestStatus.APPROVED.value)


def get_request_or_404(db: Session, request_id: int) -> IssueRequest:
    stmt = (
        select(IssueRequest)
        .options(selectinload(IssueRequest.Item).selectinload(Item.Department))
        .options(selectinload(IssueRequest.User))
        .where(IssueRequest.RequestID == request_id)
    )
    issue_request = db.execute(stmt).scalars().first()
    if not issue_request:
        raise NotFoundError("Request not found")
    return issue_request


def count_active_loans(db: Session, user_id: int) -> int:
    """Outstanding issue records plus approved requests still waiting for handover."""
    outstanding = db.execute(
        select(func.count(IssueRecord.IssueRecordID))
        .where(IssueRecord.UserID == user_id)
        .where(IssueRecord.ActualReturnDate.is_(None))
    ).scalar() or 0
    awaiting_issue = db.execute(
        select(func.count(IssueRequest.RequestID))
        .outerjoin(IssueRecord, IssueRecord.RequestID == IssueRequest.RequestID)
        .where(IssueRequest.UserID == user_id)
        .where(IssueRequest.Status == RequestStatus.APPROVED.value)
        .where(IssueRecord.IssueRecordID.is_(None))
    ).scalar() or 0
    return int(outstanding) + int(awaiting_issue)


def _require_borrower_in_good_standing(user: User) -> None:
    if not user.IsApproved:
        raise ForbiddenError("Your account is pending approval")
    if not user.IsActive:
        raise ForbiddenError("Your account is inactive")
    state = ban_state_of(user)
    if is_blocked(state):
        raise ForbiddenError(describe_ban(state))


def _max_days_for(item: Item, user: User, settings: LabSettings) -> int:
    role_max = settings.limits_for(user.Role).max_borrow_days
    category_max = item.Category.MaxBorrowDuration if item.Category else role_max
    return min(category_max, role_max)


def create_request(
    db: Session,
    user: User,
    *,
    item_id: int,
    purpose: str,
    requested_days: int,
    settings: LabSettings,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> IssueRequest:
    now = now or datetime.now()
    purpose = (purpose or "").strip()
    if not item_id or not purpose or not requested_days:
        raise ValidationError("Item ID, purpose, and requested days are required")
    if int(requested_days) < 1:
        raise ValidationError("Requested days must be at least 1")

    _require_borrower_in_good_standing(user)

    item = db.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    if item.IsConsumable:
        raise ValidationError("Consumable items cannot be borrowed")
    if item.Status != ItemStatus.AVAILABLE.value:
        raise ConflictError("Item is not available for borrowing")

    max_days = _max_days_for(item, user, settings)
    if int(requested_days) > max_days:
        raise ValidationError(f"Requested duration exceeds maximum allowed ({max_days} days)")

    existing = db.execute(
        select(IssueRequest.RequestID)
        .where(IssueRequest.UserID == user.UserID)
        .where(IssueRequest.ItemID == item_id)
        .where(IssueRequest.Status.in_(OPEN_REQUEST_STATES))
    ).first()
    if existing:
        raise ConflictError("You already have a pending or approved request for this item")

    limits = settings.limits_for(user.Role)
    auto_approved = not limits.requires_approval
    if auto_approved and count_active_loans(db, user.UserID) >= limits.max_items:
        raise ConflictError(f"Borrow limit reached ({limits.max_items} items)")

    issue_request = IssueRequest(
        UserID=user.UserID,
        ItemID=item_id,
        Purpose=purpose,
        RequestedDays=int(requested_days),
        Status=RequestStatus.APPROVED.value if auto_approved else RequestStatus.PENDING.value,
        RequestDate=now,
        ApprovalDate=now if auto_approved else None,
    )
    with atomic(db):
        db.add(issue_request)
    logger.info(
        "Request created request_id=%s user_id=%s item_id=%s status=%s",
        issue_request.RequestID,
        user.UserID,
        item_id,
        issue_request.Status,
    )

    department = item.Department
    for incharge in department.Incharges if department else []:
        dispatch(
            notifier,
            new_request_email(
                to=incharge.Email,
                incharge_name=incharge.Name,
                requester_name=user.Name,
                requester_email=user.Email,
                item_name=item.Name,
                manual_id=item.ManualID,
                purpose=purpose,
                requested_days=int(requested_days),
                department=department.Name,
            ),
        )
    log_audit(
        db,
        user_id=user.UserID,
        action="CREATE",
        entity_type="IssueRequest",
        entity_id=issue_request.RequestID,
        changes={"itemId": item_id, "itemName": item.Name, "purpose": purpose, "requestedDays": int(requested_days)},
    )
    return issue_request


def _load_for_decision(db: Session, actor: User, request_id: int) -> IssueRequest:
    require_role(actor, STAFF_ROLES)
    issue_request = get_request_or_404(db, request_id)
    require_department_access(actor, issue_request.Item.DepartmentID)
    return issue_request


def _transition_pending(db: Session, request_id: int, values: dict) -> None:
    result = db.execute(
        update(IssueRequest)
        .where(IssueRequest.RequestID == request_id)
        .where(IssueRequest.Status == RequestStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ConflictError("Request is no longer pending")


def approve_request(
    db: Session,
    actor: User,
    request_id: int,
    *,
    collection_instructions: str | None,
    settings: LabSettings,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> IssueRequest:
    now = now or datetime.now()
    issue_request = _load_for_decision(db, actor, request_id)
    if issue_request.Status != RequestStatus.PENDING.value:
        raise ConflictError("Only pending requests can be approved")

    item = issue_request.Item
    requester = issue_request.User
    if item.Status != ItemStatus.AVAILABLE.value:
        raise ConflictError("Item is not available for borrowing")
    if is_blocked(ban_state_of(requester)):
        raise ConflictError("Requester is currently banned from borrowing")
    limits = settings.limits_for(requester.Role)
    if count_active_loans(db, requester.UserID) >= limits.max_items:
        raise ConflictError(f"Requester has reached the borrow limit ({limits.max_items} items)")
    category_max = item.Category.MaxBorrowDuration if item.Category else limits.max_borrow_days
    if issue_request.RequestedDays > category_max:
        raise ValidationError(f"Requested duration exceeds maximum allowed ({category_max} days)")

    instructions = (collection_instructions or "").strip() or None
    with atomic(db):
        _transition_pending(
            db,
            request_id,
            {
                "Status": RequestStatus.APPROVED.value,
                "ApprovedBy": actor.UserID,
                "ApprovalDate": now,
                "CollectionInstructions": instructions,
            },
        )
    db.refresh(issue_request)
    logger.info("Request approved request_id=%s by=%s", request_id, actor.UserID)

    dispatch(
        notifier,
        request_status_email(
            to=requester.Email,
            user_name=requester.Name,
            item_name=item.Name,
            manual_id=item.ManualID,
            approved=True,
            collection_instructions=instructions,
        ),
    )
    log_audit(
        db,
        user_id=actor.UserID,
        action="APPROVE",
        entity_type="IssueRequest",
        entity_id=request_id,
        changes={"status": RequestStatus.APPROVED.value, "itemName": item.Name, "requester": requester.Name},
    )
    return issue_request


def reject_request(
    db: Session,
    actor: User,
    request_id: int,
    *,
    rejection_reason: str | None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> IssueRequest:
    now = now or datetime.now()
    reason = (rejection_reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    issue_request = _load_for_decision(db, actor, request_id)
    if issue_request.Status != RequestStatus.PENDING.value:
        raise ConflictError("Only pending requests can be rejected")

    with atomic(db):
        _transition_pending(
            db,
            request_id,
            {
                "Status": RequestStatus.REJECTED.value,
                "ApprovedBy": actor.UserID,
                "ApprovalDate": now,
                "RejectionReason": reason,
            },
        )
    db.refresh(issue_request)
    logger.info("Request rejected request_id=%s by=%s", request_id, actor.UserID)

    item = issue_request.Item
    requester = issue_request.User
    dispatch(
        notifier,
        request_status_email(
            to=requester.Email,
            user_name=requester.Name,
            item_name=item.Name,
            manual_id=item.ManualID,
            approved=False,
            reason=reason,
        ),
    )
    log_audit(
        db,
        user_id=actor.UserID,
        action="REJECT",
        entity_type="IssueRequest",
        entity_id=request_id,
        changes={"status": RequestStatus.REJECTED.value, "reason": reason, "itemName": item.Name, "requester": requester.Name},
    )
    return issue_request


def cancel_request(db: Session, user: User, request_id: int) -> IssueRequest:
    issue_request = get_request_or_404(db, request_id)
    if issue_request.UserID != user.UserID:
        raise ForbiddenError("You can only cancel your own requests")
    if issue_request.Status != RequestStatus.PENDING.value:
        raise ConflictError("Only pending requests can be cancelled")

    with atomic(db):
        _transition_pending(db, request_id, {"Status": RequestStatus.CANCELLED.value})
    db.refresh(issue_request)
    logger.info("Request cancelled request_id=%s", request_id)
    log_audit(
        db,
        user_id=user.UserID,
        action="UPDATE",
        entity_type="IssueRequest",
        entity_id=request_id,
        changes={"status": RequestStatus.CANCELLED.value, "itemName": issue_request.Item.Name},
    )
    return issue_request


def list_user_requests(db: Session, user: User, status: str | None = None) -> list[IssueRequest]:
    stmt = (
        select(IssueRequest)
        .options(selectinload(IssueRequest.Item))
        .where(IssueRequest.UserID == user.UserID)
        .order_by(IssueRequest.RequestDate.desc(), IssueRequest.RequestID.desc())
    )
    if status:
        stmt = stmt.where(IssueRequest.Status == status.strip().upper())
    return list(db.execute(stmt).scalars().all())


def list_department_requests(
    db: Session,
    actor: User,
    *,
    status: str | None = RequestStatus.PENDING.value,
    search: str | None = None,
) -> list[IssueRequest]:
    require_role(actor, STAFF_ROLES)
    stmt = (
        select(IssueRequest)
        .join(Item, Item.ItemID == IssueRequest.ItemID)
        .join(User, User.UserID == IssueRequest.UserID)
        .options(selectinload(IssueRequest.Item), selectinload(IssueRequest.User))
        .order_by(IssueRequest.RequestDate, IssueRequest.RequestID)
    )
    department_ids = managed_department_ids(actor)
    if department_ids is not None:
        stmt = stmt.where(Item.DepartmentID.in_(department_ids))
    if status:
        stmt = stmt.where(IssueRequest.Status == status.strip().upper())
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.Name.ilike(pattern), Item.Name.ilike(pattern), Item.ManualID.ilike(pattern)))
    return list(db.execute(stmt).scalars().all())


def serialize_request(issue_request: IssueRequest) -> dict:
    user = issue_request.User
    return {
        "requestID": issue_request.RequestID,
        "userID": issue_request.UserID,
        "itemID": issue_request.ItemID,
        "purpose": issue_request.Purpose,
        "requestedDays": issue_request.RequestedDays,
        "status": issue_request.Status,
        "requestDate": issue_request.RequestDate,
        "approvalDate": issue_request.ApprovalDate,
        "approvedBy": issue_request.ApprovedBy,
        "collectionInstructions": issue_request.CollectionInstructions,
        "rejectionReason": issue_request.RejectionReason,
        "item": serialize_item(issue_request.Item) if issue_request.Item else None,
        "user": {"userID": user.UserID, "name": user.Name, "email": user.Email} if user else None,
    }
