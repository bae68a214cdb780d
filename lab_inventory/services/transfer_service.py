from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import STAFF_ROLES, ItemStatus, Role, TransferStatus
from lab_inventory.models.inventory_models import Item, ItemDepartmentAccess, TransferRecord, TransferRequest, User
from lab_inventory.services.access_service import (
    has_department_access,
    managed_department_ids,
    require_department_access,
    require_role,
    role_of,
)
from lab_inventory.services.audit_service import log_audit
from lab_inventory.services.catalog_service import (
    generate_manual_id,
    get_department_or_404,
    get_item_or_404,
    serialize_department,
    serialize_item,
)
from lab_inventory.services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


logger = logging.getLogger("lab_inventory.transfers")

TRANSFER_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.APPROVED, TransferStatus.REJECTED, TransferStatus.CANCELLED},
    TransferStatus.APPROVED: {TransferStatus.COMPLETED},
    TransferStatus.REJECTED: set(),
    TransferStatus.COMPLETED: set(),
    TransferStatus.CANCELLED: set(),
}
COMPLETION_ROLES = (Role.INCHARGE, Role.ADMIN, Role.PROCUREMENT)


def _transition(db: Session, transfer: TransferRequest, target: TransferStatus, values: dict | None = None) -> None:
    current = TransferStatus(transfer.Status)
    if target not in TRANSFER_TRANSITIONS[current]:
        raise ConflictError(f"Invalid transfer transition: {current.value} -> {target.value}")
    result = db.execute(
        update(TransferRequest)
        .where(TransferRequest.TransferRequestID == transfer.TransferRequestID)
        .where(TransferRequest.Status == current.value)
        .values(Status=target.value, **(values or {}))
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ConflictError(f"Transfer request is no longer {current.value.lower()}")


def get_transfer_or_404(db: Session, transfer_id: int) -> TransferRequest:
    stmt = (
        select(TransferRequest)
        .options(
            selectinload(TransferRequest.Item),
            selectinload(TransferRequest.FromDepartment),
            selectinload(TransferRequest.ToDepartment),
            selectinload(TransferRequest.Requester),
        )
        .where(TransferRequest.TransferRequestID == transfer_id)
    )
    transfer = db.execute(stmt).scalars().first()
    if not transfer:
        raise NotFoundError("Transfer request not found")
    return transfer


def _can_transfer_to(db: Session, item: Item, department_id: int) -> bool:
    row = db.execute(
        select(ItemDepartmentAccess.AccessID)
        .where(ItemDepartmentAccess.ItemID == item.ItemID)
        .where(ItemDepartmentAccess.DepartmentID == department_id)
        .where(ItemDepartmentAccess.CanTransfer.is_(True))
    ).first()
    return row is not None


def create_transfer(
    db: Session,
    actor: User,
    *,
    item_id: int,
    to_department_id: int,
    purpose: str,
    quantity: int | None = None,
    now: datetime | None = None,
) -> TransferRequest:
    now = now or datetime.now()
    purpose = (purpose or "").strip()
    if not item_id or not to_department_id or not purpose:
        raise ValidationError("Item ID, destination department, and purpose are required")

    require_role(actor, STAFF_ROLES)
    require_department_access(actor, to_department_id, "You can only request transfers into your own department")
    item = get_item_or_404(db, item_id)
    get_department_or_404(db, to_department_id)
    if item.DepartmentID == to_department_id:
        raise ValidationError("Item already belongs to this department")
    if not _can_transfer_to(db, item, to_department_id):
        raise ForbiddenError("This item is not available for transfer to your department")

    if item.IsConsumable:
        if quantity is None or int(quantity) < 1:
            raise ValidationError("Quantity must be at least 1")
        if int(quantity) > (item.CurrentStock or 0):
            raise ValidationError(f"Only {item.CurrentStock or 0} units available")
        quantity = int(quantity)
    else:
        quantity = 1

    transfer = TransferRequest(
        ItemID=item.ItemID,
        FromDepartmentID=item.DepartmentID,
        ToDepartmentID=to_department_id,
        RequestedBy=actor.UserID,
        Quantity=quantity,
        Purpose=purpose,
        Status=TransferStatus.PENDING.value,
        RequestDate=now,
    )
    with atomic(db):
        db.add(transfer)
    logger.info(
        "Transfer requested transfer_id=%s item_id=%s from=%s to=%s quantity=%s",
        transfer.TransferRequestID,
        item.ItemID,
        item.DepartmentID,
        to_department_id,
        quantity,
    )
    log_audit(
        db,
        user_id=actor.UserID,
        action="CREATE_TRANSFER_REQUEST",
        entity_type="TransferRequest",
        entity_id=transfer.TransferRequestID,
        changes={"itemName": item.Name, "fromDepartmentId": item.DepartmentID, "toDepartmentId": to_department_id, "quantity": quantity},
    )
    return transfer


def _load_for_source_decision(db: Session, actor: User, transfer_id: int) -> TransferRequest:
    require_role(actor, STAFF_ROLES)
    transfer = get_transfer_or_404(db, transfer_id)
    require_department_access(actor, transfer.FromDepartmentID, "Only the holding department can decide this transfer")
    return transfer


def approve_transfer(db: Session, actor: User, transfer_id: int, now: datetime | None = None) -> TransferRequest:
    now = now or datetime.now()
    transfer = _load_for_source_decision(db, actor, transfer_id)
    if transfer.Status != TransferStatus.PENDING.value:
        raise ConflictError("Only pending transfer requests can be approved")

    item = transfer.Item
    if item.IsConsumable:
        if transfer.Quantity > (item.CurrentStock or 0):
            raise ConflictError(f"Insufficient stock: {item.CurrentStock or 0} units available")
    elif item.Status != ItemStatus.AVAILABLE.value:
        raise ConflictError("Item is not available for transfer")

    with atomic(db):
        _transition(db, transfer, TransferStatus.APPROVED, {"ApprovedBy": actor.UserID, "ApprovalDate": now})
    db.refresh(transfer)
    logger.info("Transfer approved transfer_id=%s by=%s", transfer_id, actor.UserID)
    log_audit(
        db,
        user_id=actor.UserID,
        action="APPROVE_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer_id,
        changes={"status": TransferStatus.APPROVED.value, "itemName": item.Name},
    )
    return transfer


def reject_transfer(
    db: Session,
    actor: User,
    transfer_id: int,
    *,
    rejection_reason: str | None,
    now: datetime | None = None,
) -> TransferRequest:
    now = now or datetime.now()
    reason = (rejection_reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    transfer = _load_for_source_decision(db, actor, transfer_id)
    if transfer.Status != TransferStatus.PENDING.value:
        raise ConflictError("Only pending transfer requests can be rejected")

    with atomic(db):
        _transition(
            db,
            transfer,
            TransferStatus.REJECTED,
            {"ApprovedBy": actor.UserID, "ApprovalDate": now, "RejectionReason": reason},
        )
    db.refresh(transfer)
    logger.info("Transfer rejected transfer_id=%s by=%s", transfer_id, actor.UserID)
    log_audit(
        db,
        user_id=actor.UserID,
        action="REJECT_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer_id,
        changes={"status": TransferStatus.REJECTED.value, "reason": reason, "itemName": transfer.Item.Name},
    )
    return transfer


def _find_destination_stock(db: Session, source: Item, department_id: int) -> Item | None:
    return db.execute(
        select(Item)
        .where(Item.DepartmentID == department_id)
        .where(Item.Name == source.Name)
        .where(Item.CategoryID == source.CategoryID)
        .where(Item.IsConsumable.is_(True))
    ).scalars().first()


def complete_transfer(
    db: Session,
    actor: User,
    transfer_id: int,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> TransferRecord:
    """Move custody (or stock) from the source to the destination department."""
    now = now or datetime.now()
    require_role(actor, COMPLETION_ROLES)
    transfer = get_transfer_or_404(db, transfer_id)
    unrestricted = (Role.ADMIN, Role.PROCUREMENT)
    if not (
        has_department_access(actor, transfer.FromDepartmentID, unrestricted)
        or has_department_access(actor, transfer.ToDepartmentID, unrestricted)
    ):
        raise ForbiddenError("You do not have access to this transfer")
    if transfer.Status != TransferStatus.APPROVED.value:
        raise ConflictError("Only approved transfer requests can be completed")

    item = transfer.Item
    destination = get_department_or_404(db, transfer.ToDepartmentID)
    with atomic(db):
        if item.IsConsumable:
            if transfer.Quantity > (item.CurrentStock or 0):
                raise ConflictError(f"Insufficient stock: {item.CurrentStock or 0} units available")
            item.CurrentStock = (item.CurrentStock or 0) - transfer.Quantity
            item.UpdatedDate = now
            target = _find_destination_stock(db, item, destination.DepartmentID)
            if target is not None:
                target.CurrentStock = (target.CurrentStock or 0) + transfer.Quantity
                target.UpdatedDate = now
            else:
                db.add(
                    Item(
                        ManualID=generate_manual_id(db, destination.Code),
                        Name=item.Name,
                        CategoryID=item.CategoryID,
                        DepartmentID=destination.DepartmentID,
                        SourceDepartmentID=item.DepartmentID,
                        Status=ItemStatus.AVAILABLE.value,
                        Condition=item.Condition,
                        IsConsumable=True,
                        CurrentStock=transfer.Quantity,
                        MinStockLevel=item.MinStockLevel,
                        Description=item.Description,
                        CreatedDate=now,
                        UpdatedDate=now,
                    )
                )
        else:
            if item.Status != ItemStatus.AVAILABLE.value:
                raise ConflictError("Item is not available for transfer")
            item.SourceDepartmentID = item.DepartmentID
            item.DepartmentID = destination.DepartmentID
            item.Status = ItemStatus.AVAILABLE.value
            item.UpdatedDate = now

        record = TransferRecord(
            TransferRequestID=transfer.TransferRequestID,
            ItemID=item.ItemID,
            FromDepartmentID=transfer.FromDepartmentID,
            ToDepartmentID=transfer.ToDepartmentID,
            TransferredBy=actor.UserID,
            Quantity=transfer.Quantity,
            Notes=(notes or "").strip() or None,
            TransferDate=now,
        )
        db.add(record)
        _transition(db, transfer, TransferStatus.COMPLETED)
    db.refresh(transfer)
    logger.info("Transfer completed transfer_id=%s record_id=%s", transfer_id, record.TransferRecordID)
    log_audit(
        db,
        user_id=actor.UserID,
        action="COMPLETE_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer_id,
        changes={
            "itemName": item.Name,
            "fromDepartmentId": transfer.FromDepartmentID,
            "toDepartmentId": transfer.ToDepartmentID,
            "quantity": transfer.Quantity,
        },
    )
    return record


def cancel_transfer(db: Session, actor: User, transfer_id: int) -> TransferRequest:
    transfer = get_transfer_or_404(db, transfer_id)
    if transfer.RequestedBy != actor.UserID and role_of(actor) != Role.ADMIN:
        raise ForbiddenError("You can only cancel your own transfer requests")
    if transfer.Status != TransferStatus.PENDING.value:
        raise ConflictError("Only pending transfer requests can be cancelled")
    with atomic(db):
        _transition(db, transfer, TransferStatus.CANCELLED)
    db.refresh(transfer)
    log_audit(
        db,
        user_id=actor.UserID,
        action="CANCEL_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer_id,
        changes={"status": TransferStatus.CANCELLED.value},
    )
    return transfer


def list_transfers(
    db: Session,
    actor: User,
    *,
    direction: str | None = None,
    status: str | None = None,
) -> list[TransferRequest]:
    """Transfers touching the actor's departments.

    ``direction`` is ``incoming`` (requests arriving at a department the actor
    manages for an item it holds, i.e. waiting on the actor's decision),
    ``outgoing`` (requests the actor's departments have sent) or empty for
    both.
    """
    require_role(actor, COMPLETION_ROLES)
    stmt = (
        select(TransferRequest)
        .options(
            selectinload(TransferRequest.Item),
            selectinload(TransferRequest.FromDepartment),
            selectinload(TransferRequest.ToDepartment),
            selectinload(TransferRequest.Requester),
        )
        .order_by(TransferRequest.RequestDate.desc(), TransferRequest.TransferRequestID.desc())
    )
    department_ids = managed_department_ids(actor, (Role.ADMIN, Role.PROCUREMENT))
    direction = (direction or "").strip().lower()
    if direction not in {"", "incoming", "outgoing"}:
        raise ValidationError("direction must be incoming or outgoing")
    if department_ids is not None:
        if direction == "incoming":
            stmt = stmt.where(TransferRequest.FromDepartmentID.in_(department_ids))
        elif direction == "outgoing":
            stmt = stmt.where(TransferRequest.ToDepartmentID.in_(department_ids))
        else:
            stmt = stmt.where(
                or_(TransferRequest.ToDepartmentID.in_(department_ids), TransferRequest.FromDepartmentID.in_(department_ids))
            )
    if status:
        stmt = stmt.where(TransferRequest.Status == status.strip().upper())
    return list(db.execute(stmt).scalars().all())


def serialize_transfer(transfer: TransferRequest) -> dict:
    requester = transfer.Requester
    return {
        "transferRequestID": transfer.TransferRequestID,
        "itemID": transfer.ItemID,
        "fromDepartmentID": transfer.FromDepartmentID,
        "toDepartmentID": transfer.ToDepartmentID,
        "requestedBy": transfer.RequestedBy,
        "approvedBy": transfer.ApprovedBy,
        "quantity": transfer.Quantity,
        "purpose": transfer.Purpose,
        "status": transfer.Status,
        "requestDate": transfer.RequestDate,
        "approvalDate": transfer.ApprovalDate,
        "rejectionReason": transfer.RejectionReason,
        "item": serialize_item(transfer.Item) if transfer.Item else None,
        "fromDepartment": serialize_department(transfer.FromDepartment) if transfer.FromDepartment else None,
        "toDepartment": serialize_department(transfer.ToDepartment) if transfer.ToDepartment else None,
        "requester": {"userID": requester.UserID, "name": requester.Name} if requester else None,
    }


def serialize_transfer_record(record: TransferRecord) -> dict:
    return {
        "transferRecordID": record.TransferRecordID,
        "transferRequestID": record.TransferRequestID,
        "itemID": record.ItemID,
        "fromDepartmentID": record.FromDepartmentID,
        "toDepartmentID": record.ToDepartmentID,
        "transferredBy": record.TransferredBy,
        "quantity": record.Quantity,
        "notes": record.Notes,
        "transferDate": record.TransferDate,
    }
