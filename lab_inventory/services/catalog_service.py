from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import STAFF_ROLES, ItemCondition, ItemStatus, Role
from lab_inventory.models.inventory_models import (
    Category,
    Department,
    IssueRecord,
    IssueRequest,
    Item,
    ItemDepartmentAccess,
    TransferRequest,
    User,
)
from lab_inventory.services.access_service import require_department_access, require_role, role_of
from lab_inventory.services.errors import ConflictError, NotFoundError, ValidationError


def _parse_seq(manual_id: str) -> Optional[int]:
    parts = manual_id.split("-")
    if len(parts) != 2:
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


def generate_manual_id(db: Session, department_code: str) -> str:
    prefix = f"{department_code.strip().upper()}-"
    existing = db.execute(select(Item.ManualID).where(Item.ManualID.startswith(prefix))).scalars().all()

    max_seq = 0
    for manual_id in existing:
        if not manual_id:
            continue
        seq = _parse_seq(manual_id)
        if seq and seq > max_seq:
            max_seq = seq

    return f"{prefix}{max_seq + 1:03d}"


def get_department_or_404(db: Session, department_id: int) -> Department:
    department = db.get(Department, department_id)
    if not department:
        raise NotFoundError("Department not found")
    return department


def get_item_or_404(db: Session, item_id: int) -> Item:
    item = db.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    return item


def create_department(db: Session, *, code: str, name: str) -> Department:
    code = (code or "").strip().upper()
    name = (name or "").strip()
    if not code or not name:
        raise ValidationError("Department code and name are required")
    if db.execute(select(Department).where(Department.Code == code)).scalars().first():
        raise ConflictError(f"Department code {code} already exists")
    department = Department(Code=code, Name=name, CreatedDate=datetime.now())
    with atomic(db):
        db.add(department)
    return department


def create_category(db: Session, *, name: str, description: str | None = None, max_borrow_duration: int = 7) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if max_borrow_duration is None or int(max_borrow_duration) < 1:
        raise ValidationError("maxBorrowDuration must be at least 1 day")
    if db.execute(select(Category).where(Category.Name == name)).scalars().first():
        raise ConflictError(f"Category {name} already exists")
    category = Category(
        Name=name,
        Description=description,
        MaxBorrowDuration=int(max_borrow_duration),
        CreatedDate=datetime.now(),
    )
    with atomic(db):
        db.add(category)
    return category


def create_item(
    db: Session,
    *,
    name: str,
    category_id: int,
    department_id: int,
    condition: str = ItemCondition.GOOD.value,
    is_consumable: bool = False,
    current_stock: int | None = None,
    min_stock_level: int | None = None,
    description: str | None = None,
    location: str | None = None,
    transfer_department_ids: list[int] | None = None,
) -> Item:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Item name is required")
    try:
        condition = ItemCondition(condition).value
    except ValueError as exc:
        raise ValidationError(f"Unknown item condition: {condition}") from exc
    if is_consumable and (current_stock is None or min_stock_level is None):
        raise ValidationError("Consumable items need currentStock and minStockLevel")
    if current_stock is not None and current_stock < 0:
        raise ValidationError("currentStock cannot be negative")

    if not db.get(Category, category_id):
        raise NotFoundError("Category not found")
    department = get_department_or_404(db, department_id)

    now = datetime.now()
    item = Item(
        ManualID=generate_manual_id(db, department.Code),
        Name=name,
        CategoryID=category_id,
        DepartmentID=department_id,
        Status=ItemStatus.AVAILABLE.value,
        Condition=condition,
        IsConsumable=bool(is_consumable),
        CurrentStock=current_stock if is_consumable else None,
        MinStockLevel=min_stock_level if is_consumable else None,
        Description=description,
        Location=location,
        CreatedDate=now,
        UpdatedDate=now,
    )
    for other_id in transfer_department_ids or []:
        if other_id == department_id:
            continue
        get_department_or_404(db, other_id)
        item.DepartmentAccess.append(ItemDepartmentAccess(DepartmentID=other_id, CanTransfer=True))

    with atomic(db):
        db.add(item)
    return item


def list_department_items(db: Session, department_id: int, *, include_shared: bool = True) -> list[Item]:
    get_department_or_404(db, department_id)
    owned = db.execute(
        select(Item).where(Item.DepartmentID == department_id).order_by(Item.ManualID)
    ).scalars().all()
    if not include_shared:
        return list(owned)
    shared = db.execute(
        select(Item)
        .join(ItemDepartmentAccess, ItemDepartmentAccess.ItemID == Item.ItemID)
        .where(ItemDepartmentAccess.DepartmentID == department_id)
        .order_by(Item.ManualID)
    ).scalars().all()
    return list(owned) + [item for item in shared if item.DepartmentID != department_id]


def _count(db: Session, column, value) -> int:
    return int(db.execute(select(func.count()).where(column == value)).scalar() or 0)


def list_departments(db: Session) -> list[tuple[Department, int]]:
    """Every department with the number of items it currently holds."""
    item_counts = dict(
        db.execute(select(Item.DepartmentID, func.count(Item.ItemID)).group_by(Item.DepartmentID)).all()
    )
    departments = db.execute(select(Department).order_by(Department.Name)).scalars().all()
    return [(department, int(item_counts.get(department.DepartmentID, 0))) for department in departments]


def update_department(db: Session, department_id: int, *, code: str | None = None, name: str | None = None) -> Department:
    department = get_department_or_404(db, department_id)
    if code is not None:
        code = code.strip().upper()
        if not code:
            raise ValidationError("Department code cannot be empty")
        clash = db.execute(
            select(Department).where(Department.Code == code).where(Department.DepartmentID != department_id)
        ).scalars().first()
        if clash:
            raise ConflictError(f"Department code {code} already exists")
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Department name cannot be empty")
        clash = db.execute(
            select(Department).where(Department.Name == name).where(Department.DepartmentID != department_id)
        ).scalars().first()
        if clash:
            raise ConflictError(f"Department name {name} already exists")

    with atomic(db):
        if code is not None:
            department.Code = code
        if name is not None:
            department.Name = name
    return department


def delete_department(db: Session, department_id: int) -> Department:
    department = get_department_or_404(db, department_id)
    item_count = _count(db, Item.DepartmentID, department_id)
    if item_count:
        raise ConflictError(f"Cannot delete department with {item_count} items. Please reassign or remove items first.")
    if _count(db, IssueRecord.DepartmentID, department_id) or db.execute(
        select(TransferRequest.TransferRequestID).where(
            or_(TransferRequest.FromDepartmentID == department_id, TransferRequest.ToDepartmentID == department_id)
        )
    ).first():
        raise ConflictError("Cannot delete a department with issue or transfer history")

    with atomic(db):
        db.execute(delete(ItemDepartmentAccess).where(ItemDepartmentAccess.DepartmentID == department_id))
        db.execute(update(Item).where(Item.SourceDepartmentID == department_id).values(SourceDepartmentID=None))
        department.Incharges.clear()
        db.delete(department)
    return department


def set_department_incharges(db: Session, department_id: int, user_ids: list[int]) -> Department:
    """Replace the incharges of a department. An empty list leaves it without one."""
    department = get_department_or_404(db, department_id)
    incharges = []
    for user_id in dict.fromkeys(user_ids or []):
        user = db.get(User, user_id)
        if not user:
            raise NotFoundError("Incharge user not found")
        if role_of(user) != Role.INCHARGE:
            raise ValidationError("User must have INCHARGE role")
        if not user.IsApproved or not user.IsActive:
            raise ValidationError("Incharge must be approved and active")
        incharges.append(user)

    with atomic(db):
        department.Incharges = incharges
    return department


def get_category_or_404(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


def update_category(
    db: Session,
    category_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    max_borrow_duration: int | None = None,
) -> Category:
    category = get_category_or_404(db, category_id)
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Category name cannot be empty")
        clash = db.execute(
            select(Category).where(Category.Name == name).where(Category.CategoryID != category_id)
        ).scalars().first()
        if clash:
            raise ConflictError(f"Category {name} already exists")
    if max_borrow_duration is not None and int(max_borrow_duration) < 1:
        raise ValidationError("maxBorrowDuration must be at least 1 day")

    with atomic(db):
        if name is not None:
            category.Name = name
        if description is not None:
            category.Description = description.strip() or None
        if max_borrow_duration is not None:
            category.MaxBorrowDuration = int(max_borrow_duration)
    return category


def delete_category(db: Session, category_id: int) -> Category:
    category = get_category_or_404(db, category_id)
    item_count = _count(db, Item.CategoryID, category_id)
    if item_count:
        raise ConflictError(f"Cannot delete category with {item_count} items. Please reassign or remove items first.")
    with atomic(db):
        db.delete(category)
    return category


def _require_item_manager(actor: User, item: Item) -> None:
    require_role(actor, STAFF_ROLES, "Unauthorized")
    require_department_access(actor, item.DepartmentID, "Access denied")


def update_item(
    db: Session,
    actor: User,
    item_id: int,
    *,
    name: str | None = None,
    category_id: int | None = None,
    condition: str | None = None,
    status: str | None = None,
    current_stock: int | None = None,
    min_stock_level: int | None = None,
    description: str | None = None,
    location: str | None = None,
) -> Item:
    """Edit catalogue fields of an item held by one of the actor's departments.

    Loan state is owned by the issue and return workflows, so an issued item
    cannot have its status changed here and no item can be marked ISSUED.
    """
    item = get_item_or_404(db, item_id)
    _require_item_manager(actor, item)

    if name is not None and not name.strip():
        raise ValidationError("Item name cannot be empty")
    if category_id is not None:
        get_category_or_404(db, category_id)
    if condition is not None:
        try:
            condition = ItemCondition(condition.strip().upper()).value
        except ValueError as exc:
            raise ValidationError(f"Unknown item condition: {condition}") from exc
    if status is not None:
        try:
            status = ItemStatus(status.strip().upper()).value
        except ValueError as exc:
            raise ValidationError(f"Unknown item status: {status}") from exc
        if status != item.Status and ItemStatus.ISSUED.value in (status, item.Status):
            raise ConflictError("Issued status is managed by the issue and return workflows")
    for label, value in (("currentStock", current_stock), ("minStockLevel", min_stock_level)):
        if value is None:
            continue
        if not item.IsConsumable:
            raise ValidationError(f"{label} only applies to consumable items")
        if value < 0:
            raise ValidationError(f"{label} cannot be negative")

    with atomic(db):
        if name is not None:
            item.Name = name.strip()
        if category_id is not None:
            item.CategoryID = category_id
        if condition is not None:
            item.Condition = condition
        if status is not None:
            item.Status = status
        if current_stock is not None:
            item.CurrentStock = current_stock
        if min_stock_level is not None:
            item.MinStockLevel = min_stock_level
        if description is not None:
            item.Description = description.strip() or None
        if location is not None:
            item.Location = location.strip() or None
        item.UpdatedDate = datetime.now()
    db.refresh(item)
    return item


def delete_item(db: Session, actor: User, item_id: int) -> Item:
    item = get_item_or_404(db, item_id)
    _require_item_manager(actor, item)
    if item.Status == ItemStatus.ISSUED.value:
        raise ConflictError("Cannot delete item that is currently issued")
    if _count(db, IssueRequest.ItemID, item_id) or _count(db, TransferRequest.ItemID, item_id):
        raise ConflictError("Cannot delete an item with borrowing or transfer history")
    with atomic(db):
        db.delete(item)
    return item


def serialize_department(department: Department) -> dict:
    return {
        "departmentID": department.DepartmentID,
        "code": department.Code,
        "name": department.Name,
    }


def serialize_category(category: Category) -> dict:
    return {
        "categoryID": category.CategoryID,
        "name": category.Name,
        "description": category.Description,
        "maxBorrowDuration": category.MaxBorrowDuration,
    }


def serialize_item(item: Item, min_stock_alert: int | None = None) -> dict:
    payload = {
        "itemID": item.ItemID,
        "manualID": item.ManualID,
        "name": item.Name,
        "categoryID": item.CategoryID,
        "departmentID": item.DepartmentID,
        "sourceDepartmentID": item.SourceDepartmentID,
        "status": item.Status,
        "condition": item.Condition,
        "isConsumable": bool(item.IsConsumable),
        "currentStock": item.CurrentStock,
        "minStockLevel": item.MinStockLevel,
        "description": item.Description,
        "location": item.Location,
        "category": serialize_category(item.Category) if item.Category else None,
        "department": serialize_department(item.Department) if item.Department else None,
        "createdDate": item.CreatedDate,
        "updatedDate": item.UpdatedDate,
    }
    if item.IsConsumable and min_stock_alert is not None:
        threshold = item.MinStockLevel if item.MinStockLevel is not None else min_stock_alert
        payload["isLowStock"] = (item.CurrentStock or 0) <= threshold
    return payload
