from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import Role
from lab_inventory.models.inventory_models import Department, User
from lab_inventory.services.errors import ConflictError, NotFoundError, ValidationError
from lab_inventory.services.access_service import parse_role
from lab_inventory.services.policy import BannedUntil, NotBanned, apply_ban_state, ban_state_of


logger = logging.getLogger("lab_inventory.users")

MIN_PASSWORD_LENGTH = 8


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def set_password(user: User, password: str) -> None:
    trimmed = str(password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    salt = secrets.token_hex(16)
    user.PasswordSalt = salt
    user.PasswordHash = _password_hash(trimmed, salt)


def verify_password(user: User, password: str) -> bool:
    if not user.PasswordHash or not user.PasswordSalt:
        return False
    candidate = _password_hash(str(password or "").strip(), str(user.PasswordSalt))
    return hmac.compare_digest(candidate, str(user.PasswordHash))


def find_user_by_email(db: Session, email: str) -> User | None:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    return db.execute(select(User).where(func.lower(User.Email) == normalized)).scalars().first()


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def authenticate(db: Session, email: str, password: str) -> User | None:
    user = find_user_by_email(db, email)
    if not user or not verify_password(user, password):
        return None
    return user


def create_user(
    db: Session,
    *,
    name: str,
    email: str,
    role: str = Role.STUDENT.value,
    password: str | None = None,
    is_approved: bool = False,
    department_ids: list[int] | None = None,
) -> User:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email:
        raise ValidationError("Name and email are required")
    parsed_role = parse_role(role)
    if parsed_role is None:
        raise ValidationError(f"Unknown role: {role}")
    if find_user_by_email(db, email):
        raise ConflictError("A user with this email already exists")

    now = datetime.now()
    user = User(
        Name=name,
        Email=email,
        Role=parsed_role.value,
        IsApproved=bool(is_approved),
        IsActive=True,
        IsBanned=False,
        BannedUntil=None,
        CreatedDate=now,
        UpdatedDate=now,
    )
    if password:
        set_password(user, password)
    for department_id in department_ids or []:
        department = db.get(Department, department_id)
        if not department:
            raise NotFoundError("Department not found")
        user.Departments.append(department)

    with atomic(db):
        db.add(user)
    logger.info("User created user_id=%s role=%s", user.UserID, user.Role)
    return user


def approve_user(db: Session, user_id: int) -> User:
    user = get_user_or_404(db, user_id)
    if user.IsApproved:
        raise ConflictError("User is already approved")
    with atomic(db):
        user.IsApproved = True
        user.UpdatedDate = datetime.now()
    return user


def set_user_active(db: Session, user_id: int, is_active: bool) -> User:
    user = get_user_or_404(db, user_id)
    with atomic(db):
        user.IsActive = bool(is_active)
        user.UpdatedDate = datetime.now()
    return user


def change_role(db: Session, actor: User, user_id: int, role: str) -> User:
    user = get_user_or_404(db, user_id)
    new_role = parse_role(role)
    if new_role is None:
        raise ValidationError(f"Unknown role: {role}")
    if user.UserID == actor.UserID:
        raise ValidationError("You cannot change your own role")
    with atomic(db):
        user.Role = new_role.value
        if new_role != Role.INCHARGE:
            user.Departments.clear()
        user.UpdatedDate = datetime.now()
    logger.info("Role changed user_id=%s role=%s", user.UserID, user.Role)
    return user


def reject_user(db: Session, user_id: int) -> User:
    """Drop a pending registration. Approved accounts are deactivated instead."""
    user = get_user_or_404(db, user_id)
    if user.IsApproved:
        raise ConflictError("Cannot reject an already approved user")
    with atomic(db):
        user.Departments.clear()
        db.delete(user)
    logger.info("Registration rejected user_id=%s", user_id)
    return user


def revoke_ban(db: Session, user_id: int) -> tuple[User, Any]:
    """Lift a timed or indefinite ban. Returns the user and the ban that was lifted."""
    user = get_user_or_404(db, user_id)
    previous = ban_state_of(user)
    if isinstance(previous, NotBanned):
        raise ConflictError("User is not currently banned")
    with atomic(db):
        apply_ban_state(user, NotBanned())
        user.UpdatedDate = datetime.now()
    logger.info("Ban revoked user_id=%s previous=%s", user.UserID, type(previous).__name__)
    return user, previous


def serialize_user(user: User) -> dict:
    state = ban_state_of(user)
    return {
        "userID": user.UserID,
        "name": user.Name,
        "email": user.Email,
        "role": user.Role,
        "isApproved": bool(user.IsApproved),
        "isActive": bool(user.IsActive),
        "isBanned": bool(user.IsBanned),
        "bannedUntil": state.until if isinstance(state, BannedUntil) else None,
        "departmentIDs": [department.DepartmentID for department in user.Departments],
    }
