from __future__ import annotations

from typing import Iterable, Optional

from lab_inventory.models.enums import Role
from lab_inventory.models.inventory_models import User
from lab_inventory.services.errors import ForbiddenError


def parse_role(raw: str | None) -> Optional[Role]:
    try:
        return Role(str(raw or "").strip().upper())
    except ValueError:
        return None


def role_of(user: User) -> Optional[Role]:
    return parse_role(user.Role)


def require_role(user: User, roles: Iterable[Role], message: str = "Forbidden") -> Role:
    role = role_of(user)
    if role is None or role not in set(roles):
        raise ForbiddenError(message)
    return role


def managed_department_ids(user: User, unrestricted: Iterable[Role] = (Role.ADMIN,)) -> Optional[list[int]]:
    """Departments the user may act on; ``None`` means every department."""
    if role_of(user) in set(unrestricted):
        return None
    return [department.DepartmentID for department in user.Departments]


def has_department_access(user: User, department_id: int, unrestricted: Iterable[Role] = (Role.ADMIN,)) -> bool:
    allowed = managed_department_ids(user, unrestricted)
    return allowed is None or department_id in allowed


def require_department_access(
    user: User,
    department_id: int,
    message: str = "You do not have access to this department",
    unrestricted: Iterable[Role] = (Role.ADMIN,),
) -> None:
    if not has_department_access(user, department_id, unrestricted):
        raise ForbiddenError(message)
