from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from lab_inventory.db.transaction import atomic
from lab_inventory.models.enums import Role
from lab_inventory.models.inventory_models import Setting
from lab_inventory.services.errors import ValidationError


logger = logging.getLogger("lab_inventory.settings")

DEFAULT_SETTINGS: dict[str, str] = {
    "late_return_ban_months": "6",
    "late_return_auto_ban": "true",
    "default_max_borrow_days": "7",
    "max_items_per_user": "3",
    "reminder_3days_enabled": "true",
    "reminder_1day_enabled": "true",
    "overdue_reminder_enabled": "true",
    "email_sender_name": "Inventory System",
    "email_footer_text": "University Lab Inventory Management",
    "consumable_min_stock_alert": "10",
    "student_max_borrow_days": "7",
    "student_max_items": "3",
    "student_requires_approval": "true",
    "faculty_max_borrow_days": "30",
    "faculty_max_items": "10",
    "faculty_requires_approval": "true",
    "staff_max_borrow_days": "14",
    "staff_max_items": "5",
    "staff_requires_approval": "true",
}

BORROWER_ROLES = (Role.STUDENT, Role.FACULTY, Role.STAFF)

NUMBER_KEYS = {
    "late_return_ban_months",
    "default_max_borrow_days",
    "max_items_per_user",
    "consumable_min_stock_alert",
} | {f"{role.value.lower()}_max_borrow_days" for role in BORROWER_ROLES} | {
    f"{role.value.lower()}_max_items" for role in BORROWER_ROLES
}

BOOLEAN_KEYS = {
    "late_return_auto_ban",
    "reminder_3days_enabled",
    "reminder_1day_enabled",
    "overdue_reminder_enabled",
} | {f"{role.value.lower()}_requires_approval" for role in BORROWER_ROLES}


@dataclass(frozen=True)
class RoleLimits:
    max_borrow_days: int
    max_items: int
    requires_approval: bool


@dataclass(frozen=True)
class LabSettings:
    ban_months: int = 6
    auto_ban_late_returns: bool = True
    reminder_3days_enabled: bool = True
    reminder_1day_enabled: bool = True
    overdue_reminder_enabled: bool = True
    min_stock_alert: int = 10
    sender_name: str = "Inventory System"
    footer_text: str = ""
    default_limits: RoleLimits = RoleLimits(7, 3, True)
    role_limits: dict[Role, RoleLimits] = field(default_factory=dict)

    def limits_for(self, role: Role | str) -> RoleLimits:
        try:
            role = Role(role)
        except ValueError:
            return self.default_limits
        if role in self.role_limits:
            return self.role_limits[role]
        # Staff roles are bounded by the global limits and never wait for approval.
        return RoleLimits(self.default_limits.max_borrow_days, self.default_limits.max_items, False)


def get_number_value(value: str | None, fallback: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


def get_boolean_value(value: str | None) -> bool:
    return str(value).strip().lower() == "true"


def get_all_settings(db: Session) -> dict[str, str]:
    settings_map = dict(DEFAULT_SETTINGS)
    for row in db.execute(select(Setting)).scalars().all():
        settings_map[row.Key] = row.Value
    return settings_map


def validate_setting(key: str, value: Any) -> str:
    if not key or not isinstance(value, str):
        raise ValidationError("Each setting must have a key and value")
    if key in NUMBER_KEYS:
        number = get_number_value(value, -1)
        if number < 0:
            raise ValidationError(f"{key} must be a positive number")
    if key in BOOLEAN_KEYS and value not in {"true", "false"}:
        raise ValidationError(f"{key} must be 'true' or 'false'")
    return value


def update_settings(db: Session, settings: list[dict[str, Any]]) -> dict[str, str]:
    if not isinstance(settings, list):
        raise ValidationError("Settings must be an array")
    cleaned = []
    for entry in settings:
        key = str((entry or {}).get("key") or "").strip()
        value = validate_setting(key, (entry or {}).get("value"))
        cleaned.append((key, value, (entry or {}).get("description")))

    with atomic(db):
        for key, value, description in cleaned:
            row = db.get(Setting, key)
            if row is None:
                row = Setting(Key=key)
                db.add(row)
            row.Value = value
            row.Description = description
            row.UpdatedDate = datetime.now()
    logger.info("Settings updated keys=%s", ",".join(key for key, _, _ in cleaned))
    return get_all_settings(db)


def reset_to_defaults(db: Session) -> dict[str, str]:
    with atomic(db):
        db.execute(delete(Setting))
    logger.info("Settings reset to defaults")
    return dict(DEFAULT_SETTINGS)


def build_lab_settings(values: dict[str, str]) -> LabSettings:
    defaults = RoleLimits(
        max_borrow_days=get_number_value(values.get("default_max_borrow_days"), 7),
        max_items=get_number_value(values.get("max_items_per_user"), 3),
        requires_approval=True,
    )
    role_limits = {}
    for role in BORROWER_ROLES:
        prefix = role.value.lower()
        role_limits[role] = RoleLimits(
            max_borrow_days=get_number_value(values.get(f"{prefix}_max_borrow_days"), defaults.max_borrow_days),
            max_items=get_number_value(values.get(f"{prefix}_max_items"), defaults.max_items),
            requires_approval=get_boolean_value(values.get(f"{prefix}_requires_approval", "true")),
        )
    return LabSettings(
        ban_months=get_number_value(values.get("late_return_ban_months"), 6),
        auto_ban_late_returns=get_boolean_value(values.get("late_return_auto_ban", "true")),
        reminder_3days_enabled=get_boolean_value(values.get("reminder_3days_enabled", "true")),
        reminder_1day_enabled=get_boolean_value(values.get("reminder_1day_enabled", "true")),
        overdue_reminder_enabled=get_boolean_value(values.get("overdue_reminder_enabled", "true")),
        min_stock_alert=get_number_value(values.get("consumable_min_stock_alert"), 10),
        sender_name=values.get("email_sender_name") or "Inventory System",
        footer_text=values.get("email_footer_text") or "",
        default_limits=defaults,
        role_limits=role_limits,
    )


def load_settings(db: Session) -> LabSettings:
    return build_lab_settings(get_all_settings(db))
