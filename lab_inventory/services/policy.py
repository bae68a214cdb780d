"""Borrowing rules shared by the request, issue and return workflows.

Ban state is stored as the ``IsBanned``/``BannedUntil`` column pair on
``Users`` but is only ever read and written here, as one of three variants:

* ``NotBanned``
* ``BannedUntil(until)``: timed ban after a late return
* ``BannedIndefinitely``: pending replacement/compensation, lifted by an admin
"""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from lab_inventory.models.enums import ItemCondition, ItemStatus
from lab_inventory.services.settings_service import LabSettings


@dataclass(frozen=True)
class NotBanned:
    pass


@dataclass(frozen=True)
class BannedUntil:
    until: datetime


@dataclass(frozen=True)
class BannedIndefinitely:
    pass


BanState = Union[NotBanned, BannedUntil, BannedIndefinitely]


def ban_state_of(user) -> BanState:
    if not user.IsBanned:
        return NotBanned()
    if user.BannedUntil is None:
        return BannedIndefinitely()
    return BannedUntil(user.BannedUntil)


def apply_ban_state(user, state: BanState) -> None:
    if isinstance(state, BannedUntil):
        user.IsBanned = True
        user.BannedUntil = state.until
    elif isinstance(state, BannedIndefinitely):
        user.IsBanned = True
        user.BannedUntil = None
    else:
        user.IsBanned = False
        user.BannedUntil = None


def is_blocked(state: BanState) -> bool:
    # Timed bans keep blocking past their date until cleared; only the flag is consulted.
    return not isinstance(state, NotBanned)


def describe_ban(state: BanState) -> str | None:
    if isinstance(state, BannedUntil):
        return f"You are banned until {state.until.date().isoformat()}"
    if isinstance(state, BannedIndefinitely):
        return "You are banned indefinitely pending compensation"
    return None


def add_months(value: datetime, months: int) -> datetime:
    year = value.year + (value.month - 1 + months) // 12
    month = (value.month - 1 + months) % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(value.day, last_day)
    return value.replace(year=year, month=month, day=day)


def days_late(expected_return: datetime, now: datetime) -> int:
    if now <= expected_return:
        return 0
    return math.ceil((now - expected_return) / timedelta(days=1))


@dataclass(frozen=True)
class ReturnDecision:
    item_status: ItemStatus
    item_condition: ItemCondition
    ban: Optional[BanState]
    is_late: bool
    days_late: int

    @property
    def late_ban(self) -> bool:
        return isinstance(self.ban, BannedUntil)

    @property
    def compensation_ban(self) -> bool:
        return isinstance(self.ban, BannedIndefinitely)


def item_status_after_return(condition: ItemCondition, is_pending_replacement: bool) -> ItemStatus:
    if condition == ItemCondition.DAMAGED and is_pending_replacement:
        return ItemStatus.PENDING_REPLACEMENT
    if condition == ItemCondition.UNDER_REPAIR:
        return ItemStatus.MAINTENANCE
    return ItemStatus.AVAILABLE


def decide_return(
    *,
    expected_return: datetime,
    condition: ItemCondition,
    is_pending_replacement: bool,
    settings: LabSettings,
    now: datetime,
) -> ReturnDecision:
    """Work out item disposition and borrower ban for one return.

    The ban is ``None`` when the borrower's ban state is left untouched. A late
    return always wins over a pending replacement: the borrower gets the timed
    ban only.
    """
    late_days = days_late(expected_return, now)
    is_late = late_days > 0

    ban: Optional[BanState] = None
    if is_late and settings.auto_ban_late_returns:
        ban = BannedUntil(add_months(now, settings.ban_months))
    elif is_pending_replacement:
        ban = BannedIndefinitely()

    return ReturnDecision(
        item_status=item_status_after_return(condition, is_pending_replacement),
        item_condition=condition,
        ban=ban,
        is_late=is_late,
        days_late=late_days,
    )
