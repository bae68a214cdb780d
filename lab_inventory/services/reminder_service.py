from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lab_inventory.db.transaction import atomic
from lab_inventory.models.inventory_models import IssueRecord
from lab_inventory.services.mail_service import OutboundEmail, due_date_reminder_email, overdue_email, send_email
from lab_inventory.services.settings_service import LabSettings


logger = logging.getLogger("lab_inventory.reminders")

Sender = Callable[[OutboundEmail], bool]


def smtp_sender(message: OutboundEmail) -> bool:
    ok, _ = send_email(message.to, message.subject, message.html)
    return ok


def days_until_due(expected_return: datetime, now: datetime) -> int:
    return math.ceil((expected_return - now) / timedelta(days=1))


def send_due_reminders(
    db: Session,
    settings: LabSettings,
    *,
    sender: Sender = smtp_sender,
    now: datetime | None = None,
) -> dict[str, int]:
    """Send the 3-day, 1-day and overdue notices for unreturned items.

    Each notice goes out at most once per issue record; the matching flag is
    only set after the sender reports success, so failures retry on the next run.
    """
    now = now or datetime.now()
    records = db.execute(
        select(IssueRecord)
        .options(selectinload(IssueRecord.Item), selectinload(IssueRecord.User))
        .where(IssueRecord.ActualReturnDate.is_(None))
        .order_by(IssueRecord.ExpectedReturnDate)
    ).scalars().all()
    logger.info("Reminder check started active_records=%s", len(records))

    sent = {"threeDay": 0, "oneDay": 0, "overdue": 0}
    for record in records:
        remaining = days_until_due(record.ExpectedReturnDate, now)
        due_date = record.ExpectedReturnDate.date().isoformat()
        common = {
            "to": record.User.Email,
            "user_name": record.User.Name,
            "item_name": record.Item.Name,
            "manual_id": record.Item.ManualID,
            "due_date": due_date,
            "ban_months": settings.ban_months,
        }

        if settings.reminder_3days_enabled and remaining == 3 and not record.Reminder3DaysSent:
            if sender(due_date_reminder_email(days_remaining=3, **common)):
                with atomic(db):
                    record.Reminder3DaysSent = True
                sent["threeDay"] += 1

        if settings.reminder_1day_enabled and remaining == 1 and not record.Reminder1DaySent:
            if sender(due_date_reminder_email(days_remaining=1, **common)):
                with atomic(db):
                    record.Reminder1DaySent = True
                sent["oneDay"] += 1

        if settings.overdue_reminder_enabled and remaining < 0 and not record.OverdueSent:
            if sender(overdue_email(days_overdue=abs(remaining), **common)):
                with atomic(db):
                    record.OverdueSent = True
                sent["overdue"] += 1

    logger.info(
        "Reminder check finished three_day=%s one_day=%s overdue=%s",
        sent["threeDay"],
        sent["oneDay"],
        sent["overdue"],
    )
    return sent
