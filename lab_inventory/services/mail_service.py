from __future__ import annotations

import html
import logging
import os
import re
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable


logger = logging.getLogger("lab_inventory.mail")

SMTP_TIMEOUT_SECONDS = 20


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html: str


Notifier = Callable[[OutboundEmail], None]


def _app_url(path: str = "") -> str:
    base = (os.environ.get("APP_BASE_URL") or "http://localhost:3000").rstrip("/")
    return f"{base}{path}"


def _strip_tags(markup: str) -> str:
    return re.sub(r"<[^>]*>", "", markup)


def send_email(to: str, subject: str, html_body: str) -> tuple[bool, str | None]:
    """
    return: (success, error_text)
    """
    host = (os.environ.get("EMAIL_SERVER_HOST") or "").strip()
    if not host:
        logger.warning("Email not sent to=%s subject=%r reason=EMAIL_SERVER_HOST unset", to, subject)
        return False, "EMAIL_SERVER_HOST is not configured"
    if not to:
        return False, "missing recipient"

    port = int(os.environ.get("EMAIL_SERVER_PORT") or "587")
    user = (os.environ.get("EMAIL_SERVER_USER") or "").strip()
    password = os.environ.get("EMAIL_SERVER_PASSWORD") or ""
    sender = (os.environ.get("EMAIL_FROM") or user or "noreply@lab-inventory.local").strip()

    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(_strip_tags(html_body))
    message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            smtp.starttls()
            if user:
                smtp.login(user, password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email send failed to=%s subject=%r error=%s", to, subject, exc)
        return False, str(exc)

    logger.info("Email sent to=%s subject=%r", to, subject)
    return True, None


def deliver(message: OutboundEmail) -> None:
    send_email(message.to, message.subject, message.html)


def dispatch(notifier: Notifier | None, message: OutboundEmail) -> None:
    """Hand one message to the notifier; failures are logged and dropped."""
    if notifier is None:
        return
    try:
        notifier(message)
    except Exception as exc:
        logger.warning("Email dispatch failed to=%s subject=%r error=%s", message.to, message.subject, exc)


def _layout(title: str, header_color: str, body: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: {header_color}; color: white; padding: 20px; text-align: center;">
      <h2>{html.escape(title)}</h2>
    </div>
    <div style="background: #f9f9f9; padding: 20px; margin: 20px 0;">
      {body}
    </div>
    <div style="text-align: center; color: #777; font-size: 12px;">
      <p>This is an automated message from the Inventory Management System</p>
    </div>
  </div>
</body>
</html>
"""


def new_request_email(
    *,
    to: str,
    incharge_name: str,
    requester_name: str,
    requester_email: str,
    item_name: str,
    manual_id: str,
    purpose: str,
    requested_days: int,
    department: str,
) -> OutboundEmail:
    e = html.escape
    body = f"""
      <p>Dear {e(incharge_name)},</p>
      <p>A new request has been submitted for an item in your department.</p>
      <p><b>Requester:</b> {e(requester_name)} ({e(requester_email)})</p>
      <p><b>Item:</b> {e(item_name)} (ID: {e(manual_id)})</p>
      <p><b>Department:</b> {e(department)}</p>
      <p><b>Purpose:</b> {e(purpose)}</p>
      <p><b>Requested Duration:</b> {requested_days} days</p>
      <p><a href="{_app_url('/dashboard/incharge/requests')}">Review Request</a></p>
    """
    return OutboundEmail(to, f"New Item Request: {item_name}", _layout("New Equipment Request", "#0066cc", body))


def request_status_email(
    *,
    to: str,
    user_name: str,
    item_name: str,
    manual_id: str,
    approved: bool,
    reason: str | None = None,
    collection_instructions: str | None = None,
) -> OutboundEmail:
    e = html.escape
    status = "approved" if approved else "rejected"
    details = ""
    if approved:
        instructions = collection_instructions or "Please collect the item from the lab during working hours."
        details = f"<p><b>Collection instructions:</b> {e(instructions)}</p>"
    elif reason:
        details = f"<p><b>Reason:</b> {e(reason)}</p>"
    body = f"""
      <p>Dear {e(user_name)},</p>
      <p>Your request for <b>{e(item_name)}</b> (ID: {e(manual_id)}) has been {status}.</p>
      {details}
    """
    color = "#28a745" if approved else "#dc3545"
    return OutboundEmail(to, f"Request {status.capitalize()}: {item_name}", _layout(f"Request {status.capitalize()}", color, body))


def late_return_ban_email(
    *,
    to: str,
    user_name: str,
    item_name: str,
    manual_id: str,
    days_late: int,
    banned_until: str,
) -> OutboundEmail:
    e = html.escape
    body = f"""
      <p>Dear {e(user_name)},</p>
      <p><b>{e(item_name)}</b> (ID: {e(manual_id)}) was returned {days_late} day(s) late.</p>
      <p>As per the lab policy you are banned from borrowing items until <b>{e(banned_until)}</b>.</p>
    """
    return OutboundEmail(to, f"Late Return: Borrowing Suspended Until {banned_until}", _layout("Late Return Ban", "#dc3545", body))


def damage_compensation_email(
    *,
    to: str,
    user_name: str,
    item_name: str,
    manual_id: str,
    damage_remarks: str,
    incharge_name: str,
    incharge_email: str,
) -> OutboundEmail:
    e = html.escape
    body = f"""
      <p>Dear {e(user_name)},</p>
      <p><b>{e(item_name)}</b> (ID: {e(manual_id)}) was returned damaged and needs to be replaced.</p>
      <p><b>Remarks:</b> {e(damage_remarks)}</p>
      <p>Your borrowing privileges are suspended until the replacement or compensation is settled.
      Please contact {e(incharge_name)} ({e(incharge_email)}).</p>
    """
    return OutboundEmail(to, f"Damage Compensation Required: {item_name}", _layout("Damage Compensation", "#fd7e14", body))


def due_date_reminder_email(
    *,
    to: str,
    user_name: str,
    item_name: str,
    manual_id: str,
    due_date: str,
    days_remaining: int,
    ban_months: int,
) -> OutboundEmail:
    e = html.escape
    body = f"""
      <p>Dear {e(user_name)},</p>
      <p>You have <b>{days_remaining} day(s)</b> remaining to return <b>{e(item_name)}</b> (ID: {e(manual_id)}).</p>
      <p>Due Date: <b>{e(due_date)}</b></p>
      <p>Late returns will result in a {ban_months}-month ban from borrowing any items.</p>
    """
    return OutboundEmail(to, f"Reminder: Return {item_name} by {due_date}", _layout("Return Reminder", "#ffc107", body))


def overdue_email(
    *,
    to: str,
    user_name: str,
    item_name: str,
    manual_id: str,
    due_date: str,
    days_overdue: int,
    ban_months: int,
) -> OutboundEmail:
    e = html.escape
    body = f"""
      <p>Dear {e(user_name)},</p>
      <p><b>{e(item_name)}</b> (ID: {e(manual_id)}) is <b>{days_overdue} day(s) overdue</b>. It was due on {e(due_date)}.</p>
      <p>You will receive a {ban_months}-month ban from borrowing when this item is returned late.
      Please return it to the lab immediately.</p>
    """
    return OutboundEmail(to, f"OVERDUE: {item_name} - Action Required", _layout("Overdue Item", "#dc3545", body))
