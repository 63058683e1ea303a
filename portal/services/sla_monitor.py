"""
SLA monitor

Finds open tickets whose first-response or resolution deadline has passed
(breach) or has less than 25% of its window left (warning) and alerts staff.
A ticket is alerted at most once per level every 4 hours.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..models import NotificationLog, User
from ..models_ticket import OPEN_TICKET_STATUSES, Ticket
from .notification_service import deliver_ticket_notification, format_notification_message, notify_users

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(hours=4)
WARNING_REMAINING_PERCENT = 25


def _deadline_level(created_at: datetime, due_at: datetime, now: datetime) -> Optional[str]:
    if due_at < now:
        return "breach"
    total = (due_at - created_at).total_seconds()
    if total <= 0:
        return None
    remaining = (due_at - now).total_seconds()
    if remaining / total * 100 < WARNING_REMAINING_PERCENT:
        return "warning"
    return None


def get_notification_level(ticket: Ticket, now: datetime) -> tuple[Optional[str], Optional[datetime]]:
    """
    Return (level, deadline) for a ticket. The first-response deadline is
    checked first; resolution only when first response yields nothing.
    """
    if ticket.status not in OPEN_TICKET_STATUSES or not ticket.created_at:
        return None, None

    if not ticket.first_response_at and ticket.first_response_due_at:
        level = _deadline_level(ticket.created_at, ticket.first_response_due_at, now)
        if level:
            return level, ticket.first_response_due_at

    if not ticket.resolved_at and ticket.sla_due_at:
        level = _deadline_level(ticket.created_at, ticket.sla_due_at, now)
        if level:
            return level, ticket.sla_due_at

    return None, None


def recently_notified(db: Session, ticket_id: int, notification_type: str, now: datetime) -> bool:
    return (
        db.query(NotificationLog.id)
        .filter(
            NotificationLog.ticket_id == ticket_id,
            NotificationLog.notification_type == notification_type,
            NotificationLog.created_at >= now - DEDUP_WINDOW,
        )
        .first()
        is not None
    )


def get_alert_recipients(db: Session, ticket: Ticket) -> list[User]:
    """The assignee, or every active internal staff member when nobody is assigned"""
    if ticket.assigned_to:
        assignee = db.query(User).filter(User.id == ticket.assigned_to, User.is_active.is_(True)).first()
        if assignee:
            return [assignee]
    return (
        db.query(User)
        .filter(User.role.in_(("super_admin", "staff")), User.is_active.is_(True))
        .order_by(User.id)
        .all()
    )


async def _notify_ticket(db: Session, ticket: Ticket, level: str, deadline: datetime, now: datetime) -> int:
    notification_type = "sla_breach" if level == "breach" else "sla_warning"
    hours = (deadline - now).total_seconds() / 3600
    subject, message = format_notification_message(
        notification_type,
        ticket.ticket_number,
        ticket.subject,
        priority=ticket.priority,
        hours_overdue=abs(hours) if level == "breach" else None,
        hours_until_due=max(0.0, hours) if level == "warning" else None,
    )

    recipients = get_alert_recipients(db, ticket)
    notify_users(
        db,
        [u.id for u in recipients],
        notification_type,
        subject,
        message,
        {"ticket_id": ticket.id, "level": level},
        ticket.organization_id,
    )

    sent = 0
    for user in recipients:
        sent += await deliver_ticket_notification(
            db, user, notification_type, subject, message, ticket, now, deadline=deadline
        )

    # In-app marker so the de-duplication window applies even when no outbound channel is enabled
    db.add(
        NotificationLog(
            ticket_id=ticket.id,
            notification_type=notification_type,
            channel="in_app",
            recipient=",".join(str(u.id) for u in recipients),
            status="sent" if recipients else "skipped",
            created_at=now,
        )
    )
    db.commit()
    return len(recipients) + sent


async def check_and_notify_sla(db: Session, now: Optional[datetime] = None) -> dict:
    """Scan every open ticket; returns {checked, notified, tickets}"""
    now = now or datetime.utcnow()
    tickets = (
        db.query(Ticket)
        .filter(Ticket.status.in_(OPEN_TICKET_STATUSES))
        .order_by(Ticket.id)
        .all()
    )

    notified = 0
    results = []
    for ticket in tickets:
        level, deadline = get_notification_level(ticket, now)
        if not level:
            continue

        notification_type = "sla_breach" if level == "breach" else "sla_warning"
        if recently_notified(db, ticket.id, notification_type, now):
            logger.debug(f"🔍 Ticket {ticket.id} already alerted for {notification_type}")
            continue

        notified += await _notify_ticket(db, ticket, level, deadline, now)
        results.append({"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "level": level})

    if results:
        logger.info(f"⚠️ SLA monitor alerted {len(results)} of {len(tickets)} open tickets")
    return {"checked": len(tickets), "notified": notified, "tickets": results}


async def check_ticket_sla(db: Session, ticket_id: int, now: Optional[datetime] = None) -> bool:
    """Check one ticket; True when an alert was sent"""
    now = now or datetime.utcnow()
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        return False

    level, deadline = get_notification_level(ticket, now)
    if not level:
        return False

    notification_type = "sla_breach" if level == "breach" else "sla_warning"
    if recently_notified(db, ticket.id, notification_type, now):
        return False

    await _notify_ticket(db, ticket, level, deadline, now)
    return True
