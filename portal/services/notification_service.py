"""
Unified Notification Service
In-app notifications plus outbound delivery over email, Slack, SMS and WhatsApp.
Every outbound attempt is written to notification_log.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER, TWILIO_WHATSAPP_FROM
from ..email_service import send_sla_alert_email, send_ticket_update_email
from ..models import Notification, NotificationLog, User

logger = logging.getLogger(__name__)

NOTIFICATION_CHANNELS = ("email", "sms", "slack", "whatsapp")

# Email is on by default; other channels need an explicit opt-in plus a destination
DEFAULT_PREFERENCES = {"email": True, "sms": False, "slack": False, "whatsapp": False}

NOTIFICATION_COLORS = {
    "sla_breach": "#dc2626",
    "sla_warning": "#ea580c",
    "ticket_created": "#2563eb",
    "ticket_assigned": "#2563eb",
    "ticket_resolved": "#16a34a",
}


# ============================================================================
# PREFERENCES
# ============================================================================


def get_preferences(user: User) -> dict:
    return {**DEFAULT_PREFERENCES, **(user.notification_preferences or {})}


def should_send_notification(notification_type: str, channel: str, preferences: dict) -> bool:
    """
    Check a user's preferences for one notification type on one channel.
    The channel must be enabled, the type not switched off, and channels that
    need a destination (phone number, Slack webhook) must have one.
    """
    if not preferences.get(channel):
        return False

    if preferences.get(f"notify_on_{notification_type}") is False:
        return False

    if channel == "sms" and not preferences.get("sms_number"):
        return False
    if channel == "whatsapp" and not preferences.get("whatsapp_number"):
        return False
    if channel == "slack" and not preferences.get("slack_webhook_url"):
        return False

    return True


def get_recipient(channel: str, preferences: dict, email: Optional[str] = None) -> Optional[str]:
    return {
        "email": email,
        "sms": preferences.get("sms_number"),
        "whatsapp": preferences.get("whatsapp_number"),
        "slack": preferences.get("slack_webhook_url"),
    }.get(channel)


def format_notification_message(
    notification_type: str,
    ticket_number: Optional[int] = None,
    ticket_subject: Optional[str] = None,
    commenter_name: Optional[str] = None,
    comment_preview: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    hours_overdue: Optional[float] = None,
    hours_until_due: Optional[float] = None,
) -> tuple[str, str]:
    """Build (subject, message) for a ticket notification"""
    ref = f"#{ticket_number}" if ticket_number else "A ticket"
    title = f'"{ticket_subject}"' if ticket_subject else ""
    priority_label = (priority or "medium").capitalize()

    if notification_type == "ticket_created":
        return (
            f"New Support Ticket Created: {ref}",
            f"A new support ticket has been created.\n\nTicket: {ref} {title}\nPriority: {priority_label}"
            "\n\nPlease review and respond as soon as possible.",
        )
    if notification_type == "ticket_updated":
        return (
            f"Ticket Updated: {ref}",
            f"Ticket {ref} {title} has been updated.\n\nNew Status: {status or 'Unknown'}"
            "\n\nView the ticket for more details.",
        )
    if notification_type == "ticket_comment":
        return (
            f"New Comment on Ticket {ref}",
            f"{commenter_name or 'Someone'} commented on ticket {ref} {title}"
            f"\n\n\"{comment_preview or 'View the full comment in the ticket.'}\"",
        )
    if notification_type == "ticket_assigned":
        return (
            f"Ticket Assigned to You: {ref}",
            f"You have been assigned to ticket {ref} {title}\n\nPriority: {priority_label}"
            "\n\nPlease review and respond according to the SLA requirements.",
        )
    if notification_type == "ticket_resolved":
        return (
            f"Ticket Resolved: {ref}",
            f"Ticket {ref} {title} has been marked as resolved."
            "\n\nIf you have any questions or the issue persists, please reopen the ticket.",
        )
    if notification_type == "ticket_closed":
        return (
            f"Ticket Closed: {ref}",
            f"Ticket {ref} {title} has been closed.\n\nThank you for using our support system.",
        )
    if notification_type == "sla_warning":
        remaining = f"{round(hours_until_due)} hours" if hours_until_due else "Less than 1 hour"
        return (
            f"SLA Warning: Ticket {ref} Approaching Deadline",
            f"Ticket {ref} {title} is approaching its SLA deadline.\n\nPriority: {priority_label}"
            f"\nTime Remaining: {remaining}\n\nPlease respond urgently to meet the SLA commitment.",
        )
    if notification_type == "sla_breach":
        overdue = f"{round(hours_overdue)} hours" if hours_overdue else "Less than 1 hour"
        return (
            f"SLA BREACH: Ticket {ref} Overdue",
            f"URGENT: Ticket {ref} {title} has breached its SLA deadline.\n\nPriority: {priority_label}"
            f"\nOverdue By: {overdue}\n\nImmediate action required!",
        )

    return f"Ticket Notification: {ref}", f"An update has been made to ticket {ref} {title}"


# ============================================================================
# IN-APP NOTIFICATIONS
# ============================================================================


def create_notification(
    db: Session,
    user_id: int,
    notification_type: str,
    title: str,
    body: Optional[str] = None,
    data: Optional[dict] = None,
    organization_id: Optional[int] = None,
    created_by: Optional[int] = None,
) -> Notification:
    """Add an in-app notification to the session (caller commits)"""
    notification = Notification(
        user_id=user_id,
        organization_id=organization_id,
        created_by=created_by,
        type=notification_type,
        title=title,
        body=body,
        data=data or {},
    )
    db.add(notification)
    return notification


def notify_users(
    db: Session,
    user_ids: Iterable[Optional[int]],
    notification_type: str,
    title: str,
    body: Optional[str] = None,
    data: Optional[dict] = None,
    organization_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> list[int]:
    """
    Create one in-app notification per distinct recipient, skipping the actor.
    Returns the notified user ids. Caller commits.
    """
    notified = []
    for user_id in dict.fromkeys(user_ids):
        if not user_id or user_id == actor_id:
            continue
        create_notification(db, user_id, notification_type, title, body, data, organization_id, actor_id)
        notified.append(user_id)
    return notified


# ============================================================================
# OUTBOUND CHANNELS
# ============================================================================


async def send_slack_message(webhook_url: str, subject: str, message: str, notification_type: str) -> None:
    payload = {
        "attachments": [
            {
                "color": NOTIFICATION_COLORS.get(notification_type, "#64748b"),
                "title": subject,
                "text": message,
            }
        ]
    }
    async with httpx.AsyncClient() as client:
        response = await client.post(webhook_url, json=payload, timeout=10.0)
        response.raise_for_status()


async def send_twilio_message(to: str, body: str, whatsapp: bool = False) -> str:
    """Send an SMS or WhatsApp message through the Twilio REST API; returns the message SID"""
    if not TWILIO_ACCOUNT_SID or not TWILIO_AUTH_TOKEN:
        raise RuntimeError("Twilio is not configured")

    sender = TWILIO_WHATSAPP_FROM if whatsapp else TWILIO_FROM_NUMBER
    if not sender:
        raise RuntimeError(f"No Twilio sender configured for {'WhatsApp' if whatsapp else 'SMS'}")

    data = {"To": f"whatsapp:{to}" if whatsapp else to, "From": sender, "Body": body}
    async with httpx.AsyncClient() as client:
        response = await client.post(
            f"https://api.twilio.com/2010-04-01/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json",
            auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
            data=data,
            timeout=10.0,
        )
    if response.status_code not in (200, 201):
        error = response.json().get("message", "Unknown error")
        raise RuntimeError(f"Twilio API error: {error}")
    return response.json().get("sid")


async def deliver_ticket_notification(
    db: Session,
    user: User,
    notification_type: str,
    subject: str,
    message: str,
    ticket=None,
    now: Optional[datetime] = None,
    deadline: Optional[datetime] = None,
) -> int:
    """
    Send a ticket notification to one user on every channel their preferences allow.
    Each attempt is logged; returns the number of successful deliveries. Caller commits.
    """
    preferences = get_preferences(user)
    delivered = 0

    for channel in NOTIFICATION_CHANNELS:
        if not should_send_notification(notification_type, channel, preferences):
            continue
        recipient = get_recipient(channel, preferences, user.email)
        if not recipient:
            continue

        log = NotificationLog(
            ticket_id=ticket.id if ticket is not None else None,
            user_id=user.id,
            notification_type=notification_type,
            channel=channel,
            recipient=recipient,
            created_at=now or datetime.utcnow(),
        )
        try:
            if channel == "email" and deadline is not None and ticket is not None:
                result = await send_sla_alert_email(
                    to=recipient,
                    recipient_name=user.full_name or user.email,
                    ticket_number=ticket.ticket_number,
                    subject=ticket.subject,
                    level="breach" if notification_type == "sla_breach" else "warning",
                    deadline=deadline.strftime("%Y-%m-%d %H:%M UTC"),
                    ticket_id=ticket.id,
                )
                if result is None:
                    raise RuntimeError("Email not sent")
            elif channel == "email":
                result = await send_ticket_update_email(
                    to=recipient,
                    recipient_name=user.full_name or user.email,
                    ticket_number=ticket.ticket_number if ticket is not None else 0,
                    subject=ticket.subject if ticket is not None else subject,
                    message=message,
                    ticket_id=ticket.id if ticket is not None else 0,
                )
                if result is None:
                    raise RuntimeError("Email not sent")
            elif channel == "slack":
                await send_slack_message(recipient, subject, message, notification_type)
            else:
                await send_twilio_message(recipient, f"{subject}\n\n{message}", whatsapp=channel == "whatsapp")
            log.status = "sent"
            delivered += 1
            logger.info(f"✅ {notification_type} sent to user {user.id} via {channel}")
        except (httpx.HTTPError, RuntimeError) as e:
            log.status = "failed"
            log.error_message = str(e)[:1000]
            logger.warning(f"⚠️ {notification_type} via {channel} failed for user {user.id}: {e}")
        db.add(log)

    return delivered
