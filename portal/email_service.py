"""
Email Service using Resend
Compiles MJML templates to HTML and sends transactional emails
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    contract_sent_template,
    invoice_sent_template,
    payment_received_template,
    sla_alert_template,
    ticket_update_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfiguredError(Exception):
    """Raised when no email provider is configured"""


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    result = mjml_to_html(mjml_content)
    # mjml_to_html returns a dict with 'html' and 'errors' keys
    if result.get("errors"):
        logger.warning(f"⚠️ MJML compilation warnings: {result['errors']}")
    return result.get("html", "")


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Resend response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailNotConfiguredError("Email service not configured")

    recipients = [to] if isinstance(to, str) else to
    html_content = compile_mjml_to_html(mjml_content)

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise


async def send_email_safe(to, subject: str, mjml_content: str) -> Optional[dict]:
    """Send an email, logging instead of raising; for side-effect notifications"""
    try:
        return await send_email(to=to, subject=subject, mjml_content=mjml_content)
    except EmailNotConfiguredError:
        logger.warning(f"⚠️ Email not configured, skipped '{subject}'")
    except Exception as e:
        logger.error(f"❌ Failed to send '{subject}': {e}")
    return None


# ============================================
# Pre-built emails for portal events
# ============================================


async def send_invoice_email(
    to: str,
    recipient_name: str,
    issuer_name: str,
    invoice_number: str,
    amount: str,
    due_date: str,
    invoice_id: int,
    payment_url: Optional[str] = None,
) -> Optional[dict]:
    mjml_content = invoice_sent_template(
        recipient_name, issuer_name, invoice_number, amount, due_date, invoice_id, payment_url
    )
    return await send_email_safe(to, f"Invoice {invoice_number} from {issuer_name}", mjml_content)


async def send_payment_received_email(
    to: str, recipient_name: str, invoice_number: str, amount: str, balance: str
) -> Optional[dict]:
    mjml_content = payment_received_template(recipient_name, invoice_number, amount, balance)
    return await send_email_safe(to, f"Payment received for {invoice_number}", mjml_content)


async def send_ticket_update_email(
    to: str, recipient_name: str, ticket_number: int, subject: str, message: str, ticket_id: int
) -> Optional[dict]:
    mjml_content = ticket_update_template(recipient_name, ticket_number, subject, message, ticket_id)
    return await send_email_safe(to, f"[Ticket #{ticket_number}] {subject}", mjml_content)


async def send_sla_alert_email(
    to: str,
    recipient_name: str,
    ticket_number: int,
    subject: str,
    level: str,
    deadline: str,
    ticket_id: int,
) -> Optional[dict]:
    mjml_content = sla_alert_template(recipient_name, ticket_number, subject, level, deadline, ticket_id)
    label = "SLA BREACH" if level == "breach" else "SLA warning"
    return await send_email_safe(to, f"[{label}] Ticket #{ticket_number}: {subject}", mjml_content)


async def send_contract_email(
    to: str, recipient_name: str, issuer_name: str, title: str, contract_id: int
) -> Optional[dict]:
    mjml_content = contract_sent_template(recipient_name, issuer_name, title, contract_id)
    return await send_email_safe(to, f"Contract ready for signature: {title}", mjml_content)
