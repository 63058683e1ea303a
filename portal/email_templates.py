"""
MJML Email Templates
Transactional emails sent by the portal, using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .config import APP_NAME, FRONTEND_URL
from .utils.sanitization import sanitize_string

# Slate/indigo color scheme
THEME = {
    "primary": "#4f46e5",
    "primary_dark": "#4338ca",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 40px 0 40px">
          <mj-column>
            <mj-text font-size="18px" font-weight="700" color="{THEME['text_primary']}" padding="0 0 24px 0">
              {APP_NAME}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 32px 0" />
          </mj-column>
        </mj-section>

        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you have an account on the {APP_NAME}.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def invoice_sent_template(
    recipient_name: str,
    issuer_name: str,
    invoice_number: str,
    amount: str,
    due_date: str,
    invoice_id: int,
    payment_url: Optional[str] = None,
) -> str:
    """Invoice ready for payment, sent to the client organization"""
    content = f"""
    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text>
      <strong>{sanitize_string(issuer_name)}</strong> has sent you a new invoice.
    </mj-text>

    <mj-text align="center" font-size="32px" font-weight="700" color="{THEME['text_primary']}" padding="20px 0">
      {amount}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Invoice: {sanitize_string(invoice_number)}<br/>Due Date: {due_date}
    </mj-text>
    """

    return get_base_template(
        title="New Invoice",
        preview_text=f"Invoice {invoice_number} - {amount} due {due_date}",
        content_sections=content,
        cta_url=payment_url or f"{FRONTEND_URL}/invoices/{invoice_id}",
        cta_label="Pay Invoice" if payment_url else "View Invoice",
    )


def payment_received_template(recipient_name: str, invoice_number: str, amount: str, balance: str) -> str:
    content = f"""
    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text>
      We received a payment of <strong>{amount}</strong> for invoice {sanitize_string(invoice_number)}.
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Remaining balance: {balance}
    </mj-text>
    """
    return get_base_template(
        title="Payment Received",
        preview_text=f"Payment received for {invoice_number}",
        content_sections=content,
    )


def ticket_update_template(
    recipient_name: str,
    ticket_number: int,
    subject: str,
    message: str,
    ticket_id: int,
) -> str:
    """Ticket status change, assignment or new reply"""
    content = f"""
    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text>
      {sanitize_string(message)}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Ticket #{ticket_number}: {sanitize_string(subject)}
    </mj-text>
    """
    return get_base_template(
        title=f"Ticket #{ticket_number} Updated",
        preview_text=message[:100],
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/tickets/{ticket_id}",
        cta_label="View Ticket",
    )


def sla_alert_template(
    recipient_name: str,
    ticket_number: int,
    subject: str,
    level: str,
    deadline: str,
    ticket_id: int,
) -> str:
    """SLA warning or breach alert for staff"""
    is_breach = level == "breach"
    color = THEME["danger"] if is_breach else THEME["warning"]
    headline = "SLA deadline missed" if is_breach else "SLA deadline approaching"

    content = f"""
    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text font-weight="600" color="{color}">
      {headline}
    </mj-text>

    <mj-text>
      Ticket #{ticket_number}: {sanitize_string(subject)}<br/>
      Deadline: {deadline}
    </mj-text>
    """
    return get_base_template(
        title=f"SLA {'Breach' if is_breach else 'Warning'}: Ticket #{ticket_number}",
        preview_text=f"{headline} for ticket #{ticket_number}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/tickets/{ticket_id}",
        cta_label="Open Ticket",
    )


def contract_sent_template(recipient_name: str, issuer_name: str, title: str, contract_id: int) -> str:
    content = f"""
    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text>
      <strong>{sanitize_string(issuer_name)}</strong> has sent you a contract to review and sign:
    </mj-text>

    <mj-text font-size="18px" font-weight="600" color="{THEME['text_primary']}">
      {sanitize_string(title)}
    </mj-text>
    """
    return get_base_template(
        title="Contract Ready for Signature",
        preview_text=f"{title} is ready for your signature",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/contracts/{contract_id}",
        cta_label="Review & Sign",
    )


__all__ = [
    "THEME",
    "get_base_template",
    "invoice_sent_template",
    "payment_received_template",
    "ticket_update_template",
    "sla_alert_template",
    "contract_sent_template",
]
