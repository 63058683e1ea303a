"""Invoice service - Business logic for client invoicing and payments"""

import logging
from datetime import date, datetime
from typing import Optional

import httpx
from fastapi import BackgroundTasks, HTTPException, Request
from sqlalchemy.orm import Session

from ...auth import get_request_meta
from ...config import FRONTEND_URL
from ...email_service import send_invoice_email, send_payment_received_email
from ...models import User
from ...models_invoice import Invoice, InvoicePayment
from ...permissions import can_manage_billing, ensure_organization_visible, is_client
from ...services.audit_service import record_audit
from ...services.notification_service import notify_users
from ...services.stripe_service import StripeAPIError, StripeNotConfiguredError, create_checkout_session
from ...services.zapier_webhooks import queue_webhooks, trigger_webhooks
from .calculations import calculate_invoice_totals, cents_to_dollars, dollars_to_cents, format_cents
from .pdf_service import InvoicePDFGenerator
from .repository import InvoiceRepository
from .schemas import AMOUNT_FIELDS, InvoiceCreate, InvoiceUpdate, ManualPaymentCreate

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    "draft": {"sent", "void", "cancelled"},
    "sent": {"viewed", "partial", "paid", "overdue", "void", "cancelled"},
    "viewed": {"partial", "paid", "overdue", "void", "cancelled"},
    "partial": {"paid", "overdue", "void"},
    "overdue": {"partial", "paid", "void"},
    "paid": set(),
    "void": set(),
    "cancelled": set(),
}

TERMINAL_STATUSES = ("paid", "void", "cancelled")


def can_transition(current: str, new: str) -> bool:
    return new in STATUS_TRANSITIONS.get(current, set())


def invoice_event_data(invoice: Invoice) -> dict:
    """Fields sent to Zapier for invoice events"""
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "client_org_id": invoice.client_org_id,
        "total_cents": invoice.total_cents,
        "amount_paid_cents": invoice.amount_paid_cents,
        "balance_due_cents": invoice.balance_due_cents,
        "currency": invoice.currency,
        "issue_date": invoice.issue_date,
        "due_date": invoice.due_date,
    }


def apply_payment(invoice: Invoice, amount_cents: int, paid_at: datetime) -> None:
    """Add a payment to the running total; paid at zero balance, partial otherwise"""
    invoice.amount_paid_cents = (invoice.amount_paid_cents or 0) + amount_cents
    if invoice.balance_due_cents <= 0:
        invoice.status = "paid"
        invoice.paid_at = paid_at
    else:
        invoice.status = "partial"


def record_stripe_payment(
    db: Session,
    invoice: Invoice,
    amount_cents: int,
    transaction_id: str,
    paid_at: Optional[datetime] = None,
) -> Optional[InvoicePayment]:
    """
    Record a Stripe payment once per payment intent.
    Returns None when the transaction was already recorded or the invoice is settled. Caller commits.
    """
    if InvoiceRepository.payment_exists(db, transaction_id):
        logger.info(f"🔍 Stripe payment {transaction_id} already recorded")
        return None
    if invoice.status in TERMINAL_STATUSES:
        logger.warning(f"⚠️ Stripe payment {transaction_id} for {invoice.status} invoice {invoice.id} ignored")
        return None

    paid_at = paid_at or datetime.utcnow()
    amount_cents = min(amount_cents, invoice.balance_due_cents)
    payment = InvoiceRepository.add_payment(
        db,
        invoice,
        amount_cents=amount_cents,
        payment_method="stripe",
        status="completed",
        provider_transaction_id=transaction_id,
        paid_at=paid_at,
    )
    apply_payment(invoice, amount_cents, paid_at)
    logger.info(f"✅ Stripe payment of {amount_cents} cents recorded on invoice {invoice.id}")
    return payment


async def mark_overdue_invoices(db: Session, today: Optional[date] = None) -> list[int]:
    """Move sent, viewed and partial invoices past their due date to overdue"""
    today = today or datetime.utcnow().date()
    invoices = InvoiceRepository.list_past_due(db, today)
    if not invoices:
        return []

    for invoice in invoices:
        invoice.status = "overdue"
        record_audit(
            db,
            None,
            "invoice.overdue",
            "invoice",
            invoice.id,
            {"due_date": invoice.due_date.isoformat()},
            organization_id=invoice.organization_id,
        )
    db.commit()
    logger.info(f"⚠️ Marked {len(invoices)} invoices overdue")

    for invoice in invoices:
        await trigger_webhooks(db, "invoice.overdue", invoice.organization_id, invoice_event_data(invoice))
    return [invoice.id for invoice in invoices]


class InvoiceService:
    """Service layer for invoice business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = InvoiceRepository()

    @staticmethod
    def _require_billing(user: User) -> None:
        if not can_manage_billing(user):
            raise HTTPException(status_code=403, detail="Forbidden - Account manager access required")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: int, user: User) -> Invoice:
        invoice = self.repo.scoped_query(self.db, user).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")
        return invoice

    def list_invoices(self, user: User, **filters) -> list[Invoice]:
        return self.repo.list_invoices(self.db, user, **filters)

    def view_invoice(self, invoice_id: int, user: User) -> Invoice:
        """Detail read; the first client view of a sent invoice marks it viewed"""
        invoice = self.get_invoice(invoice_id, user)
        if is_client(user) and invoice.status == "sent":
            invoice.status = "viewed"
            invoice.viewed_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(invoice)
            logger.info(f"👀 Invoice {invoice.id} viewed by client user {user.id}")
        return invoice

    def render_pdf(self, invoice_id: int, user: User) -> tuple[bytes, str]:
        invoice = self.get_invoice(invoice_id, user)
        issuer = self.repo.get_organization(self.db, invoice.organization_id)
        client = self.repo.get_organization(self.db, invoice.client_org_id)
        pdf_bytes = InvoicePDFGenerator(invoice, issuer, client).generate()
        return pdf_bytes, f"{invoice.invoice_number}.pdf"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        data: InvoiceCreate,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Invoice:
        self._require_billing(user)
        if not user.organization_id:
            raise HTTPException(status_code=400, detail="User is not associated with an organization")
        ensure_organization_visible(self.db, user, data.client_org_id, "Client organization not found")

        issue_date = data.issue_date or date.today()
        if data.invoice_number:
            invoice_number = data.invoice_number
            if self.repo.invoice_number_exists(self.db, user.organization_id, invoice_number):
                raise HTTPException(status_code=409, detail="Invoice number already exists")
        else:
            invoice_number = self.repo.next_invoice_number(self.db, user.organization_id, issue_date.year)

        line_items = [item.model_dump() for item in data.line_items]
        totals = calculate_invoice_totals(line_items, data.tax_rate, data.discount_type, data.discount_value)

        logger.info(f"📥 Creating invoice {invoice_number} for organization {data.client_org_id}")
        invoice = self.repo.create_invoice(
            self.db,
            line_items,
            organization_id=user.organization_id,
            client_org_id=data.client_org_id,
            invoice_number=invoice_number,
            status="draft",
            issue_date=issue_date,
            due_date=data.due_date,
            tax_rate=data.tax_rate,
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            currency=data.currency,
            amount_paid_cents=0,
            notes=data.notes,
            terms=data.terms,
            footer=data.footer,
            created_by=user.id,
            **totals,
        )

        record_audit(
            self.db,
            user,
            "invoice.created",
            "invoice",
            invoice.id,
            {"invoice_number": invoice_number, "total_cents": totals["total_cents"]},
            request,
        )
        self.db.commit()
        self.db.refresh(invoice)

        queue_webhooks(background_tasks, "invoice.created", invoice.organization_id, invoice_event_data(invoice))
        logger.info(f"✅ Invoice {invoice_number} created (id={invoice.id})")
        return invoice

    def update_invoice(
        self, invoice_id: int, data: InvoiceUpdate, user: User, request: Optional[Request] = None
    ) -> Invoice:
        self._require_billing(user)
        invoice = self.get_invoice(invoice_id, user)
        changes = data.model_dump(exclude_unset=True)

        if invoice.status in TERMINAL_STATUSES:
            raise HTTPException(status_code=400, detail=f"Cannot edit a {invoice.status} invoice")
        if invoice.status != "draft" and any(field in changes for field in AMOUNT_FIELDS):
            raise HTTPException(status_code=400, detail="Only draft invoices can change line items or amounts")

        if changes.get("client_org_id") is not None:
            ensure_organization_visible(self.db, user, changes["client_org_id"], "Client organization not found")

        for field in ("client_org_id", "issue_date", "due_date", "tax_rate", "discount_type", "discount_value"):
            if field in changes and changes[field] is not None:
                setattr(invoice, field, changes[field])
        if "discount_type" in changes and changes["discount_type"] is None:
            invoice.discount_type = None
            invoice.discount_value = 0
        for field in ("notes", "terms", "footer"):
            if field in changes:
                setattr(invoice, field, changes[field])

        if invoice.due_date < invoice.issue_date:
            raise HTTPException(status_code=400, detail="Due date cannot be before the issue date")
        if invoice.discount_type == "percentage" and invoice.discount_value > 10000:
            raise HTTPException(status_code=400, detail="Percentage discount cannot exceed 100%")

        if changes.get("line_items") is not None:
            self.repo.replace_line_items(self.db, invoice, changes["line_items"])
            self.db.flush()

        if invoice.status == "draft":
            totals = calculate_invoice_totals(
                invoice.line_items, invoice.tax_rate, invoice.discount_type, invoice.discount_value
            )
            for field, value in totals.items():
                setattr(invoice, field, value)

        record_audit(
            self.db,
            user,
            "invoice.updated",
            "invoice",
            invoice.id,
            {"fields": sorted(changes)},
            request,
            invoice.organization_id,
        )
        self.db.commit()
        self.db.refresh(invoice)
        return invoice

    def change_status(
        self,
        invoice_id: int,
        new_status: str,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Invoice:
        self._require_billing(user)
        invoice = self.get_invoice(invoice_id, user)
        old_status = invoice.status

        if not can_transition(old_status, new_status):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot change invoice status from {old_status} to {new_status}",
            )

        now = datetime.utcnow()
        invoice.status = new_status
        if new_status == "sent" and not invoice.sent_at:
            invoice.sent_at = now
        elif new_status == "viewed" and not invoice.viewed_at:
            invoice.viewed_at = now
        elif new_status == "paid":
            invoice.paid_at = now

        record_audit(
            self.db,
            user,
            "invoice.status_changed",
            "invoice",
            invoice.id,
            {"from": old_status, "to": new_status},
            request,
            invoice.organization_id,
        )
        self.db.commit()
        self.db.refresh(invoice)

        if new_status == "paid":
            queue_webhooks(background_tasks, "invoice.paid", invoice.organization_id, invoice_event_data(invoice))
        elif new_status == "overdue":
            queue_webhooks(background_tasks, "invoice.overdue", invoice.organization_id, invoice_event_data(invoice))
        logger.info(f"✅ Invoice {invoice.id} status {old_status} -> {new_status} by user {user.id}")
        return invoice

    def delete_invoice(self, invoice_id: int, user: User, request: Optional[Request] = None) -> None:
        self._require_billing(user)
        invoice = self.get_invoice(invoice_id, user)
        if invoice.status != "draft":
            raise HTTPException(status_code=400, detail="Only draft invoices can be deleted")

        record_audit(
            self.db,
            user,
            "invoice.deleted",
            "invoice",
            invoice.id,
            {"invoice_number": invoice.invoice_number},
            request,
            invoice.organization_id,
        )
        self.db.delete(invoice)
        self.db.commit()
        logger.info(f"🗑️ Draft invoice {invoice_id} deleted by user {user.id}")

    async def send_invoice(self, invoice_id: int, user: User, request: Optional[Request] = None) -> Invoice:
        """Mark a draft as sent and email every active user of the client organization"""
        self._require_billing(user)
        invoice = self.get_invoice(invoice_id, user)

        if invoice.status == "draft":
            invoice.status = "sent"
            invoice.sent_at = datetime.utcnow()
        elif invoice.status not in ("sent", "viewed", "partial", "overdue"):
            raise HTTPException(status_code=400, detail=f"Cannot send a {invoice.status} invoice")

        issuer = self.repo.get_organization(self.db, invoice.organization_id)
        client_org = self.repo.get_organization(self.db, invoice.client_org_id)
        recipients = self.repo.get_client_users(self.db, invoice.client_org_id)

        title = f"New invoice {invoice.invoice_number}"
        body = f"{format_cents(invoice.balance_due_cents, invoice.currency)} due {invoice.due_date.isoformat()}"
        notify_users(
            self.db,
            [u.id for u in recipients],
            "invoice_sent",
            title,
            body,
            {"invoice_id": invoice.id},
            invoice.client_org_id,
            user.id,
        )

        emails = {u.email: u.full_name or u.email for u in recipients}
        if client_org and client_org.billing_email:
            emails.setdefault(client_org.billing_email, client_org.name)

        sent = 0
        for email, name in emails.items():
            result = await send_invoice_email(
                to=email,
                recipient_name=name,
                issuer_name=issuer.name if issuer else "",
                invoice_number=invoice.invoice_number,
                amount=format_cents(invoice.balance_due_cents, invoice.currency),
                due_date=invoice.due_date.strftime("%B %d, %Y"),
                invoice_id=invoice.id,
                payment_url=invoice.stripe_payment_link,
            )
            if result is not None:
                sent += 1

        record_audit(
            self.db,
            user,
            "invoice.sent",
            "invoice",
            invoice.id,
            {"recipients": len(emails), "emails_sent": sent},
            request,
            invoice.organization_id,
        )
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"📧 Invoice {invoice.invoice_number} sent to {sent}/{len(emails)} recipients")
        return invoice

    async def record_manual_payment(
        self,
        invoice_id: int,
        data: ManualPaymentCreate,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> InvoicePayment:
        if not can_manage_billing(user):
            raise HTTPException(status_code=403, detail="Only account managers can record manual payments")
        invoice = self.get_invoice(invoice_id, user)

        if invoice.status in ("draft", "void", "cancelled"):
            raise HTTPException(status_code=400, detail=f"Cannot record a payment on a {invoice.status} invoice")

        amount_cents = dollars_to_cents(data.amount)
        if amount_cents <= 0:
            raise HTTPException(status_code=400, detail="Amount must be greater than 0")
        if amount_cents > invoice.balance_due_cents:
            raise HTTPException(
                status_code=400,
                detail={
                    "message": "Payment amount exceeds balance due",
                    "balance_due": cents_to_dollars(invoice.balance_due_cents),
                },
            )

        ip_address, user_agent = get_request_meta(request) if request is not None else (None, None)
        paid_at = datetime.strptime(data.payment_date, "%Y-%m-%d")

        payment = self.repo.add_payment(
            self.db,
            invoice,
            amount_cents=amount_cents,
            payment_method=data.payment_method,
            status="completed",
            reference=data.payment_reference,
            notes=data.notes,
            paid_at=paid_at,
            recorded_by=user.id,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        apply_payment(invoice, amount_cents, paid_at)

        record_audit(
            self.db,
            user,
            "invoice.payment_recorded",
            "invoice",
            invoice.id,
            {
                "payment_id": payment.id,
                "amount_cents": amount_cents,
                "payment_method": data.payment_method,
                "status": invoice.status,
            },
            request,
            invoice.organization_id,
        )
        self.db.commit()
        self.db.refresh(invoice)
        self.db.refresh(payment)

        if invoice.status == "paid":
            queue_webhooks(background_tasks, "invoice.paid", invoice.organization_id, invoice_event_data(invoice))

        client_org = self.repo.get_organization(self.db, invoice.client_org_id)
        if client_org and client_org.billing_email:
            await send_payment_received_email(
                client_org.billing_email,
                client_org.name,
                invoice.invoice_number,
                format_cents(amount_cents, invoice.currency),
                format_cents(invoice.balance_due_cents, invoice.currency),
            )

        logger.info(f"✅ Manual payment {payment.id} of {amount_cents} cents on invoice {invoice.id}")
        return payment

    async def create_payment_link(self, invoice_id: int, user: User) -> dict:
        """Create a Stripe Checkout session for the outstanding balance"""
        invoice = self.get_invoice(invoice_id, user)
        if not is_client(user):
            self._require_billing(user)

        if invoice.status in TERMINAL_STATUSES or invoice.status == "draft":
            raise HTTPException(status_code=400, detail=f"Cannot pay a {invoice.status} invoice")
        if invoice.balance_due_cents <= 0:
            raise HTTPException(status_code=400, detail="Invoice has no balance due")

        client_org = self.repo.get_organization(self.db, invoice.client_org_id)
        try:
            session = await create_checkout_session(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                amount_cents=invoice.balance_due_cents,
                currency=invoice.currency,
                success_url=f"{FRONTEND_URL}/invoices/{invoice.id}?payment=success",
                cancel_url=f"{FRONTEND_URL}/invoices/{invoice.id}?payment=cancelled",
                customer_email=client_org.billing_email if client_org else None,
            )
        except StripeNotConfiguredError:
            raise HTTPException(status_code=500, detail="Payment system not configured")
        except (StripeAPIError, httpx.HTTPError) as e:
            logger.error(f"❌ Payment link creation failed for invoice {invoice.id}: {e}")
            raise HTTPException(status_code=502, detail="Failed to create payment link")

        if not session.get("url"):
            raise HTTPException(status_code=502, detail="Failed to create payment link")

        invoice.stripe_checkout_session_id = session["id"]
        invoice.stripe_payment_link = session["url"]
        self.db.commit()
        return {"url": session["url"], "session_id": session["id"]}
