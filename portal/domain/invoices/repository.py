"""Invoice repository - Database operations for invoices"""

import re
from datetime import date
from typing import Optional

from sqlalchemy import false, or_
from sqlalchemy.orm import Session, selectinload

from ...models import Organization, User
from ...models_invoice import UNPAID_INVOICE_STATUSES, Invoice, InvoiceLineItem, InvoicePayment
from ...permissions import ALL_ORGANIZATIONS, is_client, visible_organization_ids
from ...utils.sanitization import escape_like
from .calculations import line_amount_cents

INVOICE_NUMBER_RE = re.compile(r"^INV-(\d{4})-(\d+)$")


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def scoped_query(db: Session, user: User):
        """
        Clients see non-draft invoices addressed to their organization.
        Privileged users see invoices issued by or addressed to organizations they can see.
        """
        query = db.query(Invoice)
        visible = visible_organization_ids(db, user)
        if visible is ALL_ORGANIZATIONS:
            return query
        if not visible:
            return query.filter(false())
        if is_client(user):
            return query.filter(Invoice.client_org_id.in_(visible), Invoice.status != "draft")
        return query.filter(or_(Invoice.organization_id.in_(visible), Invoice.client_org_id.in_(visible)))

    @staticmethod
    def list_invoices(
        db: Session,
        user: User,
        status: Optional[str] = None,
        client_org_id: Optional[int] = None,
        overdue_only: bool = False,
        search: Optional[str] = None,
        today: Optional[date] = None,
    ) -> list[Invoice]:
        query = InvoiceRepository.scoped_query(db, user)

        if status:
            query = query.filter(Invoice.status.in_(status.split(",")))
        if client_org_id is not None:
            query = query.filter(Invoice.client_org_id == client_org_id)
        if overdue_only:
            today = today or date.today()
            query = query.filter(
                or_(
                    Invoice.status == "overdue",
                    (Invoice.status.in_(UNPAID_INVOICE_STATUSES)) & (Invoice.due_date < today),
                )
            )
        if search:
            term = f"%{escape_like(search.strip())}%"
            query = query.filter(
                or_(Invoice.invoice_number.ilike(term, escape="\\"), Invoice.notes.ilike(term, escape="\\"))
            )

        return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()

    @staticmethod
    def get_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
        return (
            db.query(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .filter(Invoice.id == invoice_id)
            .first()
        )

    @staticmethod
    def get_by_checkout_session(db: Session, session_id: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.stripe_checkout_session_id == session_id).first()

    @staticmethod
    def invoice_number_exists(db: Session, organization_id: int, invoice_number: str) -> bool:
        return (
            db.query(Invoice.id)
            .filter(Invoice.organization_id == organization_id, Invoice.invoice_number == invoice_number)
            .first()
            is not None
        )

    @staticmethod
    def next_invoice_number(db: Session, organization_id: int, year: int) -> str:
        """INV-YYYY-NNNN, sequential per issuing organization and year"""
        prefix = f"INV-{year}-"
        numbers = (
            db.query(Invoice.invoice_number)
            .filter(Invoice.organization_id == organization_id, Invoice.invoice_number.like(f"{prefix}%"))
            .all()
        )
        highest = 0
        for (number,) in numbers:
            match = INVOICE_NUMBER_RE.match(number)
            if match:
                highest = max(highest, int(match.group(2)))
        return f"{prefix}{highest + 1:04d}"

    @staticmethod
    def replace_line_items(db: Session, invoice: Invoice, items: list[dict]) -> None:
        invoice.line_items.clear()
        db.flush()
        for position, item in enumerate(items):
            invoice.line_items.append(
                InvoiceLineItem(
                    description=item["description"],
                    quantity=item["quantity"],
                    unit_price_cents=item["unit_price_cents"],
                    amount_cents=line_amount_cents(item["quantity"], item["unit_price_cents"]),
                    taxable=item.get("taxable", True),
                    position=position,
                )
            )

    @staticmethod
    def create_invoice(db: Session, line_items: list[dict], **invoice_data) -> Invoice:
        invoice = Invoice(**invoice_data)
        db.add(invoice)
        db.flush()
        InvoiceRepository.replace_line_items(db, invoice, line_items)
        db.flush()
        return invoice

    @staticmethod
    def add_payment(db: Session, invoice: Invoice, **payment_data) -> InvoicePayment:
        payment = InvoicePayment(invoice_id=invoice.id, **payment_data)
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def payment_exists(db: Session, provider_transaction_id: str) -> bool:
        return (
            db.query(InvoicePayment.id)
            .filter(InvoicePayment.provider_transaction_id == provider_transaction_id)
            .first()
            is not None
        )

    @staticmethod
    def get_organization(db: Session, organization_id: int) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def get_client_users(db: Session, organization_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(User.organization_id == organization_id, User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )

    @staticmethod
    def list_past_due(db: Session, today: date) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.status.in_(("sent", "viewed", "partial")), Invoice.due_date < today)
            .order_by(Invoice.id)
            .all()
        )
