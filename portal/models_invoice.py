"""
Invoice, line item and payment models for client billing
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_public_id

INVOICE_STATUSES = ("draft", "sent", "viewed", "partial", "paid", "overdue", "void", "cancelled")
PAYMENT_METHODS = ("stripe", "paypal", "bank_transfer", "check", "cash", "credit", "other")
DISCOUNT_TYPES = ("percentage", "fixed")

# Invoices in these statuses still expect money
UNPAID_INVOICE_STATUSES = ("sent", "viewed", "partial", "overdue")


class Invoice(Base):
    """Invoice issued by an organization to one of its client organizations"""

    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_org_number"),)

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)  # Issuer
    client_org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=False, index=True)
    status = Column(String(20), default="draft", nullable=False, index=True)

    # Money is stored in integer cents, rates in basis points (1% = 100)
    subtotal_cents = Column(Integer, default=0, nullable=False)
    discount_type = Column(String(20), nullable=True)  # percentage, fixed
    discount_value = Column(Integer, default=0, nullable=False)
    discount_cents = Column(Integer, default=0, nullable=False)
    tax_rate = Column(Integer, default=0, nullable=False)
    tax_cents = Column(Integer, default=0, nullable=False)
    total_cents = Column(Integer, default=0, nullable=False)
    amount_paid_cents = Column(Integer, default=0, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)

    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    footer = Column(Text, nullable=True)

    # Stripe Checkout
    stripe_checkout_session_id = Column(String(255), nullable=True, index=True)
    stripe_payment_link = Column(String(1000), nullable=True)

    # QuickBooks sync
    quickbooks_invoice_id = Column(String(100), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", foreign_keys=[organization_id])
    client_organization = relationship("Organization", foreign_keys=[client_org_id])
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )
    payments = relationship(
        "InvoicePayment", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoicePayment.id"
    )

    @property
    def balance_due_cents(self) -> int:
        return max(0, (self.total_cents or 0) - (self.amount_paid_cents or 0))


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(500), nullable=False)
    quantity = Column(Float, default=1, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    taxable = Column(Boolean, default=True, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base):
    """Payment recorded against an invoice (Stripe or manual)"""

    __tablename__ = "invoice_payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    payment_method = Column(String(30), nullable=False)
    status = Column(String(20), default="completed", nullable=False)  # completed, failed, refunded
    reference = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    # Stripe payment_intent id, used to record webhook payments once
    provider_transaction_id = Column(String(255), nullable=True, unique=True)
    paid_at = Column(DateTime, nullable=False)
    recorded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    invoice = relationship("Invoice", back_populates="payments")
