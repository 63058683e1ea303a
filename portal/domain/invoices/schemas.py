"""Invoice domain schemas - Pydantic models for validation"""

import re
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

InvoiceStatus = Literal["draft", "sent", "viewed", "partial", "paid", "overdue", "void", "cancelled"]
DiscountType = Literal["percentage", "fixed"]
ManualPaymentMethod = Literal["bank_transfer", "check", "cash", "credit", "paypal", "other"]

INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-_/]{0,49}$")


class LineItemInput(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: float = Field(1, gt=0, le=100000)
    unit_price_cents: int = Field(..., ge=0, le=100_000_000)
    taxable: bool = True

    @field_validator("description")
    @classmethod
    def strip_description(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Description is required")
        return v


class _InvoiceAmounts(BaseModel):
    """Shared checks for amount fields"""

    @model_validator(mode="after")
    def check_discount(self):
        discount_type = getattr(self, "discount_type", None)
        discount_value = getattr(self, "discount_value", None) or 0
        if discount_type == "percentage" and discount_value > 10000:
            raise ValueError("Percentage discount cannot exceed 100%")
        return self


class InvoiceCreate(_InvoiceAmounts):
    """Schema for creating a draft invoice"""

    client_org_id: int
    invoice_number: Optional[str] = None  # Generated as INV-YYYY-NNNN when omitted
    issue_date: Optional[date] = None
    due_date: date
    line_items: list[LineItemInput] = Field(..., min_length=1, max_length=50)
    tax_rate: int = Field(0, ge=0, le=10000)  # Basis points
    discount_type: Optional[DiscountType] = None
    discount_value: int = Field(0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    notes: Optional[str] = Field(None, max_length=2000)
    terms: Optional[str] = Field(None, max_length=5000)
    footer: Optional[str] = Field(None, max_length=500)

    @field_validator("invoice_number")
    @classmethod
    def validate_invoice_number(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not INVOICE_NUMBER_PATTERN.match(v):
            raise ValueError("Invoice number may only contain letters, digits, '-', '_' and '/'")
        return v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v):
        return v.upper()

    @model_validator(mode="after")
    def check_dates(self):
        issue = self.issue_date or date.today()
        if self.due_date < issue:
            raise ValueError("Due date cannot be before the issue date")
        if self.discount_value and not self.discount_type:
            raise ValueError("discount_type is required when discount_value is set")
        return self


class InvoiceUpdate(_InvoiceAmounts):
    """Line items and amounts may only change while the invoice is a draft"""

    client_org_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: Optional[list[LineItemInput]] = Field(None, min_length=1, max_length=50)
    tax_rate: Optional[int] = Field(None, ge=0, le=10000)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)
    terms: Optional[str] = Field(None, max_length=5000)
    footer: Optional[str] = Field(None, max_length=500)


AMOUNT_FIELDS = ("client_org_id", "line_items", "tax_rate", "discount_type", "discount_value", "issue_date")


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class ManualPaymentCreate(BaseModel):
    """Payment received outside Stripe; amount is in dollars"""

    amount: float = Field(..., gt=0)
    payment_method: ManualPaymentMethod
    payment_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    payment_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("payment_date")
    @classmethod
    def validate_payment_date(cls, v):
        try:
            datetime.strptime(v, "%Y-%m-%d")
        except ValueError:
            raise ValueError("Invalid date format (use YYYY-MM-DD)")
        return v


class LineItemResponse(BaseModel):
    id: int
    description: str
    quantity: float
    unit_price_cents: int
    amount_cents: int
    taxable: bool
    position: int

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: int
    invoice_id: int
    amount_cents: int
    payment_method: str
    status: str
    reference: Optional[str]
    notes: Optional[str]
    paid_at: datetime
    recorded_by: Optional[int]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    """Schema for invoice response"""

    id: int
    public_id: str
    organization_id: int
    client_org_id: int
    invoice_number: str
    status: str
    subtotal_cents: int
    discount_type: Optional[str]
    discount_value: int
    discount_cents: int
    tax_rate: int
    tax_cents: int
    total_cents: int
    amount_paid_cents: int
    balance_due_cents: int
    currency: str
    issue_date: date
    due_date: date
    sent_at: Optional[datetime]
    viewed_at: Optional[datetime]
    paid_at: Optional[datetime]
    notes: Optional[str]
    terms: Optional[str]
    footer: Optional[str]
    stripe_payment_link: Optional[str]
    quickbooks_invoice_id: Optional[str]
    created_by: Optional[int]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceDetailResponse(InvoiceResponse):
    line_items: list[LineItemResponse] = []
    payments: list[PaymentResponse] = []


class ManualPaymentResponse(BaseModel):
    success: bool = True
    payment_id: int
    message: str = "Payment recorded successfully"
    invoice: InvoiceDetailResponse


class PaymentLinkResponse(BaseModel):
    url: str
    session_id: str
