"""Invoice money arithmetic - integer cents, rates in basis points (1% = 100)"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

BASIS_POINTS = 10000

Number = Union[int, float, Decimal, str]


def round_cents(value: Number) -> int:
    """Round to whole cents, halves away from zero"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_amount_cents(quantity: Number, unit_price_cents: int) -> int:
    return round_cents(Decimal(str(quantity)) * Decimal(unit_price_cents))


def calculate_discount_cents(subtotal_cents: int, discount_type: Optional[str], discount_value: int) -> int:
    """Percentage discounts are basis points of the subtotal; fixed discounts are cents"""
    if not discount_type or not discount_value:
        return 0
    if discount_type == "percentage":
        discount = round_cents(Decimal(subtotal_cents) * Decimal(discount_value) / BASIS_POINTS)
    elif discount_type == "fixed":
        discount = int(discount_value)
    else:
        raise ValueError(f"Unknown discount type: {discount_type}")
    return max(0, min(discount, subtotal_cents))


def calculate_invoice_totals(
    line_items: Iterable,
    tax_rate: int = 0,
    discount_type: Optional[str] = None,
    discount_value: int = 0,
) -> dict:
    """
    Compute invoice totals from line items.

    line_items may be dicts or objects exposing quantity, unit_price_cents and
    optionally taxable (default True). The discount is spread over the lines by
    amount, so only the discounted value of taxable lines is taxed.
    Returns subtotal_cents, discount_cents, tax_cents and total_cents, never negative.
    """
    subtotal = 0
    taxable_subtotal = 0
    for item in line_items:
        if isinstance(item, dict):
            quantity, unit_price = item["quantity"], item["unit_price_cents"]
            taxable = item.get("taxable", True)
        else:
            quantity, unit_price = item.quantity, item.unit_price_cents
            taxable = getattr(item, "taxable", True)
        amount = line_amount_cents(quantity, unit_price)
        subtotal += amount
        if taxable is not False:
            taxable_subtotal += amount
    subtotal = max(0, subtotal)
    taxable_subtotal = min(max(0, taxable_subtotal), subtotal)

    discount = calculate_discount_cents(subtotal, discount_type, discount_value or 0)
    discounted = subtotal - discount
    tax = 0
    if subtotal:
        tax_base = Decimal(discounted) * taxable_subtotal / subtotal
        tax = round_cents(tax_base * Decimal(tax_rate or 0) / BASIS_POINTS)

    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "tax_cents": tax,
        "total_cents": discounted + tax,
    }


def dollars_to_cents(amount: Number) -> int:
    return round_cents(Decimal(str(amount)) * 100)


def cents_to_dollars(cents: int) -> float:
    return float(Decimal(cents) / 100)


def format_cents(cents: int, currency: str = "USD") -> str:
    """Format cents for display, e.g. 123456 -> '$1,234.56'"""
    symbol = {"USD": "$", "EUR": "€", "GBP": "£", "CAD": "CA$", "AUD": "A$"}.get(currency.upper(), "")
    sign = "-" if cents < 0 else ""
    amount = f"{abs(cents) / 100:,.2f}"
    if symbol:
        return f"{sign}{symbol}{amount}"
    return f"{sign}{amount} {currency.upper()}"
