"""
Stripe REST helpers
Checkout sessions are created over the Stripe API with httpx (form-encoded)
"""

import logging
from typing import Optional

import httpx

from ..config import STRIPE_API_BASE_URL, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

STRIPE_TIMEOUT_SECONDS = 30.0


class StripeNotConfiguredError(Exception):
    """Raised when STRIPE_SECRET_KEY is missing"""


class StripeAPIError(Exception):
    """Raised when Stripe rejects a request"""


async def create_checkout_session(
    invoice_id: int,
    invoice_number: str,
    amount_cents: int,
    currency: str,
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Create a one-off Checkout session for an invoice balance.

    invoice_id is stored in both the session and payment intent metadata so
    webhooks can find the invoice again. Returns the Stripe session object.
    """
    if not STRIPE_SECRET_KEY:
        raise StripeNotConfiguredError("Stripe is not configured")

    form = {
        "mode": "payment",
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": str(invoice_id),
        "line_items[0][quantity]": "1",
        "line_items[0][price_data][currency]": currency.lower(),
        "line_items[0][price_data][unit_amount]": str(amount_cents),
        "line_items[0][price_data][product_data][name]": f"Invoice {invoice_number}",
        "metadata[invoice_id]": str(invoice_id),
        "metadata[invoice_number]": invoice_number,
        "payment_intent_data[metadata][invoice_id]": str(invoice_id),
    }
    if customer_email:
        form["customer_email"] = customer_email

    logger.info(f"💳 Creating Stripe checkout session for invoice {invoice_id} ({amount_cents} cents)")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=STRIPE_TIMEOUT_SECONDS)
    try:
        response = await client.post(
            f"{STRIPE_API_BASE_URL}/checkout/sessions",
            data=form,
            auth=(STRIPE_SECRET_KEY, ""),
        )
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code >= 400:
        logger.error(f"❌ Stripe checkout error {response.status_code}: {response.text[:500]}")
        raise StripeAPIError(f"Stripe returned {response.status_code}")

    session = response.json()
    logger.info(f"✅ Stripe checkout session created: {session.get('id')}")
    return session
