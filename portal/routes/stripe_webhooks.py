"""
Stripe Webhook Handler
Records invoice payments from Checkout sessions and payment intents
"""

import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import STRIPE_WEBHOOK_SECRET
from ..database import get_db
from ..domain.invoices.service import invoice_event_data, record_stripe_payment
from ..models_invoice import Invoice
from ..services.audit_service import record_audit
from ..services.notification_service import notify_users
from ..services.zapier_webhooks import queue_webhooks
from ..webhook_security import verify_stripe_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["webhooks"])


def _find_invoice(db: Session, obj: dict) -> Optional[Invoice]:
    invoice_id = (obj.get("metadata") or {}).get("invoice_id")
    if not invoice_id:
        logger.warning(f"⚠️ Stripe {obj.get('object')} {obj.get('id')} has no invoice_id in metadata")
        return None
    try:
        invoice_id = int(invoice_id)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Stripe metadata invoice_id is not numeric: {invoice_id}")
        return None
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
    if not invoice:
        logger.warning(f"⚠️ Stripe event references unknown invoice {invoice_id}")
    return invoice


def _record_payment(
    db: Session,
    background_tasks: BackgroundTasks,
    obj: dict,
    amount_cents: Optional[int],
    transaction_id: Optional[str],
) -> None:
    invoice = _find_invoice(db, obj)
    if not invoice:
        return
    if not transaction_id or not amount_cents:
        logger.warning(f"⚠️ Stripe {obj.get('object')} {obj.get('id')} carries no payment amount")
        return

    payment = record_stripe_payment(db, invoice, amount_cents, transaction_id, datetime.utcnow())
    if payment is None:
        return

    record_audit(
        db,
        None,
        "invoice.payment_recorded",
        "invoice",
        invoice.id,
        {"amount_cents": payment.amount_cents, "payment_method": "stripe", "reference": transaction_id},
        organization_id=invoice.organization_id,
    )
    db.commit()

    if invoice.status == "paid":
        queue_webhooks(background_tasks, "invoice.paid", invoice.organization_id, invoice_event_data(invoice))


def _payment_failed(db: Session, obj: dict, message: str) -> None:
    invoice = _find_invoice(db, obj)
    if not invoice:
        return

    logger.error(f"❌ Payment failed for invoice {invoice.id}: {message}")
    notify_users(
        db,
        [invoice.created_by],
        "invoice_payment_failed",
        f"Payment failed for invoice {invoice.invoice_number}",
        message,
        {"invoice_id": invoice.id, "stripe_object_id": obj.get("id")},
        invoice.organization_id,
    )
    record_audit(
        db,
        None,
        "invoice.payment_failed",
        "invoice",
        invoice.id,
        {"stripe_object_id": obj.get("id"), "error": message},
        organization_id=invoice.organization_id,
    )
    db.commit()


@router.post("")
async def handle_stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """
    Handle Stripe webhook events

    Events handled:
    - checkout.session.completed - Checkout paid
    - payment_intent.succeeded - Payment captured
    - payment_intent.payment_failed - Card declined etc.
    - invoice.paid / invoice.payment_failed - Stripe Billing invoices

    Every payment is recorded once per payment intent.
    """
    body = await verify_stripe_webhook(request, STRIPE_WEBHOOK_SECRET)

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info(f"📡 Stripe webhook received: {event_type} ({event.get('id')})")

    try:
        if event_type == "checkout.session.completed":
            _record_payment(
                db,
                background_tasks,
                obj,
                obj.get("amount_total"),
                obj.get("payment_intent") or obj.get("id"),
            )
        elif event_type == "payment_intent.succeeded":
            _record_payment(
                db,
                background_tasks,
                obj,
                obj.get("amount_received") or obj.get("amount"),
                obj.get("id"),
            )
        elif event_type == "payment_intent.payment_failed":
            error = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
            _payment_failed(db, obj, error)
        elif event_type == "invoice.paid":
            _record_payment(
                db,
                background_tasks,
                obj,
                obj.get("amount_paid"),
                obj.get("payment_intent") or obj.get("id"),
            )
        elif event_type == "invoice.payment_failed":
            _payment_failed(db, obj, "Payment failed")
        else:
            logger.info(f"🔍 Unhandled Stripe event type: {event_type}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Error processing Stripe webhook {event.get('id')}: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return {"received": True}


__all__ = ["router"]
