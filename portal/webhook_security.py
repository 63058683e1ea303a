"""
Webhook Security Module

Signature verification for inbound payment webhooks:
- Constant-time signature comparison
- Timestamp validation against replayed deliveries
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

from .security_utils import constant_time_compare

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[int] = None) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds
        now: Current unix time (defaults to time.time())
    """
    if not timestamp:
        return False

    try:
        webhook_time = int(timestamp)
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False

    current_time = int(time.time()) if now is None else now
    age = abs(current_time - webhook_time)
    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


def parse_stripe_signature_header(header: str) -> tuple[Optional[str], list[str]]:
    """Split 't=<ts>,v1=<sig>[,v1=<sig>...]' into the timestamp and the v1 signatures"""
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance: int = MAX_WEBHOOK_AGE_SECONDS,
    now: Optional[int] = None,
) -> None:
    """
    Verify a Stripe-Signature header.

    The signed message is '<timestamp>.<raw body>' and each v1 entry is its
    hex HMAC-SHA256 under the endpoint secret. Raises WebhookSignatureError.
    """
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp, signatures = parse_stripe_signature_header(header)
    if not timestamp or not signatures:
        raise WebhookSignatureError("Malformed Stripe-Signature header")

    if not verify_timestamp(timestamp, tolerance, now):
        raise WebhookSignatureError("Timestamp outside the tolerance zone")

    expected = compute_hmac_sha256(secret, f"{timestamp}.".encode("utf-8") + payload)
    if not any(constant_time_compare(expected, signature) for signature in signatures):
        logger.warning(f"🚫 Stripe signature mismatch - Expected: {expected[:12]}...")
        raise WebhookSignatureError("No signatures found matching the expected signature")


async def verify_stripe_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify an inbound Stripe request and return its raw body.

    500 when the secret is not configured, 400 on a missing or invalid signature.
    """
    if not secret:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    body = await request.body()
    try:
        verify_stripe_signature(body, request.headers.get("stripe-signature"), secret)
    except WebhookSignatureError as e:
        logger.warning(f"🚫 Stripe webhook rejected: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid signature: {e}")

    return body
