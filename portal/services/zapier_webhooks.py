"""
Zapier webhook delivery

Active hooks for an (event, organization) pair receive
{event, timestamp, organization_id, data} as a JSON POST. Each attempt is
logged to webhook_deliveries; a hook is disabled after 10 consecutive failures.
"""

import logging
import time
from datetime import datetime
from typing import Optional

import httpx
from fastapi import BackgroundTasks
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models_integration import ZAPIER_EVENT_TYPES, WebhookDelivery, ZapierWebhook

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0
MAX_CONSECUTIVE_FAILURES = 10
WEBHOOK_USER_AGENT = "KT-Portal-Webhooks/1.0"


def matches_filters(filters: Optional[dict], data: dict) -> bool:
    """Every filter key must equal the same key in the event data"""
    if not filters:
        return True
    return all(key in data and data[key] == value for key, value in filters.items())


def build_payload(event: str, organization_id: int, data: dict, now: Optional[datetime] = None) -> dict:
    timestamp = (now or datetime.utcnow()).isoformat(timespec="milliseconds") + "Z"
    return {
        "event": event,
        "timestamp": timestamp,
        "organization_id": organization_id,
        "data": jsonable_encoder(data),
    }


async def deliver_webhook(
    db: Session,
    webhook: ZapierWebhook,
    payload: dict,
    client: Optional[httpx.AsyncClient] = None,
) -> WebhookDelivery:
    """POST one payload to one hook, update its health counters and log the attempt"""
    started = time.monotonic()
    now = datetime.utcnow()
    status_code = None
    response_body = None
    error = None
    success = False

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await _post(own_client, webhook.url, payload)
        else:
            response = await _post(client, webhook.url, payload)

        status_code = response.status_code
        response_body = response.text
        success = response.is_success
        if not success:
            error = f"HTTP {status_code}: {response_body[:500]}"
    except httpx.HTTPError as e:
        error = str(e) or e.__class__.__name__

    webhook.last_triggered_at = now
    if success:
        webhook.last_success_at = now
        webhook.failure_count = 0
        webhook.last_error = None
        logger.info(f"✅ Webhook {webhook.id} delivered {payload['event']} ({status_code})")
    else:
        webhook.last_failure_at = now
        webhook.last_error = error
        webhook.failure_count = (webhook.failure_count or 0) + 1
        if webhook.failure_count >= MAX_CONSECUTIVE_FAILURES:
            webhook.is_active = False
            logger.warning(f"⚠️ Webhook {webhook.id} disabled after {webhook.failure_count} consecutive failures")
        else:
            logger.warning(f"⚠️ Webhook {webhook.id} delivery failed: {error}")

    delivery = WebhookDelivery(
        webhook_id=webhook.id,
        event_type=payload["event"],
        payload=payload,
        status_code=status_code,
        response_body=response_body[:1000] if response_body is not None else None,
        error=error,
        duration_ms=int((time.monotonic() - started) * 1000),
        success=success,
    )
    db.add(delivery)
    db.commit()
    return delivery


async def _post(client: httpx.AsyncClient, url: str, payload: dict) -> httpx.Response:
    return await client.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json", "User-Agent": WEBHOOK_USER_AGENT},
        timeout=WEBHOOK_TIMEOUT_SECONDS,
    )


async def trigger_webhooks(
    db: Session,
    event: str,
    organization_id: int,
    data: dict,
    client: Optional[httpx.AsyncClient] = None,
) -> list[WebhookDelivery]:
    """Deliver an event to every matching active hook of the organization"""
    if event not in ZAPIER_EVENT_TYPES:
        raise ValueError(f"Unknown webhook event: {event}")

    webhooks = (
        db.query(ZapierWebhook)
        .filter(
            ZapierWebhook.event_type == event,
            ZapierWebhook.organization_id == organization_id,
            ZapierWebhook.is_active.is_(True),
        )
        .all()
    )
    if not webhooks:
        return []

    payload = build_payload(event, organization_id, data)
    deliveries = []
    for webhook in webhooks:
        if not matches_filters(webhook.filters, payload["data"]):
            logger.debug(f"🔍 Webhook {webhook.id} filtered out for {event}")
            continue
        deliveries.append(await deliver_webhook(db, webhook, payload, client))
    return deliveries


async def run_webhooks_in_background(event: str, organization_id: int, data: dict) -> None:
    """Background entry point with its own session; never raises into the caller"""
    db = SessionLocal()
    try:
        await trigger_webhooks(db, event, organization_id, data)
    except Exception as e:
        logger.error(f"❌ Error triggering {event} webhooks for organization {organization_id}: {e}")
        db.rollback()
    finally:
        db.close()


def queue_webhooks(
    background_tasks: Optional[BackgroundTasks], event: str, organization_id: Optional[int], data: dict
) -> None:
    """Schedule delivery after the response is sent"""
    if background_tasks is None or organization_id is None:
        return
    background_tasks.add_task(run_webhooks_in_background, event, organization_id, jsonable_encoder(data))
