"""
Zapier Routes
Manage outbound webhook subscriptions and inspect their delivery history
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..auth import require_privileged
from ..database import get_db
from ..models import User
from ..models_integration import ZAPIER_EVENT_TYPES, WebhookDelivery, ZapierWebhook
from ..permissions import ensure_organization_visible, scope_query
from ..services.audit_service import record_audit
from ..services.zapier_webhooks import build_payload, deliver_webhook
from ..shared.validators import validate_https_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/zapier", tags=["Zapier"])

SAMPLE_DATA = {
    "ticket": {"id": 0, "ticket_number": 1, "subject": "Sample ticket", "status": "new", "priority": "medium"},
    "invoice": {"id": 0, "invoice_number": "INV-2024-0001", "status": "sent", "total_cents": 10000},
    "contract": {"id": 0, "title": "Sample contract", "status": "signed"},
    "message": {"conversation_id": 0, "message_id": 0, "content": "Sample message"},
    "form": {"form_id": 0, "fields": {"name": "Sample"}},
}


class WebhookCreate(BaseModel):
    url: str = Field(..., max_length=1000)
    event_type: str
    organization_id: Optional[int] = None
    filters: Optional[dict] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, v):
        return validate_https_url(v)

    @field_validator("event_type")
    @classmethod
    def check_event_type(cls, v):
        if v not in ZAPIER_EVENT_TYPES:
            raise ValueError(f"event_type must be one of: {', '.join(ZAPIER_EVENT_TYPES)}")
        return v


class WebhookUpdate(BaseModel):
    url: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None
    filters: Optional[dict] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, v):
        return validate_https_url(v)


class WebhookResponse(BaseModel):
    id: int
    organization_id: int
    url: str
    event_type: str
    filters: Optional[dict]
    is_active: bool
    failure_count: int
    last_triggered_at: Optional[datetime]
    last_success_at: Optional[datetime]
    last_failure_at: Optional[datetime]
    last_error: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeliveryResponse(BaseModel):
    id: int
    webhook_id: int
    event_type: str
    payload: Optional[dict]
    status_code: Optional[int]
    response_body: Optional[str]
    error: Optional[str]
    duration_ms: Optional[int]
    success: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


def _get_webhook(db: Session, webhook_id: int, user: User) -> ZapierWebhook:
    webhook = (
        scope_query(db.query(ZapierWebhook), ZapierWebhook.organization_id, db, user)
        .filter(ZapierWebhook.id == webhook_id)
        .first()
    )
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


@router.get("/webhooks", response_model=list[WebhookResponse])
async def list_webhooks(
    organization_id: Optional[int] = Query(None),
    event_type: Optional[str] = Query(None),
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    query = scope_query(db.query(ZapierWebhook), ZapierWebhook.organization_id, db, current_user)
    if organization_id is not None:
        query = query.filter(ZapierWebhook.organization_id == organization_id)
    if event_type:
        query = query.filter(ZapierWebhook.event_type == event_type)
    return query.order_by(ZapierWebhook.id).all()


@router.post("/webhooks", response_model=WebhookResponse, status_code=201)
async def create_webhook(
    data: WebhookCreate,
    request: Request,
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    """Subscribe a Zapier hook URL to one event of one organization"""
    organization_id = data.organization_id or current_user.organization_id
    if not organization_id:
        raise HTTPException(status_code=400, detail="organization_id is required")
    ensure_organization_visible(db, current_user, organization_id, "Organization not found")

    webhook = ZapierWebhook(
        organization_id=organization_id,
        created_by=current_user.id,
        url=data.url,
        event_type=data.event_type,
        filters=data.filters or None,
        is_active=True,
        failure_count=0,
    )
    db.add(webhook)
    db.flush()
    record_audit(
        db,
        current_user,
        "zapier_webhook.created",
        "zapier_webhook",
        webhook.id,
        {"event_type": data.event_type},
        request,
        organization_id,
    )
    db.commit()
    db.refresh(webhook)
    logger.info(f"🆕 Zapier webhook {webhook.id} subscribed to {data.event_type} for organization {organization_id}")
    return webhook


@router.patch("/webhooks/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    data: WebhookUpdate,
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    webhook = _get_webhook(db, webhook_id, current_user)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("url"):
        webhook.url = changes["url"]
    if "filters" in changes:
        webhook.filters = changes["filters"] or None
    if changes.get("is_active") is not None:
        if changes["is_active"] and not webhook.is_active:
            # Re-enabling resets the failure count
            webhook.failure_count = 0
            webhook.last_error = None
        webhook.is_active = changes["is_active"]

    db.commit()
    db.refresh(webhook)
    return webhook


@router.delete("/webhooks/{webhook_id}", status_code=204)
async def delete_webhook(
    webhook_id: int,
    request: Request,
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    webhook = _get_webhook(db, webhook_id, current_user)
    record_audit(
        db,
        current_user,
        "zapier_webhook.deleted",
        "zapier_webhook",
        webhook.id,
        {"event_type": webhook.event_type},
        request,
        webhook.organization_id,
    )
    db.delete(webhook)
    db.commit()
    return Response(status_code=204)


@router.post("/webhooks/{webhook_id}/test", response_model=DeliveryResponse)
async def test_webhook(
    webhook_id: int,
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    """Send a sample payload for the hook's event type"""
    webhook = _get_webhook(db, webhook_id, current_user)
    sample = {**SAMPLE_DATA.get(webhook.event_type.split(".")[0], {}), "test": True}
    payload = build_payload(webhook.event_type, webhook.organization_id, sample)
    logger.info(f"🧪 Testing Zapier webhook {webhook.id}")
    return await deliver_webhook(db, webhook, payload)


@router.get("/webhooks/{webhook_id}/deliveries", response_model=list[DeliveryResponse])
async def list_deliveries(
    webhook_id: int,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_privileged),
    db: Session = Depends(get_db),
):
    webhook = _get_webhook(db, webhook_id, current_user)
    return (
        db.query(WebhookDelivery)
        .filter(WebhookDelivery.webhook_id == webhook.id)
        .order_by(WebhookDelivery.id.desc())
        .limit(limit)
        .all()
    )
