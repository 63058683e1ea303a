"""
Integration Models
Outbound Zapier webhooks, stored files and OAuth connections to third-party providers
"""
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

ZAPIER_EVENT_TYPES = (
    "ticket.created",
    "ticket.updated",
    "ticket.closed",
    "invoice.created",
    "invoice.paid",
    "invoice.overdue",
    "contract.created",
    "contract.signed",
    "contract.completed",
    "message.received",
    "form.submitted",
)

OAUTH_PROVIDERS = ("google", "microsoft", "dropbox", "quickbooks")


class ZapierWebhook(Base):
    """Zapier hook subscribed to one event type of one organization"""
    __tablename__ = "zapier_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    url = Column(String(1000), nullable=False)
    event_type = Column(String(50), nullable=False, index=True)
    # Exact-match conditions on the event data, e.g. {"priority": "critical"}
    filters = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Consecutive failures; the hook is disabled when this reaches the limit
    failure_count = Column(Integer, default=0, nullable=False)
    last_triggered_at = Column(DateTime, nullable=True)
    last_success_at = Column(DateTime, nullable=True)
    last_failure_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    deliveries = relationship("WebhookDelivery", back_populates="webhook", cascade="all, delete-orphan")


class WebhookDelivery(Base):
    """One delivery attempt of a Zapier webhook"""
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(Integer, ForeignKey("zapier_webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # First 1000 chars
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), index=True)

    webhook = relationship("ZapierWebhook", back_populates="deliveries")


class StoredFile(Base):
    """File uploaded to S3 on behalf of an organization"""
    __tablename__ = "stored_files"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    folder = Column(String(255), default="general", nullable=False)
    filename = Column(String(255), nullable=False)
    s3_key = Column(String(1000), nullable=False, unique=True)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())


class OAuthIntegration(Base):
    """OAuth tokens for a user's connection to an external provider"""
    __tablename__ = "oauth_integrations"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_oauth_user_provider"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    provider = Column(String(30), nullable=False)

    # OAuth tokens (Fernet encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)

    # Provider account identifier (QuickBooks realm id, Google email, ...)
    account_id = Column(String(255), nullable=True)
    account_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")


class IntegrationSyncLog(Base):
    """Track pushes of portal records to external providers"""
    __tablename__ = "integration_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    integration_id = Column(Integer, ForeignKey("oauth_integrations.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(50), nullable=False)  # invoice, customer
    entity_id = Column(Integer, nullable=False)
    external_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # success, failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
