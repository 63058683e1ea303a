import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


# Roles that can see and act on other organizations' data
PRIVILEGED_ROLES = {"super_admin", "staff", "partner", "partner_staff"}
USER_ROLES = ("super_admin", "staff", "partner", "partner_staff", "client")
ORGANIZATION_TYPES = ("internal", "partner", "client")


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    type = Column(String(20), default="client", nullable=False)  # internal, partner, client
    # Partner that manages this client organization
    parent_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    is_priority_client = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, suspended
    # Branding
    logo_url = Column(String(500), nullable=True)
    brand_color = Column(String(7), nullable=True)  # e.g., #RRGGBB
    billing_email = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    parent = relationship("Organization", remote_side=[id], back_populates="children")
    children = relationship("Organization", back_populates="parent")
    users = relationship("User", back_populates="organization")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Subject claim issued by the hosted auth provider
    auth_id = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    role = Column(String(20), default="client", nullable=False)
    is_account_manager = Column(Boolean, default=False, nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    # Per-channel / per-event switches, see services/notification_service.should_send_notification
    notification_preferences = Column(JSON, default=dict, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_seen_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="users")

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


class AppSettings(Base):
    """Single-row table holding settings administrators change at runtime"""

    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True)
    ai_provider_primary = Column(String(50), default="openrouter", nullable=False)
    openrouter_api_key = Column(Text, nullable=True)
    anthropic_api_key = Column(Text, nullable=True)
    openai_api_key = Column(Text, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. invoice.payment_recorded
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)

    user = relationship("User")


class Notification(Base):
    """In-app notification shown in the dashboard inbox"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    type = Column(String(100), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class NotificationLog(Base):
    """Outbound notification delivery log (email/sms/slack), used for de-duplication"""

    __tablename__ = "notification_log"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    notification_type = Column(String(50), nullable=False)  # sla_warning, sla_breach, ...
    channel = Column(String(20), nullable=False, default="in_app")
    recipient = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="sent")  # sent, failed, skipped
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
