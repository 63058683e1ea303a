"""
Contract models - agreements an organization sends to its clients for signature
"""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_public_id

CONTRACT_STATUSES = ("draft", "sent", "viewed", "signed", "completed", "void")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    client_org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String(20), default="draft", nullable=False, index=True)
    value_cents = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # In-portal signature
    signer_name = Column(String(255), nullable=True)
    signer_email = Column(String(255), nullable=True)
    signer_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    signature = Column(Text, nullable=True)  # Typed name or base64 drawn signature
    signer_ip = Column(String(64), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", foreign_keys=[organization_id])
    client_organization = relationship("Organization", foreign_keys=[client_org_id])
