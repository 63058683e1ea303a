"""
Support ticket models
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

TICKET_STATUSES = ("new", "open", "in_progress", "pending_client", "resolved", "closed")
TICKET_PRIORITIES = ("critical", "high", "medium", "low")
TICKET_CATEGORIES = ("general", "billing", "technical", "feature_request", "bug", "account")

# Statuses in which the SLA clock is still running
OPEN_TICKET_STATUSES = ("new", "open", "in_progress", "pending_client")


class Ticket(Base):
    """Support ticket raised by (or on behalf of) a client organization"""

    __tablename__ = "tickets"
    __table_args__ = (UniqueConstraint("organization_id", "ticket_number", name="uq_ticket_org_number"),)

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    ticket_number = Column(Integer, nullable=False)  # Sequential per organization
    subject = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), default="medium", nullable=False)
    status = Column(String(20), default="new", nullable=False, index=True)
    category = Column(String(50), default="general", nullable=True)
    tags = Column(JSON, default=list, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # SLA tracking
    first_response_due_at = Column(DateTime, nullable=True)
    first_response_at = Column(DateTime, nullable=True)
    sla_due_at = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization")
    creator = relationship("User", foreign_keys=[created_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    comments = relationship(
        "TicketComment", back_populates="ticket", cascade="all, delete-orphan", order_by="TicketComment.id"
    )


class TicketComment(Base):
    __tablename__ = "ticket_comments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    # Internal notes are visible to staff only
    is_internal = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    ticket = relationship("Ticket", back_populates="comments")
    author = relationship("User")
