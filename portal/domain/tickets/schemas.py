"""Ticket domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

TicketPriority = Literal["critical", "high", "medium", "low"]
TicketStatus = Literal["new", "open", "in_progress", "pending_client", "resolved", "closed"]
TicketCategory = Literal["general", "billing", "technical", "feature_request", "bug", "account"]


class TicketCreate(BaseModel):
    """Schema for creating a new ticket"""

    subject: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=10000)
    priority: TicketPriority = "medium"
    category: TicketCategory = "general"
    tags: list[str] = Field(default_factory=list, max_length=20)
    # Privileged users may open a ticket on behalf of a client organization
    organization_id: Optional[int] = None

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Subject is required")
        return v

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        return list(dict.fromkeys(t.strip().lower() for t in v if t and t.strip()))


class TicketUpdate(BaseModel):
    """Staff-side update of ticket fields"""

    subject: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=10000)
    priority: Optional[TicketPriority] = None
    category: Optional[TicketCategory] = None
    tags: Optional[list[str]] = None
    assigned_to: Optional[int] = None


class TicketStatusUpdate(BaseModel):
    status: TicketStatus


class TicketCommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)
    is_internal: bool = False


class TicketCommentResponse(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    author_name: Optional[str] = None
    content: str
    is_internal: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SLAStatusResponse(BaseModel):
    status: str
    label: str
    description: str
    hours_remaining: Optional[int] = None
    minutes_remaining: Optional[int] = None
    hours_overdue: Optional[int] = None


class TicketResponse(BaseModel):
    """Schema for ticket response"""

    id: int
    organization_id: int
    ticket_number: int
    subject: str
    description: Optional[str]
    priority: str
    status: str
    category: Optional[str]
    tags: Optional[list[str]] = None
    created_by: Optional[int]
    assigned_to: Optional[int]
    first_response_due_at: Optional[datetime]
    first_response_at: Optional[datetime]
    sla_due_at: Optional[datetime]
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime] = None
    sla: Optional[SLAStatusResponse] = None

    class Config:
        from_attributes = True


class TicketDetailResponse(TicketResponse):
    first_response_sla: Optional[SLAStatusResponse] = None
    resolution_sla: Optional[SLAStatusResponse] = None
    comments: list[TicketCommentResponse] = []


class TicketStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_sla_status: dict[str, int]
