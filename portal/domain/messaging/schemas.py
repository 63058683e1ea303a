"""Messaging schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ConversationCreate(BaseModel):
    organization_id: Optional[int] = None  # Defaults to the creator's organization
    subject: Optional[str] = Field(None, max_length=255)
    participant_ids: list[int] = Field(..., min_length=1, max_length=50)
    message: Optional[str] = Field(None, max_length=5000)


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    sender_name: Optional[str] = None
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantResponse(BaseModel):
    user_id: int
    name: Optional[str] = None
    last_read_at: Optional[datetime] = None


class ConversationResponse(BaseModel):
    id: int
    organization_id: int
    subject: Optional[str]
    created_by: Optional[int]
    last_message_at: Optional[datetime]
    created_at: Optional[datetime] = None
    participants: list[ParticipantResponse] = []
    unread_count: int = 0
    last_message: Optional[MessageResponse] = None


class UnreadCountResponse(BaseModel):
    unread: int
