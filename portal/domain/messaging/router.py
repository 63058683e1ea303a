"""Messaging router - conversations and messages"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...models_messaging import Conversation, Message
from .schemas import (
    ConversationCreate,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
    ParticipantResponse,
    UnreadCountResponse,
)
from .service import MessagingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Messaging"])


def get_messaging_service(db: Session = Depends(get_db)) -> MessagingService:
    """Dependency injection for MessagingService"""
    return MessagingService(db)


def _message_response(message: Message) -> MessageResponse:
    response = MessageResponse.model_validate(message)
    if message.sender is not None:
        response.sender_name = message.sender.full_name or message.sender.email
    return response


def _conversation_response(
    conversation: Conversation, unread_count: int = 0, last_message: Optional[Message] = None
) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        organization_id=conversation.organization_id,
        subject=conversation.subject,
        created_by=conversation.created_by,
        last_message_at=conversation.last_message_at,
        created_at=conversation.created_at,
        participants=[
            ParticipantResponse(
                user_id=p.user_id,
                name=(p.user.full_name or p.user.email) if p.user is not None else None,
                last_read_at=p.last_read_at,
            )
            for p in conversation.participants
        ],
        unread_count=unread_count,
        last_message=_message_response(last_message) if last_message is not None else None,
    )


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    """Conversations the current user takes part in, newest activity first"""
    return [
        _conversation_response(conversation, unread, last)
        for conversation, unread, last in service.list_conversations(current_user)
    ]


@router.get("/unread", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    return {"unread": service.total_unread(current_user)}


@router.post("", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    data: ConversationCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    conversation = service.create_conversation(data, current_user, background_tasks)
    return _conversation_response(conversation, 0, service.repo.last_message(service.db, conversation.id))


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=200),
    before_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    return [_message_response(m) for m in service.list_messages(conversation_id, current_user, limit, before_id)]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def post_message(
    conversation_id: int,
    data: MessageCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    message = service.post_message(conversation_id, data.content, current_user, background_tasks)
    return _message_response(message)


@router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    service: MessagingService = Depends(get_messaging_service),
):
    participant = service.mark_read(conversation_id, current_user)
    return {"conversation_id": conversation_id, "last_read_at": participant.last_read_at}


__all__ = ["router"]
