"""Messaging service - organization-scoped conversations between portal users"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, HTTPException
from sqlalchemy.orm import Session

from ...models import User
from ...models_messaging import Conversation, ConversationParticipant, Message
from ...permissions import can_view_organization, ensure_organization_visible
from ...services.notification_service import notify_users
from ...services.zapier_webhooks import queue_webhooks
from .repository import MessagingRepository
from .schemas import ConversationCreate

logger = logging.getLogger(__name__)


class MessagingService:
    """Service layer for conversations and messages"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = MessagingRepository()

    def _participant(self, conversation_id: int, user: User) -> ConversationParticipant:
        participant = self.repo.get_participant(self.db, conversation_id, user.id)
        if not participant:
            # Non-participants cannot tell the conversation exists
            raise HTTPException(status_code=404, detail="Conversation not found")
        return participant

    def list_conversations(self, user: User) -> list[tuple[Conversation, int, Optional[Message]]]:
        """Each conversation with the user's unread count and the latest message"""
        result = []
        for conversation in self.repo.list_conversations(self.db, user.id):
            participant = next(p for p in conversation.participants if p.user_id == user.id)
            result.append(
                (
                    conversation,
                    self.repo.unread_count(self.db, participant),
                    self.repo.last_message(self.db, conversation.id),
                )
            )
        return result

    def total_unread(self, user: User) -> int:
        return self.repo.total_unread(self.db, user.id)

    def create_conversation(
        self, data: ConversationCreate, user: User, background_tasks: Optional[BackgroundTasks] = None
    ) -> Conversation:
        organization_id = data.organization_id or user.organization_id
        if not organization_id:
            raise HTTPException(status_code=400, detail="User is not associated with an organization")
        ensure_organization_visible(self.db, user, organization_id, "Organization not found")

        participant_ids = list(dict.fromkeys([user.id, *data.participant_ids]))
        users = self.repo.get_users(self.db, participant_ids)
        if len(users) != len(participant_ids):
            raise HTTPException(status_code=400, detail="One or more participants do not exist")
        for participant in users:
            if not can_view_organization(self.db, participant, organization_id):
                raise HTTPException(
                    status_code=400,
                    detail=f"User {participant.id} does not have access to this organization",
                )

        conversation = self.repo.create_conversation(
            self.db,
            participant_ids,
            organization_id=organization_id,
            subject=data.subject.strip() if data.subject else None,
            created_by=user.id,
        )
        self.db.commit()
        logger.info(f"🆕 Conversation {conversation.id} created by user {user.id} with {len(participant_ids)} users")

        if data.message and data.message.strip():
            self.post_message(conversation.id, data.message.strip(), user, background_tasks)

        self.db.refresh(conversation)
        return conversation

    def list_messages(
        self, conversation_id: int, user: User, limit: int = 50, before_id: Optional[int] = None
    ) -> list[Message]:
        self._participant(conversation_id, user)
        return self.repo.list_messages(self.db, conversation_id, limit, before_id)

    def post_message(
        self,
        conversation_id: int,
        content: str,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Message:
        participant = self._participant(conversation_id, user)
        conversation = participant.conversation
        now = datetime.utcnow()

        message = self.repo.add_message(self.db, conversation, user.id, content, now)
        participant.last_read_at = now

        others = [p.user_id for p in conversation.participants if p.user_id != user.id]
        title = f"New message from {user.full_name or user.email}"
        notify_users(
            self.db,
            others,
            "message_received",
            title,
            content[:140],
            {"conversation_id": conversation.id, "message_id": message.id},
            conversation.organization_id,
            user.id,
        )
        self.db.commit()
        self.db.refresh(message)

        queue_webhooks(
            background_tasks,
            "message.received",
            conversation.organization_id,
            {
                "conversation_id": conversation.id,
                "message_id": message.id,
                "sender_id": user.id,
                "subject": conversation.subject,
                "content": message.content,
                "created_at": message.created_at,
            },
        )
        return message

    def mark_read(self, conversation_id: int, user: User) -> ConversationParticipant:
        participant = self._participant(conversation_id, user)
        participant.last_read_at = datetime.utcnow()
        self.db.commit()
        return participant
