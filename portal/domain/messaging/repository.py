"""Messaging repository - conversations, participants and messages"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, selectinload

from ...models import User
from ...models_messaging import Conversation, ConversationParticipant, Message


class MessagingRepository:
    """Repository for messaging database operations"""

    @staticmethod
    def list_conversations(db: Session, user_id: int) -> list[Conversation]:
        return (
            db.query(Conversation)
            .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
            .filter(ConversationParticipant.user_id == user_id)
            .options(selectinload(Conversation.participants).selectinload(ConversationParticipant.user))
            .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(), Conversation.id.desc())
            .all()
        )

    @staticmethod
    def get_participant(db: Session, conversation_id: int, user_id: int) -> Optional[ConversationParticipant]:
        return (
            db.query(ConversationParticipant)
            .filter(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
            .first()
        )

    @staticmethod
    def get_conversation(db: Session, conversation_id: int) -> Optional[Conversation]:
        return db.query(Conversation).filter(Conversation.id == conversation_id).first()

    @staticmethod
    def create_conversation(db: Session, participant_ids: list[int], **conversation_data) -> Conversation:
        conversation = Conversation(**conversation_data)
        db.add(conversation)
        db.flush()
        for user_id in participant_ids:
            db.add(ConversationParticipant(conversation_id=conversation.id, user_id=user_id))
        db.flush()
        return conversation

    @staticmethod
    def add_message(db: Session, conversation: Conversation, sender_id: int, content: str, now: datetime) -> Message:
        message = Message(conversation_id=conversation.id, sender_id=sender_id, content=content, created_at=now)
        db.add(message)
        conversation.last_message_at = now
        db.flush()
        return message

    @staticmethod
    def list_messages(
        db: Session, conversation_id: int, limit: int = 50, before_id: Optional[int] = None
    ) -> list[Message]:
        query = db.query(Message).filter(Message.conversation_id == conversation_id)
        if before_id is not None:
            query = query.filter(Message.id < before_id)
        messages = query.order_by(Message.id.desc()).limit(limit).all()
        return list(reversed(messages))

    @staticmethod
    def last_message(db: Session, conversation_id: int) -> Optional[Message]:
        return (
            db.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.id.desc())
            .first()
        )

    @staticmethod
    def unread_count(db: Session, participant: ConversationParticipant) -> int:
        """Messages from others newer than the participant's last read marker"""
        query = db.query(Message).filter(
            Message.conversation_id == participant.conversation_id,
            Message.sender_id != participant.user_id,
        )
        if participant.last_read_at is not None:
            query = query.filter(Message.created_at > participant.last_read_at)
        return query.count()

    @staticmethod
    def total_unread(db: Session, user_id: int) -> int:
        return (
            db.query(Message)
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Message.conversation_id,
                    ConversationParticipant.user_id == user_id,
                ),
            )
            .filter(
                Message.sender_id != user_id,
                or_(
                    ConversationParticipant.last_read_at.is_(None),
                    Message.created_at > ConversationParticipant.last_read_at,
                ),
            )
            .count()
        )

    @staticmethod
    def get_users(db: Session, user_ids: list[int]) -> list[User]:
        return db.query(User).filter(User.id.in_(user_ids), User.is_active.is_(True)).all()
