"""
AI Assistant Routes
Chat with the portal assistant plus administration of its prompt, rules and knowledge base
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_staff
from ..database import get_db
from ..models import User
from ..models_ai import (
    AI_DOCUMENT_TYPES,
    DEFAULT_SYSTEM_PROMPT,
    AIConfig,
    AIConversation,
    AIDocument,
    AIMessage,
    AIRule,
)
from ..permissions import ensure_organization_visible
from ..rate_limiter import create_rate_limiter
from ..services.ai_providers import AllProvidersFailedError, generate_reply, resolve_provider_keys

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI Assistant"])

rate_limit_ai_chat = create_rate_limiter(limit=30, window_seconds=60, key_prefix="ai_chat")

HISTORY_LIMIT = 20
DOCUMENT_LIMIT = 10


# ============================================
# Schemas
# ============================================


class ChatRequest(BaseModel):
    conversation_id: Optional[int] = None
    message: str = Field(..., min_length=1, max_length=10000)
    organization_id: Optional[int] = None

    @field_validator("message")
    @classmethod
    def strip_message(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class ChatResponse(BaseModel):
    message: str
    conversation_id: int
    provider: str


class AIConversationCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    organization_id: Optional[int] = None


class AIConversationResponse(BaseModel):
    id: int
    title: Optional[str]
    organization_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class AIMessageResponse(BaseModel):
    id: int
    role: str
    content: str
    provider: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AIRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=5000)
    priority: int = Field(0, ge=-1000, le=1000)
    organization_id: Optional[int] = None
    is_active: bool = True


class AIRuleResponse(BaseModel):
    id: int
    organization_id: Optional[int]
    name: str
    content: str
    priority: int
    is_active: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AIDocumentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=50000)
    document_type: str = "other"
    organization_id: Optional[int] = None
    is_active: bool = True

    @field_validator("document_type")
    @classmethod
    def check_document_type(cls, v):
        if v not in AI_DOCUMENT_TYPES:
            raise ValueError(f"document_type must be one of: {', '.join(AI_DOCUMENT_TYPES)}")
        return v


class AIDocumentResponse(BaseModel):
    id: int
    organization_id: Optional[int]
    title: str
    content: str
    document_type: str
    is_active: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AIConfigUpdate(BaseModel):
    system_prompt: str = Field(..., min_length=1, max_length=20000)
    organization_id: Optional[int] = None
    is_active: bool = True


class AIConfigResponse(BaseModel):
    id: int
    organization_id: Optional[int]
    system_prompt: str
    is_active: bool
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


# ============================================
# Prompt assembly
# ============================================


def _org_or_global(column, organization_id: Optional[int]):
    if organization_id is None:
        return column.is_(None)
    return or_(column == organization_id, column.is_(None))


def build_system_prompt(db: Session, organization_id: Optional[int]) -> str:
    """Active config prompt, then active rules by priority, then knowledge base documents"""
    config = (
        db.query(AIConfig)
        .filter(AIConfig.is_active.is_(True), _org_or_global(AIConfig.organization_id, organization_id))
        .order_by(AIConfig.organization_id.is_(None))
        .first()
    )
    prompt = config.system_prompt if config and config.system_prompt else DEFAULT_SYSTEM_PROMPT

    rules = (
        db.query(AIRule)
        .filter(AIRule.is_active.is_(True), _org_or_global(AIRule.organization_id, organization_id))
        .order_by(AIRule.priority.desc(), AIRule.id)
        .all()
    )
    if rules:
        prompt += "\n\nIMPORTANT RULES TO FOLLOW:\n"
        prompt += "".join(f"- {rule.name}: {rule.content}\n" for rule in rules)

    documents = (
        db.query(AIDocument)
        .filter(AIDocument.is_active.is_(True), _org_or_global(AIDocument.organization_id, organization_id))
        .order_by(AIDocument.id)
        .limit(DOCUMENT_LIMIT)
        .all()
    )
    if documents:
        prompt += "\n\nRELEVANT KNOWLEDGE BASE:\n"
        prompt += "".join(
            f"\n[{doc.document_type.upper()}] {doc.title}:\n{doc.content}\n" for doc in documents
        )

    return prompt


def _get_conversation(db: Session, conversation_id: int, user: User) -> AIConversation:
    conversation = (
        db.query(AIConversation)
        .filter(AIConversation.id == conversation_id, AIConversation.user_id == user.id)
        .first()
    )
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


# ============================================
# Chat
# ============================================


@router.post("/chat", response_model=ChatResponse)
async def chat(
    data: ChatRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_ai_chat),
):
    """Send a message to the assistant and store both sides of the exchange"""
    if data.conversation_id is not None:
        conversation = _get_conversation(db, data.conversation_id, current_user)
    else:
        conversation = None

    organization_id = data.organization_id or (conversation.organization_id if conversation else None)
    organization_id = organization_id or current_user.organization_id
    if organization_id is not None:
        ensure_organization_visible(db, current_user, organization_id, "Organization not found")

    if conversation is None:
        conversation = AIConversation(
            user_id=current_user.id, organization_id=organization_id, title=data.message[:60]
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        logger.info(f"🆕 AI conversation {conversation.id} started by user {current_user.id}")

    recent = (
        db.query(AIMessage)
        .filter(AIMessage.conversation_id == conversation.id)
        .order_by(AIMessage.id.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )
    history = [
        {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
        for m in reversed(recent)
    ]
    messages = [*history, {"role": "user", "content": data.message}]

    system_prompt = build_system_prompt(db, organization_id)
    primary, keys = resolve_provider_keys(db)

    try:
        reply, provider = await generate_reply(messages, system_prompt, primary, keys)
    except AllProvidersFailedError as e:
        raise HTTPException(status_code=503, detail="AI service unavailable. All providers failed.") from e

    db.add(AIMessage(conversation_id=conversation.id, role="user", content=data.message))
    db.add(AIMessage(conversation_id=conversation.id, role="assistant", content=reply, provider=provider))
    conversation.updated_at = datetime.utcnow()
    db.commit()

    return {"message": reply, "conversation_id": conversation.id, "provider": provider}


@router.get("/conversations", response_model=list[AIConversationResponse])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return (
        db.query(AIConversation)
        .filter(AIConversation.user_id == current_user.id)
        .order_by(AIConversation.id.desc())
        .all()
    )


@router.post("/conversations", response_model=AIConversationResponse, status_code=201)
async def create_conversation(
    data: AIConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    organization_id = data.organization_id or current_user.organization_id
    if organization_id is not None:
        ensure_organization_visible(db, current_user, organization_id, "Organization not found")

    conversation = AIConversation(user_id=current_user.id, organization_id=organization_id, title=data.title)
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


@router.get("/conversations/{conversation_id}/messages", response_model=list[AIMessageResponse])
async def list_messages(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversation = _get_conversation(db, conversation_id, current_user)
    return conversation.messages


# ============================================
# Administration
# ============================================


@router.get("/rules", response_model=list[AIRuleResponse])
async def list_rules(
    organization_id: Optional[int] = Query(None),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    query = db.query(AIRule)
    if organization_id is not None:
        query = query.filter(AIRule.organization_id == organization_id)
    return query.order_by(AIRule.priority.desc(), AIRule.id).all()


@router.post("/rules", response_model=AIRuleResponse, status_code=201)
async def create_rule(
    data: AIRuleCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    rule = AIRule(**data.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(f"📝 AI rule {rule.id} created by user {current_user.id}")
    return rule


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    rule = db.query(AIRule).filter(AIRule.id == rule_id).first()
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    db.delete(rule)
    db.commit()
    return Response(status_code=204)


@router.get("/documents", response_model=list[AIDocumentResponse])
async def list_documents(
    organization_id: Optional[int] = Query(None),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    query = db.query(AIDocument)
    if organization_id is not None:
        query = query.filter(AIDocument.organization_id == organization_id)
    return query.order_by(AIDocument.id).all()


@router.post("/documents", response_model=AIDocumentResponse, status_code=201)
async def create_document(
    data: AIDocumentCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    document = AIDocument(**data.model_dump())
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info(f"📄 AI document {document.id} created by user {current_user.id}")
    return document


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(
    document_id: int,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    document = db.query(AIDocument).filter(AIDocument.id == document_id).first()
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    db.delete(document)
    db.commit()
    return Response(status_code=204)


@router.put("/config", response_model=AIConfigResponse)
async def upsert_config(
    data: AIConfigUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Create or replace the system prompt for an organization (or the global one)"""
    if data.organization_id is None:
        config = db.query(AIConfig).filter(AIConfig.organization_id.is_(None)).first()
    else:
        config = db.query(AIConfig).filter(AIConfig.organization_id == data.organization_id).first()

    if config is None:
        config = AIConfig(organization_id=data.organization_id)
        db.add(config)
    config.system_prompt = data.system_prompt
    config.is_active = data.is_active
    db.commit()
    db.refresh(config)
    logger.info(f"✅ AI config updated for organization {data.organization_id or 'global'}")
    return config
