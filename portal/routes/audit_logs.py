"""Audit log listing for administrators"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_staff
from ..database import get_db
from ..models import AuditLog, User
from ..permissions import is_super_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit-logs", tags=["Audit"])


class AuditLogResponse(BaseModel):
    id: int
    organization_id: Optional[int]
    user_id: Optional[int]
    action: str
    entity_type: str
    entity_id: Optional[str]
    details: Optional[dict]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class AuditLogPage(BaseModel):
    total: int
    items: list[AuditLogResponse]


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    action: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Super admins see every entry; staff see their own organization's"""
    query = db.query(AuditLog)
    if not is_super_admin(current_user):
        query = query.filter(AuditLog.organization_id == current_user.organization_id)

    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)

    total = query.count()
    items = query.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
    return {"total": total, "items": items}
