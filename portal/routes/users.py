import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_staff, require_super_admin
from ..database import get_db
from ..domain.organizations.schemas import UserResponse
from ..models import Organization, User
from ..services.audit_service import record_audit
from ..services.notification_service import NOTIFICATION_CHANNELS
from ..shared.validators import validate_https_url, validate_phone
from ..utils.sanitization import escape_like

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])
admin_router = APIRouter(prefix="/admin/users", tags=["Admin"])


class NotificationPreferences(BaseModel):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    slack: Optional[bool] = None
    whatsapp: Optional[bool] = None
    sms_number: Optional[str] = None
    whatsapp_number: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    # notify_on_<type> switches
    disabled_types: Optional[list[str]] = None
    enabled_types: Optional[list[str]] = None

    @field_validator("sms_number", "whatsapp_number")
    @classmethod
    def check_phone(cls, v):
        return validate_phone(v)

    @field_validator("slack_webhook_url")
    @classmethod
    def check_slack_url(cls, v):
        return validate_https_url(v)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=500)
    notification_preferences: Optional[NotificationPreferences] = None


class AdminUserUpdate(BaseModel):
    role: Optional[Literal["super_admin", "staff", "partner", "partner_staff", "client"]] = None
    organization_id: Optional[int] = None
    is_account_manager: Optional[bool] = None
    is_active: Optional[bool] = None


def merge_preferences(current: Optional[dict], update: NotificationPreferences) -> dict:
    """Apply a partial preference update on top of the stored preferences"""
    merged = dict(current or {})
    changes = update.model_dump(exclude_unset=True)

    for key in (*NOTIFICATION_CHANNELS, "sms_number", "whatsapp_number", "slack_webhook_url"):
        if key in changes:
            merged[key] = changes[key]
    for notification_type in changes.get("disabled_types") or []:
        merged[f"notify_on_{notification_type}"] = False
    for notification_type in changes.get("enabled_types") or []:
        merged.pop(f"notify_on_{notification_type}", None)
    return merged


# ============================================================================
# CURRENT USER
# ============================================================================


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=UserResponse)
async def update_me(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update name, avatar and notification preferences"""
    changes = data.model_dump(exclude_unset=True)
    if "full_name" in changes:
        current_user.full_name = (changes["full_name"] or "").strip() or None
    if "avatar_url" in changes:
        current_user.avatar_url = changes["avatar_url"]
    if data.notification_preferences is not None:
        current_user.notification_preferences = merge_preferences(
            current_user.notification_preferences, data.notification_preferences
        )

    db.commit()
    db.refresh(current_user)
    logger.info(f"✅ Profile updated for user {current_user.id}")
    return current_user


# ============================================================================
# ADMIN
# ============================================================================


@admin_router.get("", response_model=list[UserResponse])
async def list_users(
    role: Optional[str] = Query(None),
    organization_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if organization_id is not None:
        query = query.filter(User.organization_id == organization_id)
    if search:
        term = f"%{escape_like(search.strip())}%"
        query = query.filter(or_(User.email.ilike(term, escape="\\"), User.full_name.ilike(term, escape="\\")))
    return query.order_by(User.id).offset(offset).limit(limit).all()


@admin_router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: AdminUserUpdate,
    request: Request,
    current_user: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Change role, organization, account-manager flag or active state"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    changes = data.model_dump(exclude_unset=True)
    if user.id == current_user.id and (
        changes.get("role", user.role) != user.role or changes.get("is_active") is False
    ):
        raise HTTPException(status_code=400, detail="You cannot change your own role or deactivate yourself")

    if changes.get("organization_id") is not None:
        if not db.query(Organization.id).filter(Organization.id == changes["organization_id"]).first():
            raise HTTPException(status_code=404, detail="Organization not found")

    for field, value in changes.items():
        if field in ("role", "is_account_manager", "is_active") and value is None:
            continue
        setattr(user, field, value)

    if user.is_account_manager and user.role != "staff":
        user.is_account_manager = False

    record_audit(db, current_user, "user.updated", "user", user.id, changes, request)
    db.commit()
    db.refresh(user)
    logger.info(f"✅ User {user.id} updated by admin {current_user.id}: {changes}")
    return user
