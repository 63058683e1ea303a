"""Tenant visibility rules shared by every domain"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import false
from sqlalchemy.orm import Session

from .models import Organization, User

logger = logging.getLogger(__name__)

ALL_ORGANIZATIONS = None  # Sentinel: the user is not restricted to a set of organizations


def is_super_admin(user: User) -> bool:
    return user.role == "super_admin"


def is_staff(user: User) -> bool:
    """Internal staff, including super admins"""
    return user.role in ("super_admin", "staff")


def is_partner(user: User) -> bool:
    return user.role in ("partner", "partner_staff")


def is_client(user: User) -> bool:
    return user.role == "client"


def can_manage_billing(user: User) -> bool:
    """Invoices and payments are handled by super admins and account managers"""
    return user.role == "super_admin" or (user.role == "staff" and bool(user.is_account_manager))


def visible_organization_ids(db: Session, user: User) -> Optional[set[int]]:
    """
    Organizations whose data the user may see.
    Returns ALL_ORGANIZATIONS (None) for super admins and staff.
    """
    if is_staff(user):
        return ALL_ORGANIZATIONS
    if not user.organization_id:
        return set()
    if is_partner(user):
        child_ids = [
            row[0]
            for row in db.query(Organization.id)
            .filter(Organization.parent_id == user.organization_id)
            .all()
        ]
        return {user.organization_id, *child_ids}
    return {user.organization_id}


def can_view_organization(db: Session, user: User, organization_id: Optional[int]) -> bool:
    if organization_id is None:
        return False
    visible = visible_organization_ids(db, user)
    return visible is ALL_ORGANIZATIONS or organization_id in visible


def ensure_organization_visible(db: Session, user: User, organization_id: Optional[int], not_found: str) -> None:
    """Raise 404 (not 403) so hidden records are indistinguishable from missing ones"""
    if not can_view_organization(db, user, organization_id):
        logger.warning(f"⚠️ User {user.id} tried to access organization {organization_id}")
        raise HTTPException(status_code=404, detail=not_found)


def scope_query(query, column, db: Session, user: User):
    """Restrict a query to the organizations the user can see"""
    visible = visible_organization_ids(db, user)
    if visible is ALL_ORGANIZATIONS:
        return query
    if not visible:
        return query.filter(false())
    return query.filter(column.in_(visible))
