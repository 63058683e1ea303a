"""Organization service - tenants, partner hierarchy and memberships"""

import logging
from typing import Optional

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from ...models import Organization, User
from ...permissions import ensure_organization_visible, is_staff, is_super_admin
from ...services.audit_service import record_audit
from ...shared.validators import slugify
from .repository import OrganizationRepository
from .schemas import OrganizationCreate, OrganizationUpdate

logger = logging.getLogger(__name__)

# Only internal staff may change these
STAFF_ONLY_FIELDS = ("is_priority_client", "status", "parent_id")


class OrganizationService:
    """Service layer for organization business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrganizationRepository()

    def list_organizations(self, user: User, org_type: Optional[str] = None, search: Optional[str] = None):
        return self.repo.list_organizations(self.db, user, org_type, search)

    def get_organization(self, organization_id: int, user: User) -> Organization:
        ensure_organization_visible(self.db, user, organization_id, "Organization not found")
        organization = self.repo.get_organization(self.db, organization_id)
        if not organization:
            raise HTTPException(status_code=404, detail="Organization not found")
        return organization

    def _unique_slug(self, base: str) -> str:
        slug = base or "organization"
        suffix = 2
        while self.repo.slug_exists(self.db, slug):
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    def create_organization(
        self, data: OrganizationCreate, user: User, request: Optional[Request] = None
    ) -> Organization:
        """Super admins create any organization; partners create client organizations under their own"""
        if is_super_admin(user):
            org_type = data.type
            parent_id = data.parent_id
            if parent_id is not None:
                parent = self.repo.get_organization(self.db, parent_id)
                if not parent or parent.type != "partner":
                    raise HTTPException(status_code=400, detail="Parent must be a partner organization")
        elif user.role == "partner" and user.organization_id:
            org_type = "client"
            parent_id = user.organization_id
        else:
            raise HTTPException(status_code=403, detail="Insufficient permissions")

        if data.slug:
            if self.repo.slug_exists(self.db, data.slug):
                raise HTTPException(status_code=409, detail="Slug already in use")
            slug = data.slug
        else:
            slug = self._unique_slug(slugify(data.name))

        organization = self.repo.create_organization(
            self.db,
            name=data.name,
            slug=slug,
            type=org_type,
            parent_id=parent_id,
            is_priority_client=data.is_priority_client if is_super_admin(user) else False,
            logo_url=data.logo_url,
            brand_color=data.brand_color,
            billing_email=data.billing_email,
        )
        record_audit(
            self.db,
            user,
            "organization.created",
            "organization",
            organization.id,
            {"name": organization.name, "type": org_type},
            request,
            organization.id,
        )
        self.db.commit()
        self.db.refresh(organization)
        logger.info(f"🆕 Organization created: {organization.slug} ({org_type}) by user {user.id}")
        return organization

    def update_organization(
        self, organization_id: int, data: OrganizationUpdate, user: User, request: Optional[Request] = None
    ) -> Organization:
        organization = self.get_organization(organization_id, user)
        changes = data.model_dump(exclude_unset=True)

        if not is_staff(user):
            # Partners manage their own organization and their clients' branding
            if user.role != "partner":
                raise HTTPException(status_code=403, detail="Insufficient permissions")
            if any(field in changes for field in STAFF_ONLY_FIELDS):
                raise HTTPException(status_code=403, detail="Only staff can change these fields")

        if changes.get("slug") and self.repo.slug_exists(self.db, changes["slug"], exclude_id=organization.id):
            raise HTTPException(status_code=409, detail="Slug already in use")
        if "parent_id" in changes and changes["parent_id"] is not None:
            if changes["parent_id"] == organization.id:
                raise HTTPException(status_code=400, detail="An organization cannot be its own parent")
            parent = self.repo.get_organization(self.db, changes["parent_id"])
            if not parent or parent.type != "partner":
                raise HTTPException(status_code=400, detail="Parent must be a partner organization")

        for field, value in changes.items():
            if field in ("name", "slug") and not value:
                continue
            setattr(organization, field, value)

        record_audit(
            self.db,
            user,
            "organization.updated",
            "organization",
            organization.id,
            changes,
            request,
            organization.id,
        )
        self.db.commit()
        self.db.refresh(organization)
        return organization

    def delete_organization(self, organization_id: int, user: User, request: Optional[Request] = None) -> None:
        if not is_super_admin(user):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        organization = self.get_organization(organization_id, user)

        if self.repo.count_users(self.db, organization.id):
            raise HTTPException(status_code=400, detail="Organization still has users")
        if self.repo.count_children(self.db, organization.id):
            raise HTTPException(status_code=400, detail="Organization still has client organizations")

        record_audit(
            self.db,
            user,
            "organization.deleted",
            "organization",
            organization.id,
            {"name": organization.name},
            request,
            None,
        )
        self.db.delete(organization)
        self.db.commit()
        logger.info(f"🗑️ Organization {organization_id} deleted by user {user.id}")

    def list_users(self, organization_id: int, user: User) -> list[User]:
        organization = self.get_organization(organization_id, user)
        return self.repo.list_users(self.db, organization.id)
