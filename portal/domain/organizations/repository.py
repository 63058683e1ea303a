"""Organization repository - Database operations for organizations and their users"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Organization, User
from ...permissions import scope_query
from ...utils.sanitization import escape_like


class OrganizationRepository:
    """Repository for organization database operations"""

    @staticmethod
    def list_organizations(
        db: Session, user: User, org_type: Optional[str] = None, search: Optional[str] = None
    ) -> list[Organization]:
        query = scope_query(db.query(Organization), Organization.id, db, user)
        if org_type:
            query = query.filter(Organization.type == org_type)
        if search:
            query = query.filter(Organization.name.ilike(f"%{escape_like(search.strip())}%", escape="\\"))
        return query.order_by(Organization.name).all()

    @staticmethod
    def get_organization(db: Session, organization_id: int) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def slug_exists(db: Session, slug: str, exclude_id: Optional[int] = None) -> bool:
        query = db.query(Organization.id).filter(Organization.slug == slug)
        if exclude_id is not None:
            query = query.filter(Organization.id != exclude_id)
        return query.first() is not None

    @staticmethod
    def create_organization(db: Session, **org_data) -> Organization:
        organization = Organization(**org_data)
        db.add(organization)
        db.flush()
        return organization

    @staticmethod
    def count_users(db: Session, organization_id: int) -> int:
        return db.query(User).filter(User.organization_id == organization_id).count()

    @staticmethod
    def count_children(db: Session, organization_id: int) -> int:
        return db.query(Organization).filter(Organization.parent_id == organization_id).count()

    @staticmethod
    def list_users(db: Session, organization_id: int) -> list[User]:
        return db.query(User).filter(User.organization_id == organization_id).order_by(User.email).all()
