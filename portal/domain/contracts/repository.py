"""Contract repository - Database operations for contracts"""

from typing import Optional

from sqlalchemy import false, or_
from sqlalchemy.orm import Session

from ...models import Organization, User
from ...models_contract import Contract
from ...permissions import ALL_ORGANIZATIONS, is_client, visible_organization_ids


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def scoped_query(db: Session, user: User):
        """Clients only see contracts that have been sent to their organization"""
        query = db.query(Contract)
        visible = visible_organization_ids(db, user)
        if visible is ALL_ORGANIZATIONS:
            return query
        if not visible:
            return query.filter(false())
        if is_client(user):
            return query.filter(Contract.client_org_id.in_(visible), Contract.status != "draft")
        return query.filter(or_(Contract.organization_id.in_(visible), Contract.client_org_id.in_(visible)))

    @staticmethod
    def get_contracts(
        db: Session,
        user: User,
        status: Optional[str] = None,
        client_org_id: Optional[int] = None,
    ) -> list[Contract]:
        query = ContractRepository.scoped_query(db, user)
        if status:
            query = query.filter(Contract.status.in_(status.split(",")))
        if client_org_id is not None:
            query = query.filter(Contract.client_org_id == client_org_id)
        return query.order_by(Contract.created_at.desc(), Contract.id.desc()).all()

    @staticmethod
    def get_contract(db: Session, user: User, contract_id: int) -> Optional[Contract]:
        return ContractRepository.scoped_query(db, user).filter(Contract.id == contract_id).first()

    @staticmethod
    def create_contract(db: Session, **contract_data) -> Contract:
        contract = Contract(**contract_data)
        db.add(contract)
        db.flush()
        return contract

    @staticmethod
    def get_organization(db: Session, organization_id: int) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def get_organization_users(db: Session, organization_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(User.organization_id == organization_id, User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )
