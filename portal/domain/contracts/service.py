"""Contract service - Business logic for contract operations"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, HTTPException, Request
from sqlalchemy.orm import Session

from ...auth import get_request_meta
from ...email_service import send_contract_email
from ...models import User
from ...models_contract import Contract
from ...permissions import ensure_organization_visible, is_client
from ...security_utils import sanitize_html
from ...services.audit_service import record_audit
from ...services.notification_service import notify_users
from ...services.zapier_webhooks import queue_webhooks
from ...utils.sanitization import sanitize_string
from .repository import ContractRepository
from .schemas import ContractCreate, ContractSignRequest, ContractUpdate

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "void")


def contract_event_data(contract: Contract) -> dict:
    """Fields sent to Zapier for contract events"""
    return {
        "id": contract.id,
        "title": contract.title,
        "status": contract.status,
        "client_org_id": contract.client_org_id,
        "value_cents": contract.value_cents,
        "signer_name": contract.signer_name,
        "signer_email": contract.signer_email,
        "signed_at": contract.signed_at,
        "completed_at": contract.completed_at,
    }


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ContractRepository()

    @staticmethod
    def _require_privileged(user: User) -> None:
        if is_client(user):
            raise HTTPException(status_code=403, detail="Only staff can manage contracts")

    def get_contracts(self, user: User, status: Optional[str] = None, client_org_id: Optional[int] = None):
        return self.repo.get_contracts(self.db, user, status, client_org_id)

    def get_contract(self, contract_id: int, user: User) -> Contract:
        contract = self.repo.get_contract(self.db, user, contract_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        return contract

    def view_contract(self, contract_id: int, user: User) -> Contract:
        """The first client view of a sent contract marks it viewed"""
        contract = self.get_contract(contract_id, user)
        if is_client(user) and contract.status == "sent":
            contract.status = "viewed"
            contract.viewed_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(contract)
        return contract

    def create_contract(
        self,
        data: ContractCreate,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Contract:
        self._require_privileged(user)
        if not user.organization_id:
            raise HTTPException(status_code=400, detail="User is not associated with an organization")
        ensure_organization_visible(self.db, user, data.client_org_id, "Client organization not found")

        logger.info(f"📝 Creating contract for organization {data.client_org_id} by user {user.id}")
        contract = self.repo.create_contract(
            self.db,
            organization_id=user.organization_id,
            client_org_id=data.client_org_id,
            title=sanitize_string(data.title),
            description=sanitize_string(data.description) if data.description else None,
            content=sanitize_html(data.content),
            value_cents=data.value_cents,
            start_date=data.start_date,
            end_date=data.end_date,
            status="draft",
            created_by=user.id,
        )
        record_audit(self.db, user, "contract.created", "contract", contract.id, {"title": contract.title}, request)
        self.db.commit()
        self.db.refresh(contract)

        queue_webhooks(background_tasks, "contract.created", contract.organization_id, contract_event_data(contract))
        logger.info(f"✅ Contract created: {contract.id}")
        return contract

    def update_contract(
        self, contract_id: int, data: ContractUpdate, user: User, request: Optional[Request] = None
    ) -> Contract:
        self._require_privileged(user)
        contract = self.get_contract(contract_id, user)
        if contract.status != "draft":
            raise HTTPException(status_code=400, detail="Only draft contracts can be edited")

        changes = data.model_dump(exclude_unset=True)
        if "title" in changes and changes["title"]:
            contract.title = sanitize_string(changes["title"].strip())
        if "description" in changes:
            contract.description = sanitize_string(changes["description"]) if changes["description"] else None
        if "content" in changes:
            contract.content = sanitize_html(changes["content"])
        for field in ("value_cents", "start_date", "end_date"):
            if field in changes:
                setattr(contract, field, changes[field])

        if contract.start_date and contract.end_date and contract.end_date < contract.start_date:
            raise HTTPException(status_code=400, detail="End date cannot be before the start date")

        record_audit(
            self.db,
            user,
            "contract.updated",
            "contract",
            contract.id,
            {"fields": sorted(changes)},
            request,
            contract.organization_id,
        )
        self.db.commit()
        self.db.refresh(contract)
        return contract

    def delete_contract(self, contract_id: int, user: User, request: Optional[Request] = None) -> None:
        self._require_privileged(user)
        contract = self.get_contract(contract_id, user)
        if contract.status != "draft":
            raise HTTPException(status_code=400, detail="Only draft contracts can be deleted")

        record_audit(
            self.db, user, "contract.deleted", "contract", contract.id, {"title": contract.title}, request,
            contract.organization_id,
        )
        self.db.delete(contract)
        self.db.commit()
        logger.info(f"🗑️ Contract {contract_id} deleted by user {user.id}")

    async def send_contract(self, contract_id: int, user: User, request: Optional[Request] = None) -> Contract:
        """Send a draft to the client organization for signature"""
        self._require_privileged(user)
        contract = self.get_contract(contract_id, user)
        if contract.status != "draft":
            raise HTTPException(status_code=400, detail="Only draft contracts can be sent")

        contract.status = "sent"
        contract.sent_at = datetime.utcnow()

        issuer = self.repo.get_organization(self.db, contract.organization_id)
        recipients = self.repo.get_organization_users(self.db, contract.client_org_id)
        notify_users(
            self.db,
            [u.id for u in recipients],
            "contract_sent",
            f"Contract ready for signature: {contract.title}",
            None,
            {"contract_id": contract.id},
            contract.client_org_id,
            user.id,
        )
        for recipient in recipients:
            await send_contract_email(
                recipient.email,
                recipient.full_name or recipient.email,
                issuer.name if issuer else "",
                contract.title,
                contract.id,
            )

        record_audit(
            self.db,
            user,
            "contract.sent",
            "contract",
            contract.id,
            {"recipients": len(recipients)},
            request,
            contract.organization_id,
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"📧 Contract {contract.id} sent to {len(recipients)} users")
        return contract

    def sign_contract(
        self,
        contract_id: int,
        data: ContractSignRequest,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Contract:
        """A user of the client organization signs a sent or viewed contract"""
        contract = self.get_contract(contract_id, user)
        if user.organization_id != contract.client_org_id:
            raise HTTPException(status_code=403, detail="Only the client organization can sign this contract")
        if contract.status not in ("sent", "viewed"):
            raise HTTPException(status_code=400, detail=f"Cannot sign a {contract.status} contract")

        ip_address, _ = get_request_meta(request) if request is not None else (None, None)
        contract.status = "signed"
        contract.signed_at = datetime.utcnow()
        contract.signer_name = sanitize_string(data.signer_name.strip())
        contract.signer_email = user.email
        contract.signer_user_id = user.id
        contract.signature = data.signature
        contract.signer_ip = ip_address

        notify_users(
            self.db,
            [contract.created_by],
            "contract_signed",
            f"Contract signed: {contract.title}",
            f"Signed by {contract.signer_name}",
            {"contract_id": contract.id},
            contract.organization_id,
            user.id,
        )
        record_audit(
            self.db,
            user,
            "contract.signed",
            "contract",
            contract.id,
            {"signer_name": contract.signer_name},
            request,
            contract.organization_id,
        )
        self.db.commit()
        self.db.refresh(contract)

        queue_webhooks(background_tasks, "contract.signed", contract.organization_id, contract_event_data(contract))
        logger.info(f"✅ Contract {contract.id} signed by user {user.id}")
        return contract

    def change_status(
        self,
        contract_id: int,
        new_status: str,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Contract:
        """signed -> completed; any non-terminal status -> void"""
        self._require_privileged(user)
        contract = self.get_contract(contract_id, user)
        old_status = contract.status

        if new_status == "completed" and old_status != "signed":
            raise HTTPException(status_code=400, detail="Only signed contracts can be completed")
        if new_status == "void" and old_status in TERMINAL_STATUSES:
            raise HTTPException(status_code=400, detail=f"Cannot void a {old_status} contract")

        contract.status = new_status
        if new_status == "completed":
            contract.completed_at = datetime.utcnow()

        record_audit(
            self.db,
            user,
            "contract.status_changed",
            "contract",
            contract.id,
            {"from": old_status, "to": new_status},
            request,
            contract.organization_id,
        )
        self.db.commit()
        self.db.refresh(contract)

        if new_status == "completed":
            queue_webhooks(
                background_tasks, "contract.completed", contract.organization_id, contract_event_data(contract)
            )
        return contract
