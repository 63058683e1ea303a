"""
QuickBooks Sync Integration
Pushes portal invoices (and their client organizations as customers) to QuickBooks Online
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import QUICKBOOKS_ENVIRONMENT
from ..database import get_db
from ..domain.invoices.calculations import cents_to_dollars
from ..domain.invoices.service import InvoiceService
from ..models import Organization, User
from ..models_integration import IntegrationSyncLog, OAuthIntegration
from ..models_invoice import Invoice
from ..permissions import can_manage_billing
from ..services.audit_service import record_audit
from ..services.oauth_providers import OAuthError, get_valid_access_token
from ..utils.encryption import TokenDecryptionError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/quickbooks", tags=["quickbooks"])

# QuickBooks API URLs
if QUICKBOOKS_ENVIRONMENT == "production":
    QUICKBOOKS_API_BASE_URL = "https://quickbooks.api.intuit.com/v3"
else:
    QUICKBOOKS_API_BASE_URL = "https://sandbox-quickbooks.api.intuit.com/v3"

QUICKBOOKS_TIMEOUT_SECONDS = 30.0


class QuickBooksStatusResponse(BaseModel):
    connected: bool
    realm_id: Optional[str] = None
    company_name: Optional[str] = None
    environment: str = QUICKBOOKS_ENVIRONMENT


class SyncLogResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    external_id: Optional[str]
    status: str
    error_message: Optional[str]

    class Config:
        from_attributes = True


class QuickBooksSyncError(Exception):
    """QuickBooks rejected a request"""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"QuickBooks returned {status_code}: {body[:500]}")


# Helper Functions
def get_quickbooks_integration(db: Session, user_id: int) -> Optional[OAuthIntegration]:
    return (
        db.query(OAuthIntegration)
        .filter(OAuthIntegration.user_id == user_id, OAuthIntegration.provider == "quickbooks")
        .first()
    )


def build_customer_payload(organization: Organization) -> dict:
    payload = {"DisplayName": organization.name}
    if organization.billing_email:
        payload["PrimaryEmailAddr"] = {"Address": organization.billing_email}
    return payload


def build_invoice_payload(invoice: Invoice, customer_id: str) -> dict:
    """QuickBooks invoice body; amounts are converted from cents to dollars"""
    lines = [
        {
            "Amount": cents_to_dollars(item.amount_cents),
            "DetailType": "SalesItemLineDetail",
            "Description": item.description,
            "SalesItemLineDetail": {
                "Qty": item.quantity,
                "UnitPrice": cents_to_dollars(item.unit_price_cents),
            },
        }
        for item in invoice.line_items
    ]
    if invoice.discount_cents:
        lines.append(
            {
                "Amount": cents_to_dollars(invoice.discount_cents),
                "DetailType": "DiscountLineDetail",
                "DiscountLineDetail": {"PercentBased": False},
            }
        )

    payload = {
        "CustomerRef": {"value": customer_id},
        "DocNumber": invoice.invoice_number,
        "TxnDate": invoice.issue_date.isoformat(),
        "DueDate": invoice.due_date.isoformat(),
        "CurrencyRef": {"value": invoice.currency},
        "Line": lines,
    }
    if invoice.tax_cents:
        payload["TxnTaxDetail"] = {"TotalTax": cents_to_dollars(invoice.tax_cents)}
    if invoice.notes:
        payload["CustomerMemo"] = {"value": invoice.notes[:1000]}
    return payload


async def _post_entity(
    client: httpx.AsyncClient, realm_id: str, access_token: str, entity: str, payload: dict
) -> dict:
    response = await client.post(
        f"{QUICKBOOKS_API_BASE_URL}/company/{realm_id}/{entity.lower()}",
        headers={
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        json=payload,
    )
    if response.status_code not in (200, 201):
        logger.error(f"❌ QuickBooks {entity} sync failed: {response.text[:500]}")
        raise QuickBooksSyncError(response.status_code, response.text)
    return response.json().get(entity, {})


def _log_sync(
    db: Session,
    integration: OAuthIntegration,
    entity_type: str,
    entity_id: int,
    status: str,
    external_id: Optional[str] = None,
    error_message: Optional[str] = None,
) -> IntegrationSyncLog:
    sync_log = IntegrationSyncLog(
        integration_id=integration.id,
        entity_type=entity_type,
        entity_id=entity_id,
        external_id=external_id,
        status=status,
        error_message=error_message,
    )
    db.add(sync_log)
    return sync_log


def _synced_customer_id(db: Session, integration: OAuthIntegration, organization_id: int) -> Optional[str]:
    customer_sync = (
        db.query(IntegrationSyncLog)
        .filter(
            IntegrationSyncLog.integration_id == integration.id,
            IntegrationSyncLog.entity_type == "customer",
            IntegrationSyncLog.entity_id == organization_id,
            IntegrationSyncLog.status == "success",
        )
        .order_by(IntegrationSyncLog.id.desc())
        .first()
    )
    return customer_sync.external_id if customer_sync else None


async def sync_invoice_to_quickbooks(
    db: Session,
    integration: OAuthIntegration,
    invoice: Invoice,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Push one invoice, creating its customer first when the client organization
    has never been synced. Every push is recorded in integration_sync_logs.

    Returns:
        The QuickBooks invoice id
    """
    access_token = await get_valid_access_token(db, integration, client)
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=QUICKBOOKS_TIMEOUT_SECONDS)

    entity_type, entity_id = "customer", invoice.client_org_id
    try:
        customer_id = _synced_customer_id(db, integration, invoice.client_org_id)
        if not customer_id:
            customer = await _post_entity(
                client,
                integration.account_id,
                access_token,
                "Customer",
                build_customer_payload(invoice.client_organization),
            )
            customer_id = customer.get("Id")
            _log_sync(db, integration, "customer", invoice.client_org_id, "success", customer_id)

        entity_type, entity_id = "invoice", invoice.id
        qb_invoice = await _post_entity(
            client, integration.account_id, access_token, "Invoice", build_invoice_payload(invoice, customer_id)
        )
    except (QuickBooksSyncError, httpx.HTTPError) as e:
        _log_sync(db, integration, entity_type, entity_id, "failed", error_message=str(e)[:2000])
        db.commit()
        raise
    finally:
        if own_client:
            await client.aclose()

    qb_invoice_id = qb_invoice.get("Id")
    invoice.quickbooks_invoice_id = qb_invoice_id
    _log_sync(db, integration, "invoice", invoice.id, "success", qb_invoice_id)
    db.commit()
    logger.info(f"✅ Invoice {invoice.invoice_number} synced to QuickBooks as {qb_invoice_id}")
    return qb_invoice_id


# Routes
@router.get("/status", response_model=QuickBooksStatusResponse)
async def get_status(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Check if user has QuickBooks connected"""
    integration = get_quickbooks_integration(db, current_user.id)
    if integration:
        return QuickBooksStatusResponse(
            connected=True, realm_id=integration.account_id, company_name=integration.account_name
        )
    return QuickBooksStatusResponse(connected=False)


@router.post("/sync/invoice/{invoice_id}")
async def sync_invoice(
    invoice_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Sync a specific invoice to QuickBooks"""
    if not can_manage_billing(current_user):
        raise HTTPException(status_code=403, detail="Forbidden - Account manager access required")

    invoice = InvoiceService(db).get_invoice(invoice_id, current_user)
    if invoice.status in ("draft", "cancelled"):
        raise HTTPException(status_code=400, detail=f"Cannot sync a {invoice.status} invoice")
    if invoice.quickbooks_invoice_id:
        raise HTTPException(status_code=400, detail="Invoice already synced to QuickBooks")

    integration = get_quickbooks_integration(db, current_user.id)
    if not integration or not integration.account_id:
        raise HTTPException(status_code=400, detail="QuickBooks not connected")

    try:
        qb_invoice_id = await sync_invoice_to_quickbooks(db, integration, invoice)
    except (OAuthError, TokenDecryptionError) as e:
        logger.error(f"❌ QuickBooks token error: {e}")
        raise HTTPException(status_code=401, detail="Failed to refresh QuickBooks token") from e
    except QuickBooksSyncError as e:
        raise HTTPException(status_code=400, detail=f"Failed to sync invoice: {e.body[:500]}") from e
    except httpx.HTTPError as e:
        logger.error(f"❌ QuickBooks request error: {e}")
        raise HTTPException(status_code=502, detail="Could not reach QuickBooks") from e

    record_audit(
        db,
        current_user,
        "invoice.quickbooks_synced",
        "invoice",
        invoice.id,
        {"quickbooks_invoice_id": qb_invoice_id},
        request,
        invoice.organization_id,
    )
    db.commit()

    return {"success": True, "quickbooks_id": qb_invoice_id, "message": "Invoice synced successfully"}


@router.get("/sync-logs", response_model=list[SyncLogResponse])
async def list_sync_logs(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = get_quickbooks_integration(db, current_user.id)
    if not integration:
        raise HTTPException(status_code=404, detail="QuickBooks not connected")
    return (
        db.query(IntegrationSyncLog)
        .filter(IntegrationSyncLog.integration_id == integration.id)
        .order_by(IntegrationSyncLog.id.desc())
        .limit(limit)
        .all()
    )
