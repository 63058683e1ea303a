"""Invoice router - FastAPI endpoints for client invoices and payments"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import (
    InvoiceCreate,
    InvoiceDetailResponse,
    InvoiceResponse,
    InvoiceStatusUpdate,
    InvoiceUpdate,
    ManualPaymentCreate,
    ManualPaymentResponse,
    PaymentLinkResponse,
)
from .service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db)


# ============================================================================
# CORE OPERATIONS
# ============================================================================


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    status: Optional[str] = Query(None, description="Comma separated statuses"),
    client_org_id: Optional[int] = Query(None),
    overdue_only: bool = Query(False),
    search: Optional[str] = Query(None, max_length=200),
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.list_invoices(
        current_user,
        status=status,
        client_org_id=client_org_id,
        overdue_only=overdue_only,
        search=search,
    )


@router.post("", response_model=InvoiceDetailResponse, status_code=201)
async def create_invoice(
    data: InvoiceCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Create a draft invoice; totals are computed from the line items"""
    return service.create_invoice(data, current_user, background_tasks, request)


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.view_invoice(invoice_id, current_user)


@router.put("/{invoice_id}", response_model=InvoiceDetailResponse)
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.update_invoice(invoice_id, data, current_user, request)


@router.patch("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: int,
    data: InvoiceStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.change_status(invoice_id, data.status, current_user, background_tasks, request)


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(
    invoice_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    service.delete_invoice(invoice_id, current_user, request)
    return Response(status_code=204)


# ============================================================================
# DELIVERY & PAYMENT
# ============================================================================


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Email the invoice to the client organization"""
    return await service.send_invoice(invoice_id, current_user, request)


@router.post("/{invoice_id}/payments/manual", response_model=ManualPaymentResponse, status_code=201)
async def record_manual_payment(
    invoice_id: int,
    data: ManualPaymentCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Record a check, cash or bank transfer payment (amount in dollars)"""
    payment = await service.record_manual_payment(invoice_id, data, current_user, background_tasks, request)
    invoice = service.get_invoice(invoice_id, current_user)
    return ManualPaymentResponse(payment_id=payment.id, invoice=InvoiceDetailResponse.model_validate(invoice))


@router.post("/{invoice_id}/payment-link", response_model=PaymentLinkResponse)
async def create_payment_link(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.create_payment_link(invoice_id, current_user)


@router.get("/{invoice_id}/pdf")
async def download_invoice_pdf(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    pdf_bytes, filename = service.render_pdf(invoice_id, current_user)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)


__all__ = ["router"]
