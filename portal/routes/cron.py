"""
Cron Routes
Entry points for hosted schedulers; guarded by a shared bearer secret
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ..config import CRON_SECRET
from ..database import get_db
from ..domain.invoices.service import mark_overdue_invoices
from ..security_utils import constant_time_compare
from ..services.sla_monitor import check_and_notify_sla

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


async def verify_cron_secret(authorization: str = Header(None)) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>`"""
    if not CRON_SECRET:
        logger.error("❌ CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token or not constant_time_compare(token, CRON_SECRET):
        logger.warning("🚫 Rejected cron request with invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/sla-check", dependencies=[Depends(verify_cron_secret)])
async def sla_check(db: Session = Depends(get_db)):
    """Send SLA warnings and breach alerts for open tickets"""
    summary = await check_and_notify_sla(db)
    logger.info(f"⏱️ Cron SLA check complete: {summary}")
    return {"success": True, **summary}


@router.post("/overdue-invoices", dependencies=[Depends(verify_cron_secret)])
async def overdue_invoices(db: Session = Depends(get_db)):
    """Move past-due invoices to overdue"""
    invoice_ids = await mark_overdue_invoices(db)
    return {"success": True, "updated": len(invoice_ids), "invoice_ids": invoice_ids}
