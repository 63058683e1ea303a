"""Contract router - FastAPI endpoints for contract operations"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import (
    ContractCreate,
    ContractResponse,
    ContractSignRequest,
    ContractStatusUpdate,
    ContractUpdate,
)
from .service import ContractService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_contract_service(db: Session = Depends(get_db)) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db)


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=list[ContractResponse])
async def get_contracts(
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
    status: Optional[str] = Query(None, description="Comma separated statuses"),
    client_org_id: Optional[int] = Query(None, description="Filter contracts by client organization"),
):
    return service.get_contracts(current_user, status, client_org_id)


@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    data: ContractCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return service.create_contract(data, current_user, background_tasks, request)


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return service.view_contract(contract_id, current_user)


@router.put("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: int,
    data: ContractUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return service.update_contract(contract_id, data, current_user, request)


@router.delete("/{contract_id}", status_code=204)
async def delete_contract(
    contract_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    service.delete_contract(contract_id, current_user, request)
    return Response(status_code=204)


# ============================================================================
# SIGNING WORKFLOW
# ============================================================================


@router.post("/{contract_id}/send", response_model=ContractResponse)
async def send_contract(
    contract_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return await service.send_contract(contract_id, current_user, request)


@router.post("/{contract_id}/sign", response_model=ContractResponse)
async def sign_contract(
    contract_id: int,
    data: ContractSignRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    """Client-side signature; records signer, signature and IP"""
    return service.sign_contract(contract_id, data, current_user, background_tasks, request)


@router.patch("/{contract_id}/status", response_model=ContractResponse)
async def update_contract_status(
    contract_id: int,
    data: ContractStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: ContractService = Depends(get_contract_service),
):
    return service.change_status(contract_id, data.status, current_user, background_tasks, request)


__all__ = ["router"]
