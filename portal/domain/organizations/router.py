"""Organization router - FastAPI endpoints for tenants"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import OrganizationCreate, OrganizationResponse, OrganizationUpdate, UserResponse
from .service import OrganizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations", tags=["Organizations"])


def get_organization_service(db: Session = Depends(get_db)) -> OrganizationService:
    """Dependency injection for OrganizationService"""
    return OrganizationService(db)


@router.get("", response_model=list[OrganizationResponse])
async def list_organizations(
    type: Optional[str] = Query(None, description="internal, partner or client"),
    search: Optional[str] = Query(None, max_length=200),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    """Organizations visible to the current user"""
    return service.list_organizations(current_user, type, search)


@router.post("", response_model=OrganizationResponse, status_code=201)
async def create_organization(
    data: OrganizationCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.create_organization(data, current_user, request)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.get_organization(organization_id, current_user)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: int,
    data: OrganizationUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.update_organization(organization_id, data, current_user, request)


@router.delete("/{organization_id}", status_code=204)
async def delete_organization(
    organization_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    service.delete_organization(organization_id, current_user, request)
    return Response(status_code=204)


@router.get("/{organization_id}/users", response_model=list[UserResponse])
async def list_organization_users(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service),
):
    return service.list_users(organization_id, current_user)


__all__ = ["router"]
