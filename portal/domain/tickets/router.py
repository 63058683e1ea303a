"""Ticket router - FastAPI endpoints for support tickets"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...models_ticket import Ticket
from ...sla import get_first_response_sla_status, get_resolution_sla_status, get_ticket_sla_status
from .schemas import (
    SLAStatusResponse,
    TicketCommentCreate,
    TicketCommentResponse,
    TicketCreate,
    TicketDetailResponse,
    TicketResponse,
    TicketStatsResponse,
    TicketStatusUpdate,
    TicketUpdate,
)
from .service import TicketService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def get_ticket_service(db: Session = Depends(get_db)) -> TicketService:
    """Dependency injection for TicketService"""
    return TicketService(db)


def _ticket_response(ticket: Ticket, now: datetime) -> TicketResponse:
    response = TicketResponse.model_validate(ticket)
    response.sla = SLAStatusResponse(**get_ticket_sla_status(ticket, now))
    return response


def _comment_response(comment) -> TicketCommentResponse:
    response = TicketCommentResponse.model_validate(comment)
    if comment.author is not None:
        response.author_name = comment.author.full_name or comment.author.email
    return response


# ============================================================================
# LISTING
# ============================================================================


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    status: Optional[str] = Query(None, description="Comma separated statuses"),
    priority: Optional[str] = Query(None, description="Comma separated priorities"),
    assigned_to: Optional[int] = Query(None),
    organization_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """List tickets visible to the current user with their combined SLA status"""
    tickets = service.list_tickets(
        current_user,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        organization_id=organization_id,
        search=search,
    )
    now = datetime.utcnow()
    return [_ticket_response(t, now) for t in tickets]


@router.get("/stats", response_model=TicketStatsResponse)
async def ticket_stats(
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Counts by status, priority and SLA bucket"""
    return service.get_stats(current_user)


# ============================================================================
# CORE OPERATIONS
# ============================================================================


@router.post("", response_model=TicketResponse, status_code=201)
async def create_ticket(
    data: TicketCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = service.create_ticket(data, current_user, background_tasks, request)
    return _ticket_response(ticket, datetime.utcnow())


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Ticket detail with both SLA clocks and the comments the user may see"""
    ticket = service.get_ticket(ticket_id, current_user)
    now = datetime.utcnow()

    response = TicketDetailResponse.model_validate(ticket)
    response.sla = SLAStatusResponse(**get_ticket_sla_status(ticket, now))
    response.first_response_sla = SLAStatusResponse(
        **get_first_response_sla_status(
            ticket.created_at, ticket.first_response_due_at, ticket.first_response_at, now
        )
    )
    response.resolution_sla = SLAStatusResponse(
        **get_resolution_sla_status(ticket.created_at, ticket.sla_due_at, ticket.resolved_at, ticket.status, now)
    )
    response.comments = [_comment_response(c) for c in service.list_comments(ticket_id, current_user)]
    return response


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def update_ticket_status(
    ticket_id: int,
    data: TicketStatusUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.change_status(ticket_id, data.status, current_user, background_tasks, request)
    return _ticket_response(ticket, datetime.utcnow())


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: int,
    data: TicketUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    """Staff update of subject, description, priority, category or assignee"""
    ticket = await service.update_ticket(ticket_id, data, current_user, background_tasks, request)
    return _ticket_response(ticket, datetime.utcnow())


# ============================================================================
# COMMENTS
# ============================================================================


@router.get("/{ticket_id}/comments", response_model=list[TicketCommentResponse])
async def list_comments(
    ticket_id: int,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    return [_comment_response(c) for c in service.list_comments(ticket_id, current_user)]


@router.post("/{ticket_id}/comments", response_model=TicketCommentResponse, status_code=201)
async def add_comment(
    ticket_id: int,
    data: TicketCommentCreate,
    current_user: User = Depends(get_current_user),
    service: TicketService = Depends(get_ticket_service),
):
    comment = await service.add_comment(ticket_id, data, current_user)
    return _comment_response(comment)


__all__ = ["router"]
