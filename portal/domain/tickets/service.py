"""Ticket service - Business logic for support tickets"""

import logging
from collections import Counter
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, HTTPException, Request
from sqlalchemy.orm import Session

from ...models import Organization, User
from ...models_ticket import TICKET_PRIORITIES, TICKET_STATUSES, Ticket
from ...permissions import (
    can_view_organization,
    ensure_organization_visible,
    is_client,
)
from ...services.audit_service import record_audit
from ...services.notification_service import (
    deliver_ticket_notification,
    format_notification_message,
    notify_users,
)
from ...services.zapier_webhooks import queue_webhooks
from ...sla import (
    SLA_STATUS_SEVERITY,
    calculate_first_response_due,
    calculate_sla_due_date,
    get_ticket_sla_status,
)
from .repository import TicketRepository
from .schemas import TicketCommentCreate, TicketCreate, TicketUpdate

logger = logging.getLogger(__name__)

# Allowed status transitions; closed is terminal
STATUS_TRANSITIONS = {
    "new": {"open", "in_progress", "pending_client", "resolved", "closed"},
    "open": {"in_progress", "pending_client", "resolved", "closed"},
    "in_progress": {"pending_client", "resolved", "closed"},
    "pending_client": {"in_progress", "resolved", "closed"},
    "resolved": {"closed", "open", "in_progress"},
    "closed": set(),
}


def can_transition(current: str, new: str) -> bool:
    return new in STATUS_TRANSITIONS.get(current, set())


def ticket_event_data(ticket: Ticket) -> dict:
    """Fields sent to Zapier for ticket events"""
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "subject": ticket.subject,
        "status": ticket.status,
        "priority": ticket.priority,
        "category": ticket.category,
        "organization_id": ticket.organization_id,
        "created_by": ticket.created_by,
        "assigned_to": ticket.assigned_to,
        "created_at": ticket.created_at,
    }


class TicketService:
    """Service layer for ticket business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = TicketRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_ticket(self, ticket_id: int, user: User) -> Ticket:
        ticket = self.repo.get_ticket(self.db, ticket_id)
        if not ticket or not can_view_organization(self.db, user, ticket.organization_id):
            raise HTTPException(status_code=404, detail="Ticket not found")
        return ticket

    def list_tickets(self, user: User, **filters) -> list[Ticket]:
        return self.repo.list_tickets(self.db, user, **filters)

    def get_stats(self, user: User, now: Optional[datetime] = None) -> dict:
        tickets = self.repo.list_tickets(self.db, user)
        now = now or datetime.utcnow()

        by_status = Counter(t.status for t in tickets)
        by_priority = Counter(t.priority for t in tickets)
        by_sla = Counter(get_ticket_sla_status(t, now)["status"] for t in tickets)

        return {
            "total": len(tickets),
            "by_status": {s: by_status.get(s, 0) for s in TICKET_STATUSES},
            "by_priority": {p: by_priority.get(p, 0) for p in TICKET_PRIORITIES},
            "by_sla_status": {s: by_sla.get(s, 0) for s in SLA_STATUS_SEVERITY},
        }

    def list_comments(self, ticket_id: int, user: User):
        ticket = self.get_ticket(ticket_id, user)
        return self.repo.list_comments(self.db, ticket.id, include_internal=not is_client(user))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_ticket(
        self,
        data: TicketCreate,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Ticket:
        """Open a ticket, computing SLA deadlines from its priority"""
        if is_client(user) or data.organization_id is None:
            organization_id = user.organization_id
        else:
            organization_id = data.organization_id
            ensure_organization_visible(self.db, user, organization_id, "Organization not found")

        if not organization_id:
            raise HTTPException(status_code=400, detail="User is not associated with an organization")

        now = datetime.utcnow()
        logger.info(f"📥 Creating {data.priority} ticket for organization {organization_id} by user {user.id}")

        ticket = self.repo.create_ticket(
            self.db,
            organization_id=organization_id,
            ticket_number=self.repo.next_ticket_number(self.db, organization_id),
            subject=data.subject,
            description=data.description,
            priority=data.priority,
            category=data.category,
            tags=data.tags,
            status="new",
            created_by=user.id,
            created_at=now,
            first_response_due_at=calculate_first_response_due(data.priority, now),
            sla_due_at=calculate_sla_due_date(data.priority, now),
        )

        organization = self.db.query(Organization).filter(Organization.id == organization_id).first()
        if organization and organization.is_priority_client:
            # Priority clients page every internal staff member
            staff_ids = [
                row[0]
                for row in self.db.query(User.id)
                .filter(User.role.in_(("super_admin", "staff")), User.is_active.is_(True))
                .all()
            ]
            subject, message = format_notification_message(
                "ticket_created", ticket.ticket_number, ticket.subject, priority=ticket.priority
            )
            notify_users(
                self.db,
                staff_ids,
                "ticket_created",
                subject,
                message,
                {"ticket_id": ticket.id},
                organization_id,
                user.id,
            )

        record_audit(
            self.db,
            user,
            "ticket.created",
            "ticket",
            ticket.id,
            {"ticket_number": ticket.ticket_number, "priority": ticket.priority},
            request,
            organization_id,
        )
        self.db.commit()
        self.db.refresh(ticket)

        queue_webhooks(background_tasks, "ticket.created", organization_id, ticket_event_data(ticket))
        logger.info(f"✅ Ticket #{ticket.ticket_number} created (id={ticket.id})")
        return ticket

    async def change_status(
        self,
        ticket_id: int,
        new_status: str,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Ticket:
        ticket = self.get_ticket(ticket_id, user)
        old_status = ticket.status

        if is_client(user):
            if new_status != "closed":
                raise HTTPException(status_code=403, detail="Clients can only close tickets")
            if old_status == "closed":
                raise HTTPException(status_code=400, detail="Ticket is already closed")

        if not can_transition(old_status, new_status):
            raise HTTPException(
                status_code=400,
                detail=f"Cannot change ticket status from {old_status} to {new_status}",
            )

        now = datetime.utcnow()
        ticket.status = new_status
        if new_status == "resolved":
            ticket.resolved_at = now
        elif new_status == "closed":
            ticket.closed_at = now
        elif old_status == "resolved":
            # Reopened
            ticket.resolved_at = None

        notification_type = {"resolved": "ticket_resolved", "closed": "ticket_closed"}.get(
            new_status, "ticket_updated"
        )
        subject, message = format_notification_message(
            notification_type, ticket.ticket_number, ticket.subject, status=new_status
        )
        recipients = notify_users(
            self.db,
            [ticket.created_by, ticket.assigned_to],
            notification_type,
            subject,
            message,
            {"ticket_id": ticket.id, "old_status": old_status, "new_status": new_status},
            ticket.organization_id,
            user.id,
        )
        for recipient_id in recipients:
            recipient = self.repo.get_user(self.db, recipient_id)
            if recipient:
                await deliver_ticket_notification(self.db, recipient, notification_type, subject, message, ticket)

        record_audit(
            self.db,
            user,
            "ticket.status_changed",
            "ticket",
            ticket.id,
            {"from": old_status, "to": new_status},
            request,
            ticket.organization_id,
        )
        self.db.commit()
        self.db.refresh(ticket)

        event = "ticket.closed" if new_status == "closed" else "ticket.updated"
        queue_webhooks(background_tasks, event, ticket.organization_id, ticket_event_data(ticket))
        logger.info(f"✅ Ticket {ticket.id} status {old_status} -> {new_status} by user {user.id}")
        return ticket

    async def update_ticket(
        self,
        ticket_id: int,
        data: TicketUpdate,
        user: User,
        background_tasks: Optional[BackgroundTasks] = None,
        request: Optional[Request] = None,
    ) -> Ticket:
        if is_client(user):
            raise HTTPException(status_code=403, detail="Only staff can edit tickets")

        ticket = self.get_ticket(ticket_id, user)
        changes = data.model_dump(exclude_unset=True)

        if "assigned_to" in changes and changes["assigned_to"] is not None:
            assignee = self.repo.get_user(self.db, changes["assigned_to"])
            if not assignee or assignee.role == "client":
                raise HTTPException(status_code=400, detail="Tickets can only be assigned to staff members")

        previous_assignee = ticket.assigned_to
        previous_priority = ticket.priority

        for field in ("subject", "description", "category", "tags", "assigned_to", "priority"):
            if field in changes:
                if field in ("subject", "priority", "category") and changes[field] is None:
                    continue
                setattr(ticket, field, changes[field])

        if ticket.priority != previous_priority:
            # Deadlines always count from creation
            ticket.first_response_due_at = calculate_first_response_due(ticket.priority, ticket.created_at)
            ticket.sla_due_at = calculate_sla_due_date(ticket.priority, ticket.created_at)

        if ticket.assigned_to and ticket.assigned_to != previous_assignee:
            subject, message = format_notification_message(
                "ticket_assigned", ticket.ticket_number, ticket.subject, priority=ticket.priority
            )
            if notify_users(
                self.db,
                [ticket.assigned_to],
                "ticket_assigned",
                subject,
                message,
                {"ticket_id": ticket.id},
                ticket.organization_id,
                user.id,
            ):
                assignee = self.repo.get_user(self.db, ticket.assigned_to)
                await deliver_ticket_notification(self.db, assignee, "ticket_assigned", subject, message, ticket)

        record_audit(
            self.db,
            user,
            "ticket.updated",
            "ticket",
            ticket.id,
            {k: v for k, v in changes.items() if k != "description"},
            request,
            ticket.organization_id,
        )
        self.db.commit()
        self.db.refresh(ticket)

        queue_webhooks(background_tasks, "ticket.updated", ticket.organization_id, ticket_event_data(ticket))
        return ticket

    async def add_comment(self, ticket_id: int, data: TicketCommentCreate, user: User):
        ticket = self.get_ticket(ticket_id, user)

        if data.is_internal and is_client(user):
            raise HTTPException(status_code=403, detail="Clients cannot post internal notes")
        if ticket.status == "closed":
            raise HTTPException(status_code=400, detail="Cannot comment on a closed ticket")

        comment = self.repo.add_comment(self.db, ticket, user, data.content.strip(), data.is_internal)
        now = datetime.utcnow()

        if is_client(user):
            if ticket.status == "pending_client":
                ticket.status = "open"
            recipients = [ticket.assigned_to]
        else:
            if not data.is_internal and ticket.first_response_at is None:
                ticket.first_response_at = now
            if not data.is_internal and ticket.status == "new":
                ticket.status = "open"
            # Internal notes never reach the client
            recipients = [ticket.assigned_to] if data.is_internal else [ticket.created_by, ticket.assigned_to]

        subject, message = format_notification_message(
            "ticket_comment",
            ticket.ticket_number,
            ticket.subject,
            commenter_name=user.full_name or user.email,
            comment_preview=data.content[:140],
        )
        notified = notify_users(
            self.db,
            recipients,
            "ticket_comment",
            subject,
            message,
            {"ticket_id": ticket.id, "comment_id": comment.id},
            ticket.organization_id,
            user.id,
        )
        for recipient_id in notified:
            recipient = self.repo.get_user(self.db, recipient_id)
            if recipient:
                await deliver_ticket_notification(self.db, recipient, "ticket_comment", subject, message, ticket)

        self.db.commit()
        self.db.refresh(comment)
        return comment
