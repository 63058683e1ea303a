"""Ticket repository - Database operations for tickets"""

from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ...models import User
from ...models_ticket import Ticket, TicketComment
from ...permissions import scope_query
from ...utils.sanitization import escape_like


class TicketRepository:
    """Repository for ticket database operations"""

    @staticmethod
    def next_ticket_number(db: Session, organization_id: int) -> int:
        """Ticket numbers are sequential within an organization"""
        current = (
            db.query(func.max(Ticket.ticket_number))
            .filter(Ticket.organization_id == organization_id)
            .scalar()
        )
        return (current or 0) + 1

    @staticmethod
    def list_tickets(
        db: Session,
        user: User,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assigned_to: Optional[int] = None,
        search: Optional[str] = None,
        organization_id: Optional[int] = None,
    ) -> list[Ticket]:
        query = scope_query(db.query(Ticket), Ticket.organization_id, db, user)

        if status:
            query = query.filter(Ticket.status.in_(status.split(",")))
        if priority:
            query = query.filter(Ticket.priority.in_(priority.split(",")))
        if assigned_to is not None:
            query = query.filter(Ticket.assigned_to == assigned_to)
        if organization_id is not None:
            query = query.filter(Ticket.organization_id == organization_id)
        if search:
            term = f"%{escape_like(search.strip())}%"
            query = query.filter(
                or_(
                    Ticket.subject.ilike(term, escape="\\"),
                    Ticket.description.ilike(term, escape="\\"),
                )
            )

        return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()

    @staticmethod
    def get_ticket(db: Session, ticket_id: int) -> Optional[Ticket]:
        return (
            db.query(Ticket)
            .options(joinedload(Ticket.comments))
            .filter(Ticket.id == ticket_id)
            .first()
        )

    @staticmethod
    def create_ticket(db: Session, **ticket_data) -> Ticket:
        ticket = Ticket(**ticket_data)
        db.add(ticket)
        db.flush()
        return ticket

    @staticmethod
    def add_comment(db: Session, ticket: Ticket, user: User, content: str, is_internal: bool) -> TicketComment:
        comment = TicketComment(ticket_id=ticket.id, user_id=user.id, content=content, is_internal=is_internal)
        db.add(comment)
        db.flush()
        return comment

    @staticmethod
    def list_comments(db: Session, ticket_id: int, include_internal: bool) -> list[TicketComment]:
        query = db.query(TicketComment).filter(TicketComment.ticket_id == ticket_id)
        if not include_internal:
            query = query.filter(TicketComment.is_internal.is_(False))
        return query.order_by(TicketComment.id).all()

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()
