"""Audit trail helpers"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ..auth import get_request_meta
from ..models import AuditLog, User

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    user: Optional[User],
    action: str,
    entity_type: str,
    entity_id=None,
    details: Optional[dict] = None,
    request: Optional[Request] = None,
    organization_id: Optional[int] = None,
) -> AuditLog:
    """
    Add an audit row to the session (caller commits).

    action uses dotted names such as ticket.created or invoice.payment_recorded.
    """
    ip_address, user_agent = get_request_meta(request) if request is not None else (None, None)

    entry = AuditLog(
        organization_id=organization_id if organization_id is not None else getattr(user, "organization_id", None),
        user_id=user.id if user is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details or {},
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    )
    db.add(entry)
    logger.debug(f"📝 Audit {action} on {entity_type}:{entity_id} by user {entry.user_id}")
    return entry
