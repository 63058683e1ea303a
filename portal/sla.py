"""
Ticket priority configuration and SLA status derivation

Response time SLAs:
- Critical: 1 hour first response, 4 hours resolution
- High: 4 hours first response, 24 hours resolution
- Medium: 8 hours first response, 48 hours resolution
- Low: 24 hours first response, 72 hours resolution

All timestamps are naive UTC datetimes.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

PRIORITY_CONFIG = {
    "critical": {
        "value": "critical",
        "label": "Critical",
        "description": "System down, security breach, or major business impact",
        "first_response_hours": 1,
        "resolution_hours": 4,
        "order": 1,
    },
    "high": {
        "value": "high",
        "label": "High",
        "description": "Significant functionality impacted, workaround available",
        "first_response_hours": 4,
        "resolution_hours": 24,
        "order": 2,
    },
    "medium": {
        "value": "medium",
        "label": "Medium",
        "description": "Standard request with moderate business impact",
        "first_response_hours": 8,
        "resolution_hours": 48,
        "order": 3,
    },
    "low": {
        "value": "low",
        "label": "Low",
        "description": "General inquiry or minor issue with no immediate impact",
        "first_response_hours": 24,
        "resolution_hours": 72,
        "order": 4,
    },
}

# Lower is worse; used to pick the combined status
SLA_STATUS_SEVERITY = {
    "breach": 0,
    "critical": 1,
    "warning": 2,
    "upcoming": 3,
    "on-track": 4,
    "completed": 5,
}


def get_priority_config(priority: Optional[str]) -> dict:
    """Priority configuration, falling back to medium for unknown values"""
    return PRIORITY_CONFIG.get(priority or "", PRIORITY_CONFIG["medium"])


def get_priorities_by_urgency() -> list[dict]:
    return sorted(PRIORITY_CONFIG.values(), key=lambda c: c["order"])


def is_urgent_priority(priority: Optional[str]) -> bool:
    return priority in ("critical", "high")


def calculate_first_response_due(priority: Optional[str], created_at: Optional[datetime] = None) -> datetime:
    created_at = created_at or datetime.utcnow()
    return created_at + timedelta(hours=get_priority_config(priority)["first_response_hours"])


def calculate_sla_due_date(priority: Optional[str], created_at: Optional[datetime] = None) -> datetime:
    created_at = created_at or datetime.utcnow()
    return created_at + timedelta(hours=get_priority_config(priority)["resolution_hours"])


def format_response_time(hours: float) -> str:
    """Format an SLA target, e.g. 0.5 -> '30 minutes', 48 -> '2 days'"""
    if hours < 1:
        return f"{_trim(hours * 60)} minutes"
    if hours == 1:
        return "1 hour"
    if hours < 24:
        return f"{_trim(hours)} hours"
    days = hours / 24
    return "1 day" if days == 1 else f"{_trim(days)} days"


def format_duration(hours: float) -> str:
    """Human readable duration: minutes under an hour, hours under a day, else days"""
    if hours < 1:
        minutes = _round_half_up(hours * 60)
        return f"{minutes} minute{'' if minutes == 1 else 's'}"

    if hours < 24:
        rounded = _round_half_up(hours)
        return f"{rounded} hour{'' if rounded == 1 else 's'}"

    days = math.floor(hours / 24)
    remaining_hours = _round_half_up(hours % 24)
    if remaining_hours == 0:
        return f"{days} day{'' if days == 1 else 's'}"
    return f"{days}d {remaining_hours}h"


def _trim(value: float):
    return int(value) if float(value).is_integer() else value


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _whole_hours(delta: timedelta) -> int:
    """Whole hours, truncated toward zero"""
    return int(delta.total_seconds() / 3600)


def _whole_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() / 60)


def _percent_elapsed(created_at: datetime, due_at: datetime, now: datetime) -> float:
    total_hours = _whole_hours(due_at - created_at)
    elapsed_hours = _whole_hours(now - created_at)
    return (elapsed_hours / total_hours) * 100 if total_hours > 0 else 0


def _classify(
    kind: str,
    created_at: datetime,
    due_at: datetime,
    now: datetime,
    critical_hours: int,
) -> dict:
    hours_remaining = _whole_hours(due_at - now)
    minutes_remaining = _whole_minutes(due_at - now)

    if due_at < now:
        hours_overdue = abs(hours_remaining)
        return {
            "status": "breach",
            "label": "OVERDUE",
            "description": f"{kind} overdue by {format_duration(hours_overdue)}",
            "hours_overdue": hours_overdue,
        }

    if hours_remaining < critical_hours:
        if hours_remaining < 1:
            remaining = f"{minutes_remaining} minutes"
        else:
            remaining = f"{hours_remaining} hours"
        return {
            "status": "critical",
            "label": "URGENT",
            "description": f"{kind} due in {remaining}",
            "hours_remaining": hours_remaining,
            "minutes_remaining": minutes_remaining,
        }

    percent_elapsed = _percent_elapsed(created_at, due_at, now)
    description = f"{kind} due in {format_duration(hours_remaining)}"

    if percent_elapsed >= 75:
        return {"status": "warning", "label": "At Risk", "description": description, "hours_remaining": hours_remaining}
    if percent_elapsed >= 50:
        return {
            "status": "upcoming",
            "label": "Approaching",
            "description": description,
            "hours_remaining": hours_remaining,
        }
    return {"status": "on-track", "label": "On Track", "description": description, "hours_remaining": hours_remaining}


def get_first_response_sla_status(
    created_at: Optional[datetime],
    first_response_due_at: Optional[datetime],
    first_response_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> dict:
    if first_response_at:
        return {"status": "completed", "label": "Responded", "description": "First response completed"}

    if not first_response_due_at or not created_at:
        return {"status": "on-track", "label": "No SLA", "description": "No SLA deadline configured"}

    return _classify("First response", created_at, first_response_due_at, now or datetime.utcnow(), 1)


def get_resolution_sla_status(
    created_at: Optional[datetime],
    sla_due_at: Optional[datetime],
    resolved_at: Optional[datetime],
    status: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    if resolved_at or status in ("resolved", "closed"):
        return {"status": "completed", "label": "Resolved", "description": "Ticket resolved"}

    if not sla_due_at or not created_at:
        return {"status": "on-track", "label": "No SLA", "description": "No resolution deadline configured"}

    return _classify("Resolution", created_at, sla_due_at, now or datetime.utcnow(), 2)


def get_combined_sla_status(
    created_at: Optional[datetime],
    first_response_due_at: Optional[datetime],
    first_response_at: Optional[datetime],
    sla_due_at: Optional[datetime],
    resolved_at: Optional[datetime],
    status: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    """Worst of the first-response and resolution statuses"""
    now = now or datetime.utcnow()
    first_response = get_first_response_sla_status(created_at, first_response_due_at, first_response_at, now)
    resolution = get_resolution_sla_status(created_at, sla_due_at, resolved_at, status, now)

    if SLA_STATUS_SEVERITY[first_response["status"]] < SLA_STATUS_SEVERITY[resolution["status"]]:
        return first_response
    return resolution


def get_ticket_sla_status(ticket, now: Optional[datetime] = None) -> dict:
    """Combined SLA status for a Ticket row"""
    return get_combined_sla_status(
        ticket.created_at,
        ticket.first_response_due_at,
        ticket.first_response_at,
        ticket.sla_due_at,
        ticket.resolved_at,
        ticket.status,
        now,
    )
