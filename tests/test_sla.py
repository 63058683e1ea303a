"""Tests for ticket priority configuration and SLA status derivation"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from portal.sla import (
    PRIORITY_CONFIG,
    SLA_STATUS_SEVERITY,
    calculate_first_response_due,
    calculate_sla_due_date,
    format_duration,
    format_response_time,
    get_combined_sla_status,
    get_first_response_sla_status,
    get_priorities_by_urgency,
    get_priority_config,
    get_resolution_sla_status,
    get_ticket_sla_status,
    is_urgent_priority,
)

T0 = datetime(2024, 3, 1, 9, 0, 0)


class TestPriorityConfig:
    """Deadlines derived from ticket priority"""

    @pytest.mark.parametrize(
        "priority,first_response,resolution",
        [("critical", 1, 4), ("high", 4, 24), ("medium", 8, 48), ("low", 24, 72)],
    )
    def test_deadlines(self, priority, first_response, resolution):
        assert calculate_first_response_due(priority, T0) == T0 + timedelta(hours=first_response)
        assert calculate_sla_due_date(priority, T0) == T0 + timedelta(hours=resolution)

    def test_unknown_priority_falls_back_to_medium(self):
        assert get_priority_config("blocker") is PRIORITY_CONFIG["medium"]
        assert get_priority_config(None) is PRIORITY_CONFIG["medium"]
        assert calculate_sla_due_date("blocker", T0) == T0 + timedelta(hours=48)

    def test_priorities_sorted_by_urgency(self):
        assert [p["value"] for p in get_priorities_by_urgency()] == ["critical", "high", "medium", "low"]

    def test_urgent_priorities(self):
        assert is_urgent_priority("critical")
        assert is_urgent_priority("high")
        assert not is_urgent_priority("medium")
        assert not is_urgent_priority(None)


class TestFormatting:
    @pytest.mark.parametrize(
        "hours,expected",
        [(0.5, "30 minutes"), (1, "1 hour"), (4, "4 hours"), (24, "1 day"), (48, "2 days"), (72, "3 days")],
    )
    def test_format_response_time(self, hours, expected):
        assert format_response_time(hours) == expected

    @pytest.mark.parametrize(
        "hours,expected",
        [
            (0.5, "30 minutes"),
            (1 / 60, "1 minute"),
            (1, "1 hour"),
            (5, "5 hours"),
            (24, "1 day"),
            (48, "2 days"),
            (50, "2d 2h"),
        ],
    )
    def test_format_duration(self, hours, expected):
        assert format_duration(hours) == expected


class TestFirstResponseStatus:
    """Medium priority: first response due 8 hours after creation"""

    due = T0 + timedelta(hours=8)

    def test_responded_is_completed(self):
        result = get_first_response_sla_status(T0, self.due, T0 + timedelta(hours=1), T0 + timedelta(hours=20))
        assert result["status"] == "completed"

    def test_no_deadline(self):
        assert get_first_response_sla_status(T0, None, None, T0)["label"] == "No SLA"

    def test_on_track(self):
        result = get_first_response_sla_status(T0, self.due, None, T0 + timedelta(hours=1))
        assert result["status"] == "on-track"
        assert result["hours_remaining"] == 7
        assert result["description"] == "First response due in 7 hours"

    def test_upcoming_at_half_elapsed(self):
        assert get_first_response_sla_status(T0, self.due, None, T0 + timedelta(hours=4))["status"] == "upcoming"

    def test_warning_at_three_quarters_elapsed(self):
        result = get_first_response_sla_status(T0, self.due, None, T0 + timedelta(hours=6))
        assert result["status"] == "warning"
        assert result["label"] == "At Risk"

    def test_critical_in_final_hour(self):
        result = get_first_response_sla_status(T0, self.due, None, T0 + timedelta(hours=7, minutes=30))
        assert result["status"] == "critical"
        assert result["minutes_remaining"] == 30
        assert result["description"] == "First response due in 30 minutes"

    def test_breach_after_deadline(self):
        result = get_first_response_sla_status(T0, self.due, None, T0 + timedelta(hours=10))
        assert result["status"] == "breach"
        assert result["label"] == "OVERDUE"
        assert result["hours_overdue"] == 2
        assert result["description"] == "First response overdue by 2 hours"


class TestResolutionStatus:
    due = T0 + timedelta(hours=48)

    def test_resolved_status_is_completed_without_timestamp(self):
        assert get_resolution_sla_status(T0, self.due, None, "closed", T0 + timedelta(days=5))["status"] == "completed"

    def test_critical_window_is_two_hours(self):
        result = get_resolution_sla_status(T0, self.due, None, "open", T0 + timedelta(hours=46, minutes=30))
        assert result["status"] == "critical"
        assert result["hours_remaining"] == 1

    def test_breach(self):
        result = get_resolution_sla_status(T0, self.due, None, "open", T0 + timedelta(hours=75))
        assert result["status"] == "breach"
        assert result["description"] == "Resolution overdue by 1d 3h"


class TestCombinedStatus:
    def test_worst_status_wins(self):
        now = T0 + timedelta(hours=10)
        result = get_combined_sla_status(
            T0, T0 + timedelta(hours=8), None, T0 + timedelta(hours=48), None, "open", now
        )
        assert result["status"] == "breach"
        assert result["description"].startswith("First response")

    def test_resolution_reported_after_first_response(self):
        now = T0 + timedelta(hours=40)
        result = get_combined_sla_status(
            T0, T0 + timedelta(hours=8), T0 + timedelta(hours=1), T0 + timedelta(hours=48), None, "open", now
        )
        assert result["status"] == "warning"
        assert result["description"].startswith("Resolution")

    def test_ticket_row(self):
        ticket = SimpleNamespace(
            created_at=T0,
            first_response_due_at=T0 + timedelta(hours=1),
            first_response_at=None,
            sla_due_at=T0 + timedelta(hours=4),
            resolved_at=None,
            status="new",
        )
        assert get_ticket_sla_status(ticket, T0 + timedelta(hours=2))["status"] == "breach"

    @pytest.mark.parametrize("priority", list(PRIORITY_CONFIG))
    def test_status_never_improves_while_time_passes(self, priority):
        first_due = calculate_first_response_due(priority, T0)
        resolution_due = calculate_sla_due_date(priority, T0)
        previous = SLA_STATUS_SEVERITY["on-track"]

        now = T0
        while now <= resolution_due + timedelta(hours=3):
            status = get_combined_sla_status(T0, first_due, None, resolution_due, None, "open", now)["status"]
            assert SLA_STATUS_SEVERITY[status] <= previous, f"{priority} improved at {now - T0}"
            previous = SLA_STATUS_SEVERITY[status]
            now += timedelta(minutes=15)

        assert previous == SLA_STATUS_SEVERITY["breach"]
