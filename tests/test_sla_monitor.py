"""Tests for SLA warning and breach alerts"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from portal.models import Notification, NotificationLog
from portal.models_ticket import Ticket
from portal.services.notification_service import should_send_notification
from portal.services.sla_monitor import check_and_notify_sla, check_ticket_sla, get_notification_level

CREATED = datetime(2024, 5, 1, 9, 0)


def make_ticket(db, orgs, number=1, **fields) -> Ticket:
    """High priority ticket: first response due after 4h, resolution after 24h"""
    values = {
        "organization_id": orgs.client.id,
        "ticket_number": number,
        "subject": "Printer on fire",
        "priority": "high",
        "status": "new",
        "created_at": CREATED,
        "first_response_due_at": CREATED + timedelta(hours=4),
        "sla_due_at": CREATED + timedelta(hours=24),
        **fields,
    }
    ticket = Ticket(**values)
    db.add(ticket)
    db.commit()
    return ticket


class TestNotificationLevel:
    def test_plenty_of_time(self, db, orgs):
        ticket = make_ticket(db, orgs)
        assert get_notification_level(ticket, CREATED + timedelta(hours=1)) == (None, None)

    def test_warning_under_a_quarter_left(self, db, orgs):
        ticket = make_ticket(db, orgs)
        level, deadline = get_notification_level(ticket, CREATED + timedelta(hours=3, minutes=30))
        assert level == "warning"
        assert deadline == ticket.first_response_due_at

    def test_first_response_breach(self, db, orgs):
        ticket = make_ticket(db, orgs)
        assert get_notification_level(ticket, CREATED + timedelta(hours=5))[0] == "breach"

    def test_resolution_checked_after_first_response(self, db, orgs):
        ticket = make_ticket(db, orgs, first_response_at=CREATED + timedelta(hours=1))
        assert get_notification_level(ticket, CREATED + timedelta(hours=5)) == (None, None)
        level, deadline = get_notification_level(ticket, CREATED + timedelta(hours=25))
        assert (level, deadline) == ("breach", ticket.sla_due_at)

    @pytest.mark.parametrize("status", ["resolved", "closed"])
    def test_finished_tickets_ignored(self, db, orgs, status):
        ticket = make_ticket(db, orgs, status=status)
        assert get_notification_level(ticket, CREATED + timedelta(days=3)) == (None, None)


class TestCheckAndNotify:
    @pytest.mark.asyncio
    async def test_unassigned_breach_alerts_all_staff(self, db, orgs, users):
        ticket = make_ticket(db, orgs)

        result = await check_and_notify_sla(db, now=CREATED + timedelta(hours=5))

        assert result["checked"] == 1
        assert result["tickets"] == [{"ticket_id": ticket.id, "ticket_number": 1, "level": "breach"}]
        recipients = {n.user_id for n in db.query(Notification).filter(Notification.type == "sla_breach")}
        assert recipients == {users.admin.id, users.manager.id, users.agent.id}

        # Email is not configured, so each attempt is logged as failed
        failed = db.query(NotificationLog).filter(NotificationLog.channel == "email").all()
        assert {log.status for log in failed} == {"failed"}
        assert len(failed) == 3

    @pytest.mark.asyncio
    async def test_assignee_is_the_only_recipient(self, db, orgs, users):
        make_ticket(db, orgs, assigned_to=users.agent.id)
        await check_and_notify_sla(db, now=CREATED + timedelta(hours=5))
        assert [n.user_id for n in db.query(Notification).all()] == [users.agent.id]

    @pytest.mark.asyncio
    async def test_deduplicated_for_four_hours(self, db, orgs, users):
        make_ticket(db, orgs)
        first = await check_and_notify_sla(db, now=CREATED + timedelta(hours=5))
        again = await check_and_notify_sla(db, now=CREATED + timedelta(hours=7))
        later = await check_and_notify_sla(db, now=CREATED + timedelta(hours=9, minutes=1))

        assert len(first["tickets"]) == 1
        assert again["tickets"] == []
        assert len(later["tickets"]) == 1

    @pytest.mark.asyncio
    async def test_warning_and_breach_deduplicated_separately(self, db, orgs, users):
        make_ticket(db, orgs)
        warning = await check_and_notify_sla(db, now=CREATED + timedelta(hours=3, minutes=30))
        breach = await check_and_notify_sla(db, now=CREATED + timedelta(hours=4, minutes=30))

        assert warning["tickets"][0]["level"] == "warning"
        assert breach["tickets"][0]["level"] == "breach"

    @pytest.mark.asyncio
    async def test_slack_channel_when_enabled(self, db, orgs, users):
        users.agent.notification_preferences = {
            "email": False,
            "slack": True,
            "slack_webhook_url": "https://hooks.slack.com/services/T/B/X",
        }
        db.commit()
        make_ticket(db, orgs, assigned_to=users.agent.id)

        with patch("portal.services.notification_service.send_slack_message", new=AsyncMock()) as slack:
            result = await check_and_notify_sla(db, now=CREATED + timedelta(hours=5))

        slack.assert_awaited_once()
        assert slack.await_args.args[0] == "https://hooks.slack.com/services/T/B/X"
        assert result["notified"] == 2
        log = db.query(NotificationLog).filter(NotificationLog.channel == "slack").one()
        assert log.status == "sent"

    @pytest.mark.asyncio
    async def test_breach_email_uses_alert_template(self, db, orgs, users):
        make_ticket(db, orgs, assigned_to=users.agent.id)

        with patch(
            "portal.services.notification_service.send_sla_alert_email", new=AsyncMock(return_value={"id": "em_1"})
        ) as send:
            await check_and_notify_sla(db, now=CREATED + timedelta(hours=5))

        kwargs = send.await_args.kwargs
        assert kwargs["to"] == users.agent.email
        assert kwargs["level"] == "breach"
        assert kwargs["deadline"] == "2024-05-01 13:00 UTC"

    @pytest.mark.asyncio
    async def test_single_ticket_check(self, db, orgs, users):
        ticket = make_ticket(db, orgs)
        assert await check_ticket_sla(db, ticket.id, now=CREATED + timedelta(hours=1)) is False
        assert await check_ticket_sla(db, ticket.id, now=CREATED + timedelta(hours=5)) is True
        assert await check_ticket_sla(db, ticket.id, now=CREATED + timedelta(hours=6)) is False
        assert await check_ticket_sla(db, 9999) is False


class TestPreferences:
    def test_channel_must_be_enabled(self):
        assert should_send_notification("sla_breach", "email", {"email": True}) is True
        assert should_send_notification("sla_breach", "email", {"email": False}) is False

    def test_type_can_be_switched_off(self):
        prefs = {"email": True, "notify_on_sla_warning": False}
        assert should_send_notification("sla_warning", "email", prefs) is False
        assert should_send_notification("sla_breach", "email", prefs) is True

    @pytest.mark.parametrize(
        "channel, destination_key",
        [("sms", "sms_number"), ("whatsapp", "whatsapp_number"), ("slack", "slack_webhook_url")],
    )
    def test_channels_need_a_destination(self, channel, destination_key):
        assert should_send_notification("sla_breach", channel, {channel: True}) is False
        assert should_send_notification("sla_breach", channel, {channel: True, destination_key: "x"}) is True
