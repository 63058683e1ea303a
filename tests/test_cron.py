"""Tests for the scheduler entry points"""

from datetime import date, datetime, timedelta

import pytest

from portal.models_invoice import Invoice
from portal.models_ticket import Ticket

AUTH = {"Authorization": "Bearer test-cron-secret"}


class TestCronSecret:
    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "test-cron-secret"}, {"Authorization": "Basic test-cron-secret"}],
    )
    def test_rejected_without_secret(self, api, db, headers):
        assert api().post("/cron/sla-check", headers=headers).status_code == 401
        assert api().post("/cron/overdue-invoices", headers=headers).status_code == 401


class TestCronJobs:
    def test_sla_check(self, api, db, users, orgs):
        created = datetime.utcnow() - timedelta(hours=10)
        db.add(
            Ticket(
                organization_id=orgs.client.id,
                ticket_number=1,
                subject="Site down",
                priority="critical",
                status="new",
                created_at=created,
                first_response_due_at=created + timedelta(hours=1),
                sla_due_at=created + timedelta(hours=4),
            )
        )
        db.commit()

        response = api().post("/cron/sla-check", headers=AUTH)

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["checked"] == 1
        assert body["tickets"][0]["level"] == "breach"

    def test_overdue_invoices(self, api, db, users, orgs):
        manager = api(users.manager)
        created = manager.post(
            "/invoices",
            json={
                "client_org_id": orgs.client.id,
                "due_date": date.today().isoformat(),
                "line_items": [{"description": "Hosting", "quantity": 1, "unit_price_cents": 1000}],
            },
        ).json()
        manager.post(f"/invoices/{created['id']}/send")
        invoice = db.get(Invoice, created["id"])
        invoice.due_date = date.today() - timedelta(days=1)
        db.commit()

        response = api().post("/cron/overdue-invoices", headers=AUTH)

        assert response.json() == {"success": True, "updated": 1, "invoice_ids": [created["id"]]}
        db.refresh(invoice)
        assert invoice.status == "overdue"
