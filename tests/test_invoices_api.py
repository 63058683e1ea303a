"""Tests for invoices, manual payments and overdue marking"""

from datetime import date, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from portal.domain.invoices.service import mark_overdue_invoices
from portal.models import AuditLog, Notification
from portal.models_invoice import Invoice


def invoice_payload(client_org_id: int, **overrides) -> dict:
    return {
        "client_org_id": client_org_id,
        "due_date": (date.today() + timedelta(days=30)).isoformat(),
        "line_items": [{"description": "Monthly retainer", "quantity": 1, "unit_price_cents": 100000}],
        **overrides,
    }


def create_invoice(client, client_org_id: int, **overrides) -> dict:
    response = client.post("/invoices", json=invoice_payload(client_org_id, **overrides))
    assert response.status_code == 201, response.text
    return response.json()


def sent_invoice(api, users, orgs, **overrides) -> dict:
    manager = api(users.manager)
    invoice = create_invoice(manager, orgs.client.id, **overrides)
    response = manager.post(f"/invoices/{invoice['id']}/send")
    assert response.status_code == 200, response.text
    return response.json()


def pay(client, invoice_id: int, amount: float):
    return client.post(
        f"/invoices/{invoice_id}/payments/manual",
        json={"amount": amount, "payment_method": "bank_transfer", "payment_date": "2024-05-01"},
    )


class TestCreateInvoice:
    def test_draft_with_computed_totals(self, api, users, orgs, queued_webhooks):
        body = create_invoice(
            api(users.manager),
            orgs.client.id,
            line_items=[
                {"description": "Design", "quantity": 2, "unit_price_cents": 5000},
                {"description": "Hosting", "quantity": 1, "unit_price_cents": 2500},
            ],
            tax_rate=825,
            discount_type="percentage",
            discount_value=1000,
        )

        assert body["status"] == "draft"
        assert body["invoice_number"] == f"INV-{date.today().year}-0001"
        assert body["organization_id"] == orgs.internal.id
        assert (body["subtotal_cents"], body["discount_cents"], body["tax_cents"], body["total_cents"]) == (
            12500,
            1250,
            928,
            12178,
        )
        assert body["balance_due_cents"] == 12178
        assert [(i["position"], i["amount_cents"]) for i in body["line_items"]] == [(0, 10000), (1, 2500)]
        assert queued_webhooks[-1]["event"] == "invoice.created"

    def test_non_taxable_line_excluded_from_tax(self, api, users, orgs):
        body = create_invoice(
            api(users.manager),
            orgs.client.id,
            line_items=[
                {"description": "Support plan", "quantity": 1, "unit_price_cents": 10000},
                {"description": "Reimbursed travel", "quantity": 1, "unit_price_cents": 5000, "taxable": False},
            ],
            tax_rate=1000,
        )

        assert (body["tax_cents"], body["total_cents"]) == (1000, 16000)
        assert [i["taxable"] for i in body["line_items"]] == [True, False]

    def test_numbers_increment(self, api, users, orgs):
        manager = api(users.manager)
        create_invoice(manager, orgs.client.id)
        assert create_invoice(manager, orgs.client.id)["invoice_number"] == f"INV-{date.today().year}-0002"

    def test_duplicate_number_rejected(self, api, users, orgs):
        manager = api(users.manager)
        create_invoice(manager, orgs.client.id, invoice_number="ACME-7")
        response = manager.post("/invoices", json=invoice_payload(orgs.client.id, invoice_number="ACME-7"))
        assert response.status_code == 409
        assert response.json()["detail"] == "Invoice number already exists"

    def test_requires_account_manager(self, api, users, orgs):
        response = api(users.agent).post("/invoices", json=invoice_payload(orgs.client.id))
        assert response.status_code == 403

    @pytest.mark.parametrize(
        "overrides",
        [
            {"discount_type": "percentage", "discount_value": 10001},
            {"discount_value": 500},
            {"due_date": (date.today() - timedelta(days=1)).isoformat()},
            {"line_items": []},
            {"invoice_number": "bad number!"},
        ],
    )
    def test_invalid_payloads(self, api, users, orgs, overrides):
        response = api(users.manager).post("/invoices", json=invoice_payload(orgs.client.id, **overrides))
        assert response.status_code == 400


class TestClientAccess:
    def test_clients_never_see_drafts(self, api, users, orgs):
        invoice = create_invoice(api(users.manager), orgs.client.id)
        assert api(users.client).get("/invoices").json() == []
        assert api(users.client).get(f"/invoices/{invoice['id']}").status_code == 404

    def test_send_notifies_client_and_first_view_marks_viewed(self, api, db, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        assert invoice["status"] == "sent"
        assert invoice["sent_at"] is not None
        assert db.query(Notification).filter(
            Notification.user_id == users.client.id, Notification.type == "invoice_sent"
        ).count() == 1

        viewed = api(users.client).get(f"/invoices/{invoice['id']}").json()
        assert viewed["status"] == "viewed"
        assert viewed["viewed_at"] is not None

    def test_other_client_cannot_see_invoice(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        assert api(users.other_client).get(f"/invoices/{invoice['id']}").status_code == 404


class TestManualPayments:
    def test_partial_then_full_payment(self, api, db, users, orgs, queued_webhooks):
        invoice = sent_invoice(api, users, orgs)
        manager = api(users.manager)

        first = pay(manager, invoice["id"], 400)
        assert first.status_code == 201
        assert first.json()["invoice"]["status"] == "partial"
        assert first.json()["invoice"]["balance_due_cents"] == 60000

        second = pay(manager, invoice["id"], 600)
        body = second.json()["invoice"]
        assert body["status"] == "paid"
        assert body["paid_at"] is not None
        assert body["amount_paid_cents"] == 100000
        assert len(body["payments"]) == 2

        assert queued_webhooks[-1]["event"] == "invoice.paid"
        assert db.query(AuditLog).filter(AuditLog.action == "invoice.payment_recorded").count() == 2

    def test_overpayment_rejected(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        response = pay(api(users.manager), invoice["id"], 1000.01)
        assert response.status_code == 400
        assert response.json()["detail"]["balance_due"] == 1000.0

    def test_no_payments_on_drafts(self, api, users, orgs):
        invoice = create_invoice(api(users.manager), orgs.client.id)
        assert pay(api(users.manager), invoice["id"], 10).status_code == 400

    def test_only_account_managers_record_payments(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        assert pay(api(users.agent), invoice["id"], 10).status_code == 403

    def test_invalid_payment_date(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        response = api(users.manager).post(
            f"/invoices/{invoice['id']}/payments/manual",
            json={"amount": 10, "payment_method": "cash", "payment_date": "2024-02-30"},
        )
        assert response.status_code == 400


class TestEditingAndStatus:
    def test_draft_update_recomputes_totals(self, api, users, orgs):
        invoice = create_invoice(api(users.manager), orgs.client.id)
        response = api(users.manager).put(
            f"/invoices/{invoice['id']}",
            json={"line_items": [{"description": "Audit", "quantity": 3, "unit_price_cents": 1000}], "tax_rate": 1000},
        )
        body = response.json()
        assert body["subtotal_cents"] == 3000
        assert body["tax_cents"] == 300
        assert body["total_cents"] == 3300

    def test_sent_invoice_amounts_are_locked(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        manager = api(users.manager)
        assert manager.put(f"/invoices/{invoice['id']}", json={"tax_rate": 500}).status_code == 400
        assert manager.put(f"/invoices/{invoice['id']}", json={"notes": "Thanks!"}).status_code == 200

    def test_only_drafts_can_be_deleted(self, api, db, users, orgs):
        manager = api(users.manager)
        draft = create_invoice(manager, orgs.client.id)
        sent = sent_invoice(api, users, orgs)

        assert manager.delete(f"/invoices/{sent['id']}").status_code == 400
        assert manager.delete(f"/invoices/{draft['id']}").status_code == 204
        assert db.get(Invoice, draft["id"]) is None

    def test_transition_rules(self, api, users, orgs):
        manager = api(users.manager)
        invoice = create_invoice(manager, orgs.client.id)

        assert manager.patch(f"/invoices/{invoice['id']}/status", json={"status": "paid"}).status_code == 400
        assert manager.patch(f"/invoices/{invoice['id']}/status", json={"status": "void"}).status_code == 200
        assert manager.patch(f"/invoices/{invoice['id']}/status", json={"status": "sent"}).status_code == 400


class TestOverdue:
    @pytest.mark.asyncio
    async def test_past_due_unpaid_invoices_become_overdue(self, api, db, users, orgs):
        due_soon = sent_invoice(api, users, orgs, due_date=date.today().isoformat())
        draft = create_invoice(api(users.manager), orgs.client.id, due_date=date.today().isoformat())

        updated = await mark_overdue_invoices(db, today=date.today() + timedelta(days=1))

        assert updated == [due_soon["id"]]
        assert db.get(Invoice, due_soon["id"]).status == "overdue"
        assert db.get(Invoice, draft["id"]).status == "draft"
        assert db.query(AuditLog).filter(AuditLog.action == "invoice.overdue").count() == 1

    def test_overdue_filter(self, api, db, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        db.get(Invoice, invoice["id"]).status = "overdue"
        db.commit()

        listed = api(users.manager).get("/invoices", params={"overdue_only": True}).json()
        assert [i["id"] for i in listed] == [invoice["id"]]


class TestPaymentLinkAndPdf:
    def test_payment_link_stored_on_invoice(self, api, db, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        session = {"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}

        with patch(
            "portal.domain.invoices.service.create_checkout_session", new=AsyncMock(return_value=session)
        ) as create_session:
            response = api(users.client).post(f"/invoices/{invoice['id']}/payment-link")

        assert response.status_code == 200
        assert response.json() == {"url": session["url"], "session_id": "cs_test_123"}
        assert create_session.await_args.kwargs["amount_cents"] == 100000
        assert create_session.await_args.kwargs["customer_email"] == "billing@contoso.example"
        assert db.get(Invoice, invoice["id"]).stripe_checkout_session_id == "cs_test_123"

    def test_payment_link_without_stripe_configured(self, api, users, orgs):
        invoice = sent_invoice(api, users, orgs)
        response = api(users.client).post(f"/invoices/{invoice['id']}/payment-link")
        assert response.status_code == 500
        assert response.json()["detail"] == "Payment system not configured"

    def test_pdf_download(self, api, users, orgs):
        invoice = create_invoice(api(users.manager), orgs.client.id, notes="Net 30")
        response = api(users.manager).get(f"/invoices/{invoice['id']}/pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert invoice["invoice_number"] in response.headers["content-disposition"]
