"""Tests for OAuth integrations and QuickBooks invoice sync"""

import json
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from portal.models_integration import IntegrationSyncLog, OAuthIntegration
from portal.models_invoice import Invoice
from portal.routes.integrations import create_oauth_state, verify_oauth_state
from portal.routes.quickbooks import (
    QuickBooksSyncError,
    build_invoice_payload,
    sync_invoice_to_quickbooks,
)
from portal.services.oauth_providers import (
    PROVIDERS,
    OAuthError,
    get_valid_access_token,
    needs_refresh,
    store_tokens,
)
from portal.utils.encryption import TokenDecryptionError, decrypt_token, encrypt_token

NOW = datetime(2024, 5, 1, 12, 0)


@pytest.fixture
def configured(monkeypatch):
    """Give every provider client credentials"""
    for provider in PROVIDERS.values():
        monkeypatch.setattr(provider, "client_id", f"{provider.name}-client")
        monkeypatch.setattr(provider, "client_secret", f"{provider.name}-secret")
        monkeypatch.setattr(provider, "redirect_uri", f"https://portal.example/oauth/{provider.name}")


def connect_quickbooks(db, user, **fields) -> OAuthIntegration:
    fields = {"token_expires_at": datetime.utcnow() + timedelta(hours=1), **fields}
    integration = OAuthIntegration(
        user_id=user.id,
        organization_id=user.organization_id,
        provider="quickbooks",
        access_token=encrypt_token("qb-access"),
        refresh_token=encrypt_token("qb-refresh"),
        account_id="realm-42",
        **fields,
    )
    db.add(integration)
    db.commit()
    return integration


class TestTokens:
    def test_encryption_roundtrip(self):
        encrypted = encrypt_token("secret-token")
        assert encrypted != "secret-token"
        assert decrypt_token(encrypted) == "secret-token"

    def test_tampered_token(self):
        with pytest.raises(TokenDecryptionError):
            decrypt_token("not-a-fernet-token")

    def test_store_tokens_keeps_existing_refresh_token(self):
        integration = OAuthIntegration(provider="google")
        store_tokens(integration, {"access_token": "a1", "refresh_token": "r1", "expires_in": 3600}, now=NOW)
        store_tokens(integration, {"access_token": "a2", "expires_in": 60, "scope": "calendar"}, now=NOW)

        assert decrypt_token(integration.access_token) == "a2"
        assert decrypt_token(integration.refresh_token) == "r1"
        assert integration.token_expires_at == NOW + timedelta(seconds=60)
        assert integration.scope == "calendar"

    def test_needs_refresh_within_five_minutes(self):
        assert needs_refresh(OAuthIntegration(token_expires_at=NOW + timedelta(minutes=4)), now=NOW) is True
        assert needs_refresh(OAuthIntegration(token_expires_at=NOW + timedelta(minutes=10)), now=NOW) is False
        assert needs_refresh(OAuthIntegration(token_expires_at=None), now=NOW) is False

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed(self, db, users, configured):
        integration = connect_quickbooks(db, users.manager, token_expires_at=datetime.utcnow())
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"access_token": "qb-new", "expires_in": 3600})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            token = await get_valid_access_token(db, integration, client)

        assert token == "qb-new"
        assert decrypt_token(integration.refresh_token) == "qb-refresh"
        assert parse_qs(requests[0].content.decode())["grant_type"] == ["refresh_token"]
        assert requests[0].headers["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, db, users, configured):
        integration = connect_quickbooks(db, users.manager, token_expires_at=datetime.utcnow())
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(OAuthError):
                await get_valid_access_token(db, integration, client)


class TestOAuthFlow:
    def test_state_bound_to_user_and_provider(self):
        state = create_oauth_state(7, "google")
        assert verify_oauth_state(state, 7, "google") is True
        assert verify_oauth_state(state, 8, "google") is False
        assert verify_oauth_state(state, 7, "dropbox") is False
        assert verify_oauth_state(state + "x", 7, "google") is False

    def test_status_lists_every_provider(self, api, users):
        statuses = api(users.client).get("/integrations").json()
        assert [s["provider"] for s in statuses] == ["google", "microsoft", "dropbox", "quickbooks"]
        assert not any(s["connected"] for s in statuses)

    def test_unconfigured_provider(self, api, users):
        assert api(users.client).get("/integrations/google/connect").status_code == 500

    def test_unknown_provider(self, api, users, configured):
        assert api(users.client).get("/integrations/myspace/connect").status_code == 404

    def test_connect_returns_authorization_url(self, api, users, configured):
        body = api(users.client).get("/integrations/google/connect").json()
        query = parse_qs(urlparse(body["authorization_url"]).query)

        assert query["client_id"] == ["google-client"]
        assert query["state"] == [body["state"]]
        assert query["access_type"] == ["offline"]

    def test_callback_stores_encrypted_tokens(self, api, db, users, configured):
        client = api(users.client)
        state = client.get("/integrations/google/connect").json()["state"]
        tokens = {"access_token": "g-access", "refresh_token": "g-refresh", "expires_in": 3600}

        with patch.object(PROVIDERS["google"], "exchange_code", new=AsyncMock(return_value=tokens)):
            response = client.post("/integrations/google/callback", json={"code": "abc", "state": state})

        assert response.status_code == 200
        assert response.json()["connected"] is True
        stored = db.query(OAuthIntegration).one()
        assert stored.access_token != "g-access"
        assert decrypt_token(stored.access_token) == "g-access"

    def test_callback_with_foreign_state(self, api, users, configured):
        state = create_oauth_state(users.agent.id, "google")
        response = api(users.client).post("/integrations/google/callback", json={"code": "abc", "state": state})
        assert response.status_code == 400

    def test_quickbooks_requires_realm(self, api, users, configured):
        state = create_oauth_state(users.manager.id, "quickbooks")
        response = api(users.manager).post("/integrations/quickbooks/callback", json={"code": "abc", "state": state})
        assert response.status_code == 400

    def test_disconnect(self, api, db, users):
        connect_quickbooks(db, users.manager)
        manager = api(users.manager)
        assert manager.delete("/integrations/quickbooks").status_code == 204
        assert manager.delete("/integrations/quickbooks").status_code == 404


def sent_invoice(api, users, orgs) -> int:
    manager = api(users.manager)
    created = manager.post(
        "/invoices",
        json={
            "client_org_id": orgs.client.id,
            "due_date": (date.today() + timedelta(days=30)).isoformat(),
            "line_items": [{"description": "Support plan", "quantity": 2, "unit_price_cents": 12550}],
            "tax_rate": 1000,
            "notes": "Thank you",
        },
    ).json()
    manager.post(f"/invoices/{created['id']}/send")
    return created["id"]


def quickbooks_client(requests: list, fail_invoice: bool = False) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/customer"):
            return httpx.Response(200, json={"Customer": {"Id": "C-1"}})
        if fail_invoice:
            return httpx.Response(400, text="Duplicate Document Number Error")
        return httpx.Response(200, json={"Invoice": {"Id": "QB-100"}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestQuickBooksSync:
    def test_invoice_payload_in_dollars(self, api, db, users, orgs):
        invoice = db.get(Invoice, sent_invoice(api, users, orgs))
        payload = build_invoice_payload(invoice, "C-1")

        assert payload["CustomerRef"] == {"value": "C-1"}
        assert payload["Line"][0]["Amount"] == 251.0
        assert payload["Line"][0]["SalesItemLineDetail"] == {"Qty": 2, "UnitPrice": 125.5}
        assert payload["TxnTaxDetail"] == {"TotalTax": 25.1}
        assert payload["CustomerMemo"] == {"value": "Thank you"}

    @pytest.mark.asyncio
    async def test_customer_created_once(self, api, db, users, orgs):
        integration = connect_quickbooks(db, users.manager)
        first = db.get(Invoice, sent_invoice(api, users, orgs))
        second = db.get(Invoice, sent_invoice(api, users, orgs))
        requests = []

        async with quickbooks_client(requests) as client:
            assert await sync_invoice_to_quickbooks(db, integration, first, client) == "QB-100"
            await sync_invoice_to_quickbooks(db, integration, second, client)

        paths = [r.url.path.rsplit("/", 1)[-1] for r in requests]
        assert paths == ["customer", "invoice", "invoice"]
        assert requests[0].headers["authorization"] == "Bearer qb-access"
        assert json.loads(requests[2].content)["CustomerRef"] == {"value": "C-1"}
        assert first.quickbooks_invoice_id == "QB-100"
        assert db.query(IntegrationSyncLog).filter(IntegrationSyncLog.status == "success").count() == 3

    @pytest.mark.asyncio
    async def test_failure_is_logged(self, api, db, users, orgs):
        integration = connect_quickbooks(db, users.manager)
        invoice = db.get(Invoice, sent_invoice(api, users, orgs))

        async with quickbooks_client([], fail_invoice=True) as client:
            with pytest.raises(QuickBooksSyncError):
                await sync_invoice_to_quickbooks(db, integration, invoice, client)

        failed = db.query(IntegrationSyncLog).filter(IntegrationSyncLog.status == "failed").one()
        assert failed.entity_type == "invoice"
        assert "Duplicate" in failed.error_message
        assert invoice.quickbooks_invoice_id is None

    def test_sync_route_requires_connection(self, api, users, orgs):
        invoice_id = sent_invoice(api, users, orgs)
        assert api(users.manager).post(f"/quickbooks/sync/invoice/{invoice_id}").status_code == 400

    def test_sync_route_requires_billing_rights(self, api, users, orgs):
        invoice_id = sent_invoice(api, users, orgs)
        assert api(users.agent).post(f"/quickbooks/sync/invoice/{invoice_id}").status_code == 403

    def test_sync_route(self, api, db, users, orgs):
        connect_quickbooks(db, users.manager)
        invoice_id = sent_invoice(api, users, orgs)

        with patch("portal.routes.quickbooks.sync_invoice_to_quickbooks", new=AsyncMock(return_value="QB-7")):
            response = api(users.manager).post(f"/quickbooks/sync/invoice/{invoice_id}")

        assert response.json() == {"success": True, "quickbooks_id": "QB-7", "message": "Invoice synced successfully"}

    def test_status(self, api, db, users):
        assert api(users.manager).get("/quickbooks/status").json()["connected"] is False
        connect_quickbooks(db, users.manager)
        assert api(users.manager).get("/quickbooks/status").json()["realm_id"] == "realm-42"
