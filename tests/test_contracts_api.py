"""Tests for the contract signing workflow"""

from portal.models import Notification


def create_contract(client, client_org_id: int, **overrides) -> dict:
    payload = {"client_org_id": client_org_id, "title": "Support Agreement 2024", "value_cents": 1200000, **overrides}
    response = client.post("/contracts", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def sent_contract(api, users, orgs) -> dict:
    contract = create_contract(api(users.partner), orgs.client.id)
    response = api(users.partner).post(f"/contracts/{contract['id']}/send")
    assert response.status_code == 200, response.text
    return response.json()


SIGNATURE = {"signer_name": "Jane Doe", "signature": "Jane Doe", "agree_to_terms": True}


class TestDrafts:
    def test_partner_creates_draft_for_managed_client(self, api, users, orgs, queued_webhooks):
        body = create_contract(api(users.partner), orgs.client.id, content="<p>Terms</p><script>alert(1)</script>")
        assert body["status"] == "draft"
        assert body["organization_id"] == orgs.partner.id
        assert "<script>" not in body["content"]
        assert queued_webhooks[-1]["event"] == "contract.created"

    def test_clients_cannot_create(self, api, users, orgs):
        response = api(users.client).post("/contracts", json={"client_org_id": orgs.client.id, "title": "Mine"})
        assert response.status_code == 403

    def test_unmanaged_client_is_hidden(self, api, users, orgs):
        response = api(users.partner).post("/contracts", json={"client_org_id": orgs.other.id, "title": "Nope"})
        assert response.status_code == 404

    def test_end_before_start_rejected(self, api, users, orgs):
        response = api(users.partner).post(
            "/contracts",
            json={
                "client_org_id": orgs.client.id,
                "title": "Backwards",
                "start_date": "2024-06-01",
                "end_date": "2024-01-01",
            },
        )
        assert response.status_code == 400

    def test_drafts_hidden_from_client(self, api, users, orgs):
        contract = create_contract(api(users.partner), orgs.client.id)
        assert api(users.client).get("/contracts").json() == []
        assert api(users.client).get(f"/contracts/{contract['id']}").status_code == 404

    def test_only_drafts_editable_and_deletable(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        partner = api(users.partner)
        assert partner.put(f"/contracts/{contract['id']}", json={"title": "Changed"}).status_code == 400
        assert partner.delete(f"/contracts/{contract['id']}").status_code == 400

        draft = create_contract(partner, orgs.client.id)
        assert partner.put(f"/contracts/{draft['id']}", json={"title": "Changed"}).json()["title"] == "Changed"
        assert partner.delete(f"/contracts/{draft['id']}").status_code == 204


class TestSigning:
    def test_send_view_sign_complete(self, api, db, users, orgs, queued_webhooks):
        contract = sent_contract(api, users, orgs)
        assert contract["status"] == "sent"
        assert db.query(Notification).filter(
            Notification.user_id == users.client.id, Notification.type == "contract_sent"
        ).count() == 1

        viewed = api(users.client).get(f"/contracts/{contract['id']}").json()
        assert viewed["status"] == "viewed"

        signed = api(users.client).post(f"/contracts/{contract['id']}/sign", json=SIGNATURE)
        assert signed.status_code == 200
        assert signed.json()["status"] == "signed"
        assert signed.json()["signer_email"] == users.client.email
        assert queued_webhooks[-1]["event"] == "contract.signed"

        completed = api(users.partner).patch(f"/contracts/{contract['id']}/status", json={"status": "completed"})
        assert completed.json()["status"] == "completed"
        assert completed.json()["completed_at"] is not None
        assert queued_webhooks[-1]["event"] == "contract.completed"

    def test_must_agree_to_terms(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        response = api(users.client).post(
            f"/contracts/{contract['id']}/sign", json={**SIGNATURE, "agree_to_terms": False}
        )
        assert response.status_code == 400

    def test_only_client_organization_signs(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        response = api(users.partner).post(f"/contracts/{contract['id']}/sign", json=SIGNATURE)
        assert response.status_code == 403

    def test_cannot_sign_twice(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        api(users.client).post(f"/contracts/{contract['id']}/sign", json=SIGNATURE)
        response = api(users.client).post(f"/contracts/{contract['id']}/sign", json=SIGNATURE)
        assert response.status_code == 400

    def test_completion_requires_signature(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        response = api(users.partner).patch(f"/contracts/{contract['id']}/status", json={"status": "completed"})
        assert response.status_code == 400

    def test_void_is_terminal(self, api, users, orgs):
        contract = sent_contract(api, users, orgs)
        partner = api(users.partner)
        assert partner.patch(f"/contracts/{contract['id']}/status", json={"status": "void"}).status_code == 200
        assert partner.patch(f"/contracts/{contract['id']}/status", json={"status": "void"}).status_code == 400
