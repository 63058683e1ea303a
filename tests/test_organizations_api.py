"""Tests for organizations and the partner hierarchy"""

from portal.models import AuditLog, Organization


class TestCreateOrganization:
    def test_super_admin_creates_partner_with_derived_slug(self, api, db, users):
        admin = api(users.admin)
        first = admin.post("/organizations", json={"name": "Globex Corp.", "type": "partner"})
        second = admin.post("/organizations", json={"name": "Globex Corp", "type": "partner"})

        assert first.status_code == 201
        assert first.json()["slug"] == "globex-corp"
        assert second.json()["slug"] == "globex-corp-2"
        assert db.query(AuditLog).filter(AuditLog.action == "organization.created").count() == 2

    def test_partner_creates_managed_client(self, api, users, orgs):
        response = api(users.partner).post(
            "/organizations",
            json={"name": "Initech", "type": "partner", "is_priority_client": True, "brand_color": "#AABBCC"},
        )
        body = response.json()
        assert response.status_code == 201
        assert body["type"] == "client"
        assert body["parent_id"] == orgs.partner.id
        assert body["is_priority_client"] is False
        assert body["brand_color"] == "#aabbcc"

    def test_clients_cannot_create(self, api, users):
        assert api(users.client).post("/organizations", json={"name": "Side Gig"}).status_code == 403

    def test_parent_must_be_partner(self, api, users, orgs):
        response = api(users.admin).post(
            "/organizations", json={"name": "Orphan", "parent_id": orgs.internal.id}
        )
        assert response.status_code == 400

    def test_slug_rules(self, api, users):
        admin = api(users.admin)
        assert admin.post("/organizations", json={"name": "X", "slug": "Bad Slug!"}).status_code == 400
        assert admin.post("/organizations", json={"name": "X", "slug": "contoso"}).status_code == 409

    def test_invalid_billing_email(self, api, users):
        response = api(users.admin).post("/organizations", json={"name": "Hooli", "billing_email": "nope"})
        assert response.status_code == 400


class TestReadAndUpdate:
    def test_partner_lists_own_tree(self, api, users):
        names = [o["name"] for o in api(users.partner).get("/organizations").json()]
        assert names == ["Contoso Ltd", "Northwind Partners"]

    def test_client_cannot_see_other_tenants(self, api, users, orgs):
        assert api(users.client).get(f"/organizations/{orgs.other.id}").status_code == 404

    def test_partner_edits_branding_but_not_staff_fields(self, api, users, orgs):
        partner = api(users.partner)
        assert partner.patch(f"/organizations/{orgs.client.id}", json={"logo_url": "https://cdn/logo.png"}).status_code == 200
        assert partner.patch(f"/organizations/{orgs.client.id}", json={"is_priority_client": True}).status_code == 403

    def test_staff_flag_priority_client(self, api, users, orgs):
        response = api(users.agent).patch(f"/organizations/{orgs.client.id}", json={"is_priority_client": True})
        assert response.json()["is_priority_client"] is True

    def test_cannot_parent_itself(self, api, users, orgs):
        response = api(users.admin).patch(f"/organizations/{orgs.partner.id}", json={"parent_id": orgs.partner.id})
        assert response.status_code == 400

    def test_list_members(self, api, users, orgs):
        members = api(users.partner).get(f"/organizations/{orgs.client.id}/users").json()
        assert [m["email"] for m in members] == ["jane@contoso.example"]


class TestDelete:
    def test_organization_with_users_is_kept(self, api, users, orgs):
        assert api(users.admin).delete(f"/organizations/{orgs.client.id}").status_code == 400

    def test_partner_with_clients_is_kept(self, api, db, users, orgs):
        users.partner.organization_id = orgs.internal.id
        db.commit()
        assert api(users.admin).delete(f"/organizations/{orgs.partner.id}").status_code == 400

    def test_empty_organization_deleted(self, api, db, users):
        empty = Organization(name="Empty", slug="empty", type="client")
        db.add(empty)
        db.commit()

        assert api(users.agent).delete(f"/organizations/{empty.id}").status_code == 403
        assert api(users.admin).delete(f"/organizations/{empty.id}").status_code == 204
        assert db.query(Organization).filter(Organization.slug == "empty").first() is None
