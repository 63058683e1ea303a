"""Tests for the in-app inbox and the audit log"""

from portal.services.audit_service import record_audit
from portal.services.notification_service import create_notification, notify_users


class TestInbox:
    def test_list_and_unread_count(self, api, db, users):
        create_notification(db, users.client.id, "ticket_updated", "Ticket #1 updated")
        create_notification(db, users.client.id, "invoice_sent", "Invoice INV-2024-0001")
        create_notification(db, users.agent.id, "ticket_created", "Not for Jane")
        db.commit()

        body = api(users.client).get("/notifications").json()
        assert body["unread_count"] == 2
        assert [n["title"] for n in body["notifications"]] == ["Invoice INV-2024-0001", "Ticket #1 updated"]

    def test_mark_read_and_unread(self, api, db, users):
        notification = create_notification(db, users.client.id, "ticket_updated", "Ticket #1 updated")
        db.commit()
        client = api(users.client)

        assert client.patch(f"/notifications/{notification.id}", json={"read": True}).json()["read_at"] is not None
        assert client.get("/notifications", params={"unread_only": True}).json()["notifications"] == []
        assert client.patch(f"/notifications/{notification.id}", json={"read": False}).json()["read_at"] is None

    def test_other_users_notifications_hidden(self, api, db, users):
        notification = create_notification(db, users.agent.id, "ticket_created", "Staff only")
        db.commit()
        assert api(users.client).patch(f"/notifications/{notification.id}", json={"read": True}).status_code == 404

    def test_read_all(self, api, db, users):
        notify_users(db, [users.client.id, users.client.id, users.agent.id], "contract_sent", "Contract ready")
        create_notification(db, users.client.id, "invoice_sent", "Invoice ready")
        db.commit()

        assert api(users.client).post("/notifications/read-all").json() == {"updated": 2}
        assert api(users.client).get("/notifications").json()["unread_count"] == 0
        assert api(users.agent).get("/notifications").json()["unread_count"] == 1

    def test_actor_is_not_notified(self, db, users):
        notified = notify_users(db, [users.client.id, users.agent.id, None], "ticket_comment", "New comment", actor_id=users.agent.id)
        assert notified == [users.client.id]


class TestAuditLog:
    def test_staff_only(self, api, users):
        assert api(users.partner).get("/audit-logs").status_code == 403
        assert api(users.client).get("/audit-logs").status_code == 403

    def test_super_admin_sees_everything(self, api, db, users, orgs):
        record_audit(db, users.client, "ticket.created", "ticket", 1)
        record_audit(db, users.agent, "organization.updated", "organization", orgs.client.id)
        record_audit(db, None, "invoice.overdue", "invoice", 3, organization_id=orgs.internal.id)
        db.commit()

        body = api(users.admin).get("/audit-logs").json()
        assert body["total"] == 3
        assert [item["action"] for item in body["items"]] == ["invoice.overdue", "organization.updated", "ticket.created"]

    def test_staff_limited_to_own_organization(self, api, db, users, orgs):
        record_audit(db, users.client, "ticket.created", "ticket", 1)
        record_audit(db, users.agent, "organization.updated", "organization", orgs.client.id)
        db.commit()

        body = api(users.agent).get("/audit-logs").json()
        assert [item["action"] for item in body["items"]] == ["organization.updated"]

    def test_filters(self, api, db, users):
        record_audit(db, users.client, "ticket.created", "ticket", 1)
        record_audit(db, users.client, "ticket.created", "ticket", 2)
        record_audit(db, users.client, "ticket.updated", "ticket", 2)
        db.commit()

        admin = api(users.admin)
        assert admin.get("/audit-logs", params={"action": "ticket.created"}).json()["total"] == 2
        assert admin.get("/audit-logs", params={"entity_id": "2"}).json()["total"] == 2
        assert admin.get("/audit-logs", params={"user_id": users.client.id, "limit": 1}).json()["total"] == 3
