"""Tests for organization-scoped conversations"""

from portal.models import Notification


def start_conversation(api, users, **overrides) -> dict:
    payload = {
        "subject": "Onboarding",
        "participant_ids": [users.agent.id],
        "message": "Hi, when can we start?",
        **overrides,
    }
    response = api(users.client).post("/conversations", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestConversations:
    def test_create_with_first_message(self, api, db, users, orgs, queued_webhooks):
        conversation = start_conversation(api, users)

        assert conversation["organization_id"] == orgs.client.id
        assert {p["user_id"] for p in conversation["participants"]} == {users.client.id, users.agent.id}
        assert conversation["last_message"]["content"] == "Hi, when can we start?"
        assert queued_webhooks[-1]["event"] == "message.received"
        assert db.query(Notification).filter(
            Notification.user_id == users.agent.id, Notification.type == "message_received"
        ).count() == 1

    def test_participants_must_see_the_organization(self, api, users):
        response = api(users.client).post(
            "/conversations", json={"participant_ids": [users.other_client.id]}
        )
        assert response.status_code == 400

    def test_unknown_participant(self, api, users):
        response = api(users.client).post("/conversations", json={"participant_ids": [9999]})
        assert response.status_code == 400

    def test_cannot_open_conversation_in_hidden_organization(self, api, users, orgs):
        response = api(users.client).post(
            "/conversations", json={"organization_id": orgs.other.id, "participant_ids": [users.agent.id]}
        )
        assert response.status_code == 404


class TestMessages:
    def test_non_participants_get_not_found(self, api, users):
        conversation = start_conversation(api, users)
        assert api(users.admin).get(f"/conversations/{conversation['id']}/messages").status_code == 404

    def test_unread_counts_and_mark_read(self, api, users):
        conversation = start_conversation(api, users)
        agent = api(users.agent)

        assert api(users.client).get("/conversations/unread").json() == {"unread": 0}
        assert agent.get("/conversations/unread").json() == {"unread": 1}
        assert agent.get("/conversations").json()[0]["unread_count"] == 1

        agent.post(f"/conversations/{conversation['id']}/read")
        assert agent.get("/conversations/unread").json() == {"unread": 0}

    def test_reply_and_history(self, api, users):
        conversation = start_conversation(api, users)
        reply = api(users.agent).post(f"/conversations/{conversation['id']}/messages", json={"content": " Monday "})

        assert reply.status_code == 201
        assert reply.json()["sender_name"] == "Agent"
        history = api(users.client).get(f"/conversations/{conversation['id']}/messages").json()
        assert [m["content"] for m in history] == ["Hi, when can we start?", "Monday"]

    def test_empty_message_rejected(self, api, users):
        conversation = start_conversation(api, users)
        response = api(users.agent).post(f"/conversations/{conversation['id']}/messages", json={"content": "   "})
        assert response.status_code == 400
