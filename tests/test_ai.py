"""Tests for the AI assistant and its provider fallback"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from portal.models import AppSettings
from portal.models_ai import DEFAULT_SYSTEM_PROMPT, AIConfig, AIDocument, AIMessage, AIRule
from portal.routes.ai import build_system_prompt
from portal.services import ai_providers
from portal.services.ai_providers import (
    AllProvidersFailedError,
    generate_reply,
    provider_order,
    resolve_provider_keys,
)

MESSAGES = [{"role": "user", "content": "How do I reset my password?"}]


def routed_client(responses: dict, calls: list) -> httpx.AsyncClient:
    """Answer each provider host with the configured (status, json) pair"""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status_code, body = responses[request.url.host]
        return httpx.Response(status_code, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestProviderOrder:
    def test_primary_goes_first(self):
        assert provider_order("openai") == ["openai", "openrouter", "anthropic"]

    def test_unknown_primary_uses_defaults(self):
        assert provider_order("mystery") == ["openrouter", "anthropic", "openai"]
        assert provider_order(None) == ["openrouter", "anthropic", "openai"]

    def test_settings_keys_win_over_environment(self, db, monkeypatch):
        monkeypatch.setattr(ai_providers, "OPENROUTER_API_KEY", "env-openrouter")
        monkeypatch.setattr(ai_providers, "ANTHROPIC_API_KEY", None)
        monkeypatch.setattr(ai_providers, "OPENAI_API_KEY", "env-openai")
        db.add(AppSettings(ai_provider_primary="anthropic", anthropic_api_key="db-anthropic", openai_api_key="db-openai"))
        db.commit()

        primary, keys = resolve_provider_keys(db)
        assert primary == "anthropic"
        assert keys == {"openrouter": "env-openrouter", "anthropic": "db-anthropic", "openai": "db-openai"}

    def test_defaults_without_settings_row(self, db):
        primary, _ = resolve_provider_keys(db)
        assert primary == "openrouter"


class TestGenerateReply:
    @pytest.mark.asyncio
    async def test_primary_answers(self):
        calls = []
        responses = {"openrouter.ai": (200, {"choices": [{"message": {"content": "Use the reset link."}}]})}

        async with routed_client(responses, calls) as client:
            reply, provider = await generate_reply(MESSAGES, "Be brief.", "openrouter", {"openrouter": "k1"}, client)

        assert (reply, provider) == ("Use the reset link.", "openrouter")
        sent = json.loads(calls[0].content)
        assert sent["messages"][0] == {"role": "system", "content": "Be brief."}
        assert calls[0].headers["authorization"] == "Bearer k1"

    @pytest.mark.asyncio
    async def test_falls_back_to_next_provider(self):
        calls = []
        responses = {
            "openrouter.ai": (502, {"error": "bad gateway"}),
            "api.anthropic.com": (200, {"content": [{"type": "text", "text": "From Claude"}]}),
        }
        keys = {"openrouter": "k1", "anthropic": "k2", "openai": "k3"}

        async with routed_client(responses, calls) as client:
            reply, provider = await generate_reply(MESSAGES, "Be brief.", "openrouter", keys, client)

        assert (reply, provider) == ("From Claude", "anthropic")
        anthropic_call = json.loads(calls[1].content)
        assert anthropic_call["system"] == "Be brief."
        assert calls[1].headers["x-api-key"] == "k2"

    @pytest.mark.asyncio
    async def test_providers_without_keys_are_skipped(self):
        calls = []
        responses = {"api.openai.com": (200, {"choices": [{"message": {"content": "Hi"}}]})}

        async with routed_client(responses, calls) as client:
            _, provider = await generate_reply(MESSAGES, "", "openrouter", {"openai": "k3"}, client)

        assert provider == "openai"
        assert [c.url.host for c in calls] == ["api.openai.com"]

    @pytest.mark.asyncio
    async def test_empty_completion_counts_as_failure(self):
        calls = []
        responses = {"openrouter.ai": (200, {"choices": []})}

        async with routed_client(responses, calls) as client:
            with pytest.raises(AllProvidersFailedError) as exc_info:
                await generate_reply(MESSAGES, "", None, {"openrouter": "k1"}, client)

        assert set(exc_info.value.errors) == {"openrouter"}

    @pytest.mark.asyncio
    async def test_no_keys_at_all(self):
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await generate_reply(MESSAGES, "", None, {})
        assert exc_info.value.errors == {}


class TestSystemPrompt:
    def test_default_prompt(self, db):
        assert build_system_prompt(db, None) == DEFAULT_SYSTEM_PROMPT

    def test_organization_config_rules_and_documents(self, db, orgs):
        db.add_all(
            [
                AIConfig(organization_id=None, system_prompt="Global prompt", is_active=True),
                AIConfig(organization_id=orgs.client.id, system_prompt="Contoso prompt", is_active=True),
                AIRule(name="Tone", content="Be friendly", priority=1, is_active=True),
                AIRule(name="Escalate", content="Mention the SLA", priority=5, organization_id=orgs.client.id, is_active=True),
                AIRule(name="Other", content="Hidden", priority=9, organization_id=orgs.other.id, is_active=True),
                AIRule(name="Off", content="Inactive", priority=9, is_active=False),
                AIDocument(title="Reset guide", content="Click reset", document_type="faq", is_active=True),
            ]
        )
        db.commit()

        prompt = build_system_prompt(db, orgs.client.id)

        assert prompt.startswith("Contoso prompt")
        assert prompt.index("- Escalate: Mention the SLA") < prompt.index("- Tone: Be friendly")
        assert "Hidden" not in prompt and "Inactive" not in prompt
        assert "[FAQ] Reset guide:\nClick reset" in prompt
        assert build_system_prompt(db, None).startswith("Global prompt")


class TestChatRoute:
    def test_chat_stores_exchange(self, api, db, users):
        with patch("portal.routes.ai.generate_reply", new=AsyncMock(return_value=("Hello Jane", "anthropic"))) as reply:
            response = api(users.client).post("/ai/chat", json={"message": "  Hi there  "})

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "Hello Jane"
        assert body["provider"] == "anthropic"
        assert reply.await_args.args[0] == [{"role": "user", "content": "Hi there"}]

        stored = db.query(AIMessage).filter(AIMessage.conversation_id == body["conversation_id"]).all()
        assert [(m.role, m.content) for m in stored] == [("user", "Hi there"), ("assistant", "Hello Jane")]

    def test_history_is_sent_with_follow_ups(self, api, users):
        client = api(users.client)
        with patch("portal.routes.ai.generate_reply", new=AsyncMock(return_value=("First", "openai"))):
            conversation_id = client.post("/ai/chat", json={"message": "One"}).json()["conversation_id"]

        with patch("portal.routes.ai.generate_reply", new=AsyncMock(return_value=("Second", "openai"))) as reply:
            client.post("/ai/chat", json={"message": "Two", "conversation_id": conversation_id})

        assert [m["content"] for m in reply.await_args.args[0]] == ["One", "First", "Two"]

    def test_all_providers_failed(self, api, users):
        failing = AsyncMock(side_effect=AllProvidersFailedError({"openrouter": "timeout"}))
        with patch("portal.routes.ai.generate_reply", new=failing):
            response = api(users.client).post("/ai/chat", json={"message": "Hello"})
        assert response.status_code == 503

    def test_other_users_conversation_hidden(self, api, users):
        with patch("portal.routes.ai.generate_reply", new=AsyncMock(return_value=("Hi", "openai"))):
            conversation_id = api(users.client).post("/ai/chat", json={"message": "Hello"}).json()["conversation_id"]
        assert api(users.other_client).get(f"/ai/conversations/{conversation_id}/messages").status_code == 404

    def test_rules_are_staff_only(self, api, users):
        assert api(users.client).post("/ai/rules", json={"name": "x", "content": "y"}).status_code == 403
        assert api(users.agent).post("/ai/rules", json={"name": "x", "content": "y"}).status_code == 201
