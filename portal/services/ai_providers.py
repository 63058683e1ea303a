"""
AI chat providers with ordered fallback

The configured primary provider is tried first, then the remaining ones in the
order openrouter, anthropic, openai. A provider without an API key is skipped;
a provider that raises is logged and the next one tried.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..config import (
    AI_REQUEST_TIMEOUT,
    ANTHROPIC_API_KEY,
    APP_NAME,
    FRONTEND_URL,
    OPENAI_API_KEY,
    OPENROUTER_API_KEY,
)
from ..models import AppSettings

logger = logging.getLogger(__name__)

PROVIDER_ORDER = ("openrouter", "anthropic", "openai")

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

OPENROUTER_MODEL = "anthropic/claude-3.5-sonnet"
ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_MODEL = "gpt-4o"
MAX_TOKENS = 1024


class AIProviderError(Exception):
    """A single provider returned an unusable response"""


class AllProvidersFailedError(Exception):
    """No provider produced a reply"""

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("All AI providers failed")


def provider_order(primary: Optional[str]) -> list[str]:
    """Primary first, then the defaults without duplicates"""
    order = [primary] if primary in PROVIDER_ORDER else []
    order.extend(p for p in PROVIDER_ORDER if p not in order)
    return order


def resolve_provider_keys(db: Session) -> tuple[str, dict[str, Optional[str]]]:
    """Keys stored in app_settings win over the environment"""
    settings = db.query(AppSettings).order_by(AppSettings.id).first()
    primary = (settings.ai_provider_primary if settings else None) or "openrouter"
    keys = {
        "openrouter": (settings.openrouter_api_key if settings else None) or OPENROUTER_API_KEY,
        "anthropic": (settings.anthropic_api_key if settings else None) or ANTHROPIC_API_KEY,
        "openai": (settings.openai_api_key if settings else None) or OPENAI_API_KEY,
    }
    return primary, keys


def _chat_completion_text(data: dict) -> str:
    choices = data.get("choices") or []
    content = choices[0].get("message", {}).get("content") if choices else None
    if not content:
        raise AIProviderError("Empty completion")
    return content


async def call_openrouter(
    client: httpx.AsyncClient, messages: list[dict], system_prompt: str, api_key: str
) -> str:
    response = await client.post(
        OPENROUTER_URL,
        headers={
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": FRONTEND_URL,
            "X-Title": f"{APP_NAME} AI",
        },
        json={
            "model": OPENROUTER_MODEL,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        },
    )
    response.raise_for_status()
    return _chat_completion_text(response.json())


async def call_anthropic(
    client: httpx.AsyncClient, messages: list[dict], system_prompt: str, api_key: str
) -> str:
    # Anthropic takes the system prompt separately and only user/assistant roles
    anthropic_messages = [
        {"role": "user" if m["role"] == "user" else "assistant", "content": m["content"]} for m in messages
    ]
    response = await client.post(
        ANTHROPIC_URL,
        headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        json={
            "model": ANTHROPIC_MODEL,
            "max_tokens": MAX_TOKENS,
            "system": system_prompt,
            "messages": anthropic_messages,
        },
    )
    response.raise_for_status()
    blocks = response.json().get("content") or []
    text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
    if not text:
        raise AIProviderError("Empty completion")
    return text


async def call_openai(
    client: httpx.AsyncClient, messages: list[dict], system_prompt: str, api_key: str
) -> str:
    response = await client.post(
        OPENAI_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={
            "model": OPENAI_MODEL,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        },
    )
    response.raise_for_status()
    return _chat_completion_text(response.json())


PROVIDER_CALLS = {
    "openrouter": call_openrouter,
    "anthropic": call_anthropic,
    "openai": call_openai,
}


async def generate_reply(
    messages: list[dict],
    system_prompt: str,
    primary: Optional[str],
    keys: dict[str, Optional[str]],
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[str, str]:
    """
    Ask each configured provider in turn until one answers.

    Returns:
        Tuple of (reply_text, provider_name)

    Raises:
        AllProvidersFailedError: every provider was skipped or failed
    """
    errors: dict[str, str] = {}
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=AI_REQUEST_TIMEOUT)

    try:
        for provider in provider_order(primary):
            api_key = keys.get(provider)
            if not api_key:
                continue
            logger.info(f"🤖 Attempting AI provider {provider}")
            try:
                reply = await PROVIDER_CALLS[provider](client, messages, system_prompt, api_key)
                return reply, provider
            except (httpx.HTTPError, AIProviderError, ValueError, KeyError) as e:
                logger.error(f"❌ AI provider {provider} failed: {e}")
                errors[provider] = str(e) or e.__class__.__name__
    finally:
        if own_client:
            await client.aclose()

    logger.error(f"❌ All AI providers failed: {errors}")
    raise AllProvidersFailedError(errors)
