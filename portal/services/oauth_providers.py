"""
OAuth 2.0 authorization-code providers
Google (calendar), Microsoft (calendar + OneDrive), Dropbox (files), QuickBooks (accounting)
"""

import base64
import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from ..config import (
    DROPBOX_CLIENT_ID,
    DROPBOX_CLIENT_SECRET,
    DROPBOX_REDIRECT_URI,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    MICROSOFT_CLIENT_ID,
    MICROSOFT_CLIENT_SECRET,
    MICROSOFT_REDIRECT_URI,
    MICROSOFT_TENANT,
    QUICKBOOKS_CLIENT_ID,
    QUICKBOOKS_CLIENT_SECRET,
    QUICKBOOKS_REDIRECT_URI,
)
from ..models_integration import OAuthIntegration
from ..utils.encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

OAUTH_TIMEOUT_SECONDS = 30.0
REFRESH_MARGIN = timedelta(minutes=5)


class OAuthError(Exception):
    """Token exchange or refresh failed"""


class OAuthProvider:
    """One provider's authorization-code flow"""

    def __init__(
        self,
        name: str,
        auth_url: str,
        token_url: str,
        scopes: list[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        extra_auth_params: Optional[dict] = None,
        basic_auth: bool = False,
    ):
        self.name = name
        self.auth_url = auth_url
        self.token_url = token_url
        self.scopes = scopes
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.extra_auth_params = extra_auth_params or {}
        # QuickBooks wants client credentials in a Basic header instead of the body
        self.basic_auth = basic_auth

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def get_authorization_url(self, state: str) -> str:
        """Generate OAuth authorization URL"""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            **self.extra_auth_params,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def _token_request(self, data: dict) -> tuple[dict, dict]:
        headers = {"Accept": "application/json"}
        if self.basic_auth:
            credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
            headers["Authorization"] = f"Basic {credentials}"
        else:
            data = {**data, "client_id": self.client_id, "client_secret": self.client_secret}
        return headers, data

    async def _post_token(self, data: dict, client: Optional[httpx.AsyncClient]) -> dict[str, Any]:
        headers, data = self._token_request(data)
        if client is None:
            async with httpx.AsyncClient(timeout=OAUTH_TIMEOUT_SECONDS) as own_client:
                response = await own_client.post(self.token_url, headers=headers, data=data)
        else:
            response = await client.post(self.token_url, headers=headers, data=data)

        if response.status_code != 200:
            logger.error(f"❌ {self.name} token request failed: {response.status_code} {response.text[:500]}")
            raise OAuthError(f"{self.name} token request failed with status {response.status_code}")

        tokens = response.json()
        if not tokens.get("access_token"):
            raise OAuthError(f"No access token in {self.name} response")
        return tokens

    async def exchange_code(self, code: str, client: Optional[httpx.AsyncClient] = None) -> dict[str, Any]:
        """Exchange authorization code for tokens"""
        logger.info(f"🔄 Exchanging {self.name} OAuth code for token")
        return await self._post_token(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri},
            client,
        )

    async def refresh(self, refresh_token: str, client: Optional[httpx.AsyncClient] = None) -> dict[str, Any]:
        """Refresh expired access token"""
        logger.info(f"🔄 Refreshing {self.name} access token")
        return await self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token}, client)


PROVIDERS: dict[str, OAuthProvider] = {
    "google": OAuthProvider(
        "google",
        "https://accounts.google.com/o/oauth2/v2/auth",
        "https://oauth2.googleapis.com/token",
        ["https://www.googleapis.com/auth/calendar", "openid", "email"],
        GOOGLE_CLIENT_ID,
        GOOGLE_CLIENT_SECRET,
        GOOGLE_REDIRECT_URI,
        {"access_type": "offline", "prompt": "consent"},
    ),
    "microsoft": OAuthProvider(
        "microsoft",
        f"https://login.microsoftonline.com/{MICROSOFT_TENANT}/oauth2/v2.0/authorize",
        f"https://login.microsoftonline.com/{MICROSOFT_TENANT}/oauth2/v2.0/token",
        ["offline_access", "User.Read", "Calendars.ReadWrite", "Files.ReadWrite"],
        MICROSOFT_CLIENT_ID,
        MICROSOFT_CLIENT_SECRET,
        MICROSOFT_REDIRECT_URI,
    ),
    "dropbox": OAuthProvider(
        "dropbox",
        "https://www.dropbox.com/oauth2/authorize",
        "https://api.dropboxapi.com/oauth2/token",
        ["files.content.read", "files.content.write"],
        DROPBOX_CLIENT_ID,
        DROPBOX_CLIENT_SECRET,
        DROPBOX_REDIRECT_URI,
        {"token_access_type": "offline"},
    ),
    "quickbooks": OAuthProvider(
        "quickbooks",
        "https://appcenter.intuit.com/connect/oauth2",
        "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        ["com.intuit.quickbooks.accounting"],
        QUICKBOOKS_CLIENT_ID,
        QUICKBOOKS_CLIENT_SECRET,
        QUICKBOOKS_REDIRECT_URI,
        basic_auth=True,
    ),
}


def get_provider(name: str) -> Optional[OAuthProvider]:
    return PROVIDERS.get(name)


def store_tokens(integration: OAuthIntegration, tokens: dict, now: Optional[datetime] = None) -> None:
    """Encrypt and save a token response; a missing refresh_token keeps the old one"""
    now = now or datetime.utcnow()
    integration.access_token = encrypt_token(tokens["access_token"])
    if tokens.get("refresh_token"):
        integration.refresh_token = encrypt_token(tokens["refresh_token"])
    expires_in = tokens.get("expires_in")
    integration.token_expires_at = now + timedelta(seconds=int(expires_in)) if expires_in else None
    if tokens.get("scope"):
        integration.scope = tokens["scope"]


def needs_refresh(integration: OAuthIntegration, now: Optional[datetime] = None) -> bool:
    """True when the access token expires within the next 5 minutes"""
    if integration.token_expires_at is None:
        return False
    return integration.token_expires_at <= (now or datetime.utcnow()) + REFRESH_MARGIN


async def get_valid_access_token(
    db: Session, integration: OAuthIntegration, client: Optional[httpx.AsyncClient] = None
) -> str:
    """
    Get a valid access token, refreshing if necessary

    Raises:
        OAuthError: the token is expiring and could not be refreshed
    """
    if not needs_refresh(integration):
        return decrypt_token(integration.access_token)

    provider = get_provider(integration.provider)
    if provider is None or not integration.refresh_token:
        raise OAuthError(f"{integration.provider} token expired and cannot be refreshed")

    tokens = await provider.refresh(decrypt_token(integration.refresh_token), client)
    store_tokens(integration, tokens)
    integration.updated_at = datetime.utcnow()
    db.commit()
    logger.info(f"✅ {integration.provider} token refreshed for user {integration.user_id}")
    return tokens["access_token"]
