"""
OAuth Integration Routes
Connect and disconnect Google, Microsoft, Dropbox and QuickBooks accounts
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..models_integration import OAUTH_PROVIDERS, OAuthIntegration
from ..security_utils import generate_timed_token, verify_timed_token
from ..services.audit_service import record_audit
from ..services.oauth_providers import OAuthError, OAuthProvider, get_provider, store_tokens

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])

OAUTH_STATE_SALT = "oauth-state"
OAUTH_STATE_MAX_AGE = 600  # 10 minutes


class ConnectResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=2000)
    state: str = Field(..., min_length=1, max_length=2000)
    realm_id: Optional[str] = Field(None, max_length=100)


class IntegrationStatus(BaseModel):
    provider: str
    configured: bool
    connected: bool
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None


def _require_provider(name: str) -> OAuthProvider:
    provider = get_provider(name)
    if provider is None:
        raise HTTPException(status_code=404, detail="Unknown integration provider")
    if not provider.is_configured:
        raise HTTPException(status_code=500, detail=f"{name} integration not configured")
    return provider


def create_oauth_state(user_id: int, provider: str) -> str:
    return generate_timed_token({"user_id": user_id, "provider": provider}, salt=OAUTH_STATE_SALT)


def verify_oauth_state(state: str, user_id: int, provider: str) -> bool:
    """Signed, unexpired and issued to this user for this provider"""
    payload = verify_timed_token(state, max_age=OAUTH_STATE_MAX_AGE, salt=OAUTH_STATE_SALT)
    return bool(payload) and payload.get("user_id") == user_id and payload.get("provider") == provider


def _status(provider: str, integration: Optional[OAuthIntegration]) -> IntegrationStatus:
    configured = get_provider(provider).is_configured
    if integration is None:
        return IntegrationStatus(provider=provider, configured=configured, connected=False)
    return IntegrationStatus(
        provider=provider,
        configured=configured,
        connected=True,
        account_id=integration.account_id,
        account_name=integration.account_name,
        token_expires_at=integration.token_expires_at,
        connected_at=integration.created_at,
    )


@router.get("", response_model=list[IntegrationStatus])
async def list_integrations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Connection status for every supported provider"""
    integrations = {
        i.provider: i for i in db.query(OAuthIntegration).filter(OAuthIntegration.user_id == current_user.id).all()
    }
    return [_status(provider, integrations.get(provider)) for provider in OAUTH_PROVIDERS]


@router.get("/{provider}/connect", response_model=ConnectResponse)
async def connect(
    provider: str,
    current_user: User = Depends(get_current_user),
):
    """Start the authorization-code flow; the state is valid for 10 minutes"""
    oauth_provider = _require_provider(provider)
    state = create_oauth_state(current_user.id, provider)
    logger.info(f"🔗 {provider} OAuth initiated for user {current_user.id}")
    return {"authorization_url": oauth_provider.get_authorization_url(state), "state": state}


@router.post("/{provider}/callback", response_model=IntegrationStatus)
async def callback(
    provider: str,
    data: OAuthCallbackRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Complete the flow. Called by the frontend after the provider redirects back
    with an authorization code.
    """
    oauth_provider = _require_provider(provider)

    if not verify_oauth_state(data.state, current_user.id, provider):
        logger.warning(f"⚠️ Invalid OAuth state for {provider} from user {current_user.id}")
        raise HTTPException(status_code=400, detail="Invalid or expired state")

    if provider == "quickbooks" and not data.realm_id:
        raise HTTPException(status_code=400, detail="realm_id is required for QuickBooks")

    try:
        tokens = await oauth_provider.exchange_code(data.code)
    except OAuthError as e:
        raise HTTPException(status_code=400, detail="Failed to exchange authorization code") from e
    except httpx.HTTPError as e:
        logger.error(f"❌ {provider} token exchange error: {e}")
        raise HTTPException(status_code=502, detail=f"Could not reach {provider}") from e

    integration = (
        db.query(OAuthIntegration)
        .filter(OAuthIntegration.user_id == current_user.id, OAuthIntegration.provider == provider)
        .first()
    )
    if integration is None:
        integration = OAuthIntegration(
            user_id=current_user.id, organization_id=current_user.organization_id, provider=provider
        )
        db.add(integration)

    store_tokens(integration, tokens)
    if data.realm_id:
        integration.account_id = data.realm_id
    integration.updated_at = datetime.utcnow()
    db.flush()

    record_audit(db, current_user, "integration.connected", "integration", integration.id, {"provider": provider}, request)
    db.commit()
    db.refresh(integration)

    logger.info(f"✅ {provider} connected for user {current_user.id}")
    return _status(provider, integration)


@router.delete("/{provider}", status_code=204)
async def disconnect(
    provider: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if get_provider(provider) is None:
        raise HTTPException(status_code=404, detail="Unknown integration provider")

    integration = (
        db.query(OAuthIntegration)
        .filter(OAuthIntegration.user_id == current_user.id, OAuthIntegration.provider == provider)
        .first()
    )
    if not integration:
        raise HTTPException(status_code=404, detail=f"{provider} not connected")

    record_audit(db, current_user, "integration.disconnected", "integration", integration.id, {"provider": provider}, request)
    db.delete(integration)
    db.commit()
    logger.info(f"✅ {provider} disconnected for user {current_user.id}")
    return Response(status_code=204)
