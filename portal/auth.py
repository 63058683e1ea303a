import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from jose import jwt as jose_jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ALGORITHM = "HS256"


def verify_access_token(token: str) -> dict:
    """
    Verify an access token issued by the hosted auth service.
    Tokens are HS256 JWTs signed with the project's JWT secret.
    """
    if not SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        payload = jose_jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token") from e

    if not payload.get("sub"):
        logger.error(f"❌ Token missing subject claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user profile from the bearer token, creating it on first sight"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(status_code=401, detail="Invalid token format. Expected a valid JWT token.")

    claims = verify_access_token(token)
    auth_id = claims["sub"]
    email = claims.get("email")

    user = (
        db.query(User)
        .filter(User.auth_id == auth_id)
        .options(joinedload(User.organization))
        .first()
    )
    if user:
        if not user.is_active:
            raise HTTPException(status_code=403, detail="Account is disabled")
        return user

    if not email:
        raise HTTPException(status_code=401, detail="Invalid token claims")

    metadata = claims.get("user_metadata") or {}
    logger.info(f"🆕 Creating profile for new user: {email}")
    user = User(
        auth_id=auth_id,
        email=email,
        full_name=metadata.get("full_name") or metadata.get("name"),
        role="client",
    )
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        logger.error(f"❌ Email {email} already belongs to another account")
        raise HTTPException(status_code=409, detail="This email is already registered.") from e
    logger.info(f"✅ New user created: {user.email}")
    return user


def require_roles(*roles: str):
    """Dependency factory that only lets the listed roles through"""

    async def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            logger.warning(f"⚠️ User {current_user.id} ({current_user.role}) denied, requires {roles}")
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return _checker


require_super_admin = require_roles("super_admin")
require_staff = require_roles("super_admin", "staff")
require_privileged = require_roles("super_admin", "staff", "partner", "partner_staff")


def get_request_meta(request) -> tuple[Optional[str], Optional[str]]:
    """Return (ip_address, user_agent) for audit trails"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return ip, request.headers.get("user-agent")
