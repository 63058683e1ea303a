"""
Security Utilities
Signed state tokens and HTML/filename sanitization
"""

import logging
import os
import re
import secrets
from typing import Any, Optional

# Input sanitization
import bleach

# Token generation and validation
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import SECRET_KEY

logger = logging.getLogger(__name__)

# Tags kept in rich-text fields such as contract bodies
DEFAULT_ALLOWED_TAGS = [
    "p",
    "br",
    "strong",
    "em",
    "u",
    "a",
    "ul",
    "ol",
    "li",
    "h1",
    "h2",
    "h3",
    "h4",
    "blockquote",
    "table",
    "thead",
    "tbody",
    "tr",
    "th",
    "td",
]


# ============================================================================
# TOKEN SECURITY
# ============================================================================


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token"""
    return secrets.token_urlsafe(length)


def generate_timed_token(data: dict[str, Any], salt: str = "security-token") -> str:
    """
    Generate a signed token whose age is checked on verification.
    Used for OAuth state parameters.
    """
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    return serializer.dumps(data, salt=salt)


def verify_timed_token(token: str, max_age: int = 3600, salt: str = "security-token") -> Optional[dict[str, Any]]:
    """
    Verify and decode a timed token

    Returns:
        Decoded data if valid, None if invalid or expired
    """
    serializer = URLSafeTimedSerializer(SECRET_KEY)
    try:
        return serializer.loads(token, salt=salt, max_age=max_age)
    except SignatureExpired:
        logger.warning("⚠️ Token expired")
        return None
    except BadSignature:
        logger.warning("⚠️ Invalid token signature")
        return None


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings in constant time to prevent timing attacks"""
    return secrets.compare_digest(a.encode(), b.encode())


# ============================================================================
# INPUT SANITIZATION
# ============================================================================


def sanitize_html(html_content: Optional[str], allowed_tags: Optional[list] = None) -> Optional[str]:
    """Strip everything but a safe subset of HTML"""
    if html_content is None:
        return None

    return bleach.clean(
        html_content,
        tags=allowed_tags or DEFAULT_ALLOWED_TAGS,
        attributes={"a": ["href", "title", "target"], "*": ["class"]},
        protocols=["http", "https", "mailto"],
        strip=True,
    )


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent directory traversal and other attacks"""
    filename = os.path.basename(filename.replace("\\", "/"))
    filename = re.sub(r"[^\w\s\-\.]", "", filename)
    filename = filename.strip(". ")

    if len(filename) > 255:
        name, ext = os.path.splitext(filename)
        filename = name[: 255 - len(ext)] + ext

    if not filename:
        filename = f"file_{generate_secure_token(8)}"

    return filename
