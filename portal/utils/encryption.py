"""
Fernet encryption for provider tokens stored at rest
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..config import SECRET_KEY, TOKEN_ENCRYPTION_KEY

logger = logging.getLogger(__name__)

_cipher_suite: Optional[Fernet] = None


class TokenDecryptionError(Exception):
    """Stored token could not be decrypted with the current key"""


def get_cipher_suite() -> Fernet:
    """TOKEN_ENCRYPTION_KEY when set, otherwise a key derived from SECRET_KEY"""
    global _cipher_suite

    if _cipher_suite is None:
        if TOKEN_ENCRYPTION_KEY:
            key = TOKEN_ENCRYPTION_KEY.encode()
        else:
            logger.warning("⚠️ TOKEN_ENCRYPTION_KEY not set, deriving token key from SECRET_KEY")
            key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
        _cipher_suite = Fernet(key)

    return _cipher_suite


def encrypt_token(token: str) -> str:
    """Encrypt a token for storage"""
    return get_cipher_suite().encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored token"""
    try:
        return get_cipher_suite().decrypt(encrypted_token.encode()).decode()
    except InvalidToken as e:
        logger.error("❌ Failed to decrypt stored token")
        raise TokenDecryptionError("Stored token could not be decrypted") from e
