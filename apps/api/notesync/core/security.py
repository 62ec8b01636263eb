"""Password hashing and content encryption helpers used by the store."""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Return ``(hash_hex, salt_hex)`` for a room password."""

    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), PBKDF2_ITERATIONS)
    return digest.hex(), salt


def verify_password(password: str | None, password_hash: str | None, salt: str | None) -> bool:
    """Check a candidate password against the stored hash in constant time."""

    if not password_hash:
        return True
    if not password or not salt:
        return False
    candidate, _ = hash_password(password, salt)
    return hmac.compare_digest(candidate, password_hash)


class ContentCipher:
    """Symmetric encryption for note content at rest."""

    def __init__(self, key: str = "") -> None:
        if not key:
            logger.warning("No encryption key configured; generated a per-process key")
            key = Fernet.generate_key().decode("ascii")
        self._fernet = Fernet(key.encode("ascii"))

    def encrypt(self, content: str) -> str:
        return self._fernet.encrypt(content.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt stored content, returning it unchanged when it is not a valid token."""

        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError):
            logger.warning("Failed to decrypt note content; returning stored value")
            return token
