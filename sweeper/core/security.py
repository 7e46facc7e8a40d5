"""
Security utilities for token encryption and sensitive data protection.

CRITICAL SECURITY REQUIREMENTS:
1. NEVER log tokens (access_token, refresh_token)
2. ALWAYS encrypt OAuth tokens before database storage
3. ALWAYS use parameterized queries (SQLAlchemy ORM handles this)
"""

import secrets
from typing import Optional
from cryptography.fernet import Fernet

from sweeper.core.config import settings


class TokenEncryption:
    """
    Symmetric encryption for OAuth tokens using Fernet (AES-128-CBC + HMAC).

    Used for the gmail_tokens table and for provider tokens kept in the
    session cookie.
    """

    def __init__(self, encryption_key: str):
        """
        Initialize with encryption key.

        Key must be 44-character base64-encoded string.
        Generate with: Fernet.generate_key().decode()
        """
        self._fernet = Fernet(encryption_key.encode())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: OAuth token or other sensitive string

        Returns:
            Base64-encoded encrypted string (safe for database storage)
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        encrypted_bytes = self._fernet.encrypt(plaintext.encode())
        return encrypted_bytes.decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext string.

        Raises:
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")

        decrypted_bytes = self._fernet.decrypt(ciphertext.encode())
        return decrypted_bytes.decode()


# Global encryption instance
token_encryptor = TokenEncryption(settings.ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """
    Encrypt OAuth token for database storage.

    Usage:
        record.encrypted_access_token = encrypt_token(access_token)
    """
    return token_encryptor.encrypt(token)


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt OAuth token from database.

    WARNING: Never log the decrypted token!
    """
    return token_encryptor.decrypt(encrypted_token)


def encrypt_optional(token: Optional[str]) -> Optional[str]:
    """Encrypt a token that may be missing (e.g. Google omitted the refresh token)."""
    return encrypt_token(token) if token else None


def decrypt_optional(encrypted_token: Optional[str]) -> Optional[str]:
    """Decrypt a token column that may be NULL."""
    return decrypt_token(encrypted_token) if encrypted_token else None


def generate_state_token() -> str:
    """
    Generate secure random state token for OAuth flow (CSRF protection).

    Returns:
        64-character hex string
    """
    return secrets.token_hex(32)


def mask_email(email_address: str) -> str:
    """
    Mask an email address for logging.

    e.g., "sebastian@example.com" -> "seb***@example.com"
    """
    if email_address and "@" in email_address:
        local, domain = email_address.split("@", 1)
        masked_local = local[:3] + "***" if len(local) > 3 else "***"
        return f"{masked_local}@{domain}"
    return "***@unknown"
