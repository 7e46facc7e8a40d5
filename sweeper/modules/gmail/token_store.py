"""
Token store accessor - the gmail_tokens row for one user.

Tokens are decrypted on read and encrypted on write; callers only ever see
TokenData with plaintext tokens and must never log them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.security import encrypt_token, decrypt_token, encrypt_optional, decrypt_optional
from sweeper.models.gmail_token import GmailToken

logger = logging.getLogger(__name__)


@dataclass
class TokenData:
    """Plaintext token bundle (never log!)."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime  # Naive UTC

    def is_fresh(self, margin_seconds: int) -> bool:
        """True if the access token stays valid for more than margin_seconds."""
        return self.expires_at > datetime.utcnow() + timedelta(seconds=margin_seconds)


class TokenStore:
    """
    Reads/writes the single gmail_tokens row per user.

    Usage:
        store = TokenStore(db)
        data = await store.get(user_id)
        await store.save(user_id, access_token, refresh_token, expires_at)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: UUID) -> Optional[TokenData]:
        record = await self.db.get(GmailToken, user_id)
        if not record:
            return None

        return TokenData(
            access_token=decrypt_token(record.encrypted_access_token),
            refresh_token=decrypt_optional(record.encrypted_refresh_token),
            expires_at=record.expires_at,
        )

    async def save(
        self,
        user_id: UUID,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
    ) -> TokenData:
        """
        Upsert the user's tokens.

        A missing refresh_token keeps the stored one (Google only returns a
        refresh token on first consent).
        """
        record = await self.db.get(GmailToken, user_id)

        if record:
            record.encrypted_access_token = encrypt_token(access_token)
            if refresh_token:
                record.encrypted_refresh_token = encrypt_token(refresh_token)
            record.expires_at = expires_at
            record.updated_at = datetime.utcnow()
        else:
            record = GmailToken(
                user_id=user_id,
                encrypted_access_token=encrypt_token(access_token),
                encrypted_refresh_token=encrypt_optional(refresh_token),
                expires_at=expires_at,
                updated_at=datetime.utcnow(),
            )
            self.db.add(record)

        # Commit now: a refreshed token must survive a later failure in the request
        await self.db.commit()

        logger.info(
            f"Stored Gmail tokens for user {user_id}",
            extra={"user_id": str(user_id), "expires_at": expires_at.isoformat()}
        )

        return TokenData(
            access_token=access_token,
            refresh_token=decrypt_optional(record.encrypted_refresh_token),
            expires_at=expires_at,
        )
