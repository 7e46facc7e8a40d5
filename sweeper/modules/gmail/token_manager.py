"""
Gmail access token lifecycle.

get_access_token() always hands back a token valid for at least another
EXPIRY_MARGIN_SECONDS, refreshing it through Google when needed:

1. Cached token still fresh -> return it
2. No stored record -> seed from the login session's provider token, or fail
3. Stored token still fresh -> cache and return it
4. Otherwise one refresh attempt; failure means the user must reconnect

CRITICAL SECURITY:
- NEVER log access or refresh tokens
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sweeper.core.exceptions import NoGmailConnection, RefreshFailed
from sweeper.core.sentry import capture_business_error
from sweeper.core.session import SessionIdentity
from sweeper.modules.auth.gmail_oauth import GmailOAuthManager, gmail_oauth, DEFAULT_EXPIRES_IN
from sweeper.modules.gmail.token_cache import TokenCache
from sweeper.modules.gmail.token_store import TokenStore, TokenData

logger = logging.getLogger(__name__)


# Tokens expiring sooner than this are treated as expired
EXPIRY_MARGIN_SECONDS = 60


class TokenManager:
    """
    Cache plus refresh orchestration for one user's Gmail token.

    Usage:
        manager = TokenManager(user_id, TokenStore(db), get_token_cache())
        access_token = await manager.get_access_token()
    """

    def __init__(
        self,
        user_id: UUID,
        store: TokenStore,
        cache: TokenCache,
        oauth: GmailOAuthManager = gmail_oauth,
        session_identity: Optional[SessionIdentity] = None,
    ):
        self.user_id = user_id
        self.store = store
        self.cache = cache
        self.oauth = oauth
        self.session_identity = session_identity

    async def get_access_token(self) -> str:
        """
        Return a non-expired access token.

        Raises:
            NoGmailConnection: No stored token and no provider token in the session
            RefreshFailed: Refresh token missing or rejected by Google
            ConfigurationError: OAuth client credentials missing
        """
        cached = await self.cache.get(self.user_id)
        if cached and cached.is_fresh(EXPIRY_MARGIN_SECONDS):
            return cached.access_token

        record = await self.store.get(self.user_id)

        if not record:
            return await self._seed_from_session()

        if record.is_fresh(EXPIRY_MARGIN_SECONDS):
            await self.cache.set(self.user_id, record)
            return record.access_token

        return (await self._refresh(record)).access_token

    async def _seed_from_session(self) -> str:
        """First request after login: persist the provider token carried by the session."""
        identity = self.session_identity
        if not identity or not identity.provider_token:
            logger.info(
                f"No Gmail token for user {self.user_id}",
                extra={"user_id": str(self.user_id)}
            )
            raise NoGmailConnection("No Gmail connection found - please connect your Gmail account")

        data = await self.store_tokens(
            identity.provider_token,
            identity.provider_refresh_token,
            DEFAULT_EXPIRES_IN,
        )
        logger.info(
            f"Seeded Gmail token from session for user {self.user_id}",
            extra={"user_id": str(self.user_id)}
        )
        return data.access_token

    async def _refresh(self, record: TokenData) -> TokenData:
        """Single refresh attempt. No retries."""
        if not record.refresh_token:
            error = RefreshFailed(
                "Failed to refresh Gmail access - please reconnect your Gmail account"
            )
            capture_business_error(
                error,
                context={"user_id": str(self.user_id), "operation": "refresh_access_token",
                         "reason": "missing_refresh_token"},
                level="warning",
            )
            raise error

        try:
            response = await self.oauth.refresh_access_token(
                record.refresh_token, user_id=str(self.user_id)
            )
        except RefreshFailed as e:
            capture_business_error(
                e,
                context={"user_id": str(self.user_id), "operation": "refresh_access_token"},
            )
            await self.cache.invalidate(self.user_id)
            raise

        data = await self.store_tokens(
            response["access_token"],
            response.get("refresh_token"),
            response.get("expires_in", DEFAULT_EXPIRES_IN),
        )
        logger.info(
            f"Refreshed Gmail token for user {self.user_id}",
            extra={"user_id": str(self.user_id), "expires_at": data.expires_at.isoformat()}
        )
        return data

    async def force_refresh(self) -> TokenData:
        """
        Refresh now, regardless of the stored token's expiry.

        Raises:
            NoGmailConnection: Nothing stored for this user
            RefreshFailed, ConfigurationError: As for get_access_token()
        """
        record = await self.store.get(self.user_id)
        if not record:
            raise NoGmailConnection("No Gmail connection found - please connect your Gmail account")
        return await self._refresh(record)

    async def store_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: int = DEFAULT_EXPIRES_IN,
    ) -> TokenData:
        """Persist tokens (keeping the stored refresh token when None) and cache the access token."""
        expires_at = datetime.utcnow() + timedelta(seconds=int(expires_in))
        data = await self.store.save(self.user_id, access_token, refresh_token, expires_at)
        await self.cache.set(self.user_id, data)
        return data

    async def clear_cache(self) -> None:
        await self.cache.invalidate(self.user_id)

    async def has_valid_connection(self) -> bool:
        """True if a usable access token can be obtained right now."""
        try:
            await self.get_access_token()
            return True
        except (NoGmailConnection, RefreshFailed):
            return False
