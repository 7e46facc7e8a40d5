"""
Gmail OAuth flow using Authlib and Google API.

Handles:
- OAuth authorization URL generation
- Token exchange (authorization code -> access/refresh tokens)
- Token refresh (single attempt, failures mean "reconnect required")
- Token revocation

CRITICAL SECURITY:
- NEVER log tokens (access_token, refresh_token)
- ALWAYS encrypt tokens before database storage
- Use state parameter for CSRF protection
"""

from typing import Optional, Tuple
from authlib.integrations.requests_client import OAuth2Session
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
import httpx
import redis.asyncio as redis
import logging

from sweeper.core.config import settings
from sweeper.core.exceptions import ConfigurationError, RefreshFailed
from sweeper.core.security import generate_state_token

logger = logging.getLogger(__name__)


# Gmail API scopes
GMAIL_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/gmail.modify",  # Read, archive, trash, label
    "https://www.googleapis.com/auth/userinfo.email",  # Get user email
]

# Google OAuth endpoints
GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Google omits expires_in on some responses
DEFAULT_EXPIRES_IN = 3600

OAUTH_STATE_TTL_SECONDS = 600


class GmailOAuthManager:
    """
    Manages Gmail OAuth flow and token operations.

    Usage:
        auth_url, state = await gmail_oauth.get_authorization_url()
        # User visits auth_url, gets redirected back with code
        tokens = gmail_oauth.exchange_code_for_tokens(code)
    """

    def __init__(self):
        self._redis = None

    @property
    def client_id(self) -> Optional[str]:
        return settings.GOOGLE_CLIENT_ID

    @property
    def client_secret(self) -> Optional[str]:
        return settings.GOOGLE_CLIENT_SECRET

    @property
    def redirect_uri(self) -> Optional[str]:
        return settings.GOOGLE_REDIRECT_URI

    def _require_credentials(self):
        """Raise ConfigurationError when Google OAuth client credentials are missing."""
        if not settings.has_google_credentials:
            logger.error("Google OAuth client credentials are not configured")
            raise ConfigurationError("Server configuration error")

    async def _get_redis(self) -> redis.Redis:
        """Get Redis client for state storage."""
        if not self._redis:
            self._redis = redis.from_url(settings.REDIS_URL)
        return self._redis

    async def get_authorization_url(self) -> Tuple[str, str]:
        """
        Generate OAuth authorization URL with CSRF protection.

        Returns:
            Tuple of (authorization_url, state_token)
        """
        self._require_credentials()

        state = generate_state_token()

        # Store state in Redis with 10-minute expiry
        redis_client = await self._get_redis()
        await redis_client.setex(f"oauth_state:{state}", OAUTH_STATE_TTL_SECONDS, "1")

        session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scope=GMAIL_SCOPES,
        )

        auth_url, _ = session.create_authorization_url(
            GOOGLE_AUTHORIZE_URL,
            state=state,
            access_type="offline",  # Request refresh token
            prompt="consent",  # Force consent screen (ensures refresh token)
        )

        return auth_url, state

    async def verify_state(self, state: str) -> bool:
        """
        Verify and consume an OAuth state token.

        CRITICAL: Always call this before exchanging code for tokens!
        """
        redis_client = await self._get_redis()
        key = f"oauth_state:{state}"

        if await redis_client.get(key) is None:
            return False

        # One-time use
        await redis_client.delete(key)
        return True

    def exchange_code_for_tokens(self, code: str) -> dict:
        """
        Exchange authorization code for access/refresh tokens.

        Returns:
            Dict with access_token, refresh_token (may be None), expires_in, email

        WARNING: Tokens are returned in plaintext. Encrypt before storing!
        """
        self._require_credentials()

        session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
        )

        token_response = session.fetch_token(GOOGLE_TOKEN_URL, code=code)

        # Get user's email address
        credentials = Credentials(token=token_response["access_token"])
        gmail_service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        profile = gmail_service.users().getProfile(userId="me").execute()

        return {
            "access_token": token_response["access_token"],
            "refresh_token": token_response.get("refresh_token"),
            "expires_in": token_response.get("expires_in", DEFAULT_EXPIRES_IN),
            "email": profile["emailAddress"].lower(),
        }

    async def refresh_access_token(self, refresh_token: str, user_id: str = "") -> dict:
        """
        Exchange a refresh token for a new access token (single attempt).

        Args:
            refresh_token: Decrypted refresh token
            user_id: User UUID (for logging only)

        Returns:
            Dict with access_token, expires_in and refresh_token (None unless
            Google rotated it)

        Raises:
            ConfigurationError: OAuth client credentials missing
            RefreshFailed: Non-2xx response or network error - user must reconnect
        """
        self._require_credentials()

        try:
            async with httpx.AsyncClient(timeout=settings.GMAIL_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(
                f"Token refresh network error for user {user_id}: {type(e).__name__}",
                extra={"user_id": user_id}
            )
            raise RefreshFailed(
                "Failed to refresh Gmail access - please reconnect your Gmail account"
            ) from e

        if response.status_code != 200:
            # Google error codes are safe to log ('invalid_grant', ...), the body is not echoed
            try:
                error_code = response.json().get("error", "unknown")
            except ValueError:
                error_code = "unknown"

            logger.error(
                f"Token refresh failed for user {user_id}: {response.status_code} {error_code}",
                extra={"user_id": user_id, "status": response.status_code, "error_code": error_code}
            )
            raise RefreshFailed(
                "Failed to refresh Gmail access - please reconnect your Gmail account"
            )

        token_data = response.json()
        return {
            "access_token": token_data["access_token"],
            "expires_in": token_data.get("expires_in", DEFAULT_EXPIRES_IN),
            "refresh_token": token_data.get("refresh_token"),
        }


# Global OAuth manager instance
gmail_oauth = GmailOAuthManager()
