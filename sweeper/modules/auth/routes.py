"""
Authentication routes - Google OAuth login and logout.

Endpoints:
- GET /auth/google/login - Redirect to Google consent screen
- GET /auth/google/callback - Handle OAuth callback
- GET /auth/logout - Clear the session
"""

import logging
from typing import Optional

import requests
from authlib.integrations.requests_client import OAuthError
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from googleapiclient.errors import HttpError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from sweeper.core.config import settings
from sweeper.core.database import get_db
from sweeper.core.security import mask_email
from sweeper.core.session import regenerate_session, set_session_user, clear_session, get_session_user_id
from sweeper.models import User, UserSettings
from sweeper.models.user_settings import TRAINING_DEFAULT_DAYS
from sweeper.modules.auth.gmail_oauth import gmail_oauth
from sweeper.modules.gmail.token_cache import get_token_cache
from sweeper.modules.gmail.token_manager import TokenManager
from sweeper.modules.gmail.token_store import TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _error_redirect(error: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.APP_URL}/login?error={error}", status_code=302)


@router.get("/google/login")
async def login_with_google():
    """
    Initiate Gmail OAuth flow.

    Redirects to the Google consent screen (offline access, forced consent so
    Google issues a refresh token).
    """
    auth_url, _ = await gmail_oauth.get_authorization_url()
    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/google/callback")
async def google_oauth_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="CSRF state token"),
    error: Optional[str] = Query(None, description="Error reported by Google"),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle OAuth callback from Google.

    1. Verify state token (CSRF protection)
    2. Exchange authorization code for tokens and read the Gmail profile
    3. Create the user (and default settings) on first login
    4. Seed gmail_tokens
    5. Start a fresh session carrying the user id and encrypted provider tokens
    """
    if error:
        logger.warning(f"OAuth error from Google: {error}")
        return _error_redirect(error)

    if not code:
        return _error_redirect("no_code")

    if not state or not await gmail_oauth.verify_state(state):
        return _error_redirect("invalid_state")

    try:
        tokens = await run_in_threadpool(gmail_oauth.exchange_code_for_tokens, code)
    except (OAuthError, HttpError, requests.RequestException) as e:
        # Log error type only (never tokens)
        logger.error(f"OAuth code exchange failed: {type(e).__name__}")
        return _error_redirect("callback_failed")

    result = await db.execute(select(User).where(User.email == tokens["email"]))
    user = result.scalar_one_or_none()

    if not user:
        user = User(email=tokens["email"])
        db.add(user)
        await db.flush()

        db.add(UserSettings(
            user_id=user.id,
            safe_senders_required=True,
            training_mode_active=True,
            successful_actions_count=0,
            days_limit=TRAINING_DEFAULT_DAYS,
        ))
        await db.commit()

        logger.info(
            f"Created user {mask_email(user.email)}",
            extra={"user_id": str(user.id)}
        )

    manager = TokenManager(user.id, TokenStore(db), get_token_cache())
    await manager.store_tokens(
        tokens["access_token"],
        tokens.get("refresh_token"),
        tokens["expires_in"],
    )

    # Prevents session fixation
    regenerate_session(request)
    set_session_user(
        request,
        user.id,
        provider_token=tokens["access_token"],
        provider_refresh_token=tokens.get("refresh_token"),
    )

    return RedirectResponse(url=f"{settings.APP_URL}/dashboard", status_code=302)


@router.get("/logout")
async def logout(request: Request):
    """Clear the session and drop the user's cached access token."""
    user_id = get_session_user_id(request)
    if user_id:
        await get_token_cache().invalidate(user_id)

    clear_session(request)
    return {"success": True}
