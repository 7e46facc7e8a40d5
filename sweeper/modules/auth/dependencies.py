"""Authentication and collaborator dependencies for the JSON API.

Route tests replace these through app.dependency_overrides.
"""

from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.database import get_db
from sweeper.core.exceptions import NotAuthenticated
from sweeper.core.session import (
    SessionIdentity,
    get_session_identity,
    get_session_user_id,
    is_session_expired,
    clear_session,
)
from sweeper.models.user import User
from sweeper.modules.actions.bulk import BulkActionExecutor
from sweeper.modules.auth.gmail_oauth import gmail_oauth
from sweeper.modules.gmail.client import GmailClient
from sweeper.modules.gmail.token_cache import get_token_cache
from sweeper.modules.gmail.token_manager import TokenManager
from sweeper.modules.gmail.token_store import TokenStore
from sweeper.modules.history.recorder import HistoryRecorder


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    FastAPI dependency to get the currently authenticated user.

    Raises:
        NotAuthenticated: No session, expired session, or unknown/inactive user

    Usage:
        @router.get("/emails")
        async def list_emails(user: User = Depends(get_current_user)):
            ...
    """
    user_id = get_session_user_id(request)
    if not user_id:
        raise NotAuthenticated("Not authenticated")

    # Max age: 24 hours
    if is_session_expired(request, max_age_hours=24):
        clear_session(request)
        raise NotAuthenticated("Session expired. Please log in again.")

    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()

    if not user:
        clear_session(request)
        raise NotAuthenticated("User not found or account deactivated. Please log in again.")

    return user


def get_session_identity_dep(request: Request) -> Optional[SessionIdentity]:
    return get_session_identity(request)


def get_gmail_client_factory() -> Callable[[str], GmailClient]:
    """Factory building a GmailClient from an access token."""
    return GmailClient


async def get_token_manager(
    user: User = Depends(get_current_user),
    identity: Optional[SessionIdentity] = Depends(get_session_identity_dep),
    db: AsyncSession = Depends(get_db),
) -> TokenManager:
    return TokenManager(
        user.id,
        TokenStore(db),
        get_token_cache(),
        oauth=gmail_oauth,
        session_identity=identity,
    )


async def get_history_recorder(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> HistoryRecorder:
    return HistoryRecorder(db, user.id)


async def get_bulk_executor(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
    recorder: HistoryRecorder = Depends(get_history_recorder),
) -> BulkActionExecutor:
    return BulkActionExecutor(
        db,
        user.id,
        token_manager,
        client_factory=client_factory,
        recorder=recorder,
    )
