"""
Gmail routes - connection management and single-message actions.

Endpoints:
- POST /gmail/refresh-token - Force an access token refresh
- GET /gmail/status - Check the Gmail connection
- GET /emails - List inbox messages (metadata only)
- POST /emails/{email_id}/trash|archive|read|unread - Act on one message
"""

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from sweeper.core.exceptions import AuthError
from sweeper.models.user import User
from sweeper.modules.auth.dependencies import (
    get_current_user,
    get_token_manager,
    get_gmail_client_factory,
    get_history_recorder,
)
from sweeper.modules.gmail.client import GmailClient, GmailAPIError
from sweeper.modules.gmail.messages import fetch_email_items
from sweeper.modules.gmail.schemas import EmailListResponse, TokenRefreshResponse, ConnectionStatus
from sweeper.modules.gmail.token_manager import TokenManager
from sweeper.modules.history.recorder import HistoryRecorder, HistoryEntry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gmail"])


class EmailActionDetails(BaseModel):
    """Optional context stored with the manual history entry."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = Field(default=None, alias="threadId")
    subject: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    snippet: Optional[str] = None


# path suffix -> (GmailClient method, history action)
EMAIL_OPERATIONS = {
    "trash": ("trash_message", "delete"),
    "archive": ("archive_message", "archive"),
    "read": ("mark_read", "mark_read"),
    "unread": ("mark_unread", "mark_unread"),
}


@router.post("/gmail/refresh-token", response_model=TokenRefreshResponse)
async def refresh_token(
    token_manager: TokenManager = Depends(get_token_manager),
):
    """Refresh the access token now (refresh token kept unless Google rotates it)."""
    data = await token_manager.force_refresh()
    return TokenRefreshResponse(access_token=data.access_token, expires_at=data.expires_at)


@router.get("/gmail/status", response_model=ConnectionStatus)
async def connection_status(
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
):
    """Check that a token can be obtained and Gmail accepts it."""
    try:
        access_token = await token_manager.get_access_token()
        async with client_factory(access_token) as client:
            profile = await client.get_profile()
    except AuthError as e:
        return ConnectionStatus(connected=False, error=e.message)
    except GmailAPIError as e:
        return ConnectionStatus(connected=False, error=str(e))

    return ConnectionStatus(connected=True, email_address=profile.get("emailAddress"))


@router.get("/emails", response_model=EmailListResponse, response_model_by_alias=True)
async def list_emails(
    max_results: int = Query(50, ge=1, le=500, alias="maxResults"),
    label_ids: List[str] = Query(["INBOX"], alias="labelIds"),
    page_token: Optional[str] = Query(None, alias="pageToken"),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
):
    access_token = await token_manager.get_access_token()

    async with client_factory(access_token) as client:
        items, next_page_token = await fetch_email_items(
            client, max_results=max_results, label_ids=label_ids, page_token=page_token
        )

    return EmailListResponse(emails=items, next_page_token=next_page_token)


async def _apply_email_operation(
    operation: str,
    email_id: str,
    details: Optional[EmailActionDetails],
    user: User,
    token_manager: TokenManager,
    client_factory: Callable[[str], GmailClient],
    recorder: HistoryRecorder,
) -> dict:
    method_name, history_action = EMAIL_OPERATIONS[operation]

    access_token = await token_manager.get_access_token()
    async with client_factory(access_token) as client:
        await getattr(client, method_name)(email_id)

    details = details or EmailActionDetails()
    await recorder.track_action(HistoryEntry(
        email_id=email_id,
        thread_id=details.thread_id,
        action=history_action,
        action_type="manual",
        details=details.model_dump(by_alias=True, exclude_none=True, exclude={"thread_id"}),
    ))

    logger.info(
        f"Manual {history_action} for user {user.id}",
        extra={"user_id": str(user.id), "message_id": email_id}
    )
    return {"success": True}


@router.post("/emails/{email_id}/trash")
async def trash_email(
    email_id: str,
    details: Optional[EmailActionDetails] = None,
    user: User = Depends(get_current_user),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
    recorder: HistoryRecorder = Depends(get_history_recorder),
):
    return await _apply_email_operation(
        "trash", email_id, details, user, token_manager, client_factory, recorder
    )


@router.post("/emails/{email_id}/archive")
async def archive_email(
    email_id: str,
    details: Optional[EmailActionDetails] = None,
    user: User = Depends(get_current_user),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
    recorder: HistoryRecorder = Depends(get_history_recorder),
):
    return await _apply_email_operation(
        "archive", email_id, details, user, token_manager, client_factory, recorder
    )


@router.post("/emails/{email_id}/read")
async def mark_email_read(
    email_id: str,
    details: Optional[EmailActionDetails] = None,
    user: User = Depends(get_current_user),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
    recorder: HistoryRecorder = Depends(get_history_recorder),
):
    return await _apply_email_operation(
        "read", email_id, details, user, token_manager, client_factory, recorder
    )


@router.post("/emails/{email_id}/unread")
async def mark_email_unread(
    email_id: str,
    details: Optional[EmailActionDetails] = None,
    user: User = Depends(get_current_user),
    token_manager: TokenManager = Depends(get_token_manager),
    client_factory: Callable[[str], GmailClient] = Depends(get_gmail_client_factory),
    recorder: HistoryRecorder = Depends(get_history_recorder),
):
    return await _apply_email_operation(
        "unread", email_id, details, user, token_manager, client_factory, recorder
    )
