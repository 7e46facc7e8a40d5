"""Session management utilities for API authentication."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from starlette.requests import Request

from sweeper.core.security import encrypt_optional, decrypt_optional


@dataclass
class SessionIdentity:
    """
    Identity carried by the signed session cookie.

    provider_token / provider_refresh_token are the Google tokens issued at
    login. They are only used as a fallback when gmail_tokens has no row.
    """

    user_id: UUID
    provider_token: Optional[str] = None
    provider_refresh_token: Optional[str] = None


def get_session_user_id(request: Request) -> Optional[UUID]:
    """
    Get the authenticated user's ID from the session.

    Returns:
        User UUID if authenticated, None otherwise
    """
    user_id_str = request.session.get("user_id")
    if not user_id_str:
        return None

    try:
        return UUID(user_id_str)
    except (ValueError, TypeError):
        # Invalid UUID format, clear the session
        request.session.clear()
        return None


def get_session_created_at(request: Request) -> Optional[datetime]:
    """Get the session creation timestamp."""
    created_at_str = request.session.get("created_at")
    if not created_at_str:
        return None

    try:
        return datetime.fromisoformat(created_at_str)
    except (ValueError, TypeError):
        return None


def is_session_expired(request: Request, max_age_hours: int = 24) -> bool:
    """
    Check if the current session has exceeded its maximum age.

    Args:
        request: The incoming request
        max_age_hours: Maximum session age in hours (default: 24)
    """
    created_at = get_session_created_at(request)
    if not created_at:
        return True

    now = datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    age_hours = (now - created_at).total_seconds() / 3600
    return age_hours >= max_age_hours


def set_session_user(
    request: Request,
    user_id: UUID,
    provider_token: Optional[str] = None,
    provider_refresh_token: Optional[str] = None,
) -> None:
    """
    Store the authenticated user (and encrypted provider tokens) in the session.

    Tokens are encrypted because the session cookie is signed, not encrypted.
    """
    request.session["user_id"] = str(user_id)
    request.session["provider_token"] = encrypt_optional(provider_token)
    request.session["provider_refresh_token"] = encrypt_optional(provider_refresh_token)

    if "created_at" not in request.session:
        request.session["created_at"] = datetime.now(timezone.utc).isoformat()


def get_session_identity(request: Request) -> Optional[SessionIdentity]:
    """Build the SessionIdentity for the current request, or None when logged out."""
    user_id = get_session_user_id(request)
    if not user_id:
        return None

    return SessionIdentity(
        user_id=user_id,
        provider_token=decrypt_optional(request.session.get("provider_token")),
        provider_refresh_token=decrypt_optional(request.session.get("provider_refresh_token")),
    )


def clear_session(request: Request) -> None:
    """Clear all session data (used for logout)."""
    request.session.clear()


def regenerate_session(request: Request) -> None:
    """
    Regenerate the session (prevents session fixation attacks).

    Clears the old session and starts a new one with a fresh creation
    timestamp. Call before storing the user after successful authentication.
    """
    request.session.clear()
    request.session["created_at"] = datetime.now(timezone.utc).isoformat()
