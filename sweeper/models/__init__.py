"""
Database models package.

Import all models here so Alembic can discover them for migrations.
"""

from sweeper.models.user import User
from sweeper.models.gmail_token import GmailToken
from sweeper.models.safe_sender import SafeSender
from sweeper.models.user_settings import UserSettings
from sweeper.models.email_history import EmailHistory
from sweeper.models.action_history import ActionHistory
from sweeper.models.rate_limit import RateLimitWindow

__all__ = [
    "User",
    "GmailToken",
    "SafeSender",
    "UserSettings",
    "EmailHistory",
    "ActionHistory",
    "RateLimitWindow",
]
