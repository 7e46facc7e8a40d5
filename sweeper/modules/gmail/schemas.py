"""Pydantic models for Gmail message data exchanged with the dashboard."""

from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC (the convention for all stored timestamps)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class EmailItem(BaseModel):
    """
    One message as shown in the inbox list.

    The dashboard sends these back as `allEmails` when requesting a Super Action.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    from_: str = Field(default="", alias="from")  # Raw From header
    subject: Optional[str] = None
    snippet: Optional[str] = None
    date: Optional[datetime] = None  # Naive UTC
    unread: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        """Accept ISO-8601 or RFC 2822 strings; unparseable dates become None."""
        if v is None or v == "":
            return None
        if isinstance(v, datetime):
            return to_naive_utc(v)
        try:
            return to_naive_utc(date_parser.parse(str(v)))
        except (ValueError, OverflowError):
            return None


class EmailListResponse(BaseModel):
    """Response for GET /emails."""

    emails: list[EmailItem]
    next_page_token: Optional[str] = Field(default=None, alias="nextPageToken")

    model_config = ConfigDict(populate_by_name=True)


class TokenRefreshResponse(BaseModel):
    """Response for POST /gmail/refresh-token (never includes the refresh token)."""

    access_token: str
    expires_at: datetime


class ConnectionStatus(BaseModel):
    """Response for GET /gmail/status."""

    connected: bool
    email_address: Optional[str] = None
    error: Optional[str] = None
