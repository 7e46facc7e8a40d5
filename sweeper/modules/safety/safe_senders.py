"""
Safe senders - addresses and wildcard patterns exempt from Super Actions.

Supported patterns (case-insensitive):
- exact address: 'boss@work.com'
- domain wildcard: '*@work.com'
- local-part wildcard: 'alerts@*'

Anything else is rejected when the pattern is added, never matched loosely.

CRITICAL: A message whose sender matches a safe sender is never touched by
a Super Action.
"""

import logging
import re
from typing import Iterable, List, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sweeper.core.exceptions import InvalidAction, Conflict, NotFound
from sweeper.models.safe_sender import SafeSender
from sweeper.modules.gmail.messages import parse_from_header

logger = logging.getLogger(__name__)

T = TypeVar("T")


# local@domain with no wildcard or whitespace on either side
_PART = r"[^\s@*]+"
EXACT_PATTERN = re.compile(rf"^{_PART}@{_PART}$")
DOMAIN_WILDCARD = re.compile(rf"^\*@{_PART}$")
LOCAL_WILDCARD = re.compile(rf"^{_PART}@\*$")


def email_matches_pattern(address: str, pattern: str) -> bool:
    """
    Check if an address matches a safe sender pattern.

    Rules, applied in order after lower-casing both sides:
    1. Exact equality
    2. '*@domain' -> address ends with '@domain'
    3. 'prefix@*' -> address starts with 'prefix@'
    4. Otherwise no match
    """
    address = (address or "").lower()
    pattern = (pattern or "").lower()

    if address == pattern:
        return True

    if pattern.startswith("*@"):
        domain = pattern[2:]
        return address.endswith("@" + domain)

    if pattern.endswith("@*"):
        prefix = pattern[:-2]
        return address.startswith(prefix + "@")

    return False


def validate_pattern(pattern: str) -> str:
    """
    Normalize and validate a pattern before it is stored.

    Returns:
        Trimmed, lower-cased pattern

    Raises:
        InvalidAction: Not an exact address or a one-sided wildcard
    """
    normalized = (pattern or "").strip().lower()

    if not normalized:
        raise InvalidAction("Email address is required")

    if not (
        EXACT_PATTERN.match(normalized)
        or DOMAIN_WILDCARD.match(normalized)
        or LOCAL_WILDCARD.match(normalized)
    ):
        raise InvalidAction(
            "Enter an email address, *@domain.com or name@* pattern"
        )

    return normalized


def extract_address(from_header: str) -> str:
    """'Jane <Jane@Example.com>' -> 'jane@example.com'"""
    email_address, _ = parse_from_header(from_header)
    return email_address


def is_safe(address: str, patterns: Iterable[str]) -> bool:
    """True if address matches any of the patterns."""
    return any(email_matches_pattern(address, pattern) for pattern in patterns)


def filter_out_safe(
    items: Sequence[T],
    patterns: Sequence[str],
    sender_of=lambda item: item.from_,
) -> List[T]:
    """
    Drop items whose sender matches a safe sender pattern.

    sender_of returns the raw From header of an item; it is normalized to the
    bare address before matching.
    """
    if not patterns:
        return list(items)

    return [
        item for item in items
        if not is_safe(extract_address(sender_of(item)), patterns)
    ]


# Repository

async def list_safe_senders(db: AsyncSession, user_id: UUID) -> List[SafeSender]:
    """All safe senders for a user, newest first."""
    result = await db.execute(
        select(SafeSender)
        .where(SafeSender.user_id == user_id)
        .order_by(SafeSender.added_at.desc())
    )
    return list(result.scalars().all())


async def get_patterns(db: AsyncSession, user_id: UUID) -> List[str]:
    result = await db.execute(
        select(SafeSender.email_address).where(SafeSender.user_id == user_id)
    )
    return list(result.scalars().all())


async def count_safe_senders(db: AsyncSession, user_id: UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(SafeSender).where(SafeSender.user_id == user_id)
    )
    return result.scalar_one()


async def add_safe_sender(db: AsyncSession, user_id: UUID, pattern: str) -> SafeSender:
    """
    Add a safe sender.

    Raises:
        InvalidAction: Malformed pattern
        Conflict: Pattern already in the user's list
    """
    normalized = validate_pattern(pattern)

    safe_sender = SafeSender(user_id=user_id, email_address=normalized)
    db.add(safe_sender)

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("This email is already in your safe senders list") from e

    await db.refresh(safe_sender)

    logger.info(
        f"Added safe sender for user {user_id}",
        extra={"user_id": str(user_id), "safe_sender_id": str(safe_sender.id)}
    )
    return safe_sender


async def remove_safe_sender(db: AsyncSession, user_id: UUID, safe_sender_id: UUID) -> None:
    """
    Remove one of the user's safe senders.

    Raises:
        NotFound: No such safe sender for this user
    """
    result = await db.execute(
        select(SafeSender).where(
            SafeSender.id == safe_sender_id,
            SafeSender.user_id == user_id,
        )
    )
    safe_sender = result.scalar_one_or_none()

    if not safe_sender:
        raise NotFound("Safe sender not found")

    await db.delete(safe_sender)
    await db.commit()

    logger.info(
        f"Removed safe sender for user {user_id}",
        extra={"user_id": str(user_id), "safe_sender_id": str(safe_sender_id)}
    )
