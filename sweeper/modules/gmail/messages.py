"""
Message metadata helpers.

Turns Gmail API message resources into EmailItem objects and fetches the
inbox listing in small concurrent batches.
"""

import asyncio
import logging
from datetime import datetime
from email.utils import parseaddr
from typing import Optional, List, Dict, Tuple

from sweeper.modules.gmail.client import GmailClient, GmailAPIError
from sweeper.modules.gmail.schemas import EmailItem

logger = logging.getLogger(__name__)


# Listing fetches message details 10 at a time
FETCH_BATCH_SIZE = 10
FETCH_BATCH_DELAY_SECONDS = 0.1

METADATA_HEADERS = ["From", "Subject", "Date"]


def extract_header(headers: List[Dict], name: str) -> Optional[str]:
    """
    Extract specific header value from Gmail API headers list.

    Gmail API returns headers as list of dicts: [{"name": "From", "value": "..."}]
    """
    if not headers:
        return None

    name_lower = name.lower()

    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")

    return None


def parse_from_header(from_header: str) -> Tuple[str, Optional[str]]:
    """
    Parse From header into email address and display name.

    Handles various formats:
    - "John Doe <john@example.com>" -> ("john@example.com", "John Doe")
    - "john@example.com" -> ("john@example.com", None)
    - "<john@example.com>" -> ("john@example.com", None)
    """
    if not from_header:
        return ("", None)

    display_name, email_address = parseaddr(from_header)

    display_name = display_name.strip('"\'').strip() or None

    email_address = email_address.lower().strip() if email_address else ""

    return (email_address, display_name)


def message_to_email_item(message: Dict) -> EmailItem:
    """
    Convert a Gmail message resource (format=metadata) to an EmailItem.

    internalDate (ms since epoch) is preferred over the Date header, which
    senders control.
    """
    headers = message.get("payload", {}).get("headers", [])

    date = None
    if message.get("internalDate"):
        date = datetime.utcfromtimestamp(int(message["internalDate"]) / 1000)

    return EmailItem(
        id=message["id"],
        thread_id=message.get("threadId"),
        from_=extract_header(headers, "From") or "Unknown",
        subject=extract_header(headers, "Subject") or "(no subject)",
        snippet=message.get("snippet"),
        date=date or extract_header(headers, "Date"),
        unread="UNREAD" in (message.get("labelIds") or []),
    )


async def fetch_email_items(
    client: GmailClient,
    max_results: int = 50,
    label_ids: Optional[List[str]] = None,
    page_token: Optional[str] = None,
) -> Tuple[List[EmailItem], Optional[str]]:
    """
    List messages and fetch their metadata.

    Details are fetched concurrently in batches of FETCH_BATCH_SIZE with a
    short delay between batches. Messages that fail to load are skipped.

    Returns:
        Tuple of (email items in listing order, next page token)
    """
    listing = await client.list_messages(
        max_results=max_results, label_ids=label_ids, page_token=page_token
    )
    message_ids = [m["id"] for m in listing.get("messages", [])]

    async def fetch_one(message_id: str) -> Optional[EmailItem]:
        try:
            message = await client.get_message(message_id, metadata_headers=METADATA_HEADERS)
            return message_to_email_item(message)
        except GmailAPIError as e:
            logger.warning(
                f"Failed to fetch message {message_id}: {e}",
                extra={"message_id": message_id}
            )
            return None

    items: List[EmailItem] = []
    for start in range(0, len(message_ids), FETCH_BATCH_SIZE):
        batch = message_ids[start:start + FETCH_BATCH_SIZE]
        results = await asyncio.gather(*(fetch_one(message_id) for message_id in batch))
        items.extend(item for item in results if item is not None)

        if start + FETCH_BATCH_SIZE < len(message_ids):
            await asyncio.sleep(FETCH_BATCH_DELAY_SECONDS)

    logger.info(f"Loaded {len(items)} of {len(message_ids)} messages")
    return items, listing.get("nextPageToken")
