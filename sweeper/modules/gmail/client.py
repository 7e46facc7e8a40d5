"""
Gmail REST API client for listing and modifying messages.

Provides high-level interface for:
- Listing messages and fetching message metadata (no full bodies)
- Trash / untrash, archive, mark read / unread
- Profile lookup (connection check)
- Status-code to exception mapping

CRITICAL SECURITY:
- NEVER fetch full email bodies (always use format='metadata')
- NEVER log access tokens
"""

import logging
from typing import Optional, List, Dict

import httpx

from sweeper.core.config import settings

logger = logging.getLogger(__name__)


class GmailAPIError(Exception):
    """Base exception for Gmail API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GmailQuotaExceeded(GmailAPIError):
    """Raised when Gmail API quota is exceeded (429 error)."""


class GmailAuthError(GmailAPIError):
    """Raised when OAuth token is invalid/expired (401/403 errors)."""


class GmailNotFound(GmailAPIError):
    """Raised when the message no longer exists (404 error)."""


class GmailServerError(GmailAPIError):
    """Raised for Gmail server errors (500/502/503)."""


# Statuses that tell the batcher to slow down
THROTTLE_STATUSES = (429, 503)


class GmailClient:
    """
    Async Gmail API client authenticated with a bearer access token.

    Usage:
        async with GmailClient(access_token) as client:
            response = await client.list_messages(max_results=50, label_ids=["INBOX"])
            await client.trash_message(response["messages"][0]["id"])
    """

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Gmail client.

        Args:
            access_token: Valid (non-expired) OAuth access token
            base_url: Gmail API base (defaults to settings.GMAIL_API_BASE_URL)
            timeout: Per-request timeout in seconds (defaults to settings.GMAIL_HTTP_TIMEOUT_SECONDS)
            http_client: Optional pre-built httpx client (tests)
        """
        if not access_token:
            raise ValueError("Access token is required")

        self.base_url = (base_url or settings.GMAIL_API_BASE_URL).rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.GMAIL_HTTP_TIMEOUT_SECONDS,
        )
        self._headers = {"Authorization": f"Bearer {access_token}"}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP client (only if we created it)."""
        if self._owns_client:
            await self._http.aclose()

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> Dict:
        """
        Execute a Gmail API request.

        Raises:
            GmailAPIError (or subclass) for non-2xx responses and network errors
        """
        url = f"{self.base_url}{path}"

        try:
            response = await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                f"Gmail API network error during {operation}: {type(e).__name__}",
                extra={"operation": operation}
            )
            raise GmailAPIError(f"Network error during {operation}: {type(e).__name__}") from e

        if response.status_code >= 400:
            self._handle_error(response, operation)

        if not response.content:
            return {}
        return response.json()

    def _handle_error(self, response: httpx.Response, operation: str):
        """
        Map Gmail API HTTP errors to exceptions.

        Raises:
            GmailAuthError: 401, 403
            GmailQuotaExceeded: 429
            GmailNotFound: 404
            GmailServerError: 500, 502, 503
            GmailAPIError: anything else
        """
        status_code = response.status_code

        if status_code == 401:
            logger.error(
                f"Gmail API 401 error during {operation}",
                extra={"operation": operation}
            )
            raise GmailAuthError("OAuth token expired. Token refresh needed.", status_code)

        elif status_code == 403:
            logger.error(
                f"Gmail API 403 error during {operation}",
                extra={"operation": operation}
            )
            raise GmailAuthError("Access forbidden. Reconnection required.", status_code)

        elif status_code == 429:
            logger.warning(
                f"Gmail API quota exceeded during {operation}",
                extra={"operation": operation}
            )
            raise GmailQuotaExceeded("Gmail API quota exceeded", status_code)

        elif status_code in [500, 502, 503]:
            logger.warning(
                f"Gmail API {status_code} error during {operation}",
                extra={"operation": operation, "status": status_code}
            )
            raise GmailServerError(f"Gmail API server error ({status_code}) during {operation}", status_code)

        elif status_code == 404:
            logger.warning(
                f"Gmail API 404 error during {operation}",
                extra={"operation": operation}
            )
            raise GmailNotFound(f"Resource not found during {operation}", status_code)

        else:
            logger.error(
                f"Gmail API {status_code} error during {operation}: {response.text[:200]}",
                extra={"operation": operation, "status": status_code}
            )
            raise GmailAPIError(f"Gmail API error ({status_code}) during {operation}", status_code)

    async def list_messages(
        self,
        max_results: int = 50,
        label_ids: Optional[List[str]] = None,
        page_token: Optional[str] = None,
        query: str = "",
    ) -> Dict:
        """
        List message ids.

        Returns:
            Dict with messages (id, threadId only), nextPageToken, resultSizeEstimate
        """
        params = {"maxResults": max_results}
        if label_ids:
            params["labelIds"] = label_ids
        if page_token:
            params["pageToken"] = page_token
        if query:
            params["q"] = query

        response = await self._request("GET", "/messages", "list_messages", params=params)

        logger.info(
            f"Listed {len(response.get('messages', []))} messages",
            extra={"has_next_page": bool(response.get("nextPageToken"))}
        )
        return response

    async def get_message(
        self,
        message_id: str,
        format: str = "metadata",
        metadata_headers: Optional[List[str]] = None,
    ) -> Dict:
        """
        Get message metadata.

        CRITICAL: Only 'metadata' and 'minimal' formats are allowed.

        Raises:
            ValueError: If any other format is requested
        """
        if format not in ["metadata", "minimal"]:
            raise ValueError(
                f"Invalid format '{format}'. Only 'metadata' and 'minimal' are allowed."
            )

        params = {"format": format}
        if metadata_headers:
            params["metadataHeaders"] = metadata_headers

        return await self._request(
            "GET", f"/messages/{message_id}", f"get_message(message_id={message_id})", params=params
        )

    async def trash_message(self, message_id: str) -> Dict:
        """
        Move message to trash (30-day recovery window).

        NEVER uses the permanent delete endpoint.
        """
        logger.info("Trashing message", extra={"message_id": message_id})
        return await self._request(
            "POST", f"/messages/{message_id}/trash", f"trash_message(message_id={message_id})"
        )

    async def untrash_message(self, message_id: str) -> Dict:
        """Remove message from trash (undo trash operation)."""
        logger.info("Untrashing message", extra={"message_id": message_id})
        return await self._request(
            "POST", f"/messages/{message_id}/untrash", f"untrash_message(message_id={message_id})"
        )

    async def modify_message(
        self,
        message_id: str,
        add_label_ids: Optional[List[str]] = None,
        remove_label_ids: Optional[List[str]] = None,
    ) -> Dict:
        """
        Modify message labels (used for archive, mark read).

        Usage:
            # Archive email (remove from inbox)
            await client.modify_message("abc123", remove_label_ids=["INBOX"])
        """
        body = {}
        if add_label_ids:
            body["addLabelIds"] = add_label_ids
        if remove_label_ids:
            body["removeLabelIds"] = remove_label_ids

        logger.info(
            "Modifying message",
            extra={"message_id": message_id, "add_labels": add_label_ids, "remove_labels": remove_label_ids}
        )
        return await self._request(
            "POST", f"/messages/{message_id}/modify", f"modify_message(message_id={message_id})", json=body
        )

    async def archive_message(self, message_id: str) -> Dict:
        return await self.modify_message(message_id, remove_label_ids=["INBOX"])

    async def unarchive_message(self, message_id: str) -> Dict:
        return await self.modify_message(message_id, add_label_ids=["INBOX"])

    async def mark_read(self, message_id: str) -> Dict:
        return await self.modify_message(message_id, remove_label_ids=["UNREAD"])

    async def mark_unread(self, message_id: str) -> Dict:
        return await self.modify_message(message_id, add_label_ids=["UNREAD"])

    async def get_profile(self) -> Dict:
        """Get mailbox profile (emailAddress, messagesTotal, ...)."""
        return await self._request("GET", "/profile", "get_profile")
