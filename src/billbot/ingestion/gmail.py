"""Gmail REST API access with an OAuth2 bearer token."""

import base64
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import requests

from ..errors import AuthError, FetchError, SearchError
from ..models import BillAttachment, MessageStub
from ..processing.subject import BillSenderConfig
from .base import MailSource

logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"


def build_bill_query(
    sender: BillSenderConfig,
    days_back: int = 30,
    today: Optional[date] = None,
) -> str:
    """Build a Gmail query for bills from a sender within a time window.

    Args:
        sender: Sender address and whether a PDF attachment is required
        days_back: Number of days to look back
        today: Reference date (defaults to the current UTC date)

    Returns:
        str: Gmail search query
    """
    today = today or datetime.now(timezone.utc).date()
    after = today - timedelta(days=days_back)
    query = f"from:{sender.sender} after:{after.strftime('%Y/%m/%d')}"
    if sender.require_pdf:
        query += " has:attachment filename:pdf"
    return query


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's unpadded base64url attachment payload."""
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class GmailSource(MailSource):
    """Gmail mailbox accessed through the REST API."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        max_results: int = 100,
        base_url: str = GMAIL_API_URL,
    ):
        """Initialize Gmail source.

        Args:
            session: HTTP session (a new one is created if omitted)
            timeout: Per-request timeout in seconds
            max_results: Upper bound on search hits collected across pages
            base_url: API root for the authenticated user
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_results = max_results
        self.base_url = base_url

    def _get(self, token: str, path: str, params: Optional[dict], error_cls: type) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise error_cls(f"Gmail request failed: {e}") from e

        if response.status_code == 401:
            raise AuthError("Gmail rejected the OAuth token (401 Unauthorized)")

        if not response.ok:
            try:
                details = response.json()
            except ValueError:
                details = response.text
            logger.error(f"Gmail API error {response.status_code} for {path}: {details}")
            raise error_cls(
                f"Gmail API request failed: {response.status_code} {response.reason}",
                status_code=response.status_code,
                details=details,
            )

        return response.json()

    def search(self, token: str, query: str) -> list[MessageStub]:
        """Search messages, following pagination up to max_results."""
        logger.debug(f"Searching Gmail: {query}")
        stubs: list[MessageStub] = []
        page_token = None

        while len(stubs) < self.max_results:
            params = {"q": query, "maxResults": min(100, self.max_results - len(stubs))}
            if page_token:
                params["pageToken"] = page_token

            data = self._get(token, "/messages", params, SearchError)
            for msg in data.get("messages") or []:
                stubs.append(MessageStub(id=msg["id"], thread_id=msg.get("threadId")))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return stubs[: self.max_results]

    def get_message(self, token: str, message_id: str, fmt: str = "full") -> dict:
        params = {"format": fmt}
        if fmt == "metadata":
            params["metadataHeaders"] = ["Subject", "From", "Date"]
        return self._get(token, f"/messages/{message_id}", params, FetchError)

    def get_attachment(
        self,
        token: str,
        message_id: str,
        attachment_id: str,
        mime_type: str = "application/pdf",
    ) -> BillAttachment:
        data = self._get(
            token,
            f"/messages/{message_id}/attachments/{attachment_id}",
            None,
            FetchError,
        )
        try:
            content = decode_base64url(data["data"])
        except (KeyError, ValueError) as e:
            raise FetchError(f"Malformed attachment payload for message {message_id}: {e}") from e

        return BillAttachment(message_id=message_id, mime_type=mime_type, data=content)
