"""Error types raised by the bill-ingestion pipeline.

Item-level errors (FetchError, ExtractionError) are contained by the pipeline
and only logged. Run-level errors (AuthError, SearchError, StorageError) end
the scan and are reported back to the requesting channel.
"""

from typing import Any, Optional


class BillBotError(Exception):
    """Base exception for all pipeline errors."""


# ============================================================================
# Authorization
# ============================================================================


class AuthError(BillBotError):
    """Missing or invalid OAuth credentials. The user must reauthorize."""


class NoTokenError(AuthError):
    """No OAuth token stored for the user."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"No OAuth token stored for user {user_id}")


class RefreshFailedError(AuthError):
    """The provider rejected a token refresh."""

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        super().__init__(f"OAuth token refresh failed ({status_code}): {body}")


# ============================================================================
# Mail provider
# ============================================================================


class MailProviderError(BillBotError):
    """Mail provider request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class SearchError(MailProviderError):
    """Mailbox search failed. Aborts the scan."""


class FetchError(MailProviderError):
    """Fetching a message or attachment failed. Drops only that message."""


# ============================================================================
# Extraction / storage / delivery
# ============================================================================


class ExtractionError(BillBotError):
    """Bill extraction failed after all attempts."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")


class StorageError(BillBotError):
    """Persistence layer fault."""


class NotificationError(BillBotError):
    """Delivering a message to the chat channel failed."""
