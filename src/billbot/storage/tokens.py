"""Per-user OAuth token store with refresh-on-demand."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..errors import NoTokenError
from ..ingestion.oauth import GoogleOAuthClient
from ..models import TokenRecord
from .base import Database

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenStore:
    """Durable record of each user's access/refresh token pair.

    A user has at most one record. It is created by the first authorization
    exchange and overwritten in place by every refresh.
    """

    def __init__(
        self,
        db: Database,
        oauth_client: GoogleOAuthClient,
        refresh_buffer: timedelta = REFRESH_BUFFER,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.oauth_client = oauth_client
        self.refresh_buffer = refresh_buffer
        self.clock = clock

    def get(self, user_id: str) -> Optional[TokenRecord]:
        return self.db.get_token(user_id)

    def store(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_in: int,
    ) -> TokenRecord:
        """Overwrite the user's token pair. Expiry is now + expires_in seconds."""
        record = TokenRecord(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self.clock() + timedelta(seconds=expires_in),
        )
        self.db.save_token(record)
        logger.info(f"Stored token for user {user_id} (expires {record.expires_at.isoformat()})")
        return record

    def list_users(self) -> list[str]:
        return self.db.list_token_users()

    def authorize(self, user_id: str, code: str, code_verifier: str) -> TokenRecord:
        """Exchange an authorization code and store the resulting tokens.

        Raises:
            AuthError: If the exchange fails or yields no refresh token
        """
        tokens = self.oauth_client.exchange_code(code, code_verifier)
        return self.store(user_id, tokens.access_token, tokens.refresh_token, tokens.expires_in)

    def refresh_if_needed(self, user_id: str) -> TokenRecord:
        """Return a token valid for at least the refresh buffer.

        Raises:
            NoTokenError: If the user never authorized
            RefreshFailedError: If the provider rejects the refresh
        """
        record = self.db.get_token(user_id)
        if record is None:
            raise NoTokenError(user_id)

        now = self.clock()
        if record.remaining_seconds(now) >= self.refresh_buffer.total_seconds():
            return record

        logger.info(f"Refreshing token for user {user_id} (expires {record.expires_at.isoformat()})")
        tokens = self.oauth_client.refresh(record.refresh_token)

        # Refresh tokens are not guaranteed to rotate
        refreshed = TokenRecord(
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or record.refresh_token,
            expires_at=self.clock() + timedelta(seconds=tokens.expires_in),
        )
        self.db.save_token(refreshed)
        logger.info(f"Successfully refreshed token for user {user_id}")
        return refreshed
