"""Abstract repository for token and bill rows."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..models import BillRecord, TokenRecord


class Database(ABC):
    """Keyed per-user storage for OAuth tokens and bills.

    Implementations raise StorageError on persistence faults.
    """

    # ========================================================================
    # Token Operations
    # ========================================================================

    @abstractmethod
    def get_token(self, user_id: str) -> Optional[TokenRecord]:
        """Fetch the token row for a user, or None."""
        pass

    @abstractmethod
    def save_token(self, record: TokenRecord) -> None:
        """Insert or overwrite the single token row for record.user_id."""
        pass

    @abstractmethod
    def list_token_users(self) -> list[str]:
        """User IDs that hold a token."""
        pass

    # ========================================================================
    # Bill Operations
    # ========================================================================

    @abstractmethod
    def upsert_bills(self, records: list[BillRecord], cap: Optional[int] = None) -> int:
        """Insert bills, overwriting rows with the same (user_id, provider_message_id).

        When cap is given, each affected user is trimmed to cap rows (oldest
        ingested_at first) in the same transaction.

        Returns:
            int: Number of rows evicted
        """
        pass

    @abstractmethod
    def count_bills(self, user_id: str) -> int:
        pass

    @abstractmethod
    def delete_oldest_bills(self, user_id: str, count: int) -> int:
        """Delete the count oldest bills by ingested_at (then id). Returns rows deleted."""
        pass

    @abstractmethod
    def get_bills(self, user_id: str, since: Optional[datetime] = None) -> list[BillRecord]:
        """Bills ingested at or after since, newest ingestion first."""
        pass

    @abstractmethod
    def delete_all_bills(self, user_id: str) -> int:
        pass
