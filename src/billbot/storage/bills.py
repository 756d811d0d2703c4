"""Bounded per-user bill history."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from ..models import BillRecord, ExtractedBill
from .base import Database
from .tokens import utcnow

logger = logging.getLogger(__name__)

MAX_BILLS_PER_USER = 50


class BillStore:
    """Bill records keyed by (user, provider message id), capped per user.

    Re-ingesting a message overwrites its record. After every upsert batch the
    oldest records by ingestion time are evicted down to the cap within the
    same write.
    """

    def __init__(
        self,
        db: Database,
        max_bills_per_user: int = MAX_BILLS_PER_USER,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.max_bills_per_user = max_bills_per_user
        self.clock = clock

    def upsert_many(self, user_id: str, extracted: list[ExtractedBill]) -> int:
        """Upsert bills in the given order and evict down to the cap in one write.

        Returns:
            int: Number of bills written

        Raises:
            StorageError: On persistence faults
        """
        if not extracted:
            return 0

        ingested_at = self.clock()
        records = [
            BillRecord(
                user_id=user_id,
                type=item.bill.type,
                amount=item.bill.amount,
                issue_date=item.bill.issue_date,
                confidence=item.bill.confidence,
                provider_message_id=item.message_id,
                ingested_at=ingested_at,
            )
            for item in extracted
        ]

        evicted = self.db.upsert_bills(records, cap=self.max_bills_per_user)
        logger.info(f"Stored {len(records)} bills for user {user_id}")
        if evicted:
            logger.info(f"Pruned {evicted} old bills for user {user_id}")
        return len(records)

    def evict(self, user_id: str) -> int:
        """Delete the oldest bills beyond the per-user cap."""
        count = self.db.count_bills(user_id)
        excess = count - self.max_bills_per_user
        if excess <= 0:
            return 0

        deleted = self.db.delete_oldest_bills(user_id, excess)
        logger.info(f"Pruned {deleted} old bills for user {user_id}")
        return deleted

    def recent(self, user_id: str, days_back: int = 30) -> list[BillRecord]:
        """Bills ingested within the last days_back days, newest first."""
        cutoff = self.clock() - timedelta(days=days_back)
        return self.db.get_bills(user_id, since=cutoff)

    def all(self, user_id: str) -> list[BillRecord]:
        return self.db.get_bills(user_id)

    def clear(self, user_id: str) -> int:
        deleted = self.db.delete_all_bills(user_id)
        logger.warning(f"Deleted all {deleted} bills for user {user_id}")
        return deleted
