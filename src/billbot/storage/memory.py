"""In-memory storage backend (for testing and local runs)."""

import threading
from datetime import datetime
from typing import Optional

from ..models import BillRecord, TokenRecord
from .base import Database


class InMemoryDatabase(Database):
    """Keeps token and bill rows in dictionaries, mirroring the SQL schema."""

    def __init__(self):
        self.tokens: dict[str, TokenRecord] = {}
        self.bills: dict[tuple[str, str], BillRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def get_token(self, user_id: str) -> Optional[TokenRecord]:
        with self._lock:
            record = self.tokens.get(user_id)
            return record.model_copy() if record else None

    def save_token(self, record: TokenRecord) -> None:
        with self._lock:
            self.tokens[record.user_id] = record.model_copy()

    def list_token_users(self) -> list[str]:
        with self._lock:
            return sorted(self.tokens)

    def upsert_bills(self, records: list[BillRecord], cap: Optional[int] = None) -> int:
        with self._lock:
            for rec in records:
                key = (rec.user_id, rec.provider_message_id)
                existing = self.bills.get(key)
                if existing is not None:
                    # Update in place; the row keeps its id
                    self.bills[key] = rec.model_copy(update={"id": existing.id})
                else:
                    self.bills[key] = rec.model_copy(update={"id": self._next_id})
                    self._next_id += 1
            if cap is None:
                return 0
            evicted = 0
            for user_id in {rec.user_id for rec in records}:
                excess = len(self._user_bills(user_id)) - cap
                evicted += self._delete_oldest(user_id, excess)
            return evicted

    def _user_bills(self, user_id: str) -> list[BillRecord]:
        return [rec for (uid, _), rec in self.bills.items() if uid == user_id]

    def count_bills(self, user_id: str) -> int:
        with self._lock:
            return len(self._user_bills(user_id))

    def _delete_oldest(self, user_id: str, count: int) -> int:
        if count <= 0:
            return 0
        oldest = sorted(self._user_bills(user_id), key=lambda r: (r.ingested_at, r.id))[:count]
        for rec in oldest:
            del self.bills[(user_id, rec.provider_message_id)]
        return len(oldest)

    def delete_oldest_bills(self, user_id: str, count: int) -> int:
        with self._lock:
            return self._delete_oldest(user_id, count)

    def get_bills(self, user_id: str, since: Optional[datetime] = None) -> list[BillRecord]:
        with self._lock:
            rows = [
                rec for rec in self._user_bills(user_id)
                if since is None or rec.ingested_at >= since
            ]
        rows.sort(key=lambda r: (r.ingested_at, r.id), reverse=True)
        return [rec.model_copy() for rec in rows]

    def delete_all_bills(self, user_id: str) -> int:
        with self._lock:
            keys = [key for key in self.bills if key[0] == user_id]
            for key in keys:
                del self.bills[key]
            return len(keys)
