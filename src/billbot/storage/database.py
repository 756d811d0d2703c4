"""Database operations using psycopg (PostgreSQL)."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import psycopg
from psycopg.rows import dict_row

from ..errors import StorageError
from ..models import BillRecord, TokenRecord
from .base import Database

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS oauth_token (
    user_id       TEXT PRIMARY KEY,
    access_token  TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    expires_at    TIMESTAMPTZ NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS bill (
    id                  BIGSERIAL PRIMARY KEY,
    user_id             TEXT NOT NULL,
    type                TEXT NOT NULL,
    amount              NUMERIC NOT NULL,
    issue_date          TIMESTAMPTZ NOT NULL,
    confidence          DOUBLE PRECISION NOT NULL,
    provider_message_id TEXT NOT NULL,
    ingested_at         TIMESTAMPTZ NOT NULL,
    UNIQUE (user_id, provider_message_id)
);

CREATE INDEX IF NOT EXISTS idx_bill_user_ingested
    ON bill (user_id, ingested_at DESC);
"""

BILL_COLUMNS = """
    id, user_id, type, amount, issue_date, confidence,
    provider_message_id, ingested_at
"""


class DatabaseClient(Database):
    """PostgreSQL database client using psycopg."""

    def __init__(self, database_url: str):
        """Initialize database client.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None
        # One connection is shared by background scans
        self._lock = threading.RLock()

    def connect(self):
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg.connect(
                    self.database_url,
                    row_factory=dict_row,
                    autocommit=False,  # We'll manage transactions explicitly
                )
            except psycopg.Error as e:
                raise StorageError(f"Database connection failed: {e}") from e
            logger.info("Database connection established")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute("INSERT INTO ...")
                # Automatically commits on success, rolls back on exception

        Yields:
            psycopg.Connection: Database connection object

        Raises:
            StorageError: If any statement or the commit fails
        """
        with self._lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
                logger.debug("Transaction committed")
            except psycopg.Error as e:
                conn.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise StorageError(f"Database error: {e}") from e
            except Exception as e:
                conn.rollback()
                logger.error(f"Transaction rolled back: {e}")
                raise

    def init_schema(self):
        """Create tables and indexes if they do not exist."""
        with self.transaction() as conn:
            conn.execute(SCHEMA)
        logger.info("Database schema ready")

    # ========================================================================
    # Token Operations
    # ========================================================================

    def get_token(self, user_id: str) -> Optional[TokenRecord]:
        with self.transaction() as conn:
            row = conn.execute("""
                SELECT user_id, access_token, refresh_token, expires_at
                FROM oauth_token
                WHERE user_id = %s
            """, (user_id,)).fetchone()
        return TokenRecord(**row) if row else None

    def save_token(self, record: TokenRecord) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT INTO oauth_token
                    (user_id, access_token, refresh_token, expires_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at = EXCLUDED.expires_at,
                    updated_at = EXCLUDED.updated_at
            """, (
                record.user_id,
                record.access_token,
                record.refresh_token,
                record.expires_at,
                datetime.now(timezone.utc),
            ))
        logger.debug(f"Saved token for user={record.user_id}")

    def list_token_users(self) -> list[str]:
        with self.transaction() as conn:
            rows = conn.execute("SELECT user_id FROM oauth_token ORDER BY user_id").fetchall()
        return [row["user_id"] for row in rows]

    # ========================================================================
    # Bill Operations
    # ========================================================================

    def upsert_bills(self, records: list[BillRecord], cap: Optional[int] = None) -> int:
        """Bulk upsert bills keyed by (user_id, provider_message_id).

        With a cap, each affected user is trimmed in the same transaction so
        a reader never sees the table above the cap.
        """
        if not records:
            return 0

        values = [
            (
                rec.user_id,
                rec.type.value,
                rec.amount,
                rec.issue_date,
                rec.confidence,
                rec.provider_message_id,
                rec.ingested_at,
            )
            for rec in records
        ]

        evicted = 0
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.executemany("""
                    INSERT INTO bill (
                        user_id, type, amount, issue_date, confidence,
                        provider_message_id, ingested_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, provider_message_id) DO UPDATE SET
                        type = EXCLUDED.type,
                        amount = EXCLUDED.amount,
                        issue_date = EXCLUDED.issue_date,
                        confidence = EXCLUDED.confidence,
                        ingested_at = EXCLUDED.ingested_at
                """, values)

            if cap is not None:
                for user_id in sorted({rec.user_id for rec in records}):
                    excess = self._count_bills(conn, user_id) - cap
                    evicted += self._delete_oldest(conn, user_id, excess)

        logger.info(f"Upserted {len(records)} bills, evicted {evicted}")
        return evicted

    def _count_bills(self, conn, user_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM bill WHERE user_id = %s", (user_id,)
        ).fetchone()
        return int(row["n"])

    def _delete_oldest(self, conn, user_id: str, count: int) -> int:
        if count <= 0:
            return 0
        cur = conn.execute("""
            DELETE FROM bill
            WHERE id IN (
                SELECT id FROM bill
                WHERE user_id = %s
                ORDER BY ingested_at ASC, id ASC
                LIMIT %s
            )
        """, (user_id, count))
        return cur.rowcount

    def count_bills(self, user_id: str) -> int:
        with self.transaction() as conn:
            return self._count_bills(conn, user_id)

    def delete_oldest_bills(self, user_id: str, count: int) -> int:
        if count <= 0:
            return 0
        with self.transaction() as conn:
            deleted = self._delete_oldest(conn, user_id, count)
        logger.info(f"Evicted {deleted} old bills for user={user_id}")
        return deleted

    def get_bills(self, user_id: str, since: Optional[datetime] = None) -> list[BillRecord]:
        with self.transaction() as conn:
            if since is None:
                rows = conn.execute(f"""
                    SELECT {BILL_COLUMNS}
                    FROM bill
                    WHERE user_id = %s
                    ORDER BY ingested_at DESC, id DESC
                """, (user_id,)).fetchall()
            else:
                rows = conn.execute(f"""
                    SELECT {BILL_COLUMNS}
                    FROM bill
                    WHERE user_id = %s AND ingested_at >= %s
                    ORDER BY ingested_at DESC, id DESC
                """, (user_id, since)).fetchall()
        return [BillRecord(**row) for row in rows]

    def delete_all_bills(self, user_id: str) -> int:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM bill WHERE user_id = %s", (user_id,))
            deleted = cur.rowcount
        logger.warning(f"Deleted {deleted} bills for user={user_id}")
        return deleted
