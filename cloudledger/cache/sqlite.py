"""
SQLite-backed local cache.

Survives process restarts, so a relaunched client can show the last
known ledger before the first sync completes, and later resyncs resume
from the persisted watermark.

Records are stored as their pydantic JSON; the (ledger_id, id) pair is
the primary key. One connection per cache, guarded by a threading lock
so the cache may also be touched from worker threads.

Usage:
    cache = SqliteLocalCache("~/.cloudledger/cache.sqlite3")
    cache.upsert(transaction)
    cache.set_watermark("ledger-1", 1700000000000)
    cache.close()
"""

import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

import structlog

from cloudledger.cache.interface import LocalCache, ensure_not_tombstone
from cloudledger.models.transaction import LedgerMeta, Transaction


logger = structlog.get_logger(__name__)


class SqliteLocalCache(LocalCache):
    """Durable cache in a single SQLite file."""

    def __init__(self, db_path: Union[str, Path] = ".cloudledger/cache.sqlite3"):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")  # Better concurrent access
        self._create_tables()
        logger.info("sqlite_cache_opened", path=str(self.db_path))

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS transactions (
                ledger_id TEXT NOT NULL,
                id TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                payload TEXT NOT NULL,
                PRIMARY KEY (ledger_id, id)
            );

            CREATE TABLE IF NOT EXISTS watermarks (
                ledger_id TEXT PRIMARY KEY,
                last_synced_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ledger_meta (
                ledger_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL
            );
        """)
        self._conn.commit()

    # -- records -------------------------------------------------------------

    def upsert(self, record: Transaction) -> None:
        ensure_not_tombstone(record)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO transactions (ledger_id, id, updated_at, payload) "
                "VALUES (?, ?, ?, ?)",
                (record.ledger_id, record.id, record.updated_at, record.model_dump_json()),
            )

    def remove(self, ledger_id: str, transaction_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM transactions WHERE ledger_id = ? AND id = ?",
                (ledger_id, transaction_id),
            )
        return cursor.rowcount > 0

    def replace_all(self, ledger_id: str, records: Iterable[Transaction]) -> None:
        rows = []
        for record in records:
            ensure_not_tombstone(record)
            rows.append((ledger_id, record.id, record.updated_at, record.model_dump_json()))

        # The connection context manager commits both statements together
        # or rolls both back.
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM transactions WHERE ledger_id = ?", (ledger_id,))
            self._conn.executemany(
                "INSERT OR REPLACE INTO transactions (ledger_id, id, updated_at, payload) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )
        logger.debug("sqlite_cache_partition_replaced", ledger_id=ledger_id, count=len(rows))

    def query(self, ledger_id: str) -> list[Transaction]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT payload FROM transactions WHERE ledger_id = ?",
                (ledger_id,),
            )
            rows = cursor.fetchall()
        return [Transaction.model_validate_json(row[0]) for row in rows]

    def get(self, ledger_id: str, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT payload FROM transactions WHERE ledger_id = ? AND id = ?",
                (ledger_id, transaction_id),
            )
            row = cursor.fetchone()
        return Transaction.model_validate_json(row[0]) if row else None

    # -- watermark -----------------------------------------------------------

    def get_watermark(self, ledger_id: str) -> Optional[int]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT last_synced_at FROM watermarks WHERE ledger_id = ?",
                (ledger_id,),
            )
            row = cursor.fetchone()
        return row[0] if row else None

    def set_watermark(self, ledger_id: str, value: int) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO watermarks (ledger_id, last_synced_at) VALUES (?, ?)",
                (ledger_id, value),
            )

    # -- ledger metadata -----------------------------------------------------

    def get_ledger_meta(self, ledger_id: str) -> Optional[LedgerMeta]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT payload FROM ledger_meta WHERE ledger_id = ?",
                (ledger_id,),
            )
            row = cursor.fetchone()
        return LedgerMeta.model_validate_json(row[0]) if row else None

    def set_ledger_meta(self, ledger_id: str, meta: LedgerMeta) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO ledger_meta (ledger_id, payload) VALUES (?, ?)",
                (ledger_id, meta.model_dump_json()),
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
        logger.info("sqlite_cache_closed", path=str(self.db_path))
