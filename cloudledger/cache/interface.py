"""
Abstract Local Cache Interface

The local cache holds the active ledger's non-deleted transactions, one
watermark per ledger and the last-read ledger metadata.

DESIGN DECISION: The cache is synchronous. Every implementation is
process-local (a dict or a SQLite file), and the sync engine serializes
all writes for a ledger through the session lock, so there is nothing to
await.

INVARIANT: the cache never holds a tombstone. Implementations refuse
records with deleted=True instead of silently dropping them.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from cloudledger.models.transaction import LedgerMeta, Transaction


class TombstoneRejectedError(ValueError):
    """A tombstoned record was offered to the cache."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Refusing to cache tombstoned transaction {transaction_id}")


class LocalCache(ABC):
    """Keyed store of transaction records, partitioned by ledger."""

    @abstractmethod
    def upsert(self, record: Transaction) -> None:
        """
        Insert or replace a record by (ledger_id, id).

        Raises:
            TombstoneRejectedError: If record.deleted is True
        """
        pass

    @abstractmethod
    def remove(self, ledger_id: str, transaction_id: str) -> bool:
        """
        Delete a record if present.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    def replace_all(self, ledger_id: str, records: Iterable[Transaction]) -> None:
        """
        Clear one ledger's partition and load `records` into it.

        All-or-nothing: if any record is rejected, the partition is left
        as it was.
        """
        pass

    @abstractmethod
    def query(self, ledger_id: str) -> list[Transaction]:
        """All cached records of a ledger (order is implementation-defined)."""
        pass

    @abstractmethod
    def get(self, ledger_id: str, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def get_watermark(self, ledger_id: str) -> Optional[int]:
        """The persisted lastSyncedAt for a ledger, or None if never synced."""
        pass

    @abstractmethod
    def set_watermark(self, ledger_id: str, value: int) -> None:
        pass

    @abstractmethod
    def get_ledger_meta(self, ledger_id: str) -> Optional[LedgerMeta]:
        pass

    @abstractmethod
    def set_ledger_meta(self, ledger_id: str, meta: LedgerMeta) -> None:
        pass

    def close(self) -> None:
        """Release resources. No-op by default."""
        pass


def ensure_not_tombstone(record: Transaction) -> None:
    if record.deleted:
        raise TombstoneRejectedError(record.id)
