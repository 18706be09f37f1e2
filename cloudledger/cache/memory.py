"""In-memory local cache, used by tests and by CACHE_BACKEND=memory."""

from typing import Iterable, Optional

from cloudledger.cache.interface import LocalCache, ensure_not_tombstone
from cloudledger.models.transaction import LedgerMeta, Transaction


class InMemoryLocalCache(LocalCache):
    """Dict-backed cache. Contents are lost when the process exits."""

    def __init__(self):
        self._records: dict[str, dict[str, Transaction]] = {}
        self._watermarks: dict[str, int] = {}
        self._meta: dict[str, LedgerMeta] = {}

    def upsert(self, record: Transaction) -> None:
        ensure_not_tombstone(record)
        self._records.setdefault(record.ledger_id, {})[record.id] = record.model_copy()

    def remove(self, ledger_id: str, transaction_id: str) -> bool:
        return self._records.get(ledger_id, {}).pop(transaction_id, None) is not None

    def replace_all(self, ledger_id: str, records: Iterable[Transaction]) -> None:
        partition = {}
        for record in records:
            ensure_not_tombstone(record)
            partition[record.id] = record.model_copy()
        self._records[ledger_id] = partition

    def query(self, ledger_id: str) -> list[Transaction]:
        return [r.model_copy() for r in self._records.get(ledger_id, {}).values()]

    def get(self, ledger_id: str, transaction_id: str) -> Optional[Transaction]:
        record = self._records.get(ledger_id, {}).get(transaction_id)
        return record.model_copy() if record is not None else None

    def get_watermark(self, ledger_id: str) -> Optional[int]:
        return self._watermarks.get(ledger_id)

    def set_watermark(self, ledger_id: str, value: int) -> None:
        self._watermarks[ledger_id] = value

    def get_ledger_meta(self, ledger_id: str) -> Optional[LedgerMeta]:
        meta = self._meta.get(ledger_id)
        return meta.model_copy(deep=True) if meta is not None else None

    def set_ledger_meta(self, ledger_id: str, meta: LedgerMeta) -> None:
        self._meta[ledger_id] = meta.model_copy(deep=True)
