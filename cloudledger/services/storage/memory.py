"""
In-Memory Remote Store

Holds ledgers and their transaction documents in plain dicts. Used by the
test suite and by demo mode (AppSettings.use_remote_store=False).

Queries follow the same ordering contract as the real backend, and
documents are copied on the way in and out so callers can never mutate
"remote" state behind the store's back.
"""

import copy
import math
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from cloudledger.models.audit import AuditEvent
from cloudledger.models.transaction import RemoteDocument
from cloudledger.services.storage.interface import (
    AuditStorageInterface,
    DocumentNotFoundError,
    RemoteTransactionStore,
)


class InMemoryTransactionStore(RemoteTransactionStore):
    """In-memory implementation of the remote transaction store."""

    def __init__(self, id_factory: Optional[Callable[[], str]] = None):
        self._ledgers: dict[str, dict[str, Any]] = {}
        self._documents: dict[str, dict[str, dict[str, Any]]] = {}
        self._id_factory = id_factory or (lambda: uuid4().hex)

    # -- test/demo helpers ---------------------------------------------------

    def put_document(self, ledger_id: str, document_id: str, data: dict[str, Any]) -> None:
        """Write a document as-is, as another client (or the backend) would."""
        self._documents.setdefault(ledger_id, {})[document_id] = copy.deepcopy(data)

    def put_ledger(self, ledger_id: str, data: dict[str, Any]) -> None:
        self._ledgers[ledger_id] = copy.deepcopy(data)

    def document_data(self, ledger_id: str, document_id: str) -> Optional[dict[str, Any]]:
        data = self._documents.get(ledger_id, {}).get(document_id)
        return copy.deepcopy(data) if data is not None else None

    def purge(self, ledger_id: str, document_id: str) -> None:
        """Physically remove a document (out-of-band tombstone purge)."""
        self._documents.get(ledger_id, {}).pop(document_id, None)

    # -- RemoteTransactionStore ----------------------------------------------

    async def list_recent(self, ledger_id: str, limit: int) -> list[RemoteDocument]:
        docs = [
            (doc_id, data)
            for doc_id, data in self._documents.get(ledger_id, {}).items()
            if data.get("deleted") is not True
        ]
        docs.sort(key=lambda item: str(item[1].get("date") or ""), reverse=True)
        return [self._to_document(doc_id, data) for doc_id, data in docs[:limit]]

    async def list_changed_since(self, ledger_id: str, since: int) -> list[RemoteDocument]:
        docs = [
            (doc_id, data)
            for doc_id, data in self._documents.get(ledger_id, {}).items()
            if _updated_at(data) > since
        ]
        docs.sort(key=lambda item: _updated_at(item[1]))
        return [self._to_document(doc_id, data) for doc_id, data in docs]

    async def get(self, ledger_id: str, transaction_id: str) -> Optional[RemoteDocument]:
        data = self._documents.get(ledger_id, {}).get(transaction_id)
        if data is None:
            return None
        return self._to_document(transaction_id, data)

    async def create(self, ledger_id: str, data: dict[str, Any]) -> str:
        document_id = self._id_factory()
        self.put_document(ledger_id, document_id, data)
        return document_id

    async def update(
        self,
        ledger_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        documents = self._documents.get(ledger_id, {})
        if transaction_id not in documents:
            raise DocumentNotFoundError(f"Transaction not found: {transaction_id}")
        documents[transaction_id].update(copy.deepcopy(fields))

    async def get_ledger(self, ledger_id: str) -> Optional[dict[str, Any]]:
        data = self._ledgers.get(ledger_id)
        return copy.deepcopy(data) if data is not None else None

    @staticmethod
    def _to_document(document_id: str, data: dict[str, Any]) -> RemoteDocument:
        return RemoteDocument(id=document_id, data=copy.deepcopy(data))


class InMemoryAuditStorage(AuditStorageInterface):
    """Keeps audit events in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


def _updated_at(data: dict[str, Any]) -> int:
    value = data.get("updatedAt")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return int(value)
