"""
Abstract Remote Store Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Run the sync core against Google Sheets today
2. Swap in a document database later
3. Use in-memory storage for testing and demo mode

The interface is intentionally small: exactly the queries and writes the
sync engine and mutation coordinator need, nothing more. Documents come
back untyped (RemoteDocument); parsing is the caller's job.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from cloudledger.models.audit import AuditEvent
from cloudledger.models.transaction import RemoteDocument


class RemoteTransactionStore(ABC):
    """
    Abstract interface for the per-ledger transaction collection.

    Every document carries an `updatedAt` watermark (epoch ms).
    Deletions are soft: `deleted=True` plus `deletedAt`/`updatedAt`.
    Implementations must never hard-delete a transaction document.
    """

    @abstractmethod
    async def list_recent(
        self,
        ledger_id: str,
        limit: int,
    ) -> list[RemoteDocument]:
        """
        List non-deleted transactions, newest `date` first.

        Args:
            ledger_id: Ledger to read
            limit: Maximum number of documents

        Raises:
            StoreError: If the query fails
        """
        pass

    @abstractmethod
    async def list_changed_since(
        self,
        ledger_id: str,
        since: int,
    ) -> list[RemoteDocument]:
        """
        List every document (tombstones included) with updatedAt > since.

        Ordered by updatedAt ascending, so a capped page always covers a
        contiguous range starting right after `since`.

        Raises:
            StoreError: If the query fails
        """
        pass

    @abstractmethod
    async def get(
        self,
        ledger_id: str,
        transaction_id: str,
    ) -> Optional[RemoteDocument]:
        """
        Read one document, tombstoned or not.

        Returns:
            The document if it exists, None otherwise
        """
        pass

    @abstractmethod
    async def create(
        self,
        ledger_id: str,
        data: dict[str, Any],
    ) -> str:
        """
        Create a document. The store assigns the identity.

        Returns:
            The new document's identity

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        ledger_id: str,
        transaction_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Merge `fields` into an existing document (all-or-nothing).

        Soft-deletes go through here too.

        Raises:
            DocumentNotFoundError: If the document doesn't exist
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def get_ledger(
        self,
        ledger_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Read the ledger document (categories, members).

        Returns:
            Raw ledger fields, or None if the ledger has no document
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one mutation).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StoreError(Exception):
    """Base exception for remote store operations."""
    pass


class UnreachableStoreError(StoreError):
    """Could not reach the remote store. Safe to retry."""
    pass


class PermissionDeniedError(StoreError):
    """Caller has no access to the ledger."""
    pass


class DocumentNotFoundError(StoreError):
    """Document not found in the remote store."""
    pass
