"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the remote
transaction store and the audit log.
Google Sheets is the production backend; the in-memory store backs the
tests and demo mode.
"""

from cloudledger.services.storage.interface import (
    AuditStorageInterface,
    DocumentNotFoundError,
    PermissionDeniedError,
    RemoteTransactionStore,
    StoreError,
    UnreachableStoreError,
)
from cloudledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
)
from cloudledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryTransactionStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RemoteTransactionStore",
    # Exceptions
    "DocumentNotFoundError",
    "PermissionDeniedError",
    "StoreError",
    "UnreachableStoreError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStore",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryTransactionStore",
]
