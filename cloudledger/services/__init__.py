"""Services package."""

from cloudledger.services.storage import (
    AuditStorageInterface,
    DocumentNotFoundError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
    InMemoryAuditStorage,
    InMemoryTransactionStore,
    PermissionDeniedError,
    RemoteTransactionStore,
    StoreError,
    UnreachableStoreError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "DocumentNotFoundError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsTransactionStore",
    "InMemoryAuditStorage",
    "InMemoryTransactionStore",
    "PermissionDeniedError",
    "RemoteTransactionStore",
    "StoreError",
    "UnreachableStoreError",
]
