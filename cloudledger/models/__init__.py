"""
Data Models Package

This package contains all Pydantic models used in CloudLedger.
All data flowing between the remote store, the local cache and the
presentation layer must conform to these schemas.
"""

from cloudledger.models.transaction import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    EDITABLE_FIELDS,
    FALLBACK_CATEGORY,
    LedgerMember,
    LedgerMeta,
    MalformedDocumentError,
    ParsedTransaction,
    RemoteDocument,
    Transaction,
    TransactionChanges,
    TransactionDraft,
    TransactionKind,
    now_millis,
)
from cloudledger.models.sync import (
    MutationErrorKind,
    MutationOperation,
    MutationResult,
    MutationState,
    SyncMode,
    SyncResult,
)
from cloudledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "DEFAULT_EXPENSE_CATEGORIES",
    "DEFAULT_INCOME_CATEGORIES",
    "EDITABLE_FIELDS",
    "FALLBACK_CATEGORY",
    "LedgerMember",
    "LedgerMeta",
    "MalformedDocumentError",
    "ParsedTransaction",
    "RemoteDocument",
    "Transaction",
    "TransactionChanges",
    "TransactionDraft",
    "TransactionKind",
    "now_millis",
    # Sync models
    "MutationErrorKind",
    "MutationOperation",
    "MutationResult",
    "MutationState",
    "SyncMode",
    "SyncResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
