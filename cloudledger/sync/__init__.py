"""
Sync Package

The synchronization core: session state, the watermark-based sync engine
and the optimistic mutation coordinator.
"""

from cloudledger.sync.errors import (
    ConflictError,
    InvalidChangesError,
    MutationError,
    NoActiveLedgerError,
    RemoteRejectedError,
    SyncError,
    TransactionNotFoundError,
    UnauthorizedError,
    UnreachableError,
    mutation_error_for,
)
from cloudledger.sync.session import SyncSession, SyncTicket
from cloudledger.sync.engine import SyncEngine
from cloudledger.sync.coordinator import MutationCoordinator

__all__ = [
    # Errors
    "ConflictError",
    "InvalidChangesError",
    "MutationError",
    "NoActiveLedgerError",
    "RemoteRejectedError",
    "SyncError",
    "TransactionNotFoundError",
    "UnauthorizedError",
    "UnreachableError",
    "mutation_error_for",
    # Core
    "MutationCoordinator",
    "SyncEngine",
    "SyncSession",
    "SyncTicket",
]
