"""
Sync Error Taxonomy

Store-level exceptions (StoreError and friends) never leave the sync
package: the engine translates them into SyncError subclasses, and the
mutation coordinator turns them into MutationResult values.

The MutationError classes exist for callers that prefer exceptions over
result values; see MutationResult.raise_for_error().
"""

import asyncio
from typing import Optional

from cloudledger.models.sync import MutationErrorKind, MutationResult
from cloudledger.services.storage.interface import (
    PermissionDeniedError,
    StoreError,
)


class SyncError(Exception):
    """Base exception for sync failures."""

    retryable: bool = False

    def __init__(self, message: str, ledger_id: Optional[str] = None):
        self.ledger_id = ledger_id
        super().__init__(message)


class UnreachableError(SyncError):
    """Remote store unreachable or timed out. The watermark was not advanced."""

    retryable = True


class UnauthorizedError(SyncError):
    """The member has no access to the ledger."""

    retryable = False


class NoActiveLedgerError(SyncError):
    """No ledger is selected, or a different ledger than the one requested."""

    retryable = False


def sync_error_from(error: BaseException, ledger_id: Optional[str] = None) -> SyncError:
    """Translate a store-level failure into a SyncError."""
    if isinstance(error, SyncError):
        return error
    if isinstance(error, PermissionDeniedError):
        return UnauthorizedError(f"Access to ledger denied: {error}", ledger_id)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return UnreachableError("Remote store timed out", ledger_id)
    if isinstance(error, StoreError):
        return UnreachableError(f"Remote store unavailable: {error}", ledger_id)
    return UnreachableError(f"Unexpected remote failure: {error}", ledger_id)


# =============================================================================
# MUTATION ERRORS
# =============================================================================

class MutationError(Exception):
    """A create/update/delete intent failed."""

    def __init__(self, result: MutationResult):
        self.result = result
        super().__init__(result.message)


class RemoteRejectedError(MutationError):
    """The remote write failed; the optimistic change was reverted."""
    pass


class ConflictError(MutationError):
    """The record was modified elsewhere since the edit began."""
    pass


class TransactionNotFoundError(MutationError):
    """The record to update no longer exists remotely."""
    pass


class InvalidChangesError(MutationError):
    """The requested changes touch fields that cannot be edited."""
    pass


_ERRORS_BY_KIND = {
    MutationErrorKind.REMOTE_REJECTED: RemoteRejectedError,
    MutationErrorKind.CONFLICT: ConflictError,
    MutationErrorKind.NOT_FOUND: TransactionNotFoundError,
    MutationErrorKind.INVALID_CHANGES: InvalidChangesError,
}


def mutation_error_for(result: MutationResult) -> MutationError:
    """Build the exception matching a failed MutationResult."""
    error_class = _ERRORS_BY_KIND.get(result.error_kind, MutationError)
    return error_class(result)
