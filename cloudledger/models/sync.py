"""
Sync and Mutation Result Models

These are the values the sync engine and mutation coordinator hand back
to the presentation layer.

DESIGN DECISION: Mutations report failure as a MutationResult value, not
an exception. The UI always gets a message it can show, and a conflict is
distinguishable from a generic rejection by error_kind.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# SYNC
# =============================================================================

class SyncMode(str, Enum):
    """Which path a sync took."""
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncResult(BaseModel):
    """
    Outcome of one sync pass.

    change_count is the number of records upserted plus removed.
    A discarded result means the active ledger changed while the sync was
    in flight and nothing was written.
    """

    ledger_id: str
    mode: SyncMode
    completed_at: datetime = Field(default_factory=_utcnow)

    upserted: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)
    skipped: int = Field(
        default=0,
        ge=0,
        description="Malformed documents skipped"
    )

    watermark: Optional[int] = Field(
        default=None,
        description="Watermark persisted by this sync (None if discarded)"
    )
    discarded: bool = False

    @property
    def change_count(self) -> int:
        return self.upserted + self.removed


# =============================================================================
# MUTATIONS
# =============================================================================

class MutationOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MutationState(str, Enum):
    """
    Lifecycle of one mutation.

    PENDING -> COMMITTED -> RECONCILED, or PENDING -> ROLLED_BACK.
    """
    PENDING = "pending"          # Optimistic change applied locally
    COMMITTED = "committed"      # Remote write acknowledged
    RECONCILED = "reconciled"    # Follow-up sync observed the authoritative record
    ROLLED_BACK = "rolled_back"  # Remote write failed, local change reverted


class MutationErrorKind(str, Enum):
    """Why a mutation failed."""
    REMOTE_REJECTED = "remote_rejected"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_CHANGES = "invalid_changes"


class MutationResult(BaseModel):
    """
    Result of a create/update/delete intent.

    On success transaction_id is the permanent remote identity.
    On failure message is safe to show to the user.
    """

    operation: MutationOperation
    success: bool
    state: MutationState
    transaction_id: Optional[str] = None
    error_kind: Optional[MutationErrorKind] = None
    message: str = ""
    correlation_id: UUID = Field(default_factory=uuid4)

    @property
    def is_conflict(self) -> bool:
        return self.error_kind == MutationErrorKind.CONFLICT

    @classmethod
    def ok(
        cls,
        operation: MutationOperation,
        transaction_id: str,
        state: MutationState = MutationState.COMMITTED,
        correlation_id: Optional[UUID] = None,
    ) -> "MutationResult":
        return cls(
            operation=operation,
            success=True,
            state=state,
            transaction_id=transaction_id,
            correlation_id=correlation_id or uuid4(),
        )

    @classmethod
    def failed(
        cls,
        operation: MutationOperation,
        error_kind: MutationErrorKind,
        message: str,
        transaction_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> "MutationResult":
        return cls(
            operation=operation,
            success=False,
            state=MutationState.ROLLED_BACK,
            transaction_id=transaction_id,
            error_kind=error_kind,
            message=message,
            correlation_id=correlation_id or uuid4(),
        )

    def raise_for_error(self) -> None:
        """Raise the matching MutationError if this result is a failure."""
        if self.success:
            return
        # Imported here to keep models free of sync-package imports at load time
        from cloudledger.sync.errors import mutation_error_for

        raise mutation_error_for(self)
