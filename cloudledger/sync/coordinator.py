"""
Mutation Coordinator

Turns user intents (create, update, delete) into an optimistic local
change, a remote write, and a follow-up incremental sync.

Lifecycle of every mutation:
    PENDING      optimistic change visible in the cache
    COMMITTED    remote write acknowledged
    RECONCILED   follow-up sync has pulled the authoritative record
    ROLLED_BACK  remote write failed, optimistic change reverted

DESIGN DECISION: The coordinator never returns an exception to the UI.
Every intent yields a MutationResult carrying a message the user can be
shown; conflicts have their own error kind so the UI can offer a reload.

DESIGN DECISION: A created record is never given its permanent identity
locally. The optimistic entry (tmp- identity) is dropped once the remote
create succeeds, and the permanent record arrives through the follow-up
sync like any other member's write. The cache never holds two copies.
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar, Union
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from cloudledger.audit import AuditLogger, create_correlation_id
from cloudledger.cache.interface import LocalCache
from cloudledger.config import SyncSettings, get_settings
from cloudledger.models.sync import (
    MutationErrorKind,
    MutationOperation,
    MutationResult,
    MutationState,
)
from cloudledger.models.transaction import (
    MalformedDocumentError,
    RemoteDocument,
    Transaction,
    TransactionChanges,
    TransactionDraft,
)
from cloudledger.services.storage.interface import (
    DocumentNotFoundError,
    RemoteTransactionStore,
)
from cloudledger.sync.engine import REMOTE_FAILURES, SyncEngine
from cloudledger.sync.errors import SyncError
from cloudledger.sync.session import SyncSession


T = TypeVar("T")

logger = structlog.get_logger(__name__)


# User-facing messages
MESSAGE_REJECTED = "Could not save your change. It has been undone; please try again."
MESSAGE_CONFLICT = "This transaction was changed by someone else. Reload it and try again."
MESSAGE_NOT_FOUND = "This transaction no longer exists."
MESSAGE_PENDING = "This transaction is still being saved. Try again in a moment."
MESSAGE_INVALID = "Some of the changes can't be applied"


class MutationCoordinator:
    """
    Optimistic create/update/delete against the active ledger.

    Usage:
        coordinator = MutationCoordinator(store, cache, session, engine)
        result = await coordinator.create(draft)
        if not result.success:
            show(result.message)
    """

    def __init__(
        self,
        store: RemoteTransactionStore,
        cache: LocalCache,
        session: SyncSession,
        engine: SyncEngine,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._store = store
        self._cache = cache
        self._session = session
        self._engine = engine
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().sync
        self._reconciliations: set[asyncio.Task] = set()

    async def _remote(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._settings.remote_timeout_seconds)

    def _temporary_id(self) -> str:
        return f"{self._settings.temporary_id_prefix}{uuid4().hex}"

    def _is_temporary(self, transaction_id: str) -> bool:
        return transaction_id.startswith(self._settings.temporary_id_prefix)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, draft: TransactionDraft) -> MutationResult:
        """
        Add a transaction to the active ledger.

        The optimistic entry is visible immediately. On success the result
        carries the remote-assigned identity; on failure the entry is gone
        again and error_kind is REMOTE_REJECTED.

        Raises:
            NoActiveLedgerError: No ledger is selected
        """
        ledger_id = self._session.require_active()
        correlation_id = create_correlation_id()
        now = self._session.clock()

        optimistic = Transaction(
            id=self._temporary_id(),
            ledger_id=ledger_id,
            amount=draft.amount,
            kind=draft.kind,
            category=draft.category,
            description=draft.description,
            reward=draft.reward,
            tx_date=draft.tx_date,
            creator_id=self._session.member_id,
            target_member_id=draft.target_member_id,
            created_at=now,
            updated_at=now,
        )

        async with self._session.lock_for(ledger_id):
            self._cache.upsert(optimistic)
        await self._audit.log_optimistic_applied(
            ledger_id, MutationOperation.CREATE.value, optimistic.id, correlation_id
        )

        try:
            transaction_id = await self._remote(
                self._store.create(ledger_id, optimistic.to_remote())
            )
        except REMOTE_FAILURES as e:
            async with self._session.lock_for(ledger_id):
                self._cache.remove(ledger_id, optimistic.id)
            await self._audit.log_mutation_rolled_back(
                ledger_id, MutationOperation.CREATE.value, optimistic.id, str(e), correlation_id
            )
            return MutationResult.failed(
                MutationOperation.CREATE,
                MutationErrorKind.REMOTE_REJECTED,
                MESSAGE_REJECTED,
                correlation_id=correlation_id,
            )

        async with self._session.lock_for(ledger_id):
            self._cache.remove(ledger_id, optimistic.id)
        await self._audit.log_mutation_committed(
            ledger_id, MutationOperation.CREATE.value, transaction_id, correlation_id
        )

        state = await self._reconcile(ledger_id, correlation_id)
        return MutationResult.ok(
            MutationOperation.CREATE,
            transaction_id,
            state=state,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        transaction_id: str,
        changes: Union[TransactionChanges, dict[str, Any]],
        expected_updated_at: Optional[int] = None,
    ) -> MutationResult:
        """
        Edit a transaction.

        Args:
            transaction_id: Remote identity of the record
            changes: Editable fields to change (unknown fields are rejected)
            expected_updated_at: updated_at of the record when editing began.
                If the remote record has moved on, the update fails with
                CONFLICT and nothing is written. None skips the check.

        Raises:
            NoActiveLedgerError: No ledger is selected
        """
        ledger_id = self._session.require_active()
        correlation_id = create_correlation_id()
        operation = MutationOperation.UPDATE

        try:
            if not isinstance(changes, TransactionChanges):
                changes = TransactionChanges.model_validate(changes)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            return MutationResult.failed(
                operation,
                MutationErrorKind.INVALID_CHANGES,
                f"{MESSAGE_INVALID}: {', '.join(fields)}",
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        if self._is_temporary(transaction_id):
            return MutationResult.failed(
                operation,
                MutationErrorKind.NOT_FOUND,
                MESSAGE_PENDING,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        async with self._session.lock_for(ledger_id):
            snapshot = self._cache.get(ledger_id, transaction_id)
            optimistic = None
            if snapshot is not None:
                optimistic = changes.apply_to(
                    snapshot,
                    updated_at=max(self._session.clock(), snapshot.updated_at + 1),
                )
                self._cache.upsert(optimistic)
        if optimistic is not None:
            await self._audit.log_optimistic_applied(
                ledger_id, operation.value, transaction_id, correlation_id
            )

        try:
            remote = await self._remote(self._store.get(ledger_id, transaction_id))
            if remote is None or remote.data.get("deleted") is True:
                await self._drop_vanished(ledger_id, transaction_id)
                await self._audit.log_mutation_rolled_back(
                    ledger_id, operation.value, transaction_id, "not found", correlation_id
                )
                return MutationResult.failed(
                    operation,
                    MutationErrorKind.NOT_FOUND,
                    MESSAGE_NOT_FOUND,
                    transaction_id=transaction_id,
                    correlation_id=correlation_id,
                )

            remote_updated_at = _remote_version(remote, ledger_id)
            if expected_updated_at is not None and remote_updated_at != expected_updated_at:
                await self._rollback_update(ledger_id, snapshot, optimistic)
                await self._audit.log_mutation_conflict(
                    ledger_id,
                    transaction_id,
                    expected_updated_at,
                    remote_updated_at,
                    correlation_id,
                )
                return MutationResult.failed(
                    operation,
                    MutationErrorKind.CONFLICT,
                    MESSAGE_CONFLICT,
                    transaction_id=transaction_id,
                    correlation_id=correlation_id,
                )

            stamp = max(self._session.clock(), (remote_updated_at or 0) + 1)
            fields = changes.to_remote()
            fields["updatedAt"] = stamp
            await self._remote(self._store.update(ledger_id, transaction_id, fields))

        except REMOTE_FAILURES as e:
            await self._rollback_update(ledger_id, snapshot, optimistic)
            await self._audit.log_mutation_rolled_back(
                ledger_id, operation.value, transaction_id, str(e), correlation_id
            )
            not_found = isinstance(e, DocumentNotFoundError)
            return MutationResult.failed(
                operation,
                MutationErrorKind.NOT_FOUND if not_found else MutationErrorKind.REMOTE_REJECTED,
                MESSAGE_NOT_FOUND if not_found else MESSAGE_REJECTED,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        if optimistic is not None:
            # Mirror the remote stamp so a second edit before reconciliation
            # carries the right expected_updated_at.
            async with self._session.lock_for(ledger_id):
                if self._cache.get(ledger_id, transaction_id) == optimistic:
                    self._cache.upsert(optimistic.model_copy(update={"updated_at": stamp}))

        await self._audit.log_mutation_committed(
            ledger_id, operation.value, transaction_id, correlation_id
        )
        state = await self._reconcile(ledger_id, correlation_id)
        return MutationResult.ok(operation, transaction_id, state=state, correlation_id=correlation_id)

    async def _rollback_update(
        self,
        ledger_id: str,
        snapshot: Optional[Transaction],
        optimistic: Optional[Transaction],
    ) -> None:
        """
        Put the pre-edit record back, unless something newer replaced the
        optimistic version meanwhile. Always schedules a full resync.
        """
        if snapshot is not None and optimistic is not None:
            async with self._session.lock_for(ledger_id):
                if self._cache.get(ledger_id, snapshot.id) == optimistic:
                    self._cache.upsert(snapshot)
        self._session.request_full_resync(ledger_id)

    async def _drop_vanished(self, ledger_id: str, transaction_id: str) -> None:
        """The record is gone or tombstoned remotely; drop it locally too."""
        async with self._session.lock_for(ledger_id):
            self._cache.remove(ledger_id, transaction_id)
        self._session.request_full_resync(ledger_id)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, transaction_id: str) -> MutationResult:
        """
        Soft-delete a transaction.

        The record disappears from the cache immediately. The remote
        document is kept as a tombstone (deleted, deletedAt, updatedAt) so
        other members' incremental syncs see the deletion.

        The remote record is re-read first so the tombstone's updatedAt is
        past the remote version; a record already gone remotely is NOT_FOUND.

        Raises:
            NoActiveLedgerError: No ledger is selected
        """
        ledger_id = self._session.require_active()
        correlation_id = create_correlation_id()
        operation = MutationOperation.DELETE

        if self._is_temporary(transaction_id):
            return MutationResult.failed(
                operation,
                MutationErrorKind.NOT_FOUND,
                MESSAGE_PENDING,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        async with self._session.lock_for(ledger_id):
            snapshot = self._cache.get(ledger_id, transaction_id)
            self._cache.remove(ledger_id, transaction_id)
        await self._audit.log_optimistic_applied(
            ledger_id, operation.value, transaction_id, correlation_id
        )

        vanished_reason = None
        try:
            remote = await self._remote(self._store.get(ledger_id, transaction_id))
            if remote is None or remote.data.get("deleted") is True:
                vanished_reason = "not found"
            else:
                # Stamp past the remote version, not the cached one: the
                # cache may lag a member whose clock runs ahead of ours.
                previous = max(
                    _remote_version(remote, ledger_id) or 0,
                    snapshot.updated_at if snapshot is not None else 0,
                )
                stamp = max(self._session.clock(), previous + 1)
                fields = {
                    "deleted": True,
                    "deletedAt": stamp,
                    "updatedAt": stamp,
                }
                await self._remote(self._store.update(ledger_id, transaction_id, fields))
        except DocumentNotFoundError as e:
            vanished_reason = str(e)
        except REMOTE_FAILURES as e:
            if snapshot is not None:
                async with self._session.lock_for(ledger_id):
                    if self._cache.get(ledger_id, transaction_id) is None:
                        self._cache.upsert(snapshot)
            await self._audit.log_mutation_rolled_back(
                ledger_id, operation.value, transaction_id, str(e), correlation_id
            )
            return MutationResult.failed(
                operation,
                MutationErrorKind.REMOTE_REJECTED,
                MESSAGE_REJECTED,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        if vanished_reason is not None:
            # Nothing to restore: the record is gone remotely as well
            self._session.request_full_resync(ledger_id)
            await self._audit.log_mutation_rolled_back(
                ledger_id, operation.value, transaction_id, vanished_reason, correlation_id
            )
            return MutationResult.failed(
                operation,
                MutationErrorKind.NOT_FOUND,
                MESSAGE_NOT_FOUND,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )

        await self._audit.log_mutation_committed(
            ledger_id, operation.value, transaction_id, correlation_id
        )
        state = await self._reconcile(ledger_id, correlation_id)
        return MutationResult.ok(operation, transaction_id, state=state, correlation_id=correlation_id)

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def _reconcile(self, ledger_id: str, correlation_id: UUID) -> MutationState:
        """
        Run the follow-up incremental sync.

        In the background by default, in which case the mutation reports
        COMMITTED; awaited inline otherwise, reporting RECONCILED when the
        sync applied.
        """
        if self._settings.reconcile_in_background:
            task = asyncio.create_task(self._run_reconciliation(ledger_id, correlation_id))
            self._reconciliations.add(task)
            task.add_done_callback(self._reconciliations.discard)
            logger.debug(
                "reconciliation_scheduled",
                ledger_id=ledger_id,
                correlation_id=str(correlation_id),
                pending=len(self._reconciliations),
            )
            return MutationState.COMMITTED

        reconciled = await self._run_reconciliation(ledger_id, correlation_id)
        return MutationState.RECONCILED if reconciled else MutationState.COMMITTED

    async def _run_reconciliation(self, ledger_id: str, correlation_id: UUID) -> bool:
        try:
            result = await self._engine.sync(ledger_id)
        except SyncError as e:
            # The write already landed; the next sync will pick it up
            await self._audit.log_reconciliation_failed(ledger_id, str(e), correlation_id)
            return False
        except Exception as e:
            # Runs detached from the caller; nobody else would see this
            logger.exception("reconciliation_crashed", ledger_id=ledger_id)
            await self._audit.log_error(
                type(e).__name__,
                str(e),
                details={"ledger_id": ledger_id},
                correlation_id=correlation_id,
            )
            return False
        return not result.discarded

    async def wait_for_reconciliation(self) -> None:
        """Wait for every background reconciliation started so far."""
        while self._reconciliations:
            await asyncio.gather(*list(self._reconciliations))

    @property
    def pending_reconciliations(self) -> int:
        return len(self._reconciliations)


def _remote_version(document: RemoteDocument, ledger_id: str) -> Optional[int]:
    """updatedAt as the cache would hold it (createdAt when absent)."""
    try:
        return Transaction.from_remote(document, fallback_ledger_id=ledger_id).updated_at
    except MalformedDocumentError:
        return document.updated_at_hint
