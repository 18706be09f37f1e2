"""
Sync Engine

Brings one ledger's cache partition up to date with the remote store.

Two paths:
- FULL: no watermark yet (or forced, or requested after a failed edit).
  Fetch the most recent non-deleted records by date, replace the whole
  partition, set the watermark to the highest updatedAt seen.
- INCREMENTAL: fetch every record (tombstones included) with
  updatedAt > watermark, oldest change first. Tombstones are removed by
  identity, everything else is upserted. Merging the same page twice
  leaves the cache unchanged.

DESIGN DECISION: Fetch outside the lock, apply inside it. The network
round trip never blocks optimistic writes, and the ticket check happens
under the same lock as the apply, so a ledger switch can never race a
write into the wrong partition.

FAILURE MODEL: If the fetch fails, nothing is written and the watermark
stays where it was; the next sync sees the same changes again.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

import structlog

from cloudledger.audit import AuditLogger
from cloudledger.cache.interface import LocalCache
from cloudledger.config import SyncSettings, get_settings
from cloudledger.models.sync import SyncMode, SyncResult
from cloudledger.models.transaction import (
    LedgerMeta,
    MalformedDocumentError,
    RemoteDocument,
    Transaction,
)
from cloudledger.services.storage.interface import RemoteTransactionStore, StoreError
from cloudledger.sync.errors import sync_error_from
from cloudledger.sync.session import SyncSession, SyncTicket


T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Anything a remote call can fail with that should surface as a SyncError
REMOTE_FAILURES = (StoreError, asyncio.TimeoutError, TimeoutError, OSError)


class SyncEngine:
    """
    Watermark-based sync of one ledger at a time.

    Usage:
        engine = SyncEngine(store, cache, session)
        result = await engine.sync()            # incremental when possible
        result = await engine.sync(force_full=True)
    """

    def __init__(
        self,
        store: RemoteTransactionStore,
        cache: LocalCache,
        session: SyncSession,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._store = store
        self._cache = cache
        self._session = session
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().sync

    async def _remote(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._settings.remote_timeout_seconds)

    async def sync(
        self,
        ledger_id: Optional[str] = None,
        force_full: bool = False,
    ) -> SyncResult:
        """
        Sync the active ledger.

        Args:
            ledger_id: Must be the active ledger if given
            force_full: Take the full path even when a watermark exists

        Returns:
            SyncResult; `discarded` is set when the ledger was switched
            while the fetch was in flight

        Raises:
            NoActiveLedgerError: No ledger is selected
            UnreachableError: Remote store unreachable or timed out (retryable)
            UnauthorizedError: No access to the ledger
        """
        ticket = self._session.ticket(ledger_id)
        ledger_id = ticket.ledger_id

        watermark = self._cache.get_watermark(ledger_id)
        full = force_full or not watermark or self._session.needs_full_resync(ledger_id)
        mode = SyncMode.FULL if full else SyncMode.INCREMENTAL

        await self._audit.log_sync_started(ledger_id, mode.value, watermark)

        try:
            if full:
                documents = await self._remote(
                    self._store.list_recent(ledger_id, self._settings.full_resync_page_size)
                )
            else:
                documents = await self._remote(
                    self._store.list_changed_since(ledger_id, watermark)
                )
        except REMOTE_FAILURES as e:
            error = sync_error_from(e, ledger_id)
            await self._audit.log_sync_failed(ledger_id, mode.value, error, error.retryable)
            raise error from e

        records, malformed, max_updated_at = self._parse(ledger_id, documents)

        async with self._session.lock_for(ledger_id):
            if not self._session.is_current(ticket):
                result = SyncResult(ledger_id=ledger_id, mode=mode, discarded=True)
            elif full:
                result = self._apply_full(ticket, records, max_updated_at, len(malformed))
            else:
                result = self._apply_incremental(
                    ticket, watermark, records, max_updated_at, len(malformed)
                )

        for document_id, reason in malformed:
            await self._audit.log_malformed_document(ledger_id, document_id, reason)

        if result.discarded:
            await self._audit.log_sync_discarded(ledger_id, self._session.active_ledger_id)
        else:
            await self._audit.log_sync_completed(
                ledger_id=ledger_id,
                mode=mode.value,
                change_count=result.change_count,
                watermark=result.watermark,
                skipped=result.skipped,
            )
        return result

    def _parse(
        self,
        ledger_id: str,
        documents: list[RemoteDocument],
    ) -> tuple[list[Transaction], list[tuple[str, str]], Optional[int]]:
        """
        Deserialize a page of documents.

        Returns the valid records, (document_id, reason) for each malformed
        one, and the highest readable updatedAt across the whole page,
        malformed documents included.
        """
        records = []
        malformed = []
        max_updated_at = None

        for document in documents:
            try:
                record = Transaction.from_remote(document, fallback_ledger_id=ledger_id)
                updated_at = record.updated_at
            except MalformedDocumentError as e:
                malformed.append((document.id, e.reason))
                updated_at = document.updated_at_hint
            else:
                records.append(record)

            if updated_at is not None and (max_updated_at is None or updated_at > max_updated_at):
                max_updated_at = updated_at

        return records, malformed, max_updated_at

    def _persist_watermark(self, ledger_id: str, candidate: int) -> int:
        """Write max(previous, candidate); the watermark never moves backwards."""
        previous = self._cache.get_watermark(ledger_id) or 0
        value = max(previous, candidate)
        self._cache.set_watermark(ledger_id, value)
        return value

    def _apply_full(
        self,
        ticket: SyncTicket,
        records: list[Transaction],
        max_updated_at: Optional[int],
        skipped: int = 0,
    ) -> SyncResult:
        ledger_id = ticket.ledger_id
        live = [record for record in records if not record.deleted]

        self._cache.replace_all(ledger_id, live)
        candidate = max_updated_at if max_updated_at is not None else self._session.clock()
        watermark = self._persist_watermark(ledger_id, candidate)
        self._session.clear_full_resync(ledger_id)

        logger.debug("full_sync_applied", ledger_id=ledger_id, loaded=len(live), watermark=watermark)
        return SyncResult(
            ledger_id=ledger_id,
            mode=SyncMode.FULL,
            upserted=len(live),
            skipped=skipped,
            watermark=watermark,
        )

    def _apply_incremental(
        self,
        ticket: SyncTicket,
        previous_watermark: int,
        records: list[Transaction],
        max_updated_at: Optional[int],
        skipped: int = 0,
    ) -> SyncResult:
        ledger_id = ticket.ledger_id
        upserted = 0
        removed = 0

        for record in records:
            if record.deleted:
                # Tombstones count as changes whether or not we held the record
                self._cache.remove(ledger_id, record.id)
                removed += 1
            else:
                self._cache.upsert(record)
                upserted += 1

        if not records and not skipped:
            # Zero-row page: advance to "now". A document written by a client
            # whose clock lags ours can be missed until the next full resync.
            candidate = self._session.clock()
        else:
            candidate = max(previous_watermark, max_updated_at or 0)
        watermark = self._persist_watermark(ledger_id, candidate)

        logger.debug(
            "incremental_sync_applied",
            ledger_id=ledger_id,
            upserted=upserted,
            removed=removed,
            skipped=skipped,
            watermark=watermark,
        )
        return SyncResult(
            ledger_id=ledger_id,
            mode=SyncMode.INCREMENTAL,
            upserted=upserted,
            removed=removed,
            skipped=skipped,
            watermark=watermark,
        )

    async def sync_ledger_meta(self, ledger_id: Optional[str] = None) -> LedgerMeta:
        """
        Replace the cached ledger metadata with the remote ledger document.

        A ledger with no document gets the default category lists.

        Raises:
            NoActiveLedgerError, UnreachableError, UnauthorizedError
        """
        ticket = self._session.ticket(ledger_id)
        ledger_id = ticket.ledger_id

        try:
            data = await self._remote(self._store.get_ledger(ledger_id))
        except REMOTE_FAILURES as e:
            error = sync_error_from(e, ledger_id)
            await self._audit.log_sync_failed(ledger_id, "ledger_meta", error, error.retryable)
            raise error from e

        meta = LedgerMeta.from_remote(data)

        async with self._session.lock_for(ledger_id):
            if self._session.is_current(ticket):
                self._cache.set_ledger_meta(ledger_id, meta)

        await self._audit.log_ledger_meta_synced(
            ledger_id=ledger_id,
            member_count=len(meta.members),
            category_count=len(meta.all_categories),
        )
        return meta
