"""
Main Orchestrator for CloudLedger

This module ties together all the components and defines the
flows the presentation layer drives:
1. Open a ledger (switch -> metadata -> full resync)
2. Resync on demand (pull-to-refresh, app focus)
3. Add / edit / delete through the mutation coordinator
4. Free text -> AI draft -> add

DESIGN DECISION: The orchestrator enforces the boundaries:
- The presentation layer never touches the remote store directly
- AI output is a draft; it is saved only through create()
- Every step is audited

Errors from opening a ledger and from an explicit resync propagate to the
caller; failures of the background reconciliation after a mutation do not.
"""

from datetime import date
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from cloudledger.agents import GeminiTransactionParser, ParsingError, TransactionParser
from cloudledger.audit import AuditLogger
from cloudledger.cache import InMemoryLocalCache, LocalCache, SqliteLocalCache
from cloudledger.config import CacheBackend, Settings, get_settings
from cloudledger.models.sync import MutationResult, SyncResult
from cloudledger.models.transaction import (
    LedgerMeta,
    ParsedTransaction,
    Transaction,
    TransactionChanges,
    TransactionDraft,
)
from cloudledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStore,
    InMemoryTransactionStore,
    RemoteTransactionStore,
)
from cloudledger.sync import MutationCoordinator, SyncEngine, SyncSession


logger = structlog.get_logger(__name__)


class LedgerSyncFlow:
    """
    Single entry point for the presentation layer.

    Flow:
    1. open_ledger() -> the cache partition is loaded in full
    2. transactions() -> what to render
    3. add()/edit()/remove() -> optimistic change, remote write, reconcile
    4. resync() -> incremental catch-up (or full, when forced)
    """

    def __init__(
        self,
        session: SyncSession,
        cache: LocalCache,
        engine: SyncEngine,
        coordinator: MutationCoordinator,
        parser: Optional[TransactionParser] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._session = session
        self._cache = cache
        self._engine = engine
        self._coordinator = coordinator
        self._parser = parser
        self._audit_logger = audit_logger or AuditLogger()

    @property
    def session(self) -> SyncSession:
        return self._session

    @property
    def coordinator(self) -> MutationCoordinator:
        return self._coordinator

    # =========================================================================
    # SYNC
    # =========================================================================

    async def open_ledger(self, ledger_id: str) -> SyncResult:
        """
        Make a ledger active and load it.

        Any sync still in flight for the previous ledger is discarded when
        it completes.

        Raises:
            SyncError: If metadata or transactions could not be loaded
        """
        previous = self._session.switch_ledger(ledger_id)
        await self._audit_logger.log_ledger_switched(previous, ledger_id)

        await self._engine.sync_ledger_meta(ledger_id)
        return await self._engine.sync(ledger_id, force_full=True)

    async def resync(self, force_full: bool = False) -> SyncResult:
        """
        Explicit user resync of the active ledger.

        Raises:
            NoActiveLedgerError: No ledger is open
            SyncError: If the remote store could not be read
        """
        await self._engine.sync_ledger_meta()
        return await self._engine.sync(force_full=force_full)

    def transactions(self) -> list[Transaction]:
        """Cached transactions of the active ledger, newest date first."""
        ledger_id = self._session.require_active()
        records = self._cache.query(ledger_id)
        records.sort(key=lambda t: (t.tx_date, t.created_at), reverse=True)
        return records

    def ledger_meta(self) -> LedgerMeta:
        """Cached metadata of the active ledger (defaults until first load)."""
        ledger_id = self._session.require_active()
        return self._cache.get_ledger_meta(ledger_id) or LedgerMeta()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def add(self, draft: TransactionDraft) -> MutationResult:
        return await self._coordinator.create(draft)

    async def edit(
        self,
        transaction_id: str,
        changes: Union[TransactionChanges, dict[str, Any]],
        expected_updated_at: Optional[int] = None,
    ) -> MutationResult:
        return await self._coordinator.update(transaction_id, changes, expected_updated_at)

    async def remove(self, transaction_id: str) -> MutationResult:
        return await self._coordinator.delete(transaction_id)

    # =========================================================================
    # AI DRAFTS
    # =========================================================================

    async def parse_draft(
        self,
        text: str,
        today: Optional[date] = None,
    ) -> tuple[ParsedTransaction, TransactionDraft]:
        """
        Turn free text into a draft for the user to review.

        Nothing is saved.

        Raises:
            ParsingError: If no parser is configured or the text can't be parsed
        """
        if self._parser is None:
            raise ParsingError("AI parsing is not configured")

        meta = self.ledger_meta()
        parsed = await self._parser.parse(text, meta.all_categories, today)
        try:
            draft = parsed.to_draft(default_date=today or date.today())
        except ValidationError as e:
            raise ParsingError(f"Parsed transaction is incomplete: {e}") from e
        return parsed, draft

    async def parse_and_add(
        self,
        text: str,
        today: Optional[date] = None,
    ) -> tuple[ParsedTransaction, MutationResult]:
        """Parse free text and save the result as a new transaction."""
        parsed, draft = await self.parse_draft(text, today)
        result = await self._coordinator.create(draft)
        return parsed, result

    async def close(self) -> None:
        """Let background reconciliation finish, then release the cache."""
        await self._coordinator.wait_for_reconciliation()
        self._cache.close()


def create_sync_components(
    settings: Optional[Settings] = None,
    store: Optional[RemoteTransactionStore] = None,
    cache: Optional[LocalCache] = None,
    parser: Optional[TransactionParser] = None,
) -> LedgerSyncFlow:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (environment if omitted)
        store: Remote store override. Otherwise Google Sheets when
               AppSettings.use_remote_store is set and configured,
               in-memory (demo mode) when not.
        cache: Local cache override. Otherwise per CacheSettings.
        parser: AI parser override. Otherwise Gemini when configured.

    Returns:
        A LedgerSyncFlow wired to one shared SyncSession
    """
    settings = settings or get_settings()
    app_settings = settings.app
    sync_settings = settings.sync
    audit_logger = None

    if store is None and app_settings.use_remote_store:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            store = GoogleSheetsTransactionStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except ValidationError as e:
            # Remote store not configured - continue in demo mode
            logger.warning("remote_store_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryTransactionStore()
    if audit_logger is None:
        audit_logger = AuditLogger()  # Local-only logging

    if cache is None:
        cache_settings = settings.cache
        if cache_settings.backend == CacheBackend.SQLITE:
            cache = SqliteLocalCache(cache_settings.resolved_path)
        else:
            cache = InMemoryLocalCache()

    if parser is None:
        try:
            parser = GeminiTransactionParser(settings.gemini, audit_logger=audit_logger)
        except ValidationError as e:
            logger.info("ai_parser_not_configured", error=str(e))
            parser = None

    session = SyncSession(member_id=app_settings.member_id)
    engine = SyncEngine(store, cache, session, audit_logger, sync_settings)
    coordinator = MutationCoordinator(store, cache, session, engine, audit_logger, sync_settings)

    return LedgerSyncFlow(
        session=session,
        cache=cache,
        engine=engine,
        coordinator=coordinator,
        parser=parser,
        audit_logger=audit_logger,
    )
