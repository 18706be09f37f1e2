"""
Audit Logger

DESIGN DECISION: Every sync pass and every mutation step is logged.
This provides:
1. Traceability of what the cache pulled and pushed
2. Debugging capability when the cache and the remote store diverge
3. A record of the rollbacks and conflicts the user was shown

The audit logger:
- Is async so persisting to the remote audit sheet does not block the caller's flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace the steps of one mutation
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from cloudledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from cloudledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit storage backend, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("cloudledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -- sync engine ---------------------------------------------------------

    async def log_sync_started(
        self,
        ledger_id: str,
        mode: str,
        watermark: Optional[int],
    ) -> None:
        await self.log(AuditEventBuilder.sync_started(ledger_id, mode, watermark))

    async def log_sync_completed(
        self,
        ledger_id: str,
        mode: str,
        change_count: int,
        watermark: int,
        skipped: int = 0,
    ) -> None:
        await self.log(AuditEventBuilder.sync_completed(
            ledger_id=ledger_id,
            mode=mode,
            change_count=change_count,
            watermark=watermark,
            skipped=skipped,
        ))

    async def log_sync_failed(
        self,
        ledger_id: str,
        mode: str,
        error: Exception,
        retryable: bool,
    ) -> None:
        await self.log(AuditEventBuilder.sync_failed(
            ledger_id=ledger_id,
            mode=mode,
            error_type=type(error).__name__,
            error_message=str(error),
            retryable=retryable,
        ))

    async def log_sync_discarded(
        self,
        ledger_id: str,
        active_ledger_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.sync_discarded(ledger_id, active_ledger_id))

    async def log_malformed_document(
        self,
        ledger_id: str,
        document_id: str,
        reason: str,
    ) -> None:
        await self.log(AuditEventBuilder.malformed_document_skipped(
            ledger_id=ledger_id,
            document_id=document_id,
            reason=reason,
        ))

    async def log_ledger_meta_synced(
        self,
        ledger_id: str,
        member_count: int,
        category_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_meta_synced(
            ledger_id=ledger_id,
            member_count=member_count,
            category_count=category_count,
        ))

    async def log_ledger_switched(
        self,
        previous_ledger_id: Optional[str],
        ledger_id: str,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_switched(previous_ledger_id, ledger_id))

    # -- mutation coordinator ------------------------------------------------

    async def log_optimistic_applied(
        self,
        ledger_id: str,
        operation: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.optimistic_applied(
            ledger_id=ledger_id,
            operation=operation,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_committed(
        self,
        ledger_id: str,
        operation: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_committed(
            ledger_id=ledger_id,
            operation=operation,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_rolled_back(
        self,
        ledger_id: str,
        operation: str,
        transaction_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_rolled_back(
            ledger_id=ledger_id,
            operation=operation,
            transaction_id=transaction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_mutation_conflict(
        self,
        ledger_id: str,
        transaction_id: str,
        expected_updated_at: Optional[int],
        remote_updated_at: Optional[int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_conflict(
            ledger_id=ledger_id,
            transaction_id=transaction_id,
            expected_updated_at=expected_updated_at,
            remote_updated_at=remote_updated_at,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation_failed(
        self,
        ledger_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.reconciliation_failed(
            ledger_id=ledger_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    # -- other ---------------------------------------------------------------

    async def log_transaction_parsed(
        self,
        text_length: int,
        category: str,
        kind: str,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_parsed(text_length, category, kind))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user intent (e.g., an edit).
    Pass it through all subsequent steps of that mutation.
    """
    return uuid4()
