"""
Audit Models for CloudLedger

Every sync pass and every mutation step is logged for audit purposes.
This provides:
1. Traceability of what each client pulled and pushed
2. Debugging information when the cache diverges from the remote store
3. A record of rollbacks and conflicts the user was shown

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Sync engine
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_DISCARDED = "sync_discarded"
    MALFORMED_DOCUMENT_SKIPPED = "malformed_document_skipped"
    LEDGER_META_SYNCED = "ledger_meta_synced"

    # Session
    LEDGER_SWITCHED = "ledger_switched"

    # Mutation coordinator
    OPTIMISTIC_APPLIED = "optimistic_applied"
    MUTATION_COMMITTED = "mutation_committed"
    MUTATION_ROLLED_BACK = "mutation_rolled_back"
    MUTATION_CONFLICT = "mutation_conflict"
    RECONCILIATION_FAILED = "reconciliation_failed"

    # AI parsing
    TRANSACTION_PARSED = "transaction_parsed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which ledger and record is this about?
    ledger_id: Optional[str] = Field(
        default=None,
        description="Ledger the event relates to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'ledger', 'sync')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - ties the optimistic, commit and reconcile steps of one mutation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "ledger_id": self.ledger_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, ledger_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.ledger_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sync_completed(ledger_id, "incremental", 3, 2000)
        event = AuditEventBuilder.mutation_conflict(ledger_id, tx_id, 1000, 1500, cid)
    """

    @staticmethod
    def sync_started(
        ledger_id: str,
        mode: str,
        watermark: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            severity=AuditSeverity.DEBUG,
            ledger_id=ledger_id,
            entity_type="sync",
            description=f"{mode.capitalize()} sync started",
            details={
                "mode": mode,
                "watermark": watermark,
            },
        )

    @staticmethod
    def sync_completed(
        ledger_id: str,
        mode: str,
        change_count: int,
        watermark: int,
        skipped: int = 0,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            ledger_id=ledger_id,
            entity_type="sync",
            description=f"{mode.capitalize()} sync applied {change_count} changes",
            details={
                "mode": mode,
                "change_count": change_count,
                "watermark": watermark,
                "skipped": skipped,
            },
        )

    @staticmethod
    def sync_failed(
        ledger_id: str,
        mode: str,
        error_type: str,
        error_message: str,
        retryable: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.WARNING if retryable else AuditSeverity.ERROR,
            ledger_id=ledger_id,
            entity_type="sync",
            description=f"{mode.capitalize()} sync failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details={
                "mode": mode,
                "retryable": retryable,
            },
        )

    @staticmethod
    def sync_discarded(
        ledger_id: str,
        active_ledger_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_DISCARDED,
            ledger_id=ledger_id,
            entity_type="sync",
            description="Sync result discarded after ledger switch",
            details={
                "active_ledger_id": active_ledger_id,
            },
        )

    @staticmethod
    def malformed_document_skipped(
        ledger_id: str,
        document_id: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MALFORMED_DOCUMENT_SKIPPED,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=document_id,
            description="Skipped malformed transaction document",
            details={
                "reason": reason[:300],
            },
        )

    @staticmethod
    def ledger_meta_synced(
        ledger_id: str,
        member_count: int,
        category_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_META_SYNCED,
            ledger_id=ledger_id,
            entity_type="ledger",
            entity_id=ledger_id,
            description="Ledger metadata refreshed",
            details={
                "member_count": member_count,
                "category_count": category_count,
            },
        )

    @staticmethod
    def ledger_switched(
        previous_ledger_id: Optional[str],
        ledger_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_SWITCHED,
            ledger_id=ledger_id,
            entity_type="ledger",
            entity_id=ledger_id,
            description="Active ledger switched",
            details={
                "previous_ledger_id": previous_ledger_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def optimistic_applied(
        ledger_id: str,
        operation: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPTIMISTIC_APPLIED,
            severity=AuditSeverity.DEBUG,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Optimistic {operation} applied to local cache",
            details={
                "operation": operation,
            },
            is_user_action=True,
        )

    @staticmethod
    def mutation_committed(
        ledger_id: str,
        operation: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_COMMITTED,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} acknowledged",
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def mutation_rolled_back(
        ledger_id: str,
        operation: str,
        transaction_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Remote {operation} failed, local change reverted",
            error_message=error_message,
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def mutation_conflict(
        ledger_id: str,
        transaction_id: str,
        expected_updated_at: Optional[int],
        remote_updated_at: Optional[int],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_CONFLICT,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Update rejected: record was modified elsewhere",
            details={
                "expected_updated_at": expected_updated_at,
                "remote_updated_at": remote_updated_at,
            },
        )

    @staticmethod
    def reconciliation_failed(
        ledger_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.WARNING,
            ledger_id=ledger_id,
            entity_type="sync",
            correlation_id=correlation_id,
            description="Follow-up sync after mutation failed",
            error_message=error_message,
        )

    @staticmethod
    def transaction_parsed(
        text_length: int,
        category: str,
        kind: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_PARSED,
            entity_type="parser",
            description=f"Free text parsed as {kind} in {category}",
            details={
                "text_length": text_length,
                "category": category,
                "kind": kind,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
