"""
Audit Models for FinTrack

Every ledger mutation is logged for audit purposes.
This provides:
1. Traceability of user actions and automatic projection runs
2. An observable channel for background persistence failures
3. Debugging information when state and storage drift apart

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_REJECTED = "transaction_rejected"
    BULK_IMPORT_COMPLETED = "bulk_import_completed"
    DUPLICATES_REMOVED = "duplicates_removed"

    # Recurring templates
    RECURRING_CREATED = "recurring_created"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_GENERATED = "recurring_generated"

    # Budgets
    BUDGET_SET = "budget_set"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"

    # Notifications
    NOTIFICATION_EMITTED = "notification_emitted"

    # Data management
    SNAPSHOT_IMPORTED = "snapshot_imported"
    SNAPSHOT_REJECTED = "snapshot_rejected"
    STATE_RECONCILED = "state_reconciled"
    DATA_CLEARED = "data_cleared"
    SETTINGS_UPDATED = "settings_updated"

    # System events
    PERSISTENCE_FAILED = "persistence_failed"
    CONVERSION_FALLBACK = "conversion_fallback"
    SYSTEM_ERROR = "system_error"


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
    Every significant action creates one of these.
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

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'budget', 'recurring')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
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
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(tx_id, "expense", "42.00")
        event = AuditEventBuilder.persistence_failed("add_transaction", str(err))
    """

    @staticmethod
    def transaction_added(
        transaction_id: str,
        tx_type: str,
        amount: str,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction added: {tx_type} {amount}",
            details={"type": tx_type, "amount": amount},
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_updated(transaction_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(transaction_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction deleted and tombstoned",
            is_user_action=True,
        )

    @staticmethod
    def transaction_rejected(
        reason: str,
        message: str,
        transaction_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction rejected: {reason}",
            details={"reason": reason, "message": message},
            is_user_action=True,
        )

    @staticmethod
    def bulk_import_completed(imported: int, skipped: int, replace: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BULK_IMPORT_COMPLETED,
            entity_type="transaction",
            description=f"Bulk import: {imported} imported, {skipped} skipped",
            details={"imported": imported, "skipped": skipped, "replace": replace},
            is_user_action=True,
        )

    @staticmethod
    def duplicates_removed(count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_REMOVED,
            entity_type="transaction",
            description=f"Removed {count} duplicate recurring transactions",
            details={"count": count},
        )

    @staticmethod
    def recurring_changed(
        event_type: AuditEventType,
        template_id: str,
        title: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type="recurring",
            entity_id=template_id,
            description=f"Recurring template {verb}: {title}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def recurring_generated(counts: dict[str, int]) -> AuditEvent:
        total = sum(counts.values())
        return AuditEvent(
            event_type=AuditEventType.RECURRING_GENERATED,
            entity_type="recurring",
            description=f"Projection generated {total} transactions",
            details={"per_template": counts, "total": total},
        )

    @staticmethod
    def budget_changed(
        event_type: AuditEventType,
        budget_id: str,
        category: str,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type="budget",
            entity_id=budget_id,
            description=f"Budget {verb}: {category}",
            details={"category": category},
            is_user_action=True,
        )

    @staticmethod
    def notification_emitted(notification_id: str, kind: str, dedup_key: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_EMITTED,
            entity_type="notification",
            entity_id=notification_id,
            description=f"Notification emitted: {kind}",
            details={"kind": kind, "dedup_key": dedup_key},
        )

    @staticmethod
    def snapshot_imported(transactions: int, budgets: int, recurring: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_IMPORTED,
            description="Snapshot imported, local state replaced",
            details={
                "transactions": transactions,
                "budgets": budgets,
                "recurring": recurring,
            },
            is_user_action=True,
        )

    @staticmethod
    def snapshot_rejected(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SNAPSHOT_REJECTED,
            severity=AuditSeverity.WARNING,
            description="Snapshot import rejected: malformed payload",
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def state_reconciled(transactions: int, discarded_pending_writes: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATE_RECONCILED,
            description="In-memory state replaced from storage (last writer wins)",
            details={
                "transactions": transactions,
                "pending_writes": discarded_pending_writes,
            },
        )

    @staticmethod
    def data_cleared() -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_CLEARED,
            severity=AuditSeverity.WARNING,
            description="All ledger data cleared",
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            entity_type="settings",
            description="Settings updated",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def persistence_failed(operation: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PERSISTENCE_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Durable write failed: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def conversion_fallback(from_currency: str, to_currency: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONVERSION_FALLBACK,
            severity=AuditSeverity.WARNING,
            description=f"No rate for {from_currency}->{to_currency}, amount used as-is",
            details={"from": from_currency, "to": to_currency},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
