"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability
2. Debugging capability
3. User can see history of their interactions
4. An observable channel for failed background writes

The audit logger:
- Never blocks the ledger: storage appends go through the PersistenceWriter
- Gracefully handles failures (doesn't crash the app if logging fails)
- Always logs locally through structlog, storage or not
"""

import logging
from typing import Optional

import structlog

from fintrack.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import AuditStorageInterface


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


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, if configured (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        writer: Optional[PersistenceWriter] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            writer: Background writer used by record() to append to
                    storage without blocking. Without one, record() only
                    logs locally; use log() to await the append instead.
        """
        self._storage = storage
        self._writer = writer
        self._logger = structlog.get_logger()

    def _log_local(self, event: AuditEvent) -> None:
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def _append(self, event: AuditEvent) -> bool:
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

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event and wait for storage.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        self._log_local(event)
        if self._storage:
            return await self._append(event)
        return True

    def record(self, event: AuditEvent) -> None:
        """
        Log an audit event from synchronous ledger code.

        The local log line is written immediately; the storage append is
        queued behind any pending ledger writes.
        """
        self._log_local(event)
        if self._storage and self._writer and not self._writer.closed:
            self._writer.submit("append_audit_event", lambda: self._append(event))

    def log_persistence_failed(self, operation: str, error: Exception) -> None:
        """Failure hook for PersistenceWriter."""
        self.record(AuditEventBuilder.persistence_failed(operation, str(error)))

    def log_conversion_fallback(self, from_currency: str, to_currency: str) -> None:
        """Fallback hook for CurrencyConverter."""
        self.record(AuditEventBuilder.conversion_fallback(from_currency, to_currency))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        self.record(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
            )
        )
