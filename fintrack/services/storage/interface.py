"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep field naming and casing of each backend out of the core

The ledger core never awaits these calls on its own path: it mutates its
in-memory state first and hands the matching storage call to the
PersistenceWriter. Each call is independently fallible.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from fintrack.models.audit import AuditEvent
from fintrack.models.ledger import (
    CategoryBudget,
    LedgerSnapshot,
    RecurringTemplate,
    Transaction,
    UserSettings,
)
from fintrack.models.notification import Notification


class LedgerStorageInterface(ABC):
    """
    Abstract interface for durable ledger storage.

    Any storage implementation (Google Sheets, IndexedDB bridge, SQL, etc.)
    must implement these methods. Partial updates receive a dict of
    canonical (snake_case) field names.
    """

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_all_transactions(self) -> list[Transaction]:
        """Get all stored transactions (any order)."""
        pass

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> None:
        """
        Persist a new transaction.

        Raises:
            DuplicateError: If the id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> None:
        """
        Apply partial changes to a stored transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        """Delete a transaction. Deleting an unknown id is not an error."""
        pass

    @abstractmethod
    async def clear_transactions(self) -> None:
        """Remove every transaction (used by replace-mode imports)."""
        pass

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_all_budgets(self) -> list[CategoryBudget]:
        pass

    @abstractmethod
    async def add_budget(self, budget: CategoryBudget) -> None:
        pass

    @abstractmethod
    async def update_budget(self, budget_id: str, changes: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: str) -> None:
        pass

    # ------------------------------------------------------------------
    # Recurring templates
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_all_recurring(self) -> list[RecurringTemplate]:
        pass

    @abstractmethod
    async def add_recurring(self, template: RecurringTemplate) -> None:
        pass

    @abstractmethod
    async def update_recurring(self, template_id: str, changes: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def delete_recurring(self, template_id: str) -> None:
        pass

    # ------------------------------------------------------------------
    # Settings, tombstones and notifications
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_settings(self) -> Optional[UserSettings]:
        """Get the settings record, or None if never saved."""
        pass

    @abstractmethod
    async def update_settings(self, changes: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def reset_settings(self) -> None:
        pass

    @abstractmethod
    async def get_deleted_ids(self) -> set[str]:
        """Get the tombstone set of deleted transaction ids."""
        pass

    @abstractmethod
    async def add_deleted_id(self, transaction_id: str) -> None:
        pass

    @abstractmethod
    async def clear_deleted_ids(self) -> None:
        pass

    @abstractmethod
    async def get_notifications(self) -> list[Notification]:
        pass

    @abstractmethod
    async def save_notifications(self, notifications: list[Notification]) -> None:
        """Replace the stored notification log."""
        pass

    # ------------------------------------------------------------------
    # Whole-store operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def import_all(self, snapshot: LedgerSnapshot) -> None:
        """Replace transactions, budgets, recurring templates and settings."""
        pass

    @abstractmethod
    async def clear_all(self) -> None:
        """Remove every collection, including tombstones and notifications."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
