"""
In-Memory Storage Implementation

Backs the ledger in tests and in sessions that have no durable backend
configured. Records are copied on the way in and out so callers can never
alias the stored state.
"""

from typing import Any, Optional

from pydantic import BaseModel

from fintrack.models.audit import AuditEvent
from fintrack.models.ledger import (
    CategoryBudget,
    LedgerSnapshot,
    RecurringTemplate,
    Transaction,
    UserSettings,
)
from fintrack.models.notification import Notification
from fintrack.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
)


def _apply(record: BaseModel, changes: dict[str, Any]) -> BaseModel:
    return type(record).model_validate({**record.model_dump(), **changes})


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dict-backed implementation of the ledger storage port."""

    def __init__(self):
        self.transactions: dict[str, Transaction] = {}
        self.budgets: dict[str, CategoryBudget] = {}
        self.recurring: dict[str, RecurringTemplate] = {}
        self.settings: Optional[UserSettings] = None
        self.deleted_ids: set[str] = set()
        self.notifications: list[Notification] = []

    # Transactions

    async def get_all_transactions(self) -> list[Transaction]:
        return [t.model_copy() for t in self.transactions.values()]

    async def add_transaction(self, transaction: Transaction) -> None:
        if transaction.id in self.transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self.transactions[transaction.id] = transaction.model_copy()

    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> None:
        existing = self.transactions.get(transaction_id)
        if existing is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        self.transactions[transaction_id] = _apply(existing, changes)

    async def delete_transaction(self, transaction_id: str) -> None:
        self.transactions.pop(transaction_id, None)

    async def clear_transactions(self) -> None:
        self.transactions.clear()

    # Budgets

    async def get_all_budgets(self) -> list[CategoryBudget]:
        return [b.model_copy() for b in self.budgets.values()]

    async def add_budget(self, budget: CategoryBudget) -> None:
        if budget.id in self.budgets:
            raise DuplicateError(f"Budget already exists: {budget.id}")
        self.budgets[budget.id] = budget.model_copy()

    async def update_budget(self, budget_id: str, changes: dict[str, Any]) -> None:
        existing = self.budgets.get(budget_id)
        if existing is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        self.budgets[budget_id] = _apply(existing, changes)

    async def delete_budget(self, budget_id: str) -> None:
        self.budgets.pop(budget_id, None)

    # Recurring templates

    async def get_all_recurring(self) -> list[RecurringTemplate]:
        return [r.model_copy() for r in self.recurring.values()]

    async def add_recurring(self, template: RecurringTemplate) -> None:
        if template.id in self.recurring:
            raise DuplicateError(f"Recurring template already exists: {template.id}")
        self.recurring[template.id] = template.model_copy()

    async def update_recurring(self, template_id: str, changes: dict[str, Any]) -> None:
        existing = self.recurring.get(template_id)
        if existing is None:
            raise NotFoundError(f"Recurring template not found: {template_id}")
        self.recurring[template_id] = _apply(existing, changes)

    async def delete_recurring(self, template_id: str) -> None:
        self.recurring.pop(template_id, None)

    # Settings, tombstones and notifications

    async def get_settings(self) -> Optional[UserSettings]:
        return self.settings.model_copy() if self.settings else None

    async def update_settings(self, changes: dict[str, Any]) -> None:
        self.settings = _apply(self.settings or UserSettings(), changes)

    async def reset_settings(self) -> None:
        self.settings = None

    async def get_deleted_ids(self) -> set[str]:
        return set(self.deleted_ids)

    async def add_deleted_id(self, transaction_id: str) -> None:
        self.deleted_ids.add(transaction_id)

    async def clear_deleted_ids(self) -> None:
        self.deleted_ids.clear()

    async def get_notifications(self) -> list[Notification]:
        return [n.model_copy() for n in self.notifications]

    async def save_notifications(self, notifications: list[Notification]) -> None:
        self.notifications = [n.model_copy() for n in notifications]

    # Whole-store operations

    async def import_all(self, snapshot: LedgerSnapshot) -> None:
        self.transactions = {t.id: t.model_copy() for t in snapshot.transactions}
        self.budgets = {b.id: b.model_copy() for b in snapshot.budgets}
        self.recurring = {r.id: r.model_copy() for r in snapshot.recurring_transactions}
        self.settings = snapshot.settings.model_copy() if snapshot.settings else None

    async def clear_all(self) -> None:
        self.transactions.clear()
        self.budgets.clear()
        self.recurring.clear()
        self.settings = None
        self.deleted_ids.clear()
        self.notifications = []


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
