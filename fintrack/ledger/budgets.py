"""
Budget Tracker

Owns category budgets and measures monthly spend against them.

At most one budget per category is active; any number of inactive ones may
be kept for history. Spend is summed from expense transactions in the
ledger and converted to the budget's own currency.
"""

from decimal import Decimal
from typing import Optional

from pydantic import ValidationError

from fintrack.audit import AuditLogger
from fintrack.ledger.calculations import HUNDRED, ZERO
from fintrack.ledger.store import LedgerStore
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import (
    BudgetProgress,
    CategoryBudget,
    CategoryBudgetDraft,
    CategoryBudgetUpdate,
    TransactionType,
    new_id,
)
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.services.currency import ConversionPort
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import LedgerStorageInterface


class BudgetTracker:
    """Category budget CRUD and spend-vs-limit progress."""

    def __init__(
        self,
        store: LedgerStore,
        converter: ConversionPort,
        storage: Optional[LedgerStorageInterface] = None,
        writer: Optional[PersistenceWriter] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._converter = converter
        self._storage = storage
        self._writer = writer
        self._audit = audit_logger

        self._budgets: list[CategoryBudget] = []

    @property
    def budgets(self) -> list[CategoryBudget]:
        return list(self._budgets)

    def get(self, budget_id: str) -> Optional[CategoryBudget]:
        idx = self._index(budget_id)
        return None if idx is None else self._budgets[idx]

    def active_budget(self, category: str) -> Optional[CategoryBudget]:
        for budget in self._budgets:
            if budget.is_active and budget.category == category:
                return budget
        return None

    def _index(self, budget_id: str) -> Optional[int]:
        for idx, b in enumerate(self._budgets):
            if b.id == budget_id:
                return idx
        return None

    def _persist(self, operation: str, factory) -> None:
        if self._storage is not None and self._writer is not None:
            self._writer.submit(operation, factory)

    def _record(self, event) -> None:
        if self._audit:
            self._audit.record(event)

    def _deactivate_others(self, keep: CategoryBudget) -> None:
        """Keep a single active budget per category."""
        storage = self._storage
        for idx, budget in enumerate(self._budgets):
            if budget.id != keep.id and budget.is_active and budget.category == keep.category:
                self._budgets[idx] = budget.model_copy(update={"is_active": False})
                self._persist(
                    "update_budget",
                    lambda bid=budget.id: storage.update_budget(bid, {"is_active": False}),
                )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def set_budget(self, draft: CategoryBudgetDraft) -> ActionResult:
        """Add a budget; an active one retires the category's current one."""
        budget = CategoryBudget.model_validate(
            {**draft.model_dump(exclude={"id"}), "id": new_id()}
        )
        if budget.is_active:
            self._deactivate_others(budget)
        self._budgets.append(budget)

        storage = self._storage
        self._persist("add_budget", lambda: storage.add_budget(budget))
        self._record(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_SET, budget.id, budget.category
        ))
        return ActionResult.ok("Budget set", budget=budget)

    def update_budget(self, budget_id: str, changes: CategoryBudgetUpdate) -> ActionResult:
        idx = self._index(budget_id)
        if idx is None:
            return ActionResult.not_found("Budget", budget_id)

        fields = changes.model_dump(exclude_unset=True)
        try:
            updated = CategoryBudget.model_validate({**self._budgets[idx].model_dump(), **fields})
        except ValidationError as e:
            return ActionResult.rejected(LedgerErrorCode.INVALID_UPDATE, str(e))

        self._budgets[idx] = updated
        if updated.is_active:
            self._deactivate_others(updated)

        storage = self._storage
        self._persist("update_budget", lambda: storage.update_budget(budget_id, fields))
        self._record(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_UPDATED, budget_id, updated.category
        ))
        return ActionResult.ok("Budget updated", budget=updated)

    def delete_budget(self, budget_id: str) -> ActionResult:
        idx = self._index(budget_id)
        if idx is None:
            return ActionResult.not_found("Budget", budget_id)

        budget = self._budgets.pop(idx)
        storage = self._storage
        self._persist("delete_budget", lambda: storage.delete_budget(budget_id))
        self._record(AuditEventBuilder.budget_changed(
            AuditEventType.BUDGET_DELETED, budget_id, budget.category
        ))
        return ActionResult.ok("Budget deleted", budget=budget)

    def toggle_active(self, budget_id: str) -> ActionResult:
        idx = self._index(budget_id)
        if idx is None:
            return ActionResult.not_found("Budget", budget_id)
        return self.update_budget(
            budget_id,
            CategoryBudgetUpdate(is_active=not self._budgets[idx].is_active),
        )

    def replace_all(self, budgets: list[CategoryBudget]) -> None:
        """Swap in budgets loaded from storage. Nothing is persisted."""
        self._budgets = list(budgets)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def spent(self, budget: CategoryBudget, month: int, year: int) -> Decimal:
        """Expenses in the budget's category for the month, in its currency."""
        return sum(
            (
                self._converter.convert(t.amount, t.original_currency, budget.currency)
                for t in self._store.transactions
                if t.type == TransactionType.EXPENSE
                and t.category == budget.category
                and t.date.month == month
                and t.date.year == year
            ),
            ZERO,
        )

    def progress(self, category: str, month: int, year: int) -> Optional[BudgetProgress]:
        """
        Spend against the category's active budget, or None without one.

        A zero limit reports 0% until something is spent, and is exceeded
        by any spend.
        """
        budget = self.active_budget(category)
        if budget is None:
            return None

        spent = self.spent(budget, month, year)
        if budget.monthly_limit > 0:
            percentage = spent / budget.monthly_limit * HUNDRED
        else:
            percentage = HUNDRED if spent > 0 else ZERO

        return BudgetProgress(
            budget_id=budget.id,
            category=budget.category,
            month=month,
            year=year,
            spent=spent,
            limit=budget.monthly_limit,
            percentage=percentage,
            exceeded=spent > budget.monthly_limit,
        )

    def is_exceeded(self, category: str, month: int, year: int) -> bool:
        progress = self.progress(category, month, year)
        return progress is not None and progress.exceeded

    def all_progress(self, month: int, year: int) -> list[BudgetProgress]:
        """Progress for every active budget."""
        return [
            self.progress(b.category, month, year)
            for b in self._budgets
            if b.is_active
        ]
