"""
Notification Trigger Engine

Decides when a ledger change deserves a notification and owns the
notification log.

DESIGN DECISION: Every condition has a stable dedup key. A key that has
fired once never fires again, even after the notification is deleted or
the log cleared:

    budget_warning:<category>:<yyyy-mm>
    budget_exceeded:<category>:<yyyy-mm>
    savings_milestone:<amount>
    recurring_reminder:<template id>:<due date>
    expense_spike:<transaction id>

Checks are called by the orchestrator right after the mutation that could
create the condition. They return what they emitted (possibly nothing).
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

import structlog

from fintrack.audit import AuditLogger
from fintrack.config.settings import LedgerSettings
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import (
    BudgetProgress,
    CategoryBudget,
    RecurringTemplate,
    Transaction,
    TransactionType,
)
from fintrack.models.notification import (
    KIND_SEVERITY,
    Notification,
    NotificationKind,
    NotificationPreferences,
)
from fintrack.models.results import ActionResult
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import LedgerStorageInterface


logger = structlog.get_logger()

Listener = Callable[[Notification], None]


class NotificationEngine:
    """Threshold checks plus the read/unread/delete state of the log."""

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        preferences: Optional[NotificationPreferences] = None,
        storage: Optional[LedgerStorageInterface] = None,
        writer: Optional[PersistenceWriter] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings or LedgerSettings()
        self.preferences = preferences or NotificationPreferences()
        self._storage = storage
        self._writer = writer
        self._audit = audit_logger

        self._log: list[Notification] = []
        self._emitted: set[str] = set()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Log accessors
    # ------------------------------------------------------------------

    @property
    def notifications(self) -> list[Notification]:
        """Newest first."""
        return list(self._log)

    @property
    def unread(self) -> list[Notification]:
        return [n for n in self._log if not n.is_read]

    @property
    def unread_count(self) -> int:
        return len(self.unread)

    @property
    def emitted_keys(self) -> set[str]:
        return set(self._emitted)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call listener with every new notification.

        Returns a function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update_preferences(self, **changes: Any) -> NotificationPreferences:
        self.preferences = NotificationPreferences.model_validate(
            {**self.preferences.model_dump(), **changes}
        )
        return self.preferences

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _save(self) -> None:
        if self._storage is not None and self._writer is not None:
            snapshot = list(self._log)
            storage = self._storage
            self._writer.submit(
                "save_notifications",
                lambda: storage.save_notifications(snapshot),
            )

    def _emit(
        self,
        kind: NotificationKind,
        dedup_key: str,
        payload: dict[str, Any],
    ) -> Optional[Notification]:
        if not self.preferences.allows(kind) or dedup_key in self._emitted:
            return None

        notification = Notification(
            kind=kind,
            severity=KIND_SEVERITY[kind],
            payload=payload,
            dedup_key=dedup_key,
        )
        self._log.insert(0, notification)
        self._emitted.add(dedup_key)
        self._save()

        if self._audit:
            self._audit.record(AuditEventBuilder.notification_emitted(
                notification.id, kind.value, dedup_key
            ))

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(
                    "notification_listener_failed",
                    notification_id=notification.id,
                    error=str(e),
                )
        return notification

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_expense_spike(
        self,
        history: Iterable[Transaction],
        transaction: Transaction,
    ) -> Optional[Notification]:
        """
        Flag an expense far above the category's usual amount.

        The baseline is the average of prior expenses in the same category;
        it needs a minimum number of samples. Amounts must already be in
        one currency.
        """
        if transaction.type != TransactionType.EXPENSE:
            return None

        prior = [
            t.amount for t in history
            if t.type == TransactionType.EXPENSE
            and t.category == transaction.category
            and t.id != transaction.id
        ]
        if len(prior) < self._settings.expense_spike_min_samples:
            return None

        average = sum(prior, Decimal("0")) / len(prior)
        multiplier = Decimal(str(self._settings.expense_spike_multiplier))
        if average <= 0 or transaction.amount < average * multiplier:
            return None

        return self._emit(
            NotificationKind.EXPENSE_SPIKE,
            f"expense_spike:{transaction.id}",
            {
                "transaction_id": transaction.id,
                "category": transaction.category,
                "amount": transaction.amount,
                "average": average,
                "ratio": transaction.amount / average,
                "date": transaction.date,
            },
        )

    def check_budget(self, budget: CategoryBudget, progress: BudgetProgress) -> Optional[Notification]:
        """
        Budget warning or exceeded, once per category per month each.

        Exceeded takes precedence: crossing the limit never also produces
        a warning.
        """
        period = f"{progress.year:04d}-{progress.month:02d}"
        payload = {
            "budget_id": budget.id,
            "category": budget.category,
            "month": progress.month,
            "year": progress.year,
            "spent": progress.spent,
            "limit": progress.limit,
            "percentage": progress.percentage,
            "currency": budget.currency,
        }

        if progress.exceeded:
            return self._emit(
                NotificationKind.BUDGET_EXCEEDED,
                f"budget_exceeded:{budget.category}:{period}",
                payload,
            )
        if progress.percentage >= budget.alert_threshold * 100:
            return self._emit(
                NotificationKind.BUDGET_WARNING,
                f"budget_warning:{budget.category}:{period}",
                payload,
            )
        return None

    def check_savings_milestone(self, total_savings: Decimal) -> list[Notification]:
        """One notification per configured milestone reached, ever."""
        milestones = self._settings.savings_milestones_list
        emitted = []
        for idx, milestone in enumerate(milestones):
            if total_savings < milestone:
                break
            notification = self._emit(
                NotificationKind.SAVINGS_MILESTONE,
                f"savings_milestone:{milestone.normalize():f}",
                {
                    "milestone": milestone,
                    "total_savings": total_savings,
                    "next_milestone": milestones[idx + 1] if idx + 1 < len(milestones) else None,
                },
            )
            if notification:
                emitted.append(notification)
        return emitted

    def check_recurring_reminders(
        self,
        due: Iterable[tuple[RecurringTemplate, date]],
    ) -> list[Notification]:
        """One reminder per template per due date."""
        emitted = []
        for template, due_date in due:
            notification = self._emit(
                NotificationKind.RECURRING_REMINDER,
                f"recurring_reminder:{template.id}:{due_date.isoformat()}",
                {
                    "template_id": template.id,
                    "title": template.title,
                    "amount": template.amount,
                    "currency": template.original_currency,
                    "type": template.type.value,
                    "due_date": due_date,
                },
            )
            if notification:
                emitted.append(notification)
        return emitted

    # ------------------------------------------------------------------
    # Log actions (no effect on the ledger)
    # ------------------------------------------------------------------

    def _index(self, notification_id: str) -> Optional[int]:
        for idx, n in enumerate(self._log):
            if n.id == notification_id:
                return idx
        return None

    def mark_read(self, notification_id: str) -> ActionResult:
        idx = self._index(notification_id)
        if idx is None:
            return ActionResult.not_found("Notification", notification_id)
        if not self._log[idx].is_read:
            self._log[idx] = self._log[idx].model_copy(update={"is_read": True})
            self._save()
        return ActionResult.ok("Notification marked read")

    def mark_all_read(self) -> int:
        changed = 0
        for idx, n in enumerate(self._log):
            if not n.is_read:
                self._log[idx] = n.model_copy(update={"is_read": True})
                changed += 1
        if changed:
            self._save()
        return changed

    def delete(self, notification_id: str) -> ActionResult:
        idx = self._index(notification_id)
        if idx is None:
            return ActionResult.not_found("Notification", notification_id)
        self._log.pop(idx)
        self._save()
        return ActionResult.ok("Notification deleted", count=1)

    def clear_all(self) -> int:
        """Empty the log. Dedup keys are kept."""
        cleared = len(self._log)
        self._log = []
        self._save()
        return cleared

    def replace_all(self, notifications: Iterable[Notification]) -> None:
        """Swap in a stored log; its keys count as already emitted."""
        self._log = sorted(notifications, key=lambda n: n.created_at, reverse=True)
        self._emitted |= {n.dedup_key for n in self._log}

    def reset(self) -> None:
        """Forget the log and every dedup key (full data wipe)."""
        self._log = []
        self._emitted = set()
