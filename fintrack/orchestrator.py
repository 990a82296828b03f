"""
Main Orchestrator for FinTrack

This module ties together all the components and defines the flows the
presentation layer calls:
1. Transaction actions (add → validate → commit → notify)
2. Recurring projection (remind → generate → notify)
3. Data management (export, import, load, reconcile)

DESIGN DECISION: The orchestrator owns the wiring, nothing else does.
- Every engine receives its collaborators from create_ledger()
- There are no module-level singletons
- Every step is audited

This is the "glue" that keeps the engines consistent with each other:
the store never knows about budgets, the budget tracker never emits
notifications; the facade sequences them.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from fintrack.audit import AuditLogger, configure_logging
from fintrack.config import get_settings
from fintrack.config.settings import AppSettings, LedgerSettings, NotificationDefaults
from fintrack.ledger import calculations
from fintrack.ledger.budgets import BudgetTracker
from fintrack.ledger.notifications import NotificationEngine
from fintrack.ledger.recurring import RecurringEngine
from fintrack.ledger.store import LedgerStore, TransactionRecord
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import (
    BudgetProgress,
    CategoryBudget,
    CategoryBudgetDraft,
    CategoryBudgetUpdate,
    CategoryExpense,
    FilterCriteria,
    FinancialSummary,
    GenerationReport,
    LedgerSnapshot,
    RecurringTemplate,
    RecurringTemplateDraft,
    RecurringTemplateUpdate,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
    UserSettings,
)
from fintrack.models.notification import Notification, NotificationPreferences
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.services.currency import ConversionPort, CurrencyConverter
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
)


logger = structlog.get_logger()


class SnapshotError(Exception):
    """A snapshot payload could not be parsed into a ledger."""
    pass


def _parse(model: type[BaseModel], data: Any) -> tuple[Optional[BaseModel], Optional[ActionResult]]:
    """Model instance or dict in, (model, None) or (None, rejection) out."""
    if isinstance(data, model):
        return data, None
    try:
        return model.model_validate(data), None
    except ValidationError as e:
        return None, ActionResult.rejected(LedgerErrorCode.INVALID_PAYLOAD, str(e))


class FinanceLedger:
    """
    Presentation-facing facade over the ledger engines.

    Actions return ActionResult values and never raise for business-rule
    outcomes. State changes are visible immediately; durable writes
    follow in the background (see flush()).
    """

    def __init__(
        self,
        store: LedgerStore,
        recurring: RecurringEngine,
        budgets: BudgetTracker,
        notifications: NotificationEngine,
        storage: LedgerStorageInterface,
        writer: PersistenceWriter,
        audit_logger: AuditLogger,
        ledger_settings: Optional[LedgerSettings] = None,
        app_settings: Optional[AppSettings] = None,
        clock: Callable[[], date] = date.today,
    ):
        self._store = store
        self._recurring = recurring
        self._budgets = budgets
        self._notifications = notifications
        self._storage = storage
        self._writer = writer
        self._audit = audit_logger
        self._ledger_settings = ledger_settings or LedgerSettings()
        self._app_settings = app_settings or AppSettings()
        self._clock = clock

        self._settings = UserSettings(currency=store.reference_currency)

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def transactions(self) -> list[Transaction]:
        """Newest first."""
        return self._store.transactions

    @property
    def recurring_transactions(self) -> list[RecurringTemplate]:
        return self._recurring.templates

    @property
    def budgets(self) -> list[CategoryBudget]:
        return self._budgets.budgets

    @property
    def notifications(self) -> list[Notification]:
        return self._notifications.notifications

    @property
    def unread_notifications(self) -> list[Notification]:
        return self._notifications.unread

    @property
    def notification_preferences(self) -> NotificationPreferences:
        return self._notifications.preferences

    @property
    def settings(self) -> UserSettings:
        return self._settings

    @property
    def deleted_ids(self) -> set[str]:
        return self._store.deleted_ids

    @property
    def persistence_failures(self):
        return list(self._writer.failures)

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        return self._notifications.subscribe(listener)

    def cash_balance(self) -> Decimal:
        return self._store.cash_balance()

    def summary(self, month: int, year: int) -> FinancialSummary:
        """Month figures plus the cumulative net worth, in the reference currency."""
        converted = self._store.converted()
        return calculations.financial_summary(
            calculations.filter_by_month(converted, month, year),
            converted,
            month,
            year,
        )

    def expenses_by_category(self, month: int, year: int) -> list[CategoryExpense]:
        converted = calculations.filter_by_month(self._store.converted(), month, year)
        return calculations.expenses_by_category(converted)

    def filter_transactions(self, criteria: FilterCriteria) -> list[Transaction]:
        return calculations.filter_by_criteria(self._store.transactions, criteria)

    def real_wealth(self, month: int, year: int) -> Decimal:
        """Net worth at month/year in today's money, per the settings' inflation rate."""
        today = self._clock()
        return calculations.real_wealth_by_month(
            self._store.converted(),
            month,
            year,
            self._settings.inflation_rate,
            today.month,
            today.year,
        )

    def export_csv(self, criteria: Optional[FilterCriteria] = None) -> str:
        """Transactions as CSV, headers in the user's language."""
        transactions = self._store.transactions
        if criteria:
            transactions = calculations.filter_by_criteria(transactions, criteria)
        return calculations.transactions_to_csv(transactions, self._settings.language)

    def export_category_csv(self, month: int, year: int) -> str:
        """Category breakdown of the month's expenses as CSV."""
        return calculations.category_breakdown_to_csv(
            self.expenses_by_category(month, year),
            self._settings.currency,
            self._settings.language,
        )

    def export_monthly_csv(self, year: int) -> str:
        """One row per month of the year, in the reference currency."""
        return calculations.monthly_breakdown_to_csv(
            [self.summary(month, year) for month in range(1, 13)],
            self._settings.currency,
            self._settings.language,
        )

    # ------------------------------------------------------------------
    # Notification triggers
    # ------------------------------------------------------------------

    def _check_budget(self, category: str, month: int, year: int) -> None:
        budget = self._budgets.active_budget(category)
        if budget is None:
            return
        progress = self._budgets.progress(category, month, year)
        self._notifications.check_budget(budget, progress)

    def _check_milestones(self) -> None:
        self._notifications.check_savings_milestone(
            calculations.total_savings(self._store.converted())
        )

    def _after_change(self, transaction: Transaction) -> None:
        if transaction.type == TransactionType.EXPENSE:
            self._check_budget(transaction.category, transaction.date.month, transaction.date.year)
        elif transaction.type == TransactionType.SAVINGS:
            self._check_milestones()

    # ------------------------------------------------------------------
    # Transaction actions
    # ------------------------------------------------------------------

    def add_transaction(self, draft: Union[TransactionDraft, dict]) -> ActionResult:
        """
        Record a transaction and run the checks it can trigger.

        Expense: spike check against the history before the add, then the
        budget for the transaction's month. Savings: milestone check.
        """
        draft, rejection = _parse(TransactionDraft, draft)
        if rejection is not None:
            return rejection

        history = self._store.converted()
        result = self._store.add(draft)
        if not result:
            return result

        transaction = result.transaction
        if transaction.type == TransactionType.EXPENSE:
            self._notifications.check_expense_spike(
                history, self._store.converted([transaction])[0]
            )
        self._after_change(transaction)
        return result

    def update_transaction(
        self,
        transaction_id: str,
        changes: Union[TransactionUpdate, dict],
    ) -> ActionResult:
        changes, rejection = _parse(TransactionUpdate, changes)
        if rejection is not None:
            return rejection

        result = self._store.update(transaction_id, changes)
        if result:
            self._after_change(result.transaction)
        return result

    def delete_transaction(self, transaction_id: str) -> ActionResult:
        return self._store.delete(transaction_id)

    def bulk_import(self, records: list[TransactionRecord], replace: bool = False) -> ActionResult:
        return self._store.bulk_import(records, replace=replace)

    def cleanup_duplicates(self) -> ActionResult:
        removed = self._store.cleanup_recurring_duplicates()
        return ActionResult.ok(f"Removed {removed} duplicates", count=removed)

    # ------------------------------------------------------------------
    # Recurring actions
    # ------------------------------------------------------------------

    def add_recurring(self, draft: Union[RecurringTemplateDraft, dict]) -> ActionResult:
        draft, rejection = _parse(RecurringTemplateDraft, draft)
        if rejection is not None:
            return rejection
        return self._recurring.add_template(draft)

    def update_recurring(
        self,
        template_id: str,
        changes: Union[RecurringTemplateUpdate, dict],
        propagate: bool = False,
    ) -> ActionResult:
        changes, rejection = _parse(RecurringTemplateUpdate, changes)
        if rejection is not None:
            return rejection
        return self._recurring.update_template(template_id, changes, propagate=propagate)

    def delete_recurring(self, template_id: str) -> ActionResult:
        return self._recurring.delete_template(template_id)

    def toggle_recurring(self, template_id: str) -> ActionResult:
        return self._recurring.toggle_active(template_id)

    def generate_recurring(self, today: Optional[date] = None) -> GenerationReport:
        """
        Run the projection pass.

        Reminders are raised first (from the pre-projection cursors), then
        templates are projected, then the committed batch is checked
        against budgets and savings milestones.
        """
        today = today or self._clock()
        self._notifications.check_recurring_reminders(self._recurring.due_templates(today))

        report = self._recurring.generate(today)

        periods = {
            (t.category, t.date.month, t.date.year)
            for t in report.transactions
            if t.type == TransactionType.EXPENSE
        }
        for category, month, year in sorted(periods):
            self._check_budget(category, month, year)
        if any(t.type == TransactionType.SAVINGS for t in report.transactions):
            self._check_milestones()
        return report

    # ------------------------------------------------------------------
    # Budget actions
    # ------------------------------------------------------------------

    def set_budget(self, draft: Union[CategoryBudgetDraft, dict]) -> ActionResult:
        draft, rejection = _parse(CategoryBudgetDraft, draft)
        if rejection is not None:
            return rejection
        return self._budgets.set_budget(draft)

    def update_budget(self, budget_id: str, changes: Union[CategoryBudgetUpdate, dict]) -> ActionResult:
        changes, rejection = _parse(CategoryBudgetUpdate, changes)
        if rejection is not None:
            return rejection
        return self._budgets.update_budget(budget_id, changes)

    def delete_budget(self, budget_id: str) -> ActionResult:
        return self._budgets.delete_budget(budget_id)

    def toggle_budget(self, budget_id: str) -> ActionResult:
        return self._budgets.toggle_active(budget_id)

    def budget_progress(self, category: str, month: int, year: int) -> Optional[BudgetProgress]:
        return self._budgets.progress(category, month, year)

    def is_budget_exceeded(self, category: str, month: int, year: int) -> bool:
        return self._budgets.is_exceeded(category, month, year)

    def all_budget_progress(self, month: int, year: int) -> list[BudgetProgress]:
        return self._budgets.all_progress(month, year)

    # ------------------------------------------------------------------
    # Notification actions
    # ------------------------------------------------------------------

    def mark_notification_read(self, notification_id: str) -> ActionResult:
        return self._notifications.mark_read(notification_id)

    def mark_all_notifications_read(self) -> ActionResult:
        return ActionResult.ok(count=self._notifications.mark_all_read())

    def delete_notification(self, notification_id: str) -> ActionResult:
        return self._notifications.delete(notification_id)

    def clear_notifications(self) -> ActionResult:
        return ActionResult.ok(count=self._notifications.clear_all())

    def update_notification_preferences(self, **changes: Any) -> ActionResult:
        try:
            self._notifications.update_preferences(**changes)
        except ValidationError as e:
            return ActionResult.rejected(LedgerErrorCode.INVALID_PAYLOAD, str(e))
        return ActionResult.ok("Notification preferences updated")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _apply_settings(self, settings: UserSettings) -> None:
        self._settings = settings
        self._store.reference_currency = settings.currency

    def update_settings(self, changes: dict[str, Any]) -> ActionResult:
        """
        Partial settings update. The currency becomes the reference currency.

        Keys may be field names or their camelCase aliases.
        """
        aliases = {field.alias: name for name, field in UserSettings.model_fields.items() if field.alias}
        changes = {aliases.get(key, key): value for key, value in changes.items()}
        try:
            updated = UserSettings.model_validate({**self._settings.model_dump(), **changes})
        except ValidationError as e:
            return ActionResult.rejected(LedgerErrorCode.INVALID_PAYLOAD, str(e))

        fields = {
            name: getattr(updated, name)
            for name in UserSettings.model_fields
            if getattr(updated, name) != getattr(self._settings, name)
        }
        self._apply_settings(updated)

        storage = self._storage
        self._writer.submit("update_settings", lambda: storage.update_settings(fields))
        self._audit.record(AuditEventBuilder.settings_updated(sorted(fields)))
        return ActionResult.ok("Settings updated")

    def reset_settings(self) -> ActionResult:
        self._apply_settings(UserSettings(currency=self._ledger_settings.default_currency))
        storage = self._storage
        self._writer.submit("reset_settings", lambda: storage.reset_settings())
        self._audit.record(AuditEventBuilder.settings_updated(["reset"]))
        return ActionResult.ok("Settings reset")

    # ------------------------------------------------------------------
    # Data management
    # ------------------------------------------------------------------

    def export_snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            transactions=self._store.transactions,
            budgets=self._budgets.budgets,
            recurring_transactions=self._recurring.templates,
            settings=self._settings,
        )

    def export_json(self, indent: Optional[int] = 2) -> str:
        """Snapshot as JSON with camelCase keys."""
        return self.export_snapshot().model_dump_json(by_alias=True, indent=indent)

    def import_snapshot(
        self,
        data: Union[LedgerSnapshot, dict, str, bytes],
        strict: bool = False,
    ) -> ActionResult:
        """
        Replace the whole ledger with a snapshot.

        The payload is validated in full before anything changes. A corrupt
        payload returns invalid_payload, or raises SnapshotError when
        strict is set. Tombstones are cleared: the snapshot is authoritative.
        """
        try:
            if isinstance(data, LedgerSnapshot):
                snapshot = data
            elif isinstance(data, (str, bytes)):
                snapshot = LedgerSnapshot.model_validate_json(data)
            else:
                snapshot = LedgerSnapshot.model_validate(data)
        except ValidationError as e:
            self._audit.record(AuditEventBuilder.snapshot_rejected(str(e)))
            if strict:
                raise SnapshotError(str(e)) from e
            return ActionResult.rejected(LedgerErrorCode.INVALID_PAYLOAD, str(e))

        self._store.replace_all(snapshot.transactions, deleted_ids=())
        self._budgets.replace_all(snapshot.budgets)
        self._recurring.replace_all(snapshot.recurring_transactions)
        if snapshot.settings:
            self._apply_settings(snapshot.settings)

        # Storage keeps insertion order, oldest first.
        stored = snapshot.model_copy(update={
            "transactions": list(reversed(snapshot.transactions)),
            "recurring_transactions": list(reversed(snapshot.recurring_transactions)),
        })
        storage = self._storage
        self._writer.submit("import_all", lambda: storage.import_all(stored))
        self._writer.submit("clear_deleted_ids", lambda: storage.clear_deleted_ids())
        self._audit.record(AuditEventBuilder.snapshot_imported(
            len(snapshot.transactions),
            len(snapshot.budgets),
            len(snapshot.recurring_transactions),
        ))
        return ActionResult.ok("Snapshot imported", count=len(snapshot.transactions))

    def clear_all(self) -> ActionResult:
        """Wipe every collection, the tombstones and the settings."""
        self._store.replace_all([], deleted_ids=())
        self._budgets.replace_all([])
        self._recurring.replace_all([])
        self._notifications.reset()
        self._apply_settings(UserSettings(currency=self._ledger_settings.default_currency))

        storage = self._storage
        self._writer.submit("clear_all", lambda: storage.clear_all())
        self._audit.record(AuditEventBuilder.data_cleared())
        return ActionResult.ok("All data cleared")

    async def load(self) -> ActionResult:
        """
        Replace in-memory state with what storage holds.

        Backends return records in insertion order; the ledger keeps them
        newest first. Tombstoned ids are never loaded back.
        """
        transactions = await self._storage.get_all_transactions()
        deleted_ids = await self._storage.get_deleted_ids()
        budgets = await self._storage.get_all_budgets()
        templates = await self._storage.get_all_recurring()
        notifications = await self._storage.get_notifications()
        settings = await self._storage.get_settings()

        self._store.replace_all(
            [t for t in reversed(transactions) if t.id not in deleted_ids],
            deleted_ids=deleted_ids,
        )
        self._budgets.replace_all(budgets)
        self._recurring.replace_all(list(reversed(templates)))
        self._notifications.replace_all(notifications)
        if settings:
            self._apply_settings(settings)

        return ActionResult.ok("State loaded", count=len(self._store.transactions))

    async def reconcile(self) -> ActionResult:
        """
        Last-writer-wins: storage replaces local state wholesale.

        Writes still pending are not waited for; whatever they change
        reaches storage after this read.
        """
        pending = self._writer.pending
        result = await self.load()
        self._audit.record(AuditEventBuilder.state_reconciled(result.count, pending))
        return result

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for pending durable writes."""
        return self._writer.flush(timeout or self._app_settings.persistence_flush_timeout_seconds)

    def close(self) -> bool:
        return self._writer.close(self._app_settings.persistence_flush_timeout_seconds)


def create_ledger(
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    converter: Optional[ConversionPort] = None,
    ledger_settings: Optional[LedgerSettings] = None,
    notification_defaults: Optional[NotificationDefaults] = None,
    app_settings: Optional[AppSettings] = None,
    clock: Callable[[], date] = date.today,
    use_google_sheets: bool = False,
) -> FinanceLedger:
    """
    Factory function to create all application components.

    Args:
        storage: Ledger storage backend. Defaults to in-memory.
        audit_storage: Where audit events are appended. None logs locally only.
        converter: Currency conversion port. Defaults to the built-in rate table.
        ledger_settings / notification_defaults / app_settings:
                    Explicit configuration; loaded from the environment if omitted.
        clock: Source of "today".
        use_google_sheets: Build Google Sheets storage when no storage is given.
                    Falls back to in-memory if it is not configured.

    Returns:
        A wired FinanceLedger
    """
    ledger_settings = ledger_settings or get_settings().ledger
    notification_defaults = notification_defaults or get_settings().notifications
    app_settings = app_settings or get_settings().app
    configure_logging(app_settings.log_level)

    if storage is None and use_google_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            storage = None
    storage = storage or InMemoryLedgerStorage()

    writer = PersistenceWriter()
    audit_logger = AuditLogger(audit_storage, writer)
    writer.on_failure = audit_logger.log_persistence_failed

    converter = converter or CurrencyConverter(on_fallback=audit_logger.log_conversion_fallback)

    store = LedgerStore(
        converter=converter,
        reference_currency=ledger_settings.default_currency,
        storage=storage,
        writer=writer,
        audit_logger=audit_logger,
    )
    recurring = RecurringEngine(
        store=store,
        settings=ledger_settings,
        clock=clock,
        storage=storage,
        writer=writer,
        audit_logger=audit_logger,
    )
    budgets = BudgetTracker(
        store=store,
        converter=converter,
        storage=storage,
        writer=writer,
        audit_logger=audit_logger,
    )
    notifications = NotificationEngine(
        settings=ledger_settings,
        preferences=NotificationPreferences(**notification_defaults.model_dump()),
        storage=storage,
        writer=writer,
        audit_logger=audit_logger,
    )

    return FinanceLedger(
        store=store,
        recurring=recurring,
        budgets=budgets,
        notifications=notifications,
        storage=storage,
        writer=writer,
        audit_logger=audit_logger,
        ledger_settings=ledger_settings,
        app_settings=app_settings,
        clock=clock,
    )
