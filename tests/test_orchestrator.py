"""
Integration tests for the FinanceLedger facade.

Every test runs over in-memory storage; durable writes are checked after
flush().
"""

import asyncio
import json
from datetime import date
from decimal import Decimal

import pytest

from fintrack.models.audit import AuditEventType
from fintrack.models.ledger import FilterCriteria, Transaction, TransactionType
from fintrack.models.notification import Notification, NotificationKind
from fintrack.models.results import LedgerErrorCode
from fintrack.orchestrator import SnapshotError, create_ledger
from fintrack.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    StorageError,
)


def entry(tx_type="expense", amount="100", category="Food", on="2025-01-15", **extra):
    return {
        "title": extra.pop("title", "Entry"),
        "amount": amount,
        "category": category,
        "type": tx_type,
        "date": on,
        **extra,
    }


def kinds(ledger):
    return [n.kind for n in ledger.notifications]


@pytest.fixture
def make_ledger(converter, ledger_settings, notification_defaults, app_settings, today):
    """Build extra ledgers over their own storage; closed after the test."""
    created = []

    def _make(storage=None, audit_storage=None, **overrides):
        options = dict(
            storage=storage or InMemoryLedgerStorage(),
            audit_storage=audit_storage,
            converter=converter,
            ledger_settings=ledger_settings,
            notification_defaults=notification_defaults,
            app_settings=app_settings,
            clock=lambda: today,
        )
        options.update(overrides)
        finance = create_ledger(**options)
        created.append(finance)
        return finance

    yield _make
    for finance in created:
        finance.close()


class TestTransactionFlows:
    """Tests for adding, editing and deleting through the facade."""

    def test_monthly_summary(self, ledger):
        """Test income 5000, expense 2000 gives rate 60 and cash 3000."""
        ledger.add_transaction(entry("income", "5000", "Salary"))
        ledger.add_transaction(entry("expense", "2000", "Rent"))

        summary = ledger.summary(1, 2025)

        assert summary.savings_rate == Decimal("60")
        assert summary.cash_balance == Decimal("3000")
        assert summary.net_worth == 0

    def test_savings_guarded_by_cash_balance(self, ledger):
        """Test a savings entry beyond the cash balance is rejected."""
        ledger.add_transaction(entry("income", "5000", "Salary"))
        ledger.add_transaction(entry("expense", "2000", "Rent"))
        assert ledger.add_transaction(entry("savings", "500", "Savings"))
        assert ledger.cash_balance() == Decimal("2500")

        result = ledger.add_transaction(entry("savings", "3000", "Savings"))

        assert not result
        assert result.error_code == LedgerErrorCode.INSUFFICIENT_BALANCE
        assert ledger.cash_balance() == Decimal("2500")
        assert ledger.summary(1, 2025).net_worth == Decimal("500")

    def test_malformed_draft_rejected(self, ledger):
        """Test a payload that does not validate is rejected, not raised."""
        result = ledger.add_transaction(entry(amount="-1"))
        assert result.error_code == LedgerErrorCode.INVALID_PAYLOAD
        assert ledger.transactions == []

    def test_malformed_changes_rejected(self, ledger):
        """Test every action taking a payload returns invalid_payload on bad input."""
        tx = ledger.add_transaction(entry(title="Lunch")).transaction
        budget = ledger.set_budget({"category": "Food", "monthlyLimit": "1000"}).budget
        template = ledger.add_recurring(TestRecurringFlow.RENT).template

        results = [
            ledger.set_budget({"category": "Food", "monthlyLimit": "-5"}),
            ledger.add_recurring({**TestRecurringFlow.RENT, "amount": "-1"}),
            ledger.update_transaction(tx.id, {"type": "transfer"}),
            ledger.update_budget(budget.id, {"monthlyLimit": "lots"}),
            ledger.update_recurring(template.id, {"frequency": "hourly"}),
        ]

        assert [r.error_code for r in results] == [LedgerErrorCode.INVALID_PAYLOAD] * 5
        assert ledger.transactions[0].title == "Lunch"
        assert len(ledger.budgets) == 1
        assert len(ledger.recurring_transactions) == 1

    def test_update_and_delete(self, ledger, storage):
        """Test edits and deletes reach storage with a tombstone."""
        tx = ledger.add_transaction(entry(title="Lunch")).transaction

        assert ledger.update_transaction(tx.id, {"title": "Dinner"})
        assert ledger.delete_transaction(tx.id)
        assert ledger.delete_transaction(tx.id).error_code == LedgerErrorCode.NOT_FOUND

        assert ledger.flush()
        assert storage.transactions == {}
        assert storage.deleted_ids == {tx.id}

    def test_deleted_transaction_not_reimported(self, ledger):
        """Test a tombstoned id stays deleted through bulk import."""
        tx = ledger.add_transaction(entry()).transaction
        ledger.delete_transaction(tx.id)

        result = ledger.bulk_import([tx.model_dump()])

        assert result.count == 0
        assert ledger.transactions == []

    def test_filters_and_breakdown(self, ledger):
        """Test read helpers over the facade."""
        ledger.add_transaction(entry(amount="300", category="Food"))
        ledger.add_transaction(entry(amount="700", category="Rent"))
        ledger.add_transaction(entry(amount="50", category="Food", on="2025-02-01"))

        breakdown = ledger.expenses_by_category(1, 2025)
        assert [c.category for c in breakdown] == ["Rent", "Food"]

        food = ledger.filter_transactions(FilterCriteria(category="Food"))
        assert len(food) == 2

    def test_cleanup_duplicates(self, ledger):
        """Test duplicate recurring entries are removed through the facade."""
        ledger.bulk_import([entry(title="Auto", recurringId="tpl", isRecurring=True)])
        ledger.add_transaction(entry(title="auto", recurringId="tpl", isRecurring=True))

        result = ledger.cleanup_duplicates()

        assert result.count == 1
        assert len(ledger.transactions) == 1


class TestBudgetFlow:
    """Tests for budget progress and alerts."""

    def test_warning_then_exceeded(self, ledger):
        """Test 850 of 1000 warns once; 1100 exceeds once."""
        assert ledger.set_budget({"category": "Food", "monthlyLimit": "1000", "alertThreshold": "0.8"})

        ledger.add_transaction(entry(amount="500"))
        ledger.add_transaction(entry(amount="350"))

        progress = ledger.budget_progress("Food", 1, 2025)
        assert progress.percentage == Decimal("85")
        assert progress.exceeded is False
        assert kinds(ledger) == [NotificationKind.BUDGET_WARNING]

        ledger.add_transaction(entry(amount="250"))

        assert ledger.is_budget_exceeded("Food", 1, 2025)
        assert kinds(ledger) == [
            NotificationKind.BUDGET_EXCEEDED,
            NotificationKind.BUDGET_WARNING,
        ]

        ledger.add_transaction(entry(amount="10"))
        assert len(ledger.notifications) == 2

    def test_other_month_does_not_count(self, ledger):
        """Test an expense in February leaves January's budget alone."""
        ledger.set_budget({"category": "Food", "monthlyLimit": "100"})
        ledger.add_transaction(entry(amount="500", on="2025-02-03"))

        assert ledger.budget_progress("Food", 1, 2025).spent == 0
        assert ledger.is_budget_exceeded("Food", 2, 2025)

    def test_budget_crud(self, ledger):
        """Test budgets through the facade."""
        budget = ledger.set_budget({"category": "Food", "monthlyLimit": "100"}).budget
        assert ledger.update_budget(budget.id, {"monthlyLimit": "200"}).budget.monthly_limit == Decimal("200")
        assert ledger.toggle_budget(budget.id).budget.is_active is False
        assert ledger.all_budget_progress(1, 2025) == []
        assert ledger.delete_budget(budget.id)
        assert ledger.budgets == []


class TestRecurringFlow:
    """Tests for projection through the facade."""

    RENT = {
        "title": "Rent",
        "amount": "1000",
        "category": "Housing",
        "type": "expense",
        "frequency": "monthly",
        "startDate": "2025-01-01",
    }

    def test_projection_is_idempotent(self, ledger, storage):
        """Test a second run on the same day adds nothing."""
        template = ledger.add_recurring(self.RENT).template

        first = ledger.generate_recurring()
        second = ledger.generate_recurring()

        assert first.count == 3
        assert second.count == 0
        assert ledger.recurring_transactions[0].next_occurrence == date(2025, 4, 1)

        assert ledger.flush()
        assert len(storage.transactions) == 3
        assert storage.recurring[template.id].next_occurrence == date(2025, 4, 1)

    def test_reminder_raised_before_projection(self, ledger):
        """Test a due template gets exactly one reminder."""
        ledger.add_recurring({**self.RENT, "startDate": "2024-12-01"})

        report = ledger.generate_recurring()
        ledger.generate_recurring()

        assert report.count == 4
        assert kinds(ledger).count(NotificationKind.RECURRING_REMINDER) == 1

    def test_generated_expenses_checked_against_budget(self, ledger):
        """Test each generated month is measured against the budget."""
        ledger.set_budget({"category": "Housing", "monthlyLimit": "1100"})
        ledger.add_recurring(self.RENT)

        ledger.generate_recurring()

        warnings = [n for n in ledger.notifications if n.kind == NotificationKind.BUDGET_WARNING]
        assert sorted(n.payload["month"] for n in warnings) == [1, 2, 3]

    def test_propagated_edit_and_delete(self, ledger):
        """Test template edits reach generated entries, deletes remove them."""
        template = ledger.add_recurring(self.RENT).template
        ledger.generate_recurring()

        result = ledger.update_recurring(template.id, {"amount": "1200"}, propagate=True)
        assert result.count == 3
        assert {t.amount for t in ledger.transactions} == {Decimal("1200")}

        assert ledger.delete_recurring(template.id).count == 3
        assert ledger.transactions == []
        assert ledger.recurring_transactions == []

    def test_withdrawal_template_rejected(self, ledger):
        """Test withdrawals cannot be scheduled."""
        result = ledger.add_recurring({**self.RENT, "type": "withdrawal"})
        assert result.error_code == LedgerErrorCode.INVALID_PAYLOAD


class TestNotificationFlow:
    """Tests for milestone and spike notifications through the facade."""

    def test_savings_milestones(self, ledger):
        """Test crossing two milestones at once emits both."""
        ledger.add_transaction(entry("income", "10000", "Salary"))
        ledger.add_transaction(entry("savings", "6000", "Savings"))

        keys = sorted(n.dedup_key for n in ledger.notifications)
        assert keys == ["savings_milestone:1000", "savings_milestone:5000"]

    def test_expense_spike(self, ledger):
        """Test an expense far above the category average is flagged."""
        for _ in range(5):
            ledger.add_transaction(entry(amount="10", category="Coffee"))

        spike = ledger.add_transaction(entry(amount="25", category="Coffee")).transaction

        [notification] = ledger.notifications
        assert notification.kind == NotificationKind.EXPENSE_SPIKE
        assert notification.payload["transaction_id"] == spike.id

    def test_listener_and_log_actions(self, ledger):
        """Test subscription and read/clear actions."""
        received = []
        ledger.subscribe(received.append)
        ledger.add_transaction(entry("income", "10000", "Salary"))
        ledger.add_transaction(entry("savings", "1000", "Savings"))

        assert len(received) == 1
        assert len(ledger.unread_notifications) == 1
        assert ledger.mark_all_notifications_read().count == 1
        assert ledger.unread_notifications == []
        assert ledger.clear_notifications().count == 1
        assert ledger.notifications == []

    def test_preferences(self, ledger):
        """Test disabling a kind suppresses it."""
        assert ledger.update_notification_preferences(savings_milestones=False)
        ledger.add_transaction(entry("income", "10000", "Salary"))
        ledger.add_transaction(entry("savings", "6000", "Savings"))
        assert ledger.notifications == []
        assert ledger.notification_preferences.savings_milestones is False


class TestSettings:
    """Tests for user settings."""

    def test_currency_change_switches_reference(self, ledger, storage):
        """Test aggregates follow the settings currency."""
        ledger.add_transaction(entry("income", "100", "Salary", originalCurrency="USD"))
        assert ledger.cash_balance() == Decimal("3000")

        assert ledger.update_settings({"currency": "EUR"})

        assert ledger.cash_balance() == Decimal("50")
        assert ledger.flush()
        assert storage.settings.currency == "EUR"

    def test_invalid_settings_rejected(self, ledger):
        """Test an unsupported language is rejected."""
        result = ledger.update_settings({"language": "de"})
        assert result.error_code == LedgerErrorCode.INVALID_PAYLOAD
        assert ledger.settings.language == "tr"

    def test_csv_follows_language(self, ledger):
        """Test CSV headers use the settings language."""
        ledger.add_transaction(entry(title="Bread", amount="3.5"))
        assert ledger.export_csv().startswith("Başlık,")

        ledger.update_settings({"language": "en"})
        csv = ledger.export_csv(FilterCriteria(type=TransactionType.EXPENSE))
        assert csv.split("\n") == [
            "Title,Amount,Category,Date,Type,Description",
            "Bread,3.5,Food,2025-01-15,expense,",
        ]

    def test_breakdown_exports(self, ledger):
        """Test category and monthly CSVs use the reference currency."""
        ledger.add_transaction(entry("income", "1000", "Salary"))
        ledger.add_transaction(entry(amount="250", category="Food, Drinks"))
        ledger.update_settings({"language": "en"})

        assert ledger.export_category_csv(1, 2025).split("\n")[1] == '"Food, Drinks",250.00,100.00%,1,TRY'

        monthly = ledger.export_monthly_csv(2025).split("\n")
        assert len(monthly) == 13
        assert monthly[1] == "2025-01,1000.00,250.00,0.00,750.00,TRY"
        assert monthly[2] == "2025-02,0.00,0.00,0.00,0.00,TRY"

    def test_reset_settings(self, ledger):
        """Test reset restores the defaults."""
        ledger.update_settings({"currency": "USD", "theme": "dark"})
        assert ledger.reset_settings()
        assert ledger.settings.currency == "TRY"
        assert ledger.settings.theme == "light"

    def test_real_wealth_uses_inflation_rate(self, ledger):
        """Test the current month is reported at nominal value."""
        ledger.add_transaction(entry("income", "1000", "Salary"))
        ledger.add_transaction(entry("savings", "400", "Savings"))
        assert ledger.real_wealth(1, 2025) == Decimal("400")


class TestDataManagement:
    """Tests for snapshots, load, reconcile and wipe."""

    def _populate(self, ledger):
        ledger.add_transaction(entry("income", "5000", "Salary"))
        ledger.add_transaction(entry("expense", "120", "Food"))
        ledger.set_budget({"category": "Food", "monthlyLimit": "1000"})
        ledger.add_recurring(TestRecurringFlow.RENT)
        ledger.update_settings({"language": "en", "inflationRate": 12.5})

    def test_snapshot_round_trip(self, ledger, make_ledger):
        """Test export then import reproduces the ledger."""
        self._populate(ledger)
        exported = ledger.export_json()
        assert "recurringTransactions" in json.loads(exported)

        other = make_ledger()
        result = other.import_snapshot(exported)

        assert result.count == 2
        assert [t.id for t in other.transactions] == [t.id for t in ledger.transactions]
        assert [b.id for b in other.budgets] == [b.id for b in ledger.budgets]
        assert other.recurring_transactions[0].title == "Rent"
        assert other.settings.language == "en"
        assert other.settings.inflation_rate == 12.5

    def test_import_replaces_and_clears_tombstones(self, ledger, storage):
        """Test the snapshot is authoritative."""
        gone = ledger.add_transaction(entry(title="Gone")).transaction
        ledger.delete_transaction(gone.id)
        ledger.add_transaction(entry(title="Local"))

        result = ledger.import_snapshot({"transactions": [gone.model_dump(mode="json")]})

        assert result
        assert [t.id for t in ledger.transactions] == [gone.id]
        assert ledger.deleted_ids == set()
        assert ledger.flush()
        assert list(storage.transactions) == [gone.id]
        assert storage.deleted_ids == set()

    def test_malformed_snapshot(self, ledger, audit_storage):
        """Test a corrupt payload changes nothing."""
        ledger.add_transaction(entry())

        result = ledger.import_snapshot({"budgets": []})
        assert result.error_code == LedgerErrorCode.INVALID_PAYLOAD
        assert len(ledger.transactions) == 1

        with pytest.raises(SnapshotError):
            ledger.import_snapshot("{not json", strict=True)

        assert ledger.flush()
        rejected = [e for e in audit_storage.events if e.event_type == AuditEventType.SNAPSHOT_REJECTED]
        assert len(rejected) == 2

    def test_load_from_storage(self, storage, make_ledger):
        """Test load orders newest first, skips tombstones and seeds dedup keys."""
        older = Transaction(**entry("income", "5000", "Salary", on=date(2025, 1, 1)))
        newer = Transaction(**entry("expense", "50", on=date(2025, 1, 2)))
        dead = Transaction(**entry("expense", "75", on=date(2025, 1, 3)))
        for tx in (older, newer, dead):
            asyncio.run(storage.add_transaction(tx))
        asyncio.run(storage.add_deleted_id(dead.id))
        asyncio.run(storage.update_settings({"currency": "TRY", "language": "en"}))
        storage.notifications = [Notification(
            kind=NotificationKind.SAVINGS_MILESTONE,
            dedup_key="savings_milestone:1000",
        )]

        finance = make_ledger(storage=storage)
        result = asyncio.run(finance.load())

        assert result.count == 2
        assert [t.id for t in finance.transactions] == [newer.id, older.id]
        assert finance.deleted_ids == {dead.id}
        assert finance.settings.language == "en"

        finance.add_transaction(entry("savings", "1000", "Savings"))
        assert len(finance.notifications) == 1

    def test_order_survives_reload(self, ledger, storage, make_ledger):
        """Test imported batches and snapshots list the same way after a reload."""
        ledger.add_transaction(entry(title="Old"))
        ledger.bulk_import([entry(title="A", id="a"), entry(title="B", id="b")])
        before = [t.title for t in ledger.transactions]
        assert before == ["A", "B", "Old"]

        assert ledger.flush()
        reloaded = make_ledger(storage=storage)
        asyncio.run(reloaded.load())
        assert [t.title for t in reloaded.transactions] == before

        snapshot = ledger.export_json()
        ledger.import_snapshot(snapshot)
        assert ledger.flush()
        asyncio.run(reloaded.load())
        assert [t.title for t in reloaded.transactions] == before

    def test_reconcile_takes_storage_state(self, ledger, storage, audit_storage):
        """Test reconcile is last-writer-wins from storage."""
        tx = ledger.add_transaction(entry(title="Local")).transaction
        assert ledger.flush()
        asyncio.run(storage.update_transaction(tx.id, {"title": "Remote"}))

        result = asyncio.run(ledger.reconcile())

        assert result.count == 1
        assert ledger.transactions[0].title == "Remote"
        assert ledger.flush()
        assert any(e.event_type == AuditEventType.STATE_RECONCILED for e in audit_storage.events)

    def test_clear_all(self, ledger, storage):
        """Test everything is wiped, including tombstones and settings."""
        self._populate(ledger)
        tx = ledger.transactions[0]
        ledger.delete_transaction(tx.id)

        assert ledger.clear_all()

        assert ledger.transactions == []
        assert ledger.budgets == []
        assert ledger.recurring_transactions == []
        assert ledger.deleted_ids == set()
        assert ledger.settings.language == "tr"
        assert ledger.flush()
        assert storage.transactions == {}
        assert storage.settings is None


class TestFailureHandling:
    """Tests for background write failures."""

    def test_failed_write_is_logged_not_rolled_back(self, make_ledger):
        """Test a storage failure leaves state and records an audit event."""

        class OfflineStorage(InMemoryLedgerStorage):
            async def add_transaction(self, transaction):
                raise StorageError("sheet offline")

        audit_storage = InMemoryAuditStorage()
        finance = make_ledger(storage=OfflineStorage(), audit_storage=audit_storage)

        result = finance.add_transaction(entry())

        assert result
        assert len(finance.transactions) == 1
        assert finance.flush()
        [failure] = finance.persistence_failures
        assert failure.operation == "add_transaction"
        assert failure.error_message == "sheet offline"
        failed = [e for e in audit_storage.events if e.event_type == AuditEventType.PERSISTENCE_FAILED]
        assert len(failed) == 1

    def test_unknown_currency_audited(self, make_ledger):
        """Test a missing rate falls back to identity and is audited once."""
        audit_storage = InMemoryAuditStorage()
        finance = make_ledger(audit_storage=audit_storage, converter=None)

        finance.add_transaction(entry("income", "500", "Salary", originalCurrency="XAU"))
        finance.add_transaction(entry("income", "500", "Salary", originalCurrency="XAU"))

        assert finance.cash_balance() == Decimal("1000")
        assert finance.flush()
        fallbacks = [e for e in audit_storage.events if e.event_type == AuditEventType.CONVERSION_FALLBACK]
        assert len(fallbacks) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
