"""
Tests for FinTrack models

Test strategy:
1. Unit tests for individual components (models, engines)
2. Integration tests for flows through the facade (in-memory storage)
3. No real API calls in tests
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from fintrack.models.ledger import (
    CategoryBudget,
    Frequency,
    LedgerSnapshot,
    RecurringTemplate,
    RecurringTemplateDraft,
    Transaction,
    TransactionDraft,
    TransactionType,
    UserSettings,
)
from fintrack.models.notification import Notification, NotificationKind, NotificationPreferences
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTransactionModels:
    """Tests for transaction-related Pydantic models."""

    def test_transaction_creation(self):
        """Test Transaction model creation with defaults."""
        tx = Transaction(
            title="Salary",
            amount=Decimal("5000"),
            category="Income",
            type=TransactionType.INCOME,
            date=date(2025, 1, 1),
        )
        assert tx.id
        assert tx.original_currency == "TRY"
        assert tx.is_recurring is False
        assert tx.recurring_id is None

    def test_transaction_strips_whitespace(self):
        """Test that whitespace is stripped from text fields."""
        tx = TransactionDraft(
            title="  Coffee  ",
            amount=Decimal("4"),
            category=" Food ",
            type=TransactionType.EXPENSE,
            date=date(2025, 1, 2),
        )
        assert tx.title == "Coffee"
        assert tx.category == "Food"

    def test_transaction_rejects_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            TransactionDraft(
                title="Test",
                amount=Decimal("-1"),
                category="Food",
                type=TransactionType.EXPENSE,
                date=date(2025, 1, 2),
            )

    def test_transaction_currency_is_normalised(self):
        """Test currency codes are upper-cased and validated."""
        tx = TransactionDraft(
            title="Book",
            amount=Decimal("10"),
            category="Books",
            type=TransactionType.EXPENSE,
            date=date(2025, 1, 2),
            original_currency="usd",
        )
        assert tx.original_currency == "USD"

        with pytest.raises(ValueError, match="Invalid currency code"):
            TransactionDraft(
                title="Book",
                amount=Decimal("10"),
                category="Books",
                type=TransactionType.EXPENSE,
                date=date(2025, 1, 2),
                original_currency="dollars",
            )

    def test_transaction_accepts_camel_case(self):
        """Test the web client's camelCase export shape is accepted."""
        tx = Transaction.model_validate({
            "id": "abc",
            "title": "Rent",
            "amount": 1200,
            "category": "Housing",
            "type": "expense",
            "date": "2025-01-05",
            "originalCurrency": "EUR",
            "isRecurring": True,
            "recurringId": "tpl-1",
        })
        assert tx.original_currency == "EUR"
        assert tx.recurring_id == "tpl-1"
        assert tx.model_dump(by_alias=True)["recurringId"] == "tpl-1"

    def test_fingerprint_ignores_case_and_padding(self):
        """Test the content fingerprint is insensitive to title/category casing."""
        a = TransactionDraft(
            title="Coffee", amount=Decimal("4.50"), category="Food",
            type=TransactionType.EXPENSE, date=date(2025, 1, 2),
        )
        b = TransactionDraft(
            title="COFFEE", amount=Decimal("4.5"), category="food",
            type=TransactionType.EXPENSE, date=date(2025, 1, 2),
        )
        assert a.fingerprint() == b.fingerprint()


class TestRecurringTemplateModels:
    """Tests for recurring template validation."""

    def test_cursor_defaults_to_start_date(self):
        """Test next_occurrence defaults to start_date."""
        template = RecurringTemplate(
            title="Rent",
            amount=Decimal("1000"),
            category="Housing",
            type=TransactionType.EXPENSE,
            frequency=Frequency.MONTHLY,
            start_date=date(2025, 1, 1),
        )
        assert template.next_occurrence == date(2025, 1, 1)
        assert template.last_generated is None
        assert template.is_finished is False

    def test_withdrawal_is_not_a_recurring_type(self):
        """Test that withdrawal templates are rejected."""
        with pytest.raises(ValueError, match="Withdrawal is not a valid recurring type"):
            RecurringTemplateDraft(
                title="Pull",
                amount=Decimal("10"),
                category="Savings",
                type=TransactionType.WITHDRAWAL,
                frequency=Frequency.MONTHLY,
                start_date=date(2025, 1, 1),
            )

    def test_end_date_before_start_rejected(self):
        """Test end_date cannot precede start_date."""
        with pytest.raises(ValueError, match="End date cannot be before start date"):
            RecurringTemplateDraft(
                title="Gym",
                amount=Decimal("50"),
                category="Health",
                type=TransactionType.EXPENSE,
                frequency=Frequency.MONTHLY,
                start_date=date(2025, 2, 1),
                end_date=date(2025, 1, 1),
            )

    def test_finished_once_cursor_passes_end(self):
        """Test the terminal state."""
        template = RecurringTemplate(
            title="Course",
            amount=Decimal("50"),
            category="Education",
            type=TransactionType.EXPENSE,
            frequency=Frequency.WEEKLY,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
            next_occurrence=date(2025, 2, 5),
        )
        assert template.is_finished is True


class TestBudgetAndSettingsModels:
    """Tests for budgets, settings and snapshots."""

    def test_alert_threshold_bounds(self):
        """Test alert threshold must be a fraction."""
        with pytest.raises(ValueError):
            CategoryBudget(category="Food", monthly_limit=Decimal("100"), alert_threshold=Decimal("1.5"))

    def test_user_settings_defaults(self):
        """Test settings record defaults."""
        settings = UserSettings()
        assert settings.currency == "TRY"
        assert settings.language == "tr"
        assert settings.inflation_rate == 30.0

    def test_snapshot_requires_transactions(self):
        """Test a payload without transactions is not a snapshot."""
        with pytest.raises(ValueError):
            LedgerSnapshot.model_validate({"budgets": []})

    def test_snapshot_accepts_recurring_alias(self):
        """Test recurringTransactions key is accepted."""
        snapshot = LedgerSnapshot.model_validate({
            "transactions": [],
            "recurringTransactions": [{
                "title": "Rent",
                "amount": "1000",
                "category": "Housing",
                "type": "expense",
                "frequency": "monthly",
                "startDate": "2025-01-01",
            }],
        })
        assert len(snapshot.recurring_transactions) == 1
        assert snapshot.settings is None


class TestActionResult:
    """Tests for action outcomes."""

    def test_truthiness_follows_success(self):
        """Test that results can be used directly in conditions."""
        assert ActionResult.ok("done")
        assert not ActionResult.rejected(LedgerErrorCode.INSUFFICIENT_BALANCE, "no")

    def test_not_found_helper(self):
        """Test not_found carries the code and id."""
        result = ActionResult.not_found("Transaction", "tx-1")
        assert result.error_code == LedgerErrorCode.NOT_FOUND
        assert "tx-1" in result.message


class TestNotificationPreferences:
    """Tests for notification switches."""

    def test_master_switch(self):
        """Test that disabling everything blocks every kind."""
        prefs = NotificationPreferences(enabled=False)
        assert not any(prefs.allows(kind) for kind in NotificationKind)

    def test_defaults(self):
        """Test spikes and milestones are opt-in."""
        prefs = NotificationPreferences()
        assert prefs.allows(NotificationKind.BUDGET_WARNING)
        assert not prefs.allows(NotificationKind.EXPENSE_SPIKE)
        assert not prefs.allows(NotificationKind.SAVINGS_MILESTONE)

    def test_notification_timestamp_is_utc_aware(self):
        """Test notifications are stamped with an aware UTC time."""
        notification = Notification(
            kind=NotificationKind.BUDGET_WARNING,
            dedup_key="budget_warning:Food:2025-01",
        )
        assert notification.created_at.utcoffset() == timedelta(0)


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            description="Transaction added",
        )
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.severity == AuditSeverity.INFO
        assert event.timestamp.utcoffset() == timedelta(0)

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.transaction_added("tx-1", "expense", "42.00")
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "transaction_added"
        assert log_dict["details"]["amount"] == "42.00"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEventBuilder.transaction_deleted("tx-1")
        row = event.to_sheets_row()
        assert len(row) == 10  # Expected number of columns
        assert row[2] == "transaction_deleted"  # event_type
        assert row[5] == "tx-1"  # entity_id
        assert row[9] == "True"  # is_user_action

    def test_persistence_failed_is_an_error(self):
        """Test background write failures are logged at error severity."""
        event = AuditEventBuilder.persistence_failed("add_transaction", "timeout")
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "timeout"
        assert event.is_user_action is False

    def test_recurring_changed_describes_verb(self):
        """Test the builder derives the verb from the event type."""
        event = AuditEventBuilder.recurring_changed(
            AuditEventType.RECURRING_DELETED, "tpl-1", "Rent"
        )
        assert event.description == "Recurring template deleted: Rent"
        assert event.entity_type == "recurring"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
