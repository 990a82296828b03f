"""
Shared fixtures.

Everything runs in memory with a fixed clock and a fixed rate table:
no network, no environment-dependent behaviour.
"""

from datetime import date
from decimal import Decimal

import pytest

from fintrack.config.settings import AppSettings, LedgerSettings, NotificationDefaults
from fintrack.ledger.store import LedgerStore
from fintrack.models.ledger import TransactionDraft, TransactionType
from fintrack.orchestrator import create_ledger
from fintrack.services.currency import CurrencyConverter
from fintrack.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


TODAY = date(2025, 1, 15)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def converter():
    """1 USD = 30 TRY = 0.5 EUR."""
    return CurrencyConverter(
        rates={"USD": Decimal("1"), "TRY": Decimal("30"), "EUR": Decimal("0.5")}
    )


@pytest.fixture
def ledger_settings():
    return LedgerSettings(default_currency="TRY")


@pytest.fixture
def notification_defaults():
    """Every notification kind switched on."""
    return NotificationDefaults(
        enabled=True,
        budget_warnings=True,
        budget_exceeded=True,
        recurring_reminders=True,
        savings_milestones=True,
        expense_spikes=True,
    )


@pytest.fixture
def app_settings():
    return AppSettings(log_level="WARNING", persistence_flush_timeout_seconds=5)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def store(converter):
    """A store with no durable backend."""
    return LedgerStore(converter=converter, reference_currency="TRY")


@pytest.fixture
def make_draft():
    """Build a TransactionDraft with sensible defaults."""
    def _make(
        tx_type=TransactionType.EXPENSE,
        amount="100",
        category="Food",
        on=TODAY,
        title="Entry",
        currency="TRY",
        **extra,
    ):
        return TransactionDraft(
            title=title,
            amount=Decimal(amount),
            category=category,
            type=tx_type,
            date=on,
            original_currency=currency,
            **extra,
        )
    return _make


@pytest.fixture
def ledger(storage, audit_storage, converter, ledger_settings, notification_defaults, app_settings):
    """A fully wired facade over in-memory storage."""
    finance = create_ledger(
        storage=storage,
        audit_storage=audit_storage,
        converter=converter,
        ledger_settings=ledger_settings,
        notification_defaults=notification_defaults,
        app_settings=app_settings,
        clock=lambda: TODAY,
    )
    yield finance
    finance.close()
