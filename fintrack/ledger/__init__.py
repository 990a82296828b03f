"""
Ledger Core Package

The engines that own ledger state: transactions, recurring templates,
budgets and the notification log, plus the pure aggregate functions.
"""

from fintrack.ledger import calculations
from fintrack.ledger.budgets import BudgetTracker
from fintrack.ledger.notifications import NotificationEngine
from fintrack.ledger.recurring import RecurringEngine, add_months, step_date
from fintrack.ledger.store import LedgerStore

__all__ = [
    "calculations",
    "BudgetTracker",
    "LedgerStore",
    "NotificationEngine",
    "RecurringEngine",
    "add_months",
    "step_date",
]
