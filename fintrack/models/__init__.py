"""
Data Models Package

This package contains all Pydantic models used in the FinTrack ledger core.
All data flowing through the system must conform to these schemas.
"""

from fintrack.models.ledger import (
    BudgetProgress,
    CategoryBudget,
    CategoryBudgetDraft,
    CategoryBudgetUpdate,
    CategoryExpense,
    FilterCriteria,
    FinancialSummary,
    Frequency,
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
    new_id,
)
from fintrack.models.notification import (
    Notification,
    NotificationKind,
    NotificationPreferences,
    NotificationSeverity,
)
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BudgetProgress",
    "CategoryBudget",
    "CategoryBudgetDraft",
    "CategoryBudgetUpdate",
    "CategoryExpense",
    "FilterCriteria",
    "FinancialSummary",
    "Frequency",
    "GenerationReport",
    "LedgerSnapshot",
    "RecurringTemplate",
    "RecurringTemplateDraft",
    "RecurringTemplateUpdate",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "TransactionUpdate",
    "UserSettings",
    "new_id",
    # Notification models
    "Notification",
    "NotificationKind",
    "NotificationPreferences",
    "NotificationSeverity",
    # Results
    "ActionResult",
    "LedgerErrorCode",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
