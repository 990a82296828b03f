"""
Notification Models

Notifications are structured records, not rendered text. The payload
carries the amounts, category and period relevant to the kind so the
presentation layer can localise the message itself.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from fintrack.models.ledger import new_id


class NotificationKind(str, Enum):
    """Conditions that surface a notification."""
    EXPENSE_SPIKE = "expense_spike"          # Unusually large expense
    BUDGET_WARNING = "budget_warning"        # Alert threshold reached
    BUDGET_EXCEEDED = "budget_exceeded"      # Monthly limit passed
    SAVINGS_MILESTONE = "savings_milestone"  # Cumulative savings milestone
    RECURRING_REMINDER = "recurring_reminder"  # Template is due


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


KIND_SEVERITY = {
    NotificationKind.EXPENSE_SPIKE: NotificationSeverity.WARNING,
    NotificationKind.BUDGET_WARNING: NotificationSeverity.WARNING,
    NotificationKind.BUDGET_EXCEEDED: NotificationSeverity.ERROR,
    NotificationKind.SAVINGS_MILESTONE: NotificationSeverity.SUCCESS,
    NotificationKind.RECURRING_REMINDER: NotificationSeverity.INFO,
}


class Notification(BaseModel):
    """A single entry in the notification log."""

    id: str = Field(default_factory=new_id)
    kind: NotificationKind
    severity: NotificationSeverity = NotificationSeverity.INFO
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_read: bool = False
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific amounts, category and period"
    )
    dedup_key: str = Field(
        ...,
        description="Stable key per condition so it is not renotified"
    )


class NotificationPreferences(BaseModel):
    """Runtime switches, seeded from NotificationDefaults."""

    enabled: bool = True
    budget_warnings: bool = True
    budget_exceeded: bool = True
    recurring_reminders: bool = True
    savings_milestones: bool = False
    expense_spikes: bool = False

    def allows(self, kind: NotificationKind) -> bool:
        """Is this kind switched on (and the master switch too)?"""
        if not self.enabled:
            return False
        return {
            NotificationKind.EXPENSE_SPIKE: self.expense_spikes,
            NotificationKind.BUDGET_WARNING: self.budget_warnings,
            NotificationKind.BUDGET_EXCEEDED: self.budget_exceeded,
            NotificationKind.SAVINGS_MILESTONE: self.savings_milestones,
            NotificationKind.RECURRING_REMINDER: self.recurring_reminders,
        }[kind]
