"""
Core Data Models for FinTrack

These models define the canonical in-core shape of every ledger entity.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage, snapshots and logging
4. Keep one shape regardless of which storage backend produced the data

DESIGN DECISION: Field names are snake_case inside the core. Snapshots
exchanged with the outside world use camelCase aliases (the format the
web client exports), and both spellings are accepted on input. Any other
backend-specific naming is translated inside the storage adapter.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Opaque unique identifier for any ledger entity."""
    return str(uuid4())


def _currency_code(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if len(v) != 3 or not v.isalpha():
        raise ValueError(f"Invalid currency code: {v!r}")
    return v


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Direction of a money movement.

    Savings move money out of the cash balance into net worth;
    withdrawals move it back.
    """
    INCOME = "income"
    EXPENSE = "expense"
    SAVINGS = "savings"
    WITHDRAWAL = "withdrawal"


class Frequency(str, Enum):
    """How often a recurring template produces a transaction."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class LedgerModel(BaseModel):
    """Shared config: whitespace stripping and camelCase aliases."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionFields(LedgerModel):
    """Fields shared by stored transactions and incoming drafts."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Short label shown in lists"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Always non-negative; direction comes from type"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-text category label (e.g. 'Food', 'Salary')"
    )
    type: TransactionType
    date: dt.date = Field(
        ...,
        description="Calendar date of the movement"
    )
    original_currency: str = Field(
        default="TRY",
        description="Currency the amount is expressed in"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    is_recurring: bool = Field(
        default=False,
        description="True when generated from a recurring template"
    )
    recurring_id: Optional[str] = Field(
        default=None,
        description="Lookup key of the generating template (never ownership)"
    )

    @field_validator('original_currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _currency_code(v)

    def fingerprint(self) -> str:
        """
        Content key used to catch re-imports that lack a stable id.

        title + amount + category + date + type + currency, with the free
        text lowercased and trimmed.
        """
        return "|".join([
            self.title.strip().lower(),
            f"{self.amount.normalize():f}",
            self.category.strip().lower(),
            self.date.isoformat(),
            self.type.value,
            self.original_currency,
        ])


class TransactionDraft(TransactionFields):
    """
    A transaction before it is stored.

    The id is optional: user input never carries one, bulk imports may.
    """
    id: Optional[str] = None


class Transaction(TransactionFields):
    """A recorded money movement."""
    id: str = Field(
        default_factory=new_id,
        description="Opaque unique identifier"
    )


class TransactionUpdate(LedgerModel):
    """Partial changes to a stored transaction. The id cannot change."""

    title: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    original_currency: Optional[str] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_id: Optional[str] = None

    @field_validator('original_currency')
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _currency_code(v)


# =============================================================================
# RECURRING TEMPLATES
# =============================================================================

class RecurringTemplateFields(LedgerModel):
    """Fields a user controls on a recurring template."""

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    frequency: Frequency
    start_date: dt.date
    end_date: Optional[dt.date] = None
    is_active: bool = True
    original_currency: str = "TRY"
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('type')
    @classmethod
    def reject_withdrawal(cls, v: TransactionType) -> TransactionType:
        """Withdrawals are one-off decisions, never scheduled."""
        if v == TransactionType.WITHDRAWAL:
            raise ValueError("Withdrawal is not a valid recurring type")
        return v

    @field_validator('original_currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _currency_code(v)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class RecurringTemplateDraft(RecurringTemplateFields):
    """A recurring template as submitted by the user."""
    id: Optional[str] = None
    next_occurrence: Optional[dt.date] = None


class RecurringTemplate(RecurringTemplateFields):
    """
    A generator of future transactions.

    CRITICAL: next_occurrence is the cursor - the next date to emit.
    Only the projection engine moves it, one frequency step per entry.
    """
    id: str = Field(default_factory=new_id)
    next_occurrence: Optional[dt.date] = Field(
        default=None,
        description="Next date to generate; defaults to start_date"
    )
    last_generated: Optional[dt.date] = Field(
        default=None,
        description="Date of the most recently generated entry"
    )

    @model_validator(mode='after')
    def default_cursor(self) -> 'RecurringTemplate':
        if self.next_occurrence is None:
            self.next_occurrence = self.start_date
        return self

    @property
    def is_finished(self) -> bool:
        """Terminal state: the cursor has moved past the end date."""
        return self.end_date is not None and self.next_occurrence > self.end_date


class RecurringTemplateUpdate(LedgerModel):
    """
    User edits to a template.

    The cursor fields are deliberately absent: users cannot move them.
    """

    title: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    is_active: Optional[bool] = None
    original_currency: Optional[str] = None
    description: Optional[str] = None


# =============================================================================
# BUDGETS
# =============================================================================

class CategoryBudgetFields(LedgerModel):
    """A monthly spend ceiling for one expense category."""

    category: str = Field(..., min_length=1, max_length=100)
    monthly_limit: Decimal = Field(..., ge=0)
    alert_threshold: Decimal = Field(
        default=Decimal("0.8"),
        ge=0,
        le=1,
        description="Fraction of the limit at which a warning is raised"
    )
    is_active: bool = True
    currency: str = "TRY"

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _currency_code(v)


class CategoryBudgetDraft(CategoryBudgetFields):
    id: Optional[str] = None


class CategoryBudget(CategoryBudgetFields):
    id: str = Field(default_factory=new_id)


class CategoryBudgetUpdate(LedgerModel):
    category: Optional[str] = None
    monthly_limit: Optional[Decimal] = None
    alert_threshold: Optional[Decimal] = None
    is_active: Optional[bool] = None
    currency: Optional[str] = None


class BudgetProgress(LedgerModel):
    """Spend-vs-limit for one category in one month, in the budget's currency."""

    budget_id: str
    category: str
    month: int = Field(..., ge=1, le=12)
    year: int
    spent: Decimal
    limit: Decimal
    percentage: Decimal
    exceeded: bool


# =============================================================================
# SETTINGS, SNAPSHOTS AND READ MODELS
# =============================================================================

class UserSettings(LedgerModel):
    """The persisted per-user settings record."""

    currency: str = Field(
        default="TRY",
        description="Reference currency for aggregates and balance checks"
    )
    language: Literal["tr", "en"] = "tr"
    theme: Literal["light", "dark"] = "light"
    inflation_rate: float = Field(
        default=30.0,
        ge=0,
        description="Annual inflation estimate (%) for real-wealth figures"
    )

    @field_validator('currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _currency_code(v)


class LedgerSnapshot(LedgerModel):
    """
    Structured export of the whole ledger.

    transactions is required: a payload without it is not a snapshot.
    """

    transactions: list[Transaction]
    budgets: list[CategoryBudget] = Field(default_factory=list)
    recurring_transactions: list[RecurringTemplate] = Field(default_factory=list)
    settings: Optional[UserSettings] = None
    exported_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class FinancialSummary(LedgerModel):
    """Dashboard figures for one month, in the reference currency."""

    month: int
    year: int
    total_income: Decimal
    total_expense: Decimal
    total_savings: Decimal = Field(description="Net savings: savings - withdrawals")
    cash_balance: Decimal
    net_worth: Decimal
    savings_rate: Decimal


class CategoryExpense(LedgerModel):
    category: str
    amount: Decimal
    percentage: Decimal
    count: int = 0


class FilterCriteria(LedgerModel):
    """Optional filters for transaction listings and exports."""

    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None


class GenerationReport(LedgerModel):
    """Outcome of one projection pass over all templates."""

    count: int = 0
    per_template: dict[str, int] = Field(default_factory=dict)
    transactions: list[Transaction] = Field(default_factory=list)
    rejected: dict[str, str] = Field(
        default_factory=dict,
        description="Template id -> reason its batch stopped early"
    )
