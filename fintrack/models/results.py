"""
Action Results

DESIGN DECISION: Expected business-rule outcomes (insufficient balance,
unknown id, malformed import) are returned, not raised. Every action on
the ledger returns an ActionResult that the presentation layer can test
for truthiness and, on failure, inspect for a machine-readable code.

Exceptions are reserved for conditions the caller cannot anticipate.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from fintrack.models.ledger import CategoryBudget, RecurringTemplate, Transaction


class LedgerErrorCode(str, Enum):
    """Why an action was rejected."""
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_FOUND = "not_found"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_TYPE = "invalid_type"
    INVALID_UPDATE = "invalid_update"


class ActionResult(BaseModel):
    """
    Outcome of a ledger action.

    Truthy exactly when the action succeeded, so callers that only care
    about success can write `if ledger.add_transaction(draft): ...`.
    """

    success: bool
    error_code: Optional[LedgerErrorCode] = None
    message: str = ""

    # Payload, depending on the action
    transaction: Optional[Transaction] = None
    template: Optional[RecurringTemplate] = None
    budget: Optional[CategoryBudget] = None
    count: int = Field(default=0, ge=0)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, message: str = "", **payload) -> "ActionResult":
        return cls(success=True, message=message, **payload)

    @classmethod
    def rejected(cls, code: LedgerErrorCode, message: str) -> "ActionResult":
        return cls(success=False, error_code=code, message=message)

    @classmethod
    def not_found(cls, entity: str, entity_id: str) -> "ActionResult":
        return cls.rejected(LedgerErrorCode.NOT_FOUND, f"{entity} not found: {entity_id}")
