"""
Ledger Store

Owns the transaction collection and the tombstone set.

DESIGN DECISION: Mutations are optimistic. Each action validates against
the current in-memory state, mutates it, hands the durable write to the
PersistenceWriter and returns. A write that later fails is logged; the
in-memory state is not rolled back.

INVARIANT: a savings transaction is only accepted if the cash balance
(all transactions, reference currency) stays >= 0 afterwards.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from fintrack.audit import AuditLogger
from fintrack.ledger import calculations
from fintrack.models.audit import AuditEventBuilder
from fintrack.models.ledger import (
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
    new_id,
)
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.services.currency import ConversionPort
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import LedgerStorageInterface


TransactionRecord = Union[TransactionDraft, Transaction, dict[str, Any]]


class LedgerStore:
    """
    In-memory transaction ledger.

    Transactions are kept newest first by insertion. Deleted ids are
    remembered so imports and reconciliation never bring them back.
    """

    def __init__(
        self,
        converter: ConversionPort,
        reference_currency: str = "TRY",
        storage: Optional[LedgerStorageInterface] = None,
        writer: Optional[PersistenceWriter] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._converter = converter
        self.reference_currency = reference_currency
        self._storage = storage
        self._writer = writer
        self._audit = audit_logger

        self._transactions: list[Transaction] = []
        self._deleted_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def transactions(self) -> list[Transaction]:
        """All transactions, newest first."""
        return list(self._transactions)

    @property
    def deleted_ids(self) -> set[str]:
        return set(self._deleted_ids)

    def get(self, transaction_id: str) -> Optional[Transaction]:
        for t in self._transactions:
            if t.id == transaction_id:
                return t
        return None

    def by_recurring_id(self, recurring_id: str) -> list[Transaction]:
        return [t for t in self._transactions if t.recurring_id == recurring_id]

    def converted(self, transactions: Optional[Iterable[Transaction]] = None) -> list[Transaction]:
        """Transactions (all by default) with amounts in the reference currency."""
        if transactions is None:
            transactions = self._transactions
        return calculations.to_reference_currency(
            transactions, self._converter, self.reference_currency
        )

    def cash_balance(self) -> Decimal:
        """Cash balance over the whole ledger, in the reference currency."""
        return calculations.cash_balance(self.converted())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _persist(self, operation: str, factory) -> None:
        if self._storage is not None and self._writer is not None:
            self._writer.submit(operation, factory)

    def _record(self, event) -> None:
        if self._audit:
            self._audit.record(event)

    def _index(self, transaction_id: str) -> Optional[int]:
        for idx, t in enumerate(self._transactions):
            if t.id == transaction_id:
                return idx
        return None

    def _to_reference(self, transaction: Transaction) -> Decimal:
        return self._converter.convert(
            transaction.amount, transaction.original_currency, self.reference_currency
        )

    def _insufficient(self, message: str) -> ActionResult:
        self._record(AuditEventBuilder.transaction_rejected(
            LedgerErrorCode.INSUFFICIENT_BALANCE.value, message
        ))
        return ActionResult.rejected(LedgerErrorCode.INSUFFICIENT_BALANCE, message)

    def _check_savings(self, transaction: Transaction, others: list[Transaction]) -> Optional[ActionResult]:
        """Rejection if saving this amount would overdraw the cash balance."""
        if transaction.type != TransactionType.SAVINGS:
            return None
        available = calculations.cash_balance(self.converted(others))
        requested = self._to_reference(transaction)
        if available < requested:
            return self._insufficient(
                f"Insufficient cash balance: {available:f} {self.reference_currency} "
                f"available, {requested:f} requested"
            )
        return None

    def _remove_at(self, idx: int) -> Transaction:
        removed = self._transactions.pop(idx)
        self._deleted_ids.add(removed.id)
        storage = self._storage
        self._persist("delete_transaction", lambda: storage.delete_transaction(removed.id))
        self._persist("add_deleted_id", lambda: storage.add_deleted_id(removed.id))
        return removed

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def add(self, draft: TransactionDraft) -> ActionResult:
        """
        Record a new transaction.

        Savings are checked against the cash balance of all current
        transactions. The stored record always gets a fresh id.
        """
        transaction = Transaction.model_validate(
            {**draft.model_dump(exclude={"id"}), "id": new_id()}
        )

        rejection = self._check_savings(transaction, self._transactions)
        if rejection is not None:
            return rejection

        self._transactions.insert(0, transaction)
        storage = self._storage
        self._persist("add_transaction", lambda: storage.add_transaction(transaction))
        self._record(AuditEventBuilder.transaction_added(
            transaction.id, transaction.type.value, f"{transaction.amount:f}"
        ))
        return ActionResult.ok("Transaction added", transaction=transaction)

    def update(self, transaction_id: str, changes: TransactionUpdate) -> ActionResult:
        """
        Apply partial changes in place.

        When the old or the new type is savings, the whole ledger with the
        edited record must still have a non-negative cash balance.
        Nothing changes on rejection.
        """
        idx = self._index(transaction_id)
        if idx is None:
            return ActionResult.not_found("Transaction", transaction_id)

        existing = self._transactions[idx]
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return ActionResult.ok("Nothing to update", transaction=existing)

        try:
            updated = Transaction.model_validate({**existing.model_dump(), **fields})
        except ValidationError as e:
            return ActionResult.rejected(LedgerErrorCode.INVALID_UPDATE, str(e))

        if TransactionType.SAVINGS in (existing.type, updated.type):
            candidate = list(self._transactions)
            candidate[idx] = updated
            balance = calculations.cash_balance(self.converted(candidate))
            if balance < 0:
                return self._insufficient(
                    f"Update would leave a cash balance of {balance:f} {self.reference_currency}"
                )

        self._transactions[idx] = updated
        storage = self._storage
        self._persist(
            "update_transaction",
            lambda: storage.update_transaction(transaction_id, fields),
        )
        self._record(AuditEventBuilder.transaction_updated(transaction_id, sorted(fields)))
        return ActionResult.ok("Transaction updated", transaction=updated)

    def delete(self, transaction_id: str) -> ActionResult:
        """
        Remove a transaction and tombstone its id.

        Deleting an unknown (or already deleted) id changes nothing and
        reports not_found.
        """
        idx = self._index(transaction_id)
        if idx is None:
            return ActionResult.not_found("Transaction", transaction_id)

        removed = self._remove_at(idx)
        self._record(AuditEventBuilder.transaction_deleted(removed.id))
        return ActionResult.ok("Transaction deleted", transaction=removed, count=1)

    def delete_by_recurring_id(self, recurring_id: str) -> int:
        """Delete (and tombstone) every transaction generated by a template."""
        removed = 0
        for idx in range(len(self._transactions) - 1, -1, -1):
            if self._transactions[idx].recurring_id == recurring_id:
                self._remove_at(idx)
                removed += 1
        return removed

    def bulk_import(self, records: Iterable[TransactionRecord], replace: bool = False) -> ActionResult:
        """
        Import a batch of transactions.

        Each record is skipped if its id is already present or tombstoned,
        or if its content fingerprint matches a transaction already in the
        ledger. Records without an id are also matched against earlier
        records of the batch; records with distinct ids never collapse into
        one. With replace, the ledger and the tombstones are cleared first.

        The batch keeps its order and lands on top of the ledger. Storage
        receives it last record first so a reload yields the same order.

        A malformed record rejects the whole batch before anything changes.
        """
        try:
            drafts = [
                r if isinstance(r, TransactionDraft) else TransactionDraft.model_validate(
                    r.model_dump() if isinstance(r, Transaction) else r
                )
                for r in records
            ]
        except ValidationError as e:
            self._record(AuditEventBuilder.transaction_rejected(
                LedgerErrorCode.INVALID_PAYLOAD.value, str(e)
            ))
            return ActionResult.rejected(LedgerErrorCode.INVALID_PAYLOAD, str(e))

        storage = self._storage
        if replace:
            self._transactions = []
            self._deleted_ids = set()
            self._persist("clear_transactions", lambda: storage.clear_transactions())
            self._persist("clear_deleted_ids", lambda: storage.clear_deleted_ids())

        known_ids = {t.id for t in self._transactions}
        existing = {t.fingerprint() for t in self._transactions}
        batch: set[str] = set()
        imported: list[Transaction] = []

        for draft in drafts:
            if draft.id and (draft.id in known_ids or draft.id in self._deleted_ids):
                continue
            fingerprint = draft.fingerprint()
            if fingerprint in existing or (not draft.id and fingerprint in batch):
                continue

            transaction = Transaction.model_validate(
                {**draft.model_dump(), "id": draft.id or new_id()}
            )
            known_ids.add(transaction.id)
            batch.add(fingerprint)
            imported.append(transaction)

        self._transactions = imported + self._transactions
        for transaction in reversed(imported):
            self._persist(
                "add_transaction",
                lambda t=transaction: storage.add_transaction(t),
            )

        skipped = len(drafts) - len(imported)
        self._record(AuditEventBuilder.bulk_import_completed(len(imported), skipped, replace))
        return ActionResult.ok(
            f"Imported {len(imported)} transactions, skipped {skipped}",
            count=len(imported),
        )

    def commit_generated(self, transactions: list[Transaction]) -> ActionResult:
        """
        Entry path for projected transactions.

        Entries are committed in order. Only savings entries are checked
        against the cash balance; the first rejected one stops the batch.
        count is the number committed either way.
        """
        storage = self._storage
        committed = 0
        for transaction in transactions:
            rejection = self._check_savings(transaction, self._transactions)
            if rejection is not None:
                rejection.count = committed
                return rejection

            self._transactions.insert(0, transaction)
            self._persist(
                "add_transaction",
                lambda t=transaction: storage.add_transaction(t),
            )
            committed += 1

        return ActionResult.ok(f"Committed {committed} transactions", count=committed)

    def cleanup_recurring_duplicates(self) -> int:
        """
        Remove repeated (recurring_id, date) pairs, keeping the earliest
        inserted transaction of each.
        """
        seen: set[tuple[str, str]] = set()
        duplicates: list[str] = []
        for t in reversed(self._transactions):
            if not t.recurring_id:
                continue
            key = (t.recurring_id, t.date.isoformat())
            if key in seen:
                duplicates.append(t.id)
            else:
                seen.add(key)

        for transaction_id in duplicates:
            self._remove_at(self._index(transaction_id))

        if duplicates:
            self._record(AuditEventBuilder.duplicates_removed(len(duplicates)))
        return len(duplicates)

    def replace_all(
        self,
        transactions: Iterable[Transaction],
        deleted_ids: Optional[Iterable[str]] = None,
    ) -> None:
        """Swap in state loaded from storage. Nothing is persisted."""
        self._transactions = list(transactions)
        self._deleted_ids = set(deleted_ids or ())
