"""
Recurring Projection Engine

Owns recurring templates and turns them into concrete transactions.

Per template the state machine is:
    idle(next_occurrence) -> generating -> idle(advanced next_occurrence)
and it is terminal once the template is inactive or the cursor has moved
past end_date.

CRITICAL: generation starts at next_occurrence, never at last_generated.
The cursor IS the next date to emit. It only ever moves forward, and only
when at least one entry was committed.

Safe to call repeatedly: dates already generated for a template are
filtered out, so a second run on the same day adds nothing.
"""

import calendar
from datetime import date, timedelta
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from fintrack.audit import AuditLogger
from fintrack.config.settings import LedgerSettings
from fintrack.ledger.store import LedgerStore
from fintrack.models.audit import AuditEventBuilder, AuditEventType
from fintrack.models.ledger import (
    Frequency,
    GenerationReport,
    RecurringTemplate,
    RecurringTemplateDraft,
    RecurringTemplateUpdate,
    Transaction,
    TransactionUpdate,
    new_id,
)
from fintrack.models.results import ActionResult, LedgerErrorCode
from fintrack.services.persistence import PersistenceWriter
from fintrack.services.storage import LedgerStorageInterface


logger = structlog.get_logger()


# Template fields copied onto already-generated transactions when an edit
# is propagated
PROPAGATED_FIELDS = ("title", "amount", "category", "type", "description", "original_currency")

_DAY_STEPS = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

_MONTH_STEPS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


def add_months(d: date, months: int, anchor_day: Optional[int] = None) -> date:
    """
    Move by whole months, clamping to the last day of the target month.

    anchor_day is the day the series wants to land on; passing the
    template's start day keeps a 31st-of-month series on the 31st whenever
    the month allows it, instead of drifting to the 28th after February.
    """
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(anchor_day or d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def step_date(d: date, frequency: Frequency, anchor_day: Optional[int] = None) -> date:
    """One frequency step forward from d."""
    if frequency in _DAY_STEPS:
        return d + timedelta(days=_DAY_STEPS[frequency])
    return add_months(d, _MONTH_STEPS[frequency], anchor_day)


def _step(template: RecurringTemplate, d: date) -> date:
    return step_date(d, template.frequency, template.start_date.day)


class RecurringEngine:
    """
    Recurring template CRUD plus the projection pass.

    Generated entries go through LedgerStore.commit_generated, the same
    validated path user input takes.
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], date] = date.today,
        storage: Optional[LedgerStorageInterface] = None,
        writer: Optional[PersistenceWriter] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or LedgerSettings()
        self._clock = clock
        self._storage = storage
        self._writer = writer
        self._audit = audit_logger

        self._templates: list[RecurringTemplate] = []

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def templates(self) -> list[RecurringTemplate]:
        """All templates, newest first."""
        return list(self._templates)

    def get(self, template_id: str) -> Optional[RecurringTemplate]:
        idx = self._index(template_id)
        return None if idx is None else self._templates[idx]

    def _index(self, template_id: str) -> Optional[int]:
        for idx, t in enumerate(self._templates):
            if t.id == template_id:
                return idx
        return None

    def _persist(self, operation: str, factory) -> None:
        if self._storage is not None and self._writer is not None:
            self._writer.submit(operation, factory)

    def _record(self, event) -> None:
        if self._audit:
            self._audit.record(event)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def add_template(self, draft: RecurringTemplateDraft) -> ActionResult:
        """Store a new template. Its cursor starts at start_date unless given."""
        template = RecurringTemplate.model_validate({
            **draft.model_dump(exclude={"id", "next_occurrence"}),
            "id": new_id(),
            "next_occurrence": draft.next_occurrence or draft.start_date,
        })
        self._templates.insert(0, template)

        storage = self._storage
        self._persist("add_recurring", lambda: storage.add_recurring(template))
        self._record(AuditEventBuilder.recurring_changed(
            AuditEventType.RECURRING_CREATED, template.id, template.title
        ))
        return ActionResult.ok("Recurring template added", template=template)

    def update_template(
        self,
        template_id: str,
        changes: RecurringTemplateUpdate,
        propagate: bool = False,
    ) -> ActionResult:
        """
        Apply user edits to a template.

        The cursor fields cannot be edited. Changing start_date on a
        template that has never generated moves its cursor to the new
        start date.

        With propagate, title/amount/category/type/description/currency
        changes are also written to every transaction already generated
        from the template; count is how many were rewritten.
        """
        idx = self._index(template_id)
        if idx is None:
            return ActionResult.not_found("Recurring template", template_id)

        existing = self._templates[idx]
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return ActionResult.ok("Nothing to update", template=existing)

        if "start_date" in fields and existing.last_generated is None:
            fields["next_occurrence"] = fields["start_date"]

        try:
            updated = RecurringTemplate.model_validate({**existing.model_dump(), **fields})
        except ValidationError as e:
            return ActionResult.rejected(LedgerErrorCode.INVALID_UPDATE, str(e))

        self._templates[idx] = updated
        storage = self._storage
        self._persist("update_recurring", lambda: storage.update_recurring(template_id, fields))

        propagated = 0
        if propagate:
            tx_changes = {k: v for k, v in fields.items() if k in PROPAGATED_FIELDS}
            if tx_changes:
                for transaction in self._store.by_recurring_id(template_id):
                    if self._store.update(transaction.id, TransactionUpdate(**tx_changes)):
                        propagated += 1

        self._record(AuditEventBuilder.recurring_changed(
            AuditEventType.RECURRING_UPDATED,
            template_id,
            updated.title,
            details={"fields": sorted(fields), "propagated": propagated},
        ))
        return ActionResult.ok("Recurring template updated", template=updated, count=propagated)

    def delete_template(self, template_id: str) -> ActionResult:
        """
        Delete a template and everything it generated.

        Two explicit steps: delete transactions whose recurring_id matches,
        then delete the template itself. count is the number of
        transactions removed.
        """
        idx = self._index(template_id)
        if idx is None:
            return ActionResult.not_found("Recurring template", template_id)

        removed_transactions = self._store.delete_by_recurring_id(template_id)
        template = self._templates.pop(idx)

        storage = self._storage
        self._persist("delete_recurring", lambda: storage.delete_recurring(template_id))
        self._record(AuditEventBuilder.recurring_changed(
            AuditEventType.RECURRING_DELETED,
            template_id,
            template.title,
            details={"transactions_removed": removed_transactions},
        ))
        return ActionResult.ok(
            "Recurring template deleted",
            template=template,
            count=removed_transactions,
        )

    def toggle_active(self, template_id: str) -> ActionResult:
        idx = self._index(template_id)
        if idx is None:
            return ActionResult.not_found("Recurring template", template_id)

        template = self._templates[idx].model_copy(
            update={"is_active": not self._templates[idx].is_active}
        )
        self._templates[idx] = template

        storage = self._storage
        self._persist(
            "update_recurring",
            lambda: storage.update_recurring(template_id, {"is_active": template.is_active}),
        )
        self._record(AuditEventBuilder.recurring_changed(
            AuditEventType.RECURRING_UPDATED,
            template_id,
            template.title,
            details={"is_active": template.is_active},
        ))
        return ActionResult.ok("Recurring template toggled", template=template)

    def replace_all(self, templates: list[RecurringTemplate]) -> None:
        """Swap in templates loaded from storage. Nothing is persisted."""
        self._templates = list(templates)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def horizon_for(self, template: RecurringTemplate, today: date) -> date:
        """end_date if set, otherwise a bounded window past today."""
        if template.end_date:
            return template.end_date
        return today + timedelta(days=self._settings.projection_horizon_days)

    def due_templates(self, today: Optional[date] = None) -> list[tuple[RecurringTemplate, date]]:
        """
        Templates due for a reminder, with the date they fell due.

        A template is due once a full frequency interval has elapsed since
        its last generated entry (or its start date if it never generated).
        """
        today = today or self._clock()
        due = []
        for template in self._templates:
            if not template.is_active or template.is_finished:
                continue
            anchor = template.last_generated or template.start_date
            due_date = _step(template, anchor)
            if due_date > today:
                continue
            if template.end_date and due_date > template.end_date:
                continue
            due.append((template, due_date))
        return due

    def pending_dates(self, template: RecurringTemplate, today: Optional[date] = None) -> list[date]:
        """
        Dates the next projection pass would generate for the template.

        Walks from the cursor up to the horizon, capped per template, then
        drops dates already generated for it.
        """
        today = today or self._clock()
        if not template.is_active or template.is_finished:
            return []

        horizon = self.horizon_for(template, today)
        cap = self._settings.max_occurrences_per_template
        dates = []
        current = template.next_occurrence
        while current <= horizon and len(dates) < cap:
            dates.append(current)
            current = _step(template, current)

        if len(dates) == cap and current <= horizon:
            logger.warning(
                "recurring_projection_capped",
                template_id=template.id,
                cap=cap,
            )

        existing = {t.date for t in self._store.by_recurring_id(template.id)}
        return [d for d in dates if d not in existing]

    def _occurrence(self, template: RecurringTemplate, on: date) -> Transaction:
        return Transaction(
            title=template.title,
            amount=template.amount,
            category=template.category,
            type=template.type,
            date=on,
            original_currency=template.original_currency,
            description=template.description,
            is_recurring=True,
            recurring_id=template.id,
        )

    def generate(self, today: Optional[date] = None) -> GenerationReport:
        """
        Project every active template up to its horizon.

        For each template: build the pending entries, commit them through
        the store, then move the cursor one step past the last committed
        date and set last_generated to that date. A template whose batch
        committed nothing keeps its cursor.
        """
        today = today or self._clock()
        report = GenerationReport()

        for idx in range(len(self._templates) - 1, -1, -1):
            template = self._templates[idx]
            dates = self.pending_dates(template, today)
            if not dates:
                continue

            batch = [self._occurrence(template, d) for d in dates]
            result = self._store.commit_generated(batch)
            committed = batch[:result.count]

            if not result:
                report.rejected[template.id] = result.message
                logger.warning(
                    "recurring_batch_stopped",
                    template_id=template.id,
                    committed=len(committed),
                    reason=result.message,
                )

            if not committed:
                continue

            last = committed[-1].date
            cursor = {"next_occurrence": _step(template, last), "last_generated": last}
            self._templates[idx] = template.model_copy(update=cursor)

            storage = self._storage
            self._persist(
                "update_recurring",
                lambda tid=template.id, c=cursor: storage.update_recurring(tid, c),
            )

            report.per_template[template.id] = len(committed)
            report.transactions.extend(committed)
            report.count += len(committed)

        if report.count:
            self._record(AuditEventBuilder.recurring_generated(report.per_template))
        return report
