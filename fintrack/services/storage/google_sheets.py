"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a durable backend because:
1. Users can view and back up their ledger directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No transactions (the core tolerates this: it is optimistic anyway)
- Limited query capabilities (we load whole sheets and filter in Python)

This is the only place that knows the sheet header names. Each collection
has a column map from sheet header to canonical model field; the core
never sees the sheet's naming.
"""

import json
from typing import Any, Optional

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fintrack.config import get_settings
from fintrack.config.settings import GoogleSheetsSettings
from fintrack.models.audit import AuditEvent, AuditEventType, AuditSeverity
from fintrack.models.ledger import (
    CategoryBudget,
    LedgerSnapshot,
    RecurringTemplate,
    Transaction,
    UserSettings,
)
from fintrack.models.notification import Notification
from fintrack.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


# (sheet header, model field) per collection
TRANSACTION_COLUMNS = [
    ("id", "id"),
    ("title", "title"),
    ("amount", "amount"),
    ("category", "category"),
    ("type", "type"),
    ("transaction_date", "date"),
    ("original_currency", "original_currency"),
    ("description", "description"),
    ("is_recurring", "is_recurring"),
    ("recurring_id", "recurring_id"),
]

BUDGET_COLUMNS = [
    ("id", "id"),
    ("category", "category"),
    ("monthly_limit", "monthly_limit"),
    ("alert_threshold", "alert_threshold"),
    ("is_active", "is_active"),
    ("currency", "currency"),
]

RECURRING_COLUMNS = [
    ("id", "id"),
    ("title", "title"),
    ("amount", "amount"),
    ("category", "category"),
    ("type", "type"),
    ("frequency", "frequency"),
    ("start_date", "start_date"),
    ("end_date", "end_date"),
    ("next_occurrence", "next_occurrence"),
    ("last_generated", "last_generated"),
    ("is_active", "is_active"),
    ("original_currency", "original_currency"),
    ("description", "description"),
]

NOTIFICATION_COLUMNS = [
    ("id", "id"),
    ("kind", "kind"),
    ("severity", "severity"),
    ("created_at", "created_at"),
    ("is_read", "is_read"),
    ("payload_json", "payload"),
    ("dedup_key", "dedup_key"),
]

SETTINGS_COLUMNS = ["key", "value"]
DELETED_COLUMNS = ["transaction_id"]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_JSON_FIELDS = {"payload"}


class SheetCodec:
    """
    Row <-> model translation for one collection.

    Values are written as strings; empty cells read back as missing
    fields so model defaults apply.
    """

    def __init__(self, model: type[BaseModel], columns: list[tuple[str, str]]):
        self.model = model
        self.columns = columns

    @property
    def headers(self) -> list[str]:
        return [header for header, _ in self.columns]

    def to_row(self, record: BaseModel) -> list[str]:
        data = record.model_dump(mode="json")
        row = []
        for _, field in self.columns:
            value = data.get(field)
            if value is None:
                row.append("")
            elif field in _JSON_FIELDS:
                row.append(json.dumps(value))
            else:
                row.append(str(value))
        return row

    def from_row(self, row: list[str]) -> BaseModel:
        data: dict[str, Any] = {}
        for index, (_, field) in enumerate(self.columns):
            value = row[index] if index < len(row) else ""
            if value == "":
                continue
            data[field] = json.loads(value) if field in _JSON_FIELDS else value
        return self.model.model_validate(data)


TRANSACTION_CODEC = SheetCodec(Transaction, TRANSACTION_COLUMNS)
BUDGET_CODEC = SheetCodec(CategoryBudget, BUDGET_COLUMNS)
RECURRING_CODEC = SheetCodec(RecurringTemplate, RECURRING_COLUMNS)
NOTIFICATION_CODEC = SheetCodec(Notification, NOTIFICATION_COLUMNS)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, headers: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet whose first row holds the headers."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(headers),
            )
            sheet.append_row(headers)
        return sheet


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of the ledger storage port.

    One worksheet per collection, one record per row, first column is
    always the record id (or settings key).
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._names = self._client.settings

    # ------------------------------------------------------------------
    # Generic row helpers
    # ------------------------------------------------------------------

    def _sheet(self, title: str, codec: SheetCodec) -> gspread.Worksheet:
        return self._client.get_worksheet(title, codec.headers)

    def _read_all(self, title: str, codec: SheetCodec) -> list:
        try:
            rows = self._sheet(title, codec).get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to read {title}: {e}")

        records = []
        for row in rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                records.append(codec.from_row(row))
            except Exception:
                continue  # Skip malformed rows
        return records

    def _find_row(self, sheet: gspread.Worksheet, record_id: str) -> Optional[tuple[int, list]]:
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):  # Row 1 is header
            if row and row[0] == record_id:
                return idx, row
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        reraise=True,
    )
    def _append(self, title: str, codec: SheetCodec, record: BaseModel) -> None:
        sheet = self._sheet(title, codec)
        record_id = getattr(record, "id")
        if self._find_row(sheet, record_id):
            raise DuplicateError(f"{title} row already exists: {record_id}")
        try:
            sheet.append_row(codec.to_row(record), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to append to {title}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type((DuplicateError, NotFoundError)),
        reraise=True,
    )
    def _update(self, title: str, codec: SheetCodec, record_id: str, changes: dict[str, Any]) -> None:
        sheet = self._sheet(title, codec)
        found = self._find_row(sheet, record_id)
        if found is None:
            raise NotFoundError(f"{title} row not found: {record_id}")
        idx, row = found
        current = codec.from_row(row)
        updated = codec.model.model_validate({**current.model_dump(), **changes})
        try:
            sheet.update(
                range_name=f"A{idx}",
                values=[codec.to_row(updated)],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to update {title}: {e}")

    def _delete(self, title: str, codec: SheetCodec, record_id: str) -> None:
        sheet = self._sheet(title, codec)
        found = self._find_row(sheet, record_id)
        if found is None:
            return
        try:
            sheet.delete_rows(found[0])
        except Exception as e:
            raise StorageError(f"Failed to delete from {title}: {e}")

    def _replace(self, title: str, headers: list[str], rows: list[list[str]]) -> None:
        sheet = self._client.get_worksheet(title, headers)
        try:
            sheet.clear()
            sheet.append_rows([headers] + rows, value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to rewrite {title}: {e}")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_all_transactions(self) -> list[Transaction]:
        return self._read_all(self._names.transactions_sheet_name, TRANSACTION_CODEC)

    async def add_transaction(self, transaction: Transaction) -> None:
        self._append(self._names.transactions_sheet_name, TRANSACTION_CODEC, transaction)

    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> None:
        self._update(self._names.transactions_sheet_name, TRANSACTION_CODEC, transaction_id, changes)

    async def delete_transaction(self, transaction_id: str) -> None:
        self._delete(self._names.transactions_sheet_name, TRANSACTION_CODEC, transaction_id)

    async def clear_transactions(self) -> None:
        self._replace(self._names.transactions_sheet_name, TRANSACTION_CODEC.headers, [])

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def get_all_budgets(self) -> list[CategoryBudget]:
        return self._read_all(self._names.budgets_sheet_name, BUDGET_CODEC)

    async def add_budget(self, budget: CategoryBudget) -> None:
        self._append(self._names.budgets_sheet_name, BUDGET_CODEC, budget)

    async def update_budget(self, budget_id: str, changes: dict[str, Any]) -> None:
        self._update(self._names.budgets_sheet_name, BUDGET_CODEC, budget_id, changes)

    async def delete_budget(self, budget_id: str) -> None:
        self._delete(self._names.budgets_sheet_name, BUDGET_CODEC, budget_id)

    # ------------------------------------------------------------------
    # Recurring templates
    # ------------------------------------------------------------------

    async def get_all_recurring(self) -> list[RecurringTemplate]:
        return self._read_all(self._names.recurring_sheet_name, RECURRING_CODEC)

    async def add_recurring(self, template: RecurringTemplate) -> None:
        self._append(self._names.recurring_sheet_name, RECURRING_CODEC, template)

    async def update_recurring(self, template_id: str, changes: dict[str, Any]) -> None:
        self._update(self._names.recurring_sheet_name, RECURRING_CODEC, template_id, changes)

    async def delete_recurring(self, template_id: str) -> None:
        self._delete(self._names.recurring_sheet_name, RECURRING_CODEC, template_id)

    # ------------------------------------------------------------------
    # Settings (key/value rows)
    # ------------------------------------------------------------------

    async def get_settings(self) -> Optional[UserSettings]:
        sheet = self._client.get_worksheet(self._names.settings_sheet_name, SETTINGS_COLUMNS)
        try:
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read settings: {e}")
        values = {row[0]: row[1] for row in rows if len(row) >= 2 and row[0]}
        if not values:
            return None
        return UserSettings.model_validate(values)

    async def update_settings(self, changes: dict[str, Any]) -> None:
        current = await self.get_settings() or UserSettings()
        updated = UserSettings.model_validate({**current.model_dump(), **changes})
        rows = [[key, str(value)] for key, value in updated.model_dump(mode="json").items()]
        self._replace(self._names.settings_sheet_name, SETTINGS_COLUMNS, rows)

    async def reset_settings(self) -> None:
        self._replace(self._names.settings_sheet_name, SETTINGS_COLUMNS, [])

    # ------------------------------------------------------------------
    # Tombstones
    # ------------------------------------------------------------------

    async def get_deleted_ids(self) -> set[str]:
        sheet = self._client.get_worksheet(self._names.deleted_sheet_name, DELETED_COLUMNS)
        try:
            rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read deleted ids: {e}")
        return {row[0] for row in rows if row and row[0]}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def add_deleted_id(self, transaction_id: str) -> None:
        sheet = self._client.get_worksheet(self._names.deleted_sheet_name, DELETED_COLUMNS)
        try:
            sheet.append_row([transaction_id], value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to record deleted id: {e}")

    async def clear_deleted_ids(self) -> None:
        self._replace(self._names.deleted_sheet_name, DELETED_COLUMNS, [])

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def get_notifications(self) -> list[Notification]:
        return self._read_all(self._names.notifications_sheet_name, NOTIFICATION_CODEC)

    async def save_notifications(self, notifications: list[Notification]) -> None:
        rows = [NOTIFICATION_CODEC.to_row(n) for n in notifications]
        self._replace(self._names.notifications_sheet_name, NOTIFICATION_CODEC.headers, rows)

    # ------------------------------------------------------------------
    # Whole-store operations
    # ------------------------------------------------------------------

    async def import_all(self, snapshot: LedgerSnapshot) -> None:
        self._replace(
            self._names.transactions_sheet_name,
            TRANSACTION_CODEC.headers,
            [TRANSACTION_CODEC.to_row(t) for t in snapshot.transactions],
        )
        self._replace(
            self._names.budgets_sheet_name,
            BUDGET_CODEC.headers,
            [BUDGET_CODEC.to_row(b) for b in snapshot.budgets],
        )
        self._replace(
            self._names.recurring_sheet_name,
            RECURRING_CODEC.headers,
            [RECURRING_CODEC.to_row(r) for r in snapshot.recurring_transactions],
        )
        if snapshot.settings:
            await self.update_settings(snapshot.settings.model_dump())
        else:
            await self.reset_settings()

    async def clear_all(self) -> None:
        for title, headers in [
            (self._names.transactions_sheet_name, TRANSACTION_CODEC.headers),
            (self._names.budgets_sheet_name, BUDGET_CODEC.headers),
            (self._names.recurring_sheet_name, RECURRING_CODEC.headers),
            (self._names.settings_sheet_name, SETTINGS_COLUMNS),
            (self._names.deleted_sheet_name, DELETED_COLUMNS),
            (self._names.notifications_sheet_name, NOTIFICATION_CODEC.headers),
        ]:
            self._replace(title, headers, [])


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=safe_get(0),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            description=safe_get(6),
            details=json.loads(safe_get(7)) if safe_get(7) else {},
            error_message=safe_get(8) or None,
            is_user_action=safe_get(9).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        try:
            rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._all_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._all_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
