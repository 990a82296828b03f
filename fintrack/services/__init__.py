"""Services package."""

from fintrack.services.currency import (
    DEFAULT_RATES,
    ConversionPort,
    CurrencyConverter,
)
from fintrack.services.persistence import PersistenceFailure, PersistenceWriter
from fintrack.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Currency
    "DEFAULT_RATES",
    "ConversionPort",
    "CurrencyConverter",
    # Persistence
    "PersistenceFailure",
    "PersistenceWriter",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
]
