"""Configuration package."""

from fintrack.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    NotificationDefaults,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "NotificationDefaults",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
