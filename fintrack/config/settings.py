"""
Configuration Management for FinTrack

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The ledger engines never read the environment themselves; they receive
these objects from the composition root, so tests can pass explicit values.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Tunables for the ledger, projection and notification engines."""

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_currency: str = Field(
        default="TRY",
        min_length=3,
        max_length=3,
        description="Reference currency used when no user settings exist"
    )

    # Recurring projection
    projection_horizon_days: int = Field(
        default=60,
        ge=1,
        le=366,
        description="How far past today open-ended templates are projected"
    )
    max_occurrences_per_template: int = Field(
        default=1000,
        ge=1,
        description="Upper bound on entries generated for one template in one pass"
    )

    # Notification thresholds
    expense_spike_multiplier: float = Field(
        default=2.0,
        gt=1.0,
        description="An expense this many times the category average is a spike"
    )
    expense_spike_min_samples: int = Field(
        default=5,
        ge=1,
        description="Prior expenses needed in a category before spikes are detected"
    )
    savings_milestones: str = Field(
        default="1000,5000,10000,25000,50000,100000",
        description="Comma-separated cumulative savings milestones"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator('savings_milestones')
    @classmethod
    def validate_milestones(cls, v: str) -> str:
        """Every milestone must parse as a positive number."""
        for part in v.split(","):
            if part.strip() and Decimal(part.strip()) <= 0:
                raise ValueError(f"Savings milestone must be positive: {part}")
        return v

    @property
    def savings_milestones_list(self) -> list[Decimal]:
        """Get milestones as a sorted list."""
        return sorted(
            Decimal(part.strip())
            for part in self.savings_milestones.split(",")
            if part.strip()
        )


class NotificationDefaults(BaseSettings):
    """
    Initial notification switches.

    Defaults mirror what a fresh install shows: budget alerts and recurring
    reminders on, milestones and spike detection opt-in.
    """

    model_config = SettingsConfigDict(
        env_prefix="FINTRACK_NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = True
    budget_warnings: bool = True
    budget_exceeded: bool = True
    recurring_reminders: bool = True
    savings_milestones: bool = False
    expense_spikes: bool = False


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(default="Transactions")
    budgets_sheet_name: str = Field(default="Budgets")
    recurring_sheet_name: str = Field(default="Recurring")
    settings_sheet_name: str = Field(default="Settings")
    deleted_sheet_name: str = Field(default="DeletedIds")
    notifications_sheet_name: str = Field(default="Notifications")
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )
    persistence_flush_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long close() waits for pending durable writes"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def notifications(self) -> NotificationDefaults:
        return NotificationDefaults()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "notifications", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
