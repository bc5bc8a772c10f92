"""
Configuration Management for TeamLedger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Which storage backend the engine talks to."""

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Storage backend: memory or google_sheets"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
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
    finance_entries_sheet_name: str = Field(default="FinanceEntries")
    investments_sheet_name: str = Field(default="Investments")
    clients_sheet_name: str = Field(default="Clients")
    fund_entries_sheet_name: str = Field(default="FundEntries")
    role_records_sheet_name: str = Field(default="RoleRecords")
    delegate_roster_sheet_name: str = Field(default="DelegateRoster")
    notifications_sheet_name: str = Field(default="Notifications")
    sequences_sheet_name: str = Field(default="Sequences")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

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


class IdentitySettings(BaseSettings):
    """
    Account provisioning configuration.

    default_role is only consulted when an account is provisioned
    without an explicit role and no delegate roster entry references it.
    It is never used to resolve an unknown actor at request time.
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_",
        extra="ignore"
    )

    default_role: str = Field(
        default="owner",
        pattern="^(owner|delegate)$",
        description="Role assigned at provisioning when none is given"
    )
    owner_label: str = Field(
        default="Owner",
        description="Role label used in author display strings"
    )
    delegate_label: str = Field(
        default="Delegate",
        description="Role label used in author display strings"
    )


class LedgerSettings(BaseSettings):
    """Ledger and fund configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="ISO currency code used in messages"
    )
    low_fund_balance_threshold: float = Field(
        default=1000.0,
        ge=0.0,
        description="Fund balance below this is flagged as low"
    )
    max_record_amount: float = Field(
        default=10000000.0,
        description="Amounts above this are flagged for review (sanity check)"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        description="How many days in the future a record date can be"
    )


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

    # Environment
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
        description="Minimum level for structured logs"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def identity(self) -> IdentitySettings:
        return IdentitySettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

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

    for name in ["store", "identity", "ledger", "app"]:
        try:
            getattr(settings, name)
            results[name] = True
        except ValidationError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # Sheets credentials only matter when that backend is selected
    if results["store"] and settings.store.backend == "google_sheets":
        try:
            settings.google_sheets
            results["google_sheets"] = True
        except ValidationError as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
