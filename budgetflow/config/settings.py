"""
Configuration Management for BudgetFlow

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Retry, cache and storage knobs are read once at startup and passed
down explicitly, so nothing deep in the reconciliation code reads
the environment on its own.
"""

from functools import cached_property, lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Retry and timeout policy applied to every data store call."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETFLOW_STORE_",
        extra="ignore"
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per store operation (first try included)"
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay before the first retry; doubles on every attempt"
    )
    max_delay_seconds: float = Field(
        default=8.0,
        ge=0.0,
        description="Upper bound for a single retry delay"
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Per-attempt timeout"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "StoreSettings":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds cannot be smaller than base_delay_seconds")
        return self


class CacheSettings(BaseSettings):
    """Time-to-live for the per-user read caches."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETFLOW_CACHE_",
        extra="ignore"
    )

    expenses_ttl_seconds: float = Field(default=300.0, ge=0.0)
    profile_ttl_seconds: float = Field(default=600.0, ge=0.0)
    rules_ttl_seconds: float = Field(default=300.0, ge=0.0)
    goals_ttl_seconds: float = Field(default=300.0, ge=0.0)


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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Input limits
    max_amount: float = Field(
        default=1_000_000_000.0,
        gt=0,
        description="Largest amount accepted for an entry, rule or profile field"
    )
    max_title_length: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Maximum length of an expense or rule title"
    )
    future_date_tolerance_days: int = Field(
        default=366,
        ge=0,
        description="How far in the future an entry date may be"
    )

    # Reconciliation
    max_catchup_occurrences: int = Field(
        default=400,
        ge=1,
        description="Upper bound of occurrences materialized per rule in one run"
    )
    fixed_expense_title: str = Field(
        default="Monthly Fixed Expenses",
        min_length=1,
        description="Title of the monthly fixed-expense ledger entry"
    )
    fixed_expense_category: str = Field(
        default="Bills",
        description="Category of the monthly fixed-expense ledger entry"
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

    # Sub-settings are built on first access so a missing Google Sheets
    # configuration doesn't prevent running on the in-memory store.
    # Each is read from the environment once and then reused.

    @cached_property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @cached_property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @cached_property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @cached_property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus `<name>_error`
    entries describing what went wrong. Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("store", "cache", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
