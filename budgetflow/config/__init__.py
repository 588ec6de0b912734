"""Configuration package."""

from budgetflow.config.settings import (
    AppSettings,
    CacheSettings,
    GoogleSheetsSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "GoogleSheetsSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
