"""Configuration package."""

from cloudledger.config.settings import (
    AppSettings,
    CacheBackend,
    CacheSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CacheBackend",
    "CacheSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
