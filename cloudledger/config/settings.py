"""
Configuration Management for CloudLedger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Sync engine and mutation coordinator tuning."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    full_resync_page_size: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Maximum records fetched by a full resync"
    )
    remote_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=300,
        description="Timeout applied to every remote store call"
    )
    reconcile_in_background: bool = Field(
        default=True,
        description="Run the post-mutation sync as a background task instead of awaiting it"
    )
    temporary_id_prefix: str = Field(
        default="tmp-",
        min_length=1,
        description="Prefix for optimistic entries' local-only identities"
    )


class CacheBackend(str, Enum):
    SQLITE = "sqlite"
    MEMORY = "memory"


class CacheSettings(BaseSettings):
    """Local cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        extra="ignore"
    )

    backend: CacheBackend = Field(
        default=CacheBackend.SQLITE,
        description="Where the local cache lives"
    )
    path: str = Field(
        default=".cloudledger/cache.sqlite3",
        description="SQLite file for the durable cache"
    )

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

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
    ledgers_sheet_name: str = Field(
        default="Ledgers",
        description="Name of the sheet holding ledger metadata"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )
    transactions_sheet_prefix: str = Field(
        default="tx_",
        description="Prefix of the per-ledger transaction sheets"
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


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration for the transaction parser."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=512,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    use_remote_store: bool = Field(
        default=True,
        description="Use Google Sheets; False runs against an in-memory store (demo mode)"
    )
    member_id: str = Field(
        default="local-user",
        description="Identity recorded as creator of new transactions"
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

    # Sub-settings are built lazily so a missing Gemini key does not
    # prevent the sync core from starting.

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

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

    Returns a dict of {setting_name: is_valid} plus
    {setting_name}_error entries for the failures.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("sync", "cache", "google_sheets", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
