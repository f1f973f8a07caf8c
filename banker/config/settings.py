"""
Configuration Management for Banker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
Retry budgets and deadlines are configuration, never constants in
the engines.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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

    # Worksheet title per table; tables not listed use their own name
    sheet_names: dict[str, str] = Field(
        default_factory=lambda: {
            "bank": "bank",
            "ledger": "ledger",
            "invoices": "invoices",
            "sequences": "sequences",
            "audit": "audit",
        },
        description="Worksheet title for each table"
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


class LedgerSettings(BaseSettings):
    """Accounting core configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    banker_id: str = Field(
        default="banker",
        min_length=1,
        description="User ID of the system account used by give/fine"
    )
    start_balance: int = Field(
        default=0,
        ge=0,
        description="Balance of a newly created account"
    )
    banker_opening_balance: int = Field(
        default=0,
        ge=0,
        description="Balance the banker account is created with"
    )

    # Retry / cancellation
    max_retries: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Attempt cap per compare-and-set loop"
    )
    ledger_max_retries: int = Field(
        default=50,
        ge=1,
        description="Attempt cap for ledger writes, which happen after money has moved"
    )
    base_backoff: float = Field(
        default=0.05,
        ge=0.0,
        description="Initial retry delay in seconds"
    )
    max_backoff: float = Field(
        default=2.0,
        ge=0.0,
        description="Retry delay ceiling in seconds"
    )
    operation_timeout: Optional[float] = Field(
        default=10.0,
        gt=0.0,
        description="Default deadline per top-level operation (None disables)"
    )
    claim_ttl: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds before an abandoned invoice payment claim expires"
    )

    @model_validator(mode="after")
    def check_bounds(self) -> "LedgerSettings":
        if self.max_backoff < self.base_backoff:
            raise ValueError("max_backoff cannot be smaller than base_backoff")
        if self.operation_timeout is not None and self.claim_ttl <= self.operation_timeout:
            raise ValueError("claim_ttl must exceed operation_timeout")
        return self


class AuthSettings(BaseSettings):
    """
    API client credentials.

    Both maps are read as JSON from the environment, e.g.
    AUTH_TOKENS='{"s3cret": "U0BOT"}'
    AUTH_SCOPES='{"U0BOT": ["checkBalance", "transfer"]}'
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        extra="ignore"
    )

    tokens: dict[str, str] = Field(
        default_factory=dict,
        description="API token -> app ID"
    )
    scopes: dict[str, list[str]] = Field(
        default_factory=dict,
        description="App ID -> granted scopes"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="APP_",
        extra="ignore"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    storage_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Record store implementation"
    )
    port: int = Field(
        default=3001,
        ge=1,
        le=65535,
        description="HTTP port for the API"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

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

    for name in ("google_sheets", "ledger", "auth", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
