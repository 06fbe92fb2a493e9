"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 5
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration (operator surface only)
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Entitlement Reconciliation API"
    api_version: str = "0.1.0"
    api_description: str = "Receipt validation and membership reconciliation"

    # Security
    admin_api_key: str = ""  # Required by /v1/admin routes (X-Admin-Key header)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "entitlement-reconciler"

    # Apple receipt verification (verifyReceipt)
    apple_shared_secret: str = ""
    apple_exclude_old_transactions: bool = True
    apple_environment: str = "production"  # production or sandbox

    # Google Play Developer API
    # Service account JSON (raw JSON or path to a file)
    google_service_account_json: str = ""
    android_package_name: str = ""

    # Balances restored when a membership ends
    default_point: int = 0
    default_ai_point: int = 0

    # Reconciliation schedule
    scheduler_enabled: bool = False
    reconciliation_timezone: str = "Asia/Seoul"
    reconciliation_hour: int = 0
    reconciliation_minute: int = 0

    # Outbound payment platform calls
    provider_timeout_seconds: float = 30.0
    provider_max_attempts: int = 3

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The worker MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        try:
            ZoneInfo(self.reconciliation_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"Unknown RECONCILIATION_TIMEZONE: {self.reconciliation_timezone}")

        if not 0 <= self.reconciliation_hour <= 23:
            errors.append(f"RECONCILIATION_HOUR out of range: {self.reconciliation_hour}")
        if not 0 <= self.reconciliation_minute <= 59:
            errors.append(f"RECONCILIATION_MINUTE out of range: {self.reconciliation_minute}")

        if self.provider_max_attempts < 1:
            errors.append("PROVIDER_MAX_ATTEMPTS must be at least 1")
        if self.provider_timeout_seconds <= 0:
            errors.append("PROVIDER_TIMEOUT_SECONDS must be positive")

        if self.default_point < 0 or self.default_ai_point < 0:
            errors.append("DEFAULT_POINT and DEFAULT_AI_POINT cannot be negative")

        if self.apple_environment.lower() not in ("production", "sandbox"):
            errors.append("APPLE_ENVIRONMENT must be 'production' or 'sandbox'")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def timezone(self) -> ZoneInfo:
        """Time zone the daily sweeps are scheduled in."""
        return ZoneInfo(self.reconciliation_timezone)


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
