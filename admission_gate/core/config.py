"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Quota tables are read once at start-up and turned into immutable values
(see ``admission_gate.services.quota_registry``). They can be overridden with
JSON-encoded environment variables, e.g.::

    QUOTA_SERVICES='{"bookings": {"limit": 20, "window_ms": 3600000}}'
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS


class QuotaRuleSettings(BaseModel):
    """A single ``{limit, window_ms}`` entry of a quota table."""

    limit: int = Field(..., ge=1, description="Maximum requests per window")
    window_ms: int = Field(..., ge=1, description="Window length in milliseconds")


def _rule(limit: int, window_ms: int) -> QuotaRuleSettings:
    return QuotaRuleSettings(limit=limit, window_ms=window_ms)


def _default_trust_tiers() -> dict[str, QuotaRuleSettings]:
    return {
        "trusted": _rule(50, 30 * _MINUTE_MS),
        "existing": _rule(30, 30 * _MINUTE_MS),
        "new": _rule(15, 30 * _MINUTE_MS),
        "unknown": _rule(5, 30 * _MINUTE_MS),
    }


def _default_services() -> dict[str, QuotaRuleSettings]:
    return {
        "whatsapp_ai": _rule(30, 30 * _MINUTE_MS),
        "bookings": _rule(10, _HOUR_MS),
        "sms": _rule(5, _HOUR_MS),
        "email": _rule(20, _HOUR_MS),
        "upload": _rule(5, _HOUR_MS),
        "dashboard": _rule(100, _HOUR_MS),
    }


def _default_route_services() -> dict[str, str]:
    return {
        "/api/whatsapp/webhook": "whatsapp_ai",
        "/api/ai": "whatsapp_ai",
        "/api/bookings": "bookings",
        "/api/notifications/sms": "sms",
        "/api/notifications/send": "sms",
        "/api/notifications/send-reminders": "sms",
        "/api/notifications/test-sms": "sms",
        "/api/notifications/test-simple": "sms",
        "/api/notifications/test-config": "sms",
        "/api/notifications/test-twilio": "sms",
        "/api/notifications/sms-status": "sms",
        "/api/notifications/email": "email",
        "/api/upload": "upload",
        "/api/admin": "dashboard",
        "/api/dashboard": "dashboard",
        "/api/services": "dashboard",
        "/api/clients": "dashboard",
        "/api/staff": "dashboard",
        "/api/auth": "dashboard",
    }


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether admin endpoints require an X-API-Key header",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    auth_tokens: str | None = Field(
        None,
        description="Comma-separated 'token:user_id' pairs accepted as Bearer credentials",
    )

    gate_enabled: bool = Field(
        True,
        description="Enable the admission gate middleware",
    )
    gate_timeout_seconds: float = Field(
        2.0,
        description="Upper bound for a single admission decision before failing open",
        gt=0,
    )
    messaging_services: list[str] = Field(
        default_factory=lambda: ["whatsapp_ai"],
        description="Services whose traffic is accounted per phone number and trust tier",
    )
    country_header: str = Field(
        "CF-IPCountry",
        description="Request header carrying the caller's ISO country code, if any",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Request/violation log store configuration."""

    url: str = Field(
        "sqlite:///./admission_gate.db",
        description="SQLAlchemy database URL for the request and violation logs",
    )
    echo: bool = Field(
        False,
        description="Echo SQL statements (debugging only)",
    )
    create_roster_tables: bool = Field(
        False,
        description=(
            "Create empty roster tables at start-up (standalone/dev databases "
            "that are not shared with the scheduling application)"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class RetentionSettings(BaseSettings):
    """Retention sweeper configuration."""

    enabled: bool = Field(
        True,
        description="Run the retention sweeper in the background",
    )
    horizon_days: float = Field(
        7.0,
        description="Log and violation rows older than this are purged",
        gt=0,
    )
    interval_seconds: float = Field(
        6 * 60 * 60,
        description="Delay between two background purges",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RETENTION_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Static quota and routing tables."""

    services: dict[str, QuotaRuleSettings] = Field(
        default_factory=_default_services,
        description="Quota per logical service name",
    )
    trust_tiers: dict[str, QuotaRuleSettings] = Field(
        default_factory=_default_trust_tiers,
        description="Quota per trust tier for messaging-channel traffic",
    )
    permissive_services: dict[str, QuotaRuleSettings] = Field(
        default_factory=dict,
        description="Explicit relaxed quotas used on permissive routes",
    )
    permissive_multiplier: int = Field(
        3,
        ge=2,
        description="Limit multiplier for permissive routes without an explicit entry",
    )
    default_rule: QuotaRuleSettings = Field(
        default_factory=lambda: _rule(50, _HOUR_MS),
        description="Quota applied to service names missing from the table",
    )
    fail_open_rule: QuotaRuleSettings = Field(
        default_factory=lambda: _rule(1000, _HOUR_MS),
        description="Quota reported when the gate cannot reach a decision",
    )
    route_services: dict[str, str] = Field(
        default_factory=_default_route_services,
        description="Path prefix to service name table (longest prefix wins)",
    )
    fallback_service: str = Field(
        "dashboard",
        description="Service used when no route prefix matches",
    )
    skip_routes: list[str] = Field(
        default_factory=lambda: [
            "/health",
            "/api/health",
            "/api/status",
            "/api/auth/callback",
            "/api/auth/refresh",
            "/api/webhooks/verify",
        ],
        description="Path prefixes that bypass the gate entirely",
    )
    permissive_routes: list[str] = Field(
        default_factory=lambda: [
            "/api/auth/login",
            "/api/auth/register",
            "/api/auth/forgot-password",
        ],
        description="Path prefixes gated against the relaxed quota variant",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Number of rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
