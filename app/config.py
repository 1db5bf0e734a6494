"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_ENVIRONMENTS = ("development", "staging", "production")
MIN_JWT_SECRET_LENGTH = 32


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    store_timeout_seconds: float = 10.0  # asyncpg command_timeout per statement
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Classifieds Identity API"
    api_version: str = "0.1.0"
    api_description: str = "Signup, login, OTP, sessions and role checks for the classifieds backend"
    environment: str = "development"  # development, staging or production

    # Tokens
    jwt_secret: str = ""  # generate with: openssl rand -hex 32
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "classifieds-identity"
    access_token_ttl_minutes: int = 15
    session_ttl_days: int = 7
    refresh_token_bytes: int = 48

    # Sessions
    default_max_devices: int = 1
    enforce_session_liveness: bool = False

    # OTP
    otp_length: int = 6
    otp_ttl_minutes: int = 10
    otp_max_attempts: int = 5
    otp_rate_limit_window_minutes: int = 60
    otp_rate_limit_max: int = 5
    otp_retention_hours: int = 24
    otp_channel: str = "sms"  # sms or email
    default_country_code: str = "+91"

    # Referral codes
    referral_code_length: int = 8
    referral_code_max_attempts: int = 10

    # Notifications (empty webhook URL = log-only delivery)
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "classifieds-identity"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start with no database, a weak signing secret
        or an unknown environment name.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.jwt_secret:
            errors.append("JWT_SECRET is required but empty or missing")
        elif len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            errors.append(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")

        if self.environment not in VALID_ENVIRONMENTS:
            errors.append(
                f"ENVIRONMENT must be one of {', '.join(VALID_ENVIRONMENTS)}, got: {self.environment}"
            )

        if self.otp_channel not in ("sms", "email"):
            errors.append(f"OTP_CHANNEL must be sms or email, got: {self.otp_channel}")

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
    def is_development(self) -> bool:
        """Development mode exposes diagnostic detail in error responses."""
        return self.environment == "development"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
