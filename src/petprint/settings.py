"""Application settings and configuration."""

import sys
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PETPRINT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "petprint-referrals"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    allowed_origins: str = "http://localhost:3000"
    public_base_url: str = "http://localhost:3000"

    # JWT (tokens are issued by the external auth provider)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Database
    database_url: str = "sqlite:///./petprint.db"
    database_timeout_seconds: float = Field(default=5.0, gt=0)

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    # Commission schedule (percentages)
    initial_commission_rate: Decimal = Decimal("20.00")  # First order of a referred customer
    trailing_commission_rate: Decimal = Decimal("5.00")  # Every later order
    customer_credit_rate: Decimal = Decimal("10.00")  # Store credit for referring customers
    default_discount_rate: Decimal = Decimal("10.00")  # Discount for the referred customer

    # Rate limiting (slowapi limit strings)
    rate_limit_default: str = "200/minute"
    rate_limit_verify: str = "30/minute"
    rate_limit_attribute: str = "10/minute"
    rate_limit_storage_uri: str = "memory://"
    trust_forwarded_for: bool = False  # Behind a proxy that sets X-Forwarded-For

    # Referral codes
    referral_code_length: int = 8
    pre_registration_expiry_days: int = 90
    referral_invite_expiry_days: int = 30  # Partner and customer invitations


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: PETPRINT_JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set it to the signing secret of the auth provider.\n",
            file=sys.stderr,
        )
        sys.exit(1)
