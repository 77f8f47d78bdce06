"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Every enabled webhook handler must have its secrets at startup.
"""

import sys
from dataclasses import dataclass

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_PROVIDERS = ("stripe", "paystack", "revenuecat")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Entitlement Sync API"
    api_version: str = "0.1.0"
    api_description: str = "Payment provider webhooks feeding the entitlement store"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "entitlement-sync"
    deployment_environment: str = ""  # e.g. production, staging; omitted from spans when empty

    # Enabled webhook handlers (comma-separated)
    webhook_providers: str = ",".join(KNOWN_PROVIDERS)

    # Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_..., used to re-fetch subscriptions
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_signature_tolerance: int = 300  # seconds

    # Paystack
    paystack_secret: str = ""  # secret key, also the HMAC key for webhooks

    # RevenueCat
    revenuecat_webhook_secret: str = ""  # bearer token configured in the dashboard

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def enabled_providers(self) -> list[str]:
        """Normalized list of enabled webhook handlers."""
        providers = []
        for name in self.webhook_providers.split(","):
            name = name.strip().lower()
            if name and name not in providers:
                providers.append(name)
        return providers

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        A handler that is enabled but lacks its secret would otherwise accept
        (or silently reject) traffic it cannot authenticate.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        for provider in self.enabled_providers:
            if provider not in KNOWN_PROVIDERS:
                errors.append(f"WEBHOOK_PROVIDERS contains unknown provider '{provider}'")

        if "stripe" in self.enabled_providers:
            if not self.stripe_api_key:
                errors.append("STRIPE_API_KEY is required when the stripe handler is enabled")
            if not self.stripe_webhook_secret:
                errors.append(
                    "STRIPE_WEBHOOK_SECRET is required when the stripe handler is enabled"
                )

        if "paystack" in self.enabled_providers and not self.paystack_secret:
            errors.append("PAYSTACK_SECRET is required when the paystack handler is enabled")

        if "revenuecat" in self.enabled_providers and not self.revenuecat_webhook_secret:
            errors.append(
                "REVENUECAT_WEBHOOK_SECRET is required when the revenuecat handler is enabled"
            )

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


@dataclass(frozen=True)
class WebhookConfig:
    """
    Immutable per-handler secrets, built once at startup.

    Only providers in ``enabled_providers`` are handled; the rest answer 503.
    Settings validation guarantees every enabled provider has its secrets, so
    an empty secret here only ever belongs to a disabled provider.
    """

    stripe_api_key: str
    stripe_webhook_secret: str
    stripe_signature_tolerance: int
    paystack_secret: str
    revenuecat_webhook_secret: str
    enabled_providers: frozenset[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookConfig":
        return cls(
            stripe_api_key=settings.stripe_api_key,
            stripe_webhook_secret=settings.stripe_webhook_secret,
            stripe_signature_tolerance=settings.stripe_signature_tolerance,
            paystack_secret=settings.paystack_secret,
            revenuecat_webhook_secret=settings.revenuecat_webhook_secret,
            enabled_providers=frozenset(settings.enabled_providers),
        )

    def is_enabled(self, provider: str) -> bool:
        return provider in self.enabled_providers


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
