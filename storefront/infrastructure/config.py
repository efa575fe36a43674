"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Authentication (bearer key presented by the upstream auth gateway)
    service_api_key: str = "dev-api-key-change-in-production"

    # Store
    currency: str = "INR"

    # Payment gateway
    payment_gateway: str = "simulated"  # simulated | razorpay
    gateway_base_url: str = "https://api.razorpay.com"
    gateway_key_id: str = "rzp_test_dev_key"
    gateway_key_secret: str = "dev-gateway-secret-change-in-production"
    gateway_timeout_seconds: float = 10.0

    # Webhooks
    webhook_secret: str = "dev-webhook-secret-change-in-production"
    webhook_event_retention_seconds: int = 259200

    # Storage
    storage_backend: str = "memory"  # memory | sql
    database_url: str = "sqlite+aiosqlite:///./storefront.db"

    # Checkout
    checkout_session_ttl_seconds: int = 1800
    checkout_attempt_ttl_seconds: int = 86400
    max_unpaid_attempts_per_user: int = 5
    max_commit_retries: int = 3

    # Notifications
    notifier_url: str | None = None

    # Demo data
    seed_demo_catalog: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
