"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://kitchens:kitchens_dev_password@db:5432/kitchens"
    booking_store: str = "memory"  # "memory" or "database"
    decision_lock_ttl_seconds: int = 120

    # Authentication (bearer token -> manager id)
    manager_tokens: dict[str, int] = {"dev-manager-token": 1}

    # Payments
    payment_provider: str = "sandbox"  # "sandbox" or "stripe"
    stripe_api_key: str = ""
    payment_timeout_seconds: float = 15.0

    # Notifications
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # Locale
    default_timezone: str = "America/St_Johns"
    default_currency: str = "CAD"

    # Idempotency
    idempotency_ttl_hours: int = 24

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
