"""Worker settings - consolidated with API settings for consistency."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings - consistent with API settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "pactlink"
    postgres_password: str = "pactlink_dev_password"
    postgres_db: str = "pactlink"
    postgres_port: int = 5432

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Environment
    environment: str = "development"

    # Notifications (external email/SMS service)
    notification_webhook_url: Optional[str] = None
    notification_signing_secret: Optional[str] = None
    notification_timeout_seconds: int = 10
    notification_max_retries: int = 3

    # Downstream subscriber for SignatureCompleted events
    events_webhook_url: Optional[str] = None

    # Expiry sweep
    expiry_sweep_interval_hours: int = 6

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.notification_webhook_url and not self.notification_signing_secret:
                raise ValueError(
                    "NOTIFICATION_SIGNING_SECRET is required when NOTIFICATION_WEBHOOK_URL is set."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
