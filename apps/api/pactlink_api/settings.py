"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_SECRET_KEY = "dev-secret-key-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

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

    # Service
    environment: str = "development"
    secret_key: str = DEV_SECRET_KEY

    # Action tokens
    token_secret_bytes: int = 32  # 256 bits
    max_token_ttl_days: int = 90
    public_base_url: str = "http://localhost:5173"

    # Default TTL per purpose
    view_contract_ttl_hours: int = 30 * 24
    brand_reply_ttl_hours: int = 14 * 24
    shipping_update_ttl_hours: int = 7 * 24
    deal_details_ttl_hours: int = 14 * 24
    sign_contract_ttl_hours: int = 7 * 24

    # OTP
    otp_digits: int = 6
    otp_ttl_seconds: int = 10 * 60
    otp_max_attempts: int = 5

    # Expiry sweep
    expiry_sweep_interval_hours: int = 6
    expiry_sweep_batch_size: int = 500

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Rate Limiting (public token routes)
    rate_limit_enabled: bool = True
    rate_limit_requests_per_minute: int = 30
    rate_limit_ttl_seconds: int = 600

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.token_secret_bytes < 32:
            raise ValueError("TOKEN_SECRET_BYTES must be at least 32 (256 bits of entropy).")
        if self.otp_max_attempts < 1:
            raise ValueError("OTP_MAX_ATTEMPTS must be at least 1.")

        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if self.secret_key == DEV_SECRET_KEY:
                raise ValueError(
                    "SECRET_KEY must be set in production. "
                    "Token digests and OTP hashes depend on it."
                )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
