"""Application settings and configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Billing engine configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "creditcore"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # Database
    database_url: str = "sqlite:///./creditcore.db"

    # Links
    frontend_url: str = "http://localhost:3000"

    # Referral program
    referral_credit_per_referral: int = 10
    referral_expiration_days: int = 30
    referral_code_length: int = 8
    referral_code_max_attempts: int = 10

    # Fraud scoring inputs
    fraud_blocked_networks: list[str] = Field(default_factory=list)  # CIDR notation
    fraud_high_risk_locations: list[str] = Field(default_factory=list)

    # Plan cache
    plan_cache_ttl_seconds: float = 300.0  # 5 minutes

    # Low balance detection (fraction of base allotment remaining)
    low_credit_threshold: float = 0.2

    # Notifications
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0


# Global settings instance
settings = Settings()
