"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_name: str = Field(default="payment-intents", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Idempotency
    idempotency_ttl_seconds: int = Field(
        default=86400, gt=0, description="Idempotency record lifetime (seconds)"
    )
    idempotency_sweep_interval_seconds: float = Field(
        default=3600.0, gt=0, description="Interval between expired-record sweeps (seconds)"
    )

    # Processing stages
    job_failure_rate: float = Field(
        default=0.10, ge=0.0, le=1.0, description="Probability that an unforced run fails"
    )
    job_start_jitter_max_seconds: float = Field(
        default=2.0, ge=0.0, description="Upper bound of the random delay before a stage starts"
    )
    job_duration_min_seconds: float = Field(
        default=5.0, ge=0.0, description="Lower bound of a stage's simulated duration"
    )
    job_duration_max_seconds: float = Field(
        default=8.0, ge=0.0, description="Upper bound of a stage's simulated duration"
    )
    confirm_retry_after_seconds: int = Field(
        default=3, ge=0, description="Suggested polling interval returned by confirm"
    )

    # Payments
    receipt_base_url: str = Field(
        default="https://example.com/receipt", description="Base URL for receipt links"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_job_duration_window(self) -> "Settings":
        """Ensure the stage duration window is well formed."""
        if self.job_duration_min_seconds > self.job_duration_max_seconds:
            raise ValueError(
                "job_duration_min_seconds must not exceed job_duration_max_seconds"
            )
        return self

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
