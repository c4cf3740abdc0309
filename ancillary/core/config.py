"""
Application configuration management with environment variables.

This module provides centralized configuration management using Pydantic
BaseSettings for type-safe environment variable handling with validation
and default values.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables with the
    ANCILLARY_ prefix (e.g., ANCILLARY_ADMIN_EMAIL, ANCILLARY_LOG_LEVEL).
    """

    model_config = SettingsConfigDict(
        env_prefix="ANCILLARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application logging level",
    )

    # Environment Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )

    # Application Configuration
    app_name: str = Field(
        default="Ancillary Cancellations",
        description="Application name",
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version",
    )

    # Notification Configuration
    admin_email: str = Field(
        default="admin@arcube.com",
        description="Recipient of administrative cancellation summaries",
    )

    ses_from_email: str = Field(
        default="no-reply@arcube.com",
        description="Sender address for outgoing emails",
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        description="AWS access key ID for SES",
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        description="AWS secret access key for SES",
    )

    aws_region: str = Field(
        default="us-east-1",
        description="AWS region for SES",
    )

    # Vendor Simulation Configuration
    vendor_failure_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability that a simulated vendor call is unavailable",
    )

    airalo_latency_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Simulated latency of the eSIM vendor",
    )

    mozio_latency_seconds: float = Field(
        default=1.2,
        ge=0.0,
        description="Simulated latency of the transfer vendor",
    )

    dragonpass_latency_seconds: float = Field(
        default=1.5,
        ge=0.0,
        description="Simulated latency of the lounge vendor",
    )

    vendor_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for a single vendor cancellation call",
    )

    vendor_retry_after_seconds: int = Field(
        default=900,
        ge=0,
        description="Retry-after hint returned when a vendor is unavailable",
    )

    # Webhook Configuration
    webhook_failure_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability that a simulated webhook delivery fails",
    )

    webhook_latency_seconds: float = Field(
        default=0.1,
        ge=0.0,
        description="Simulated webhook delivery latency",
    )

    # Orchestration Configuration
    bulk_item_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Delay inserted between items of a bulk cancellation",
    )

    status_resolution_delay_seconds: float = Field(
        default=15.0,
        ge=0.0,
        description="Delay before a pending product is resolved automatically",
    )

    status_resolution_weights: dict[str, float] = Field(
        default={"success": 0.8, "failed": 0.1, "denied": 0.1},
        description="Outcome weights used by automatic status resolution",
    )

    @field_validator("admin_email", "ses_from_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """
        Validate email address format.

        Args:
            v: Email address value

        Returns:
            Normalized email address

        Raises:
            ValueError: If the address is malformed
        """
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError(f"Invalid email address: {v}")
        return v.lower()

    @field_validator("status_resolution_weights")
    @classmethod
    def validate_resolution_weights(cls, v: dict[str, float]) -> dict[str, float]:
        """
        Validate automatic status resolution weights.

        Args:
            v: Mapping of outcome status to weight

        Returns:
            Validated weights

        Raises:
            ValueError: If an outcome is unknown or weights are unusable
        """
        allowed = {"success", "failed", "denied"}
        unknown = set(v) - allowed
        if unknown:
            raise ValueError(
                f"Unknown resolution outcomes: {', '.join(sorted(unknown))}"
            )
        if any(weight < 0 for weight in v.values()) or sum(v.values()) <= 0:
            raise ValueError("Resolution weights must be non-negative and not all zero")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
