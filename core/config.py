"""
Configuration management using Pydantic Settings
Handles environment variables and validation
"""
from functools import lru_cache
from typing import Optional

from pydantic import ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

WEBHOOK_FAILURE_MODES = ("acknowledge", "retry")
NOTIFICATION_BACKENDS = ("memory", "redis")


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Environment
    environment: str = Field(default="development")

    # Application
    app_name: str = "Marketplace Offers"
    app_version: str = "0.1.0"
    client_url: str = Field(default="http://localhost:3000")

    # Database
    database_url: str = Field(default="sqlite:///tmp/marketplace.db")
    database_pool_size: int = Field(default=10)
    database_echo: bool = Field(default=False)

    # Redis (notification relay)
    redis_url: str = Field(default="redis://localhost:6379/0")
    notification_backend: str = Field(default="memory")
    notification_channel_prefix: str = Field(default="marketplace")

    # External APIs
    use_stubs: bool = Field(default=True, description="Use the in-process stub checkout gateway")

    # Stripe - use SecretStr for sensitive data
    stripe_secret_key: Optional[SecretStr] = Field(default=None)
    stripe_webhook_secret: Optional[SecretStr] = Field(default=None)
    stripe_webhook_tolerance_seconds: int = Field(default=300)

    # Offer lifecycle
    offer_expiry_days: int = Field(default=7, ge=1)
    checkout_session_expiry_minutes: int = Field(default=30, ge=30, le=1440)
    enable_demo_offers: bool = Field(default=False)

    # Webhooks: "acknowledge" swallows handler failures, "retry" asks the processor to redeliver
    webhook_failure_mode: str = Field(default="acknowledge")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Monitoring
    prometheus_enabled: bool = Field(default=True)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("webhook_failure_mode")
    @classmethod
    def validate_webhook_failure_mode(cls, v):
        if v not in WEBHOOK_FAILURE_MODES:
            raise ValueError(f"webhook_failure_mode must be one of: {list(WEBHOOK_FAILURE_MODES)}")
        return v

    @field_validator("notification_backend")
    @classmethod
    def validate_notification_backend(cls, v):
        if v not in NOTIFICATION_BACKENDS:
            raise ValueError(f"notification_backend must be one of: {list(NOTIFICATION_BACKENDS)}")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Validate production-specific settings after all fields are set"""
        if self.environment == "production" and self.use_stubs:
            raise ValueError("Production environment cannot run with USE_STUBS=true")

        if not self.use_stubs:
            if not self.stripe_secret_key:
                raise ValueError("Stripe secret key required when not using stubs")
            if not self.stripe_webhook_secret:
                raise ValueError("Stripe webhook secret required when not using stubs")

        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def webhook_secret(self) -> str:
        """Webhook signing secret, with a fixed value in stub mode"""
        if self.stripe_webhook_secret:
            return self.stripe_webhook_secret.get_secret_value()
        if self.use_stubs:
            return "whsec_stub_secret"
        raise ValueError("Stripe webhook secret not configured")

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    def model_dump(self, **kwargs):
        """Override to mask sensitive fields when serializing"""
        data = super().model_dump(**kwargs)

        sensitive_fields = [
            "stripe_secret_key",
            "stripe_webhook_secret",
        ]

        for field in sensitive_fields:
            if field in data and data[field]:
                if hasattr(data[field], "get_secret_value"):
                    value = data[field].get_secret_value()
                else:
                    value = str(data[field])

                # Keep first 4 chars for identification
                if len(value) > 4:
                    data[field] = value[:4] + "*" * (len(value) - 4)
                else:
                    data[field] = "*" * len(value)

        return data


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
