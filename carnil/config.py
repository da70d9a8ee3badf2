from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderConfig(BaseModel):
    """Construction config handed to a provider adapter."""

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1)
    api_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    timeout_ms: int = Field(default=30000, gt=0)
    max_retries: int = Field(default=3, ge=0)
    environment: Optional[Literal["test", "live"]] = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    PAYMENT_PROVIDER: Literal["stripe", "razorpay"] = "stripe"
    ENVIRONMENT: Optional[Literal["test", "live"]] = None
    LOG_LEVEL: str = "INFO"
    HTTP_PORT: int = 8000
    PROVIDER_TIMEOUT_MS: int = 30000
    PROVIDER_MAX_RETRIES: int = 3
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    RAZORPAY_KEY_ID: str | None = None
    RAZORPAY_KEY_SECRET: str | None = Field(
        default=None,
        validation_alias=AliasChoices("RAZORPAY_KEY_SECRET", "RAZORPAY_SECRET"),
    )
    RAZORPAY_WEBHOOK_SECRET: str | None = None

    def stripe_config(self) -> ProviderConfig:
        if not self.STRIPE_SECRET_KEY:
            raise ValueError("STRIPE_SECRET_KEY is not configured")
        return ProviderConfig(
            api_key=self.STRIPE_SECRET_KEY,
            webhook_secret=self.STRIPE_WEBHOOK_SECRET,
            timeout_ms=self.PROVIDER_TIMEOUT_MS,
            max_retries=self.PROVIDER_MAX_RETRIES,
            environment=self.ENVIRONMENT,
        )

    def razorpay_config(self) -> ProviderConfig:
        if not self.RAZORPAY_KEY_ID or not self.RAZORPAY_KEY_SECRET:
            raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")
        return ProviderConfig(
            api_key=self.RAZORPAY_KEY_ID,
            api_secret=self.RAZORPAY_KEY_SECRET,
            webhook_secret=self.RAZORPAY_WEBHOOK_SECRET,
            timeout_ms=self.PROVIDER_TIMEOUT_MS,
            max_retries=self.PROVIDER_MAX_RETRIES,
            environment=self.ENVIRONMENT,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance."""
    return Settings()
