"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # Entity extraction (server side, LiteLLM model string)
    LLM_API_KEY: SecretStr = SecretStr("")
    EXTRACTION_MODEL: str = "gemini/gemini-2.5-flash"
    EXTRACTION_TEMPERATURE: float = 0.3

    # Live suggestions (client side)
    SUGGESTIONS_API_KEY: SecretStr | None = None
    SUMMARY_API_KEY: SecretStr | None = None
    SUGGESTIONS_MODEL: str = "gemini/gemini-2.0-flash"
    SUGGESTIONS_MIN_INTERVAL_MS: int = 5000

    # HubSpot
    HUBSPOT_BASE_URL: str = "https://api.hubapi.com"
    HUBSPOT_TIMEOUT_SECONDS: float = 30.0

    # Ingestion client
    INGESTION_ENDPOINT: str = "http://localhost:8000/api/calls/create"
    INGESTION_USER_ID: str = ""

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Background sweeps
    ENABLE_SCHEDULER: bool = True
    UNPROCESSED_CALL_SWEEP_MINUTES: int = 1
    UNPROCESSED_CALL_BATCH_SIZE: int = 10
    FAILED_SYNC_SWEEP_MINUTES: int = 5

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def is_configured(self) -> bool:
        """Check if required server-side settings are configured."""
        return bool(
            self.SUPABASE_URL
            and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
            and self.LLM_API_KEY.get_secret_value()
        )

    @property
    def suggestions_api_key(self) -> str | None:
        """Suggestions API key, or None when not configured."""
        if self.SUGGESTIONS_API_KEY is None:
            return None
        return self.SUGGESTIONS_API_KEY.get_secret_value() or None

    @property
    def summary_api_key(self) -> str | None:
        """Summary API key, falling back to the suggestions key."""
        if self.SUMMARY_API_KEY is not None and self.SUMMARY_API_KEY.get_secret_value():
            return self.SUMMARY_API_KEY.get_secret_value()
        return self.suggestions_api_key


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Application settings loaded from the environment.
    """
    loaded = Settings()
    if not loaded.is_configured:
        logger.warning(
            "Server-side settings incomplete: Supabase or LLM credentials are missing",
        )
    return loaded


settings = get_settings()
