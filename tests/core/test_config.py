"""Tests for application settings."""

import pytest
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from salesister.core.config import Settings


def make_settings(**values: object) -> Settings:
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


class TestSettings:
    """Settings parsing and derived properties."""

    def test_supabase_url_is_normalized(self) -> None:
        settings = make_settings(SUPABASE_URL="https://abc.supabase.co/")

        assert settings.SUPABASE_URL == "https://abc.supabase.co"

    def test_supabase_url_must_be_http(self) -> None:
        with pytest.raises(PydanticValidationError):
            make_settings(SUPABASE_URL="abc.supabase.co")

    def test_is_configured_needs_database_and_llm(self) -> None:
        partial = make_settings(
            SUPABASE_URL="https://abc.supabase.co",
            SUPABASE_SERVICE_ROLE_KEY=SecretStr("service"),
        )
        full = make_settings(
            SUPABASE_URL="https://abc.supabase.co",
            SUPABASE_SERVICE_ROLE_KEY=SecretStr("service"),
            LLM_API_KEY=SecretStr("llm"),
        )

        assert not partial.is_configured
        assert full.is_configured

    def test_summary_key_falls_back_to_suggestions_key(self) -> None:
        settings = make_settings(SUGGESTIONS_API_KEY=SecretStr("suggest"))

        assert settings.suggestions_api_key == "suggest"
        assert settings.summary_api_key == "suggest"

    def test_separate_summary_key(self) -> None:
        settings = make_settings(
            SUGGESTIONS_API_KEY=SecretStr("suggest"), SUMMARY_API_KEY=SecretStr("summary")
        )

        assert settings.summary_api_key == "summary"

    def test_sweep_defaults(self) -> None:
        settings = make_settings()

        assert settings.UNPROCESSED_CALL_SWEEP_MINUTES == 1
        assert settings.FAILED_SYNC_SWEEP_MINUTES == 5
        assert settings.SUGGESTIONS_MIN_INTERVAL_MS == 5000

    def test_is_production(self) -> None:
        assert make_settings(APP_ENV="production").is_production
        assert not make_settings(APP_ENV="staging").is_production
