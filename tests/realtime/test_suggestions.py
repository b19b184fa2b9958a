"""Tests for the live suggestion pipeline."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from salesister.core.config import Settings
from salesister.core.exceptions import ExternalServiceError
from salesister.core.result import ErrorKind
from salesister.realtime.models import UtteranceChunk
from salesister.realtime.suggestions import (
    ERROR_EMPTY_TEXT,
    ERROR_NO_API_KEY,
    ERROR_PARSE_FAILED,
    ERROR_RATE_LIMITED,
    FALLBACK_SUGGESTIONS,
    SuggestionConfig,
    SuggestionPipeline,
    parse_suggestions,
)


def make_chunk(text: str = "What does onboarding look like for a team of fifty?") -> UtteranceChunk:
    return UtteranceChunk(text=text, speaker="Prospect", completed_at=datetime.now(UTC))


def make_config(**overrides: Any) -> SuggestionConfig:
    values: dict[str, Any] = {
        "suggestions_api_key": "sk-suggest",
        "summary_api_key": "sk-summary",
        "model": "gemini/gemini-2.0-flash",
        "min_request_interval_ms": 5000,
    }
    values.update(overrides)
    return SuggestionConfig(**values)


@pytest.fixture
def suggestion_client() -> MagicMock:
    client = MagicMock()
    client.generate_response = AsyncMock(
        return_value='["Onboarding takes two weeks", "We assign a dedicated manager", '
        '"Training is included for every seat"]'
    )
    return client


@pytest.fixture
def summary_client() -> MagicMock:
    client = MagicMock()
    client.generate_response = AsyncMock(return_value="Prospect is evaluating onboarding.")
    return client


@pytest.fixture
def pipeline(clock: Any, suggestion_client: MagicMock, summary_client: MagicMock) -> SuggestionPipeline:
    return SuggestionPipeline(
        make_config(),
        suggestion_client=suggestion_client,
        summary_client=summary_client,
        clock=clock,
    )


class TestParseSuggestions:
    """Tests for tolerant response parsing."""

    def test_json_array(self) -> None:
        assert parse_suggestions('["a", "b", "c"]') == ["a", "b", "c"]

    def test_json_array_wrapped_in_prose(self) -> None:
        text = 'Here are some ideas:\n["Mention the SLA", "Offer a pilot", "Share a case study"]\nGood luck!'
        assert parse_suggestions(text) == ["Mention the SLA", "Offer a pilot", "Share a case study"]

    def test_all_empty_array_means_no_suggestions(self) -> None:
        assert parse_suggestions('["", "", ""]') == []

    def test_blank_entries_are_filtered(self) -> None:
        assert parse_suggestions('["Offer a pilot", " ", ""]') == ["Offer a pilot"]

    def test_newline_fallback_needs_three_lines(self) -> None:
        text = "Offer a pilot\nMention the SLA\nShare a case study\nExtra line"
        assert parse_suggestions(text) == ["Offer a pilot", "Mention the SLA", "Share a case study"]

    def test_unparseable(self) -> None:
        assert parse_suggestions("Sorry, I cannot help\nwith that") is None


class TestRateLimiting:
    """Fail-fast minimum interval between requests."""

    @pytest.mark.asyncio
    async def test_second_request_inside_interval_is_rate_limited(
        self, pipeline: SuggestionPipeline, clock: Any, suggestion_client: MagicMock
    ) -> None:
        """The second call returns an empty, rate-limited result with no network call."""
        first = await pipeline.generate(make_chunk())
        clock.now += 4999
        second = await pipeline.generate(make_chunk())

        assert first.ok
        assert second.suggestions == ()
        assert second.error == ERROR_RATE_LIMITED
        assert second.error_kind == ErrorKind.RATE_LIMITED
        assert suggestion_client.generate_response.await_count == 1

    @pytest.mark.asyncio
    async def test_request_after_interval_is_allowed(
        self, pipeline: SuggestionPipeline, clock: Any, suggestion_client: MagicMock
    ) -> None:
        await pipeline.generate(make_chunk())
        clock.now += 5000

        assert pipeline.can_make_request()
        result = await pipeline.generate(make_chunk())

        assert result.ok
        assert suggestion_client.generate_response.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_is_checked_before_configuration(
        self, clock: Any, suggestion_client: MagicMock
    ) -> None:
        pipeline = SuggestionPipeline(
            make_config(), suggestion_client=suggestion_client, summary_client=MagicMock(), clock=clock
        )
        await pipeline.generate(make_chunk())
        result = await pipeline.generate(make_chunk(""))

        assert result.error == ERROR_RATE_LIMITED


class TestGenerate:
    """Suggestion generation outcomes."""

    @pytest.mark.asyncio
    async def test_returns_at_most_three_suggestions(
        self, pipeline: SuggestionPipeline, suggestion_client: MagicMock
    ) -> None:
        suggestion_client.generate_response.return_value = '["a", "b", "c", "d"]'

        result = await pipeline.generate(make_chunk())

        assert result.suggestions == ("a", "b", "c")
        assert result.error is None

    @pytest.mark.asyncio
    async def test_non_actionable_statement_yields_no_suggestions(
        self, pipeline: SuggestionPipeline, suggestion_client: MagicMock
    ) -> None:
        suggestion_client.generate_response.return_value = '["", "", ""]'

        result = await pipeline.generate(make_chunk("Okay, sounds good."))

        assert result.suggestions == ()
        assert result.ok

    @pytest.mark.asyncio
    async def test_unparseable_response_returns_fallback(
        self, pipeline: SuggestionPipeline, suggestion_client: MagicMock
    ) -> None:
        suggestion_client.generate_response.return_value = "I am not sure."

        result = await pipeline.generate(make_chunk())

        assert result.suggestions == FALLBACK_SUGGESTIONS
        assert result.error == ERROR_PARSE_FAILED
        assert result.error_kind == ErrorKind.PARSE_ERROR

    @pytest.mark.asyncio
    async def test_missing_api_key(self, clock: Any, suggestion_client: MagicMock) -> None:
        pipeline = SuggestionPipeline(
            make_config(suggestions_api_key=None),
            suggestion_client=suggestion_client,
            summary_client=MagicMock(),
            clock=clock,
        )

        result = await pipeline.generate(make_chunk())

        assert result.error == ERROR_NO_API_KEY
        suggestion_client.generate_response.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_text(self, pipeline: SuggestionPipeline, suggestion_client: MagicMock) -> None:
        result = await pipeline.generate(make_chunk("   "))

        assert result.error == ERROR_EMPTY_TEXT
        suggestion_client.generate_response.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_is_reported_not_raised(
        self, pipeline: SuggestionPipeline, suggestion_client: MagicMock
    ) -> None:
        suggestion_client.generate_response.side_effect = ExternalServiceError(
            "llm", "API error: 503", upstream_status=503
        )

        result = await pipeline.generate(make_chunk())

        assert result.suggestions == ()
        assert result.error == "API error: 503"
        assert result.error_kind == ErrorKind.EXTERNAL_SERVICE

    @pytest.mark.asyncio
    async def test_unreachable_provider_gets_fallback(
        self, pipeline: SuggestionPipeline, suggestion_client: MagicMock
    ) -> None:
        suggestion_client.generate_response.side_effect = ExternalServiceError(
            "llm", "API error: Connection reset by peer"
        )

        result = await pipeline.generate(make_chunk())

        assert result.suggestions == FALLBACK_SUGGESTIONS
        assert result.error == "API error: Connection reset by peer"

    @pytest.mark.asyncio
    async def test_to_suggestions_stamps_each_entry(
        self, pipeline: SuggestionPipeline
    ) -> None:
        result = await pipeline.generate(make_chunk())
        stamp = datetime(2026, 1, 1, tzinfo=UTC)

        items = result.to_suggestions(stamp)

        assert len(items) == 3
        assert all(item.generated_at == stamp for item in items)


class TestSummary:
    """Rolling conversation summary."""

    @pytest.mark.asyncio
    async def test_no_summary_below_history_threshold(
        self, pipeline: SuggestionPipeline, summary_client: MagicMock
    ) -> None:
        result = await pipeline.generate(make_chunk(), history=[make_chunk("hi"), make_chunk("yo")])

        summary_client.generate_response.assert_not_called()
        assert result.summary is None

    @pytest.mark.asyncio
    async def test_initial_summary_generated_at_threshold(
        self, pipeline: SuggestionPipeline, summary_client: MagicMock
    ) -> None:
        history = [make_chunk(f"statement {i}") for i in range(3)]

        result = await pipeline.generate(make_chunk(), history=history)

        assert result.summary == "Prospect is evaluating onboarding."
        prompt = summary_client.generate_response.await_args.kwargs["messages"][0]["content"]
        assert "Summarize this conversation" in prompt

    @pytest.mark.asyncio
    async def test_existing_summary_is_folded_with_recent_chunks(
        self, pipeline: SuggestionPipeline, summary_client: MagicMock, suggestion_client: MagicMock
    ) -> None:
        history = [make_chunk(f"statement {i}") for i in range(6)]

        result = await pipeline.generate(make_chunk(), history=history, summary="Earlier summary.")

        prompt = summary_client.generate_response.await_args.kwargs["messages"][0]["content"]
        assert "Earlier summary." in prompt
        assert "statement 5" in prompt
        assert "statement 2" not in prompt
        assert result.summary == "Prospect is evaluating onboarding."
        suggestion_prompt = suggestion_client.generate_response.await_args.kwargs["messages"][0][
            "content"
        ]
        assert "Prospect is evaluating onboarding." in suggestion_prompt

    @pytest.mark.asyncio
    async def test_summary_failure_keeps_previous_summary(
        self, pipeline: SuggestionPipeline, summary_client: MagicMock
    ) -> None:
        summary_client.generate_response.side_effect = ExternalServiceError("llm")
        history = [make_chunk(f"statement {i}") for i in range(4)]

        result = await pipeline.generate(make_chunk(), history=history, summary="Earlier summary.")

        assert result.summary == "Earlier summary."
        assert result.ok


class TestCreate:
    """Two-phase async construction."""

    @pytest.mark.asyncio
    async def test_create_awaits_loader(self, suggestion_client: MagicMock) -> None:
        config = make_config(min_request_interval_ms=1000)

        async def loader() -> SuggestionConfig:
            return config

        pipeline = await SuggestionPipeline.create(
            loader, suggestion_client=suggestion_client, summary_client=MagicMock()
        )

        assert pipeline.config is config
        assert pipeline.can_make_request()

    def test_config_from_settings(self) -> None:
        settings = Settings(
            _env_file=None,  # type: ignore[call-arg]
            SUGGESTIONS_API_KEY=SecretStr("suggest"),
            SUGGESTIONS_MODEL="gemini/gemini-2.0-flash",
            SUGGESTIONS_MIN_INTERVAL_MS=2500,
        )

        config = SuggestionConfig.from_settings(settings, sales_context="Lead with the ROI story.")

        assert config.suggestions_api_key == "suggest"
        assert config.summary_api_key == "suggest"
        assert config.model == "gemini/gemini-2.0-flash"
        assert config.min_request_interval_ms == 2500
        assert config.sales_context == "Lead with the ROI story."
