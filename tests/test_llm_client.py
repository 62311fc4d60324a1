"""Tests for the multi-provider LLM client."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest

from qualmatrix.config import QualmatrixSettings
from qualmatrix.errors import (
    LLMConfigurationError,
    LLMConnectionError,
    LLMStatusError,
    LLMTransportError,
)
from qualmatrix.llm.client import LLMClient, LLMUsageTracker

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_REQUEST = httpx.Request("POST", "https://llm.example.test/v1/chat/completions")


def _make_settings(**overrides: object) -> QualmatrixSettings:
    """Build minimal settings for testing (no real API key needed)."""
    defaults: dict[str, object] = {
        "llm_provider": "openai",
        "openai_api_key": "sk-test-key",
        "llm_model": "gpt-4o",
        "llm_max_tokens": 8000,
        "llm_temperature": 0.3,
    }
    defaults.update(overrides)
    return QualmatrixSettings(_env_file=None, **defaults)  # type: ignore[arg-type, call-arg]


def _openai_response(content: str | None, finish_reason: str = "stop") -> SimpleNamespace:
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                finish_reason=finish_reason,
                message=SimpleNamespace(content=content),
            )
        ],
        usage=SimpleNamespace(prompt_tokens=900, completion_tokens=120),
    )


def _client_with_openai(settings: QualmatrixSettings, **create_kwargs: object) -> LLMClient:
    client = LLMClient(settings)
    mock_openai = AsyncMock()
    mock_openai.chat.completions.create = AsyncMock(**create_kwargs)
    client._openai_client = mock_openai
    return client


def _status_error(cls: type, status: int) -> Exception:
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"Error code: {status}", response=response, body=None)


# ---------------------------------------------------------------------------
# Configuration checks
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_unknown_provider(self) -> None:
        with pytest.raises(LLMConfigurationError, match="Unsupported LLM provider: gemini"):
            LLMClient(_make_settings(llm_provider="gemini"))

    def test_missing_openai_key(self) -> None:
        with pytest.raises(LLMConfigurationError, match="QUALMATRIX_OPENAI_API_KEY"):
            LLMClient(_make_settings(openai_api_key=""))

    def test_azure_needs_key_and_endpoint(self) -> None:
        with pytest.raises(LLMConfigurationError) as exc_info:
            LLMClient(_make_settings(llm_provider="azure"))
        message = str(exc_info.value)
        assert "QUALMATRIX_AZURE_API_KEY" in message
        assert "QUALMATRIX_AZURE_ENDPOINT" in message

    def test_local_needs_nothing(self) -> None:
        client = LLMClient(_make_settings(llm_provider="local", openai_api_key=""))
        assert client.model_name == "llama3.1:8b"

    def test_azure_model_name_is_deployment(self) -> None:
        client = LLMClient(
            _make_settings(
                llm_provider="azure",
                azure_api_key="az-key",
                azure_endpoint="https://res.openai.azure.com/",
                azure_deployment="gpt-4o-prod",
            )
        )
        assert client.model_name == "gpt-4o-prod"

    def test_configuration_error_is_transport_error(self) -> None:
        assert issubclass(LLMConfigurationError, LLMTransportError)


# ---------------------------------------------------------------------------
# OpenAI-compatible providers
# ---------------------------------------------------------------------------


class TestOpenAICompletion:
    @pytest.mark.asyncio
    async def test_returns_raw_text(self) -> None:
        raw = '```json\n{"content_analysis": {"questions": []}}\n```'
        client = _client_with_openai(_make_settings(), return_value=_openai_response(raw))

        result = await client.complete("system", "user")

        assert result == raw
        kwargs = client._openai_client.chat.completions.create.call_args.kwargs  # type: ignore[union-attr]
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 8000
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]

    @pytest.mark.asyncio
    async def test_max_tokens_override(self) -> None:
        client = _client_with_openai(_make_settings(), return_value=_openai_response("{}"))
        await client.complete("s", "u", max_tokens=500)
        kwargs = client._openai_client.chat.completions.create.call_args.kwargs  # type: ignore[union-attr]
        assert kwargs["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty_string(self) -> None:
        client = _client_with_openai(_make_settings(), return_value=_openai_response(None))
        assert await client.complete("s", "u") == ""

    @pytest.mark.asyncio
    async def test_usage_recorded(self) -> None:
        client = _client_with_openai(_make_settings(), return_value=_openai_response("{}"))
        await client.complete("s", "u")
        await client.complete("s", "u")
        assert client.tracker.input_tokens == 1800
        assert client.tracker.output_tokens == 240
        assert client.tracker.calls == 2

    @pytest.mark.asyncio
    async def test_truncation_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        client = _client_with_openai(
            _make_settings(), return_value=_openai_response('{"content_analysis": {', "length")
        )
        with caplog.at_level(logging.WARNING, logger="qualmatrix.llm.client"):
            result = await client.complete("s", "u")
        assert result == '{"content_analysis": {'
        assert "truncated at max_tokens=8000" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        client = _client_with_openai(
            _make_settings(), side_effect=openai.APIConnectionError(request=_REQUEST)
        )
        with pytest.raises(LLMConnectionError, match="Could not reach the ChatGPT endpoint"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_timeout_is_connection_error(self) -> None:
        client = _client_with_openai(
            _make_settings(), side_effect=openai.APITimeoutError(request=_REQUEST)
        )
        with pytest.raises(LLMConnectionError):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403, 404])
    async def test_auth_statuses_are_configuration_errors(self, status: int) -> None:
        client = _client_with_openai(
            _make_settings(), side_effect=_status_error(openai.APIStatusError, status)
        )
        with pytest.raises(LLMConfigurationError, match=f"\\({status}\\)"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_deployment_not_found_names_model(self) -> None:
        client = _client_with_openai(
            _make_settings(), side_effect=_status_error(openai.NotFoundError, 404)
        )
        with pytest.raises(LLMConfigurationError, match="'gpt-4o' was not found"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_other_statuses_keep_status_code(self, status: int) -> None:
        client = _client_with_openai(
            _make_settings(), side_effect=_status_error(openai.APIStatusError, status)
        )
        with pytest.raises(LLMStatusError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.status_code == status
        assert f"HTTP {status}" in str(exc_info.value)


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicCompletion:
    def _client(self, **create_kwargs: object) -> LLMClient:
        settings = _make_settings(
            llm_provider="anthropic",
            anthropic_api_key="sk-ant-test-key",
            llm_model="claude-sonnet-4-20250514",
        )
        client = LLMClient(settings)
        mock_anthropic = AsyncMock()
        mock_anthropic.messages.create = AsyncMock(**create_kwargs)
        client._anthropic_client = mock_anthropic
        return client

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self) -> None:
        response = SimpleNamespace(
            stop_reason="end_turn",
            content=[
                SimpleNamespace(type="text", text='{"content_analysis": '),
                SimpleNamespace(type="thinking", thinking="..."),
                SimpleNamespace(type="text", text='{"questions": []}}'),
            ],
            usage=SimpleNamespace(input_tokens=100, output_tokens=50),
        )
        client = self._client(return_value=response)

        result = await client.complete("system", "user")

        assert result == '{"content_analysis": {"questions": []}}'
        kwargs = client._anthropic_client.messages.create.call_args.kwargs  # type: ignore[union-attr]
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]
        assert client.tracker.total_tokens == 150

    @pytest.mark.asyncio
    async def test_max_tokens_stop_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        response = SimpleNamespace(
            stop_reason="max_tokens",
            content=[SimpleNamespace(type="text", text='{"content_analysis": {')],
            usage=SimpleNamespace(input_tokens=100, output_tokens=8000),
        )
        client = self._client(return_value=response)
        with caplog.at_level(logging.WARNING, logger="qualmatrix.llm.client"):
            result = await client.complete("s", "u")
        assert result == '{"content_analysis": {'
        assert "Claude response truncated" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        client = self._client(side_effect=anthropic.APIConnectionError(request=_REQUEST))
        with pytest.raises(LLMConnectionError, match="Claude"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_auth_error(self) -> None:
        client = self._client(side_effect=_status_error(anthropic.AuthenticationError, 401))
        with pytest.raises(LLMConfigurationError, match="API key was rejected"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_overloaded(self) -> None:
        client = self._client(side_effect=_status_error(anthropic.APIStatusError, 529))
        with pytest.raises(LLMStatusError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.status_code == 529


# ---------------------------------------------------------------------------
# Usage tracker
# ---------------------------------------------------------------------------


class TestUsageTracker:
    def test_starts_at_zero(self) -> None:
        tracker = LLMUsageTracker()
        assert (tracker.input_tokens, tracker.output_tokens, tracker.calls) == (0, 0, 0)

    def test_accumulates(self) -> None:
        tracker = LLMUsageTracker()
        tracker.record(10, 5)
        tracker.record(20, 1)
        assert tracker.total_tokens == 36
        assert tracker.calls == 2
