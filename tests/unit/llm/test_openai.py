"""
Tests for OpenAI Provider.

Tests OpenAI provider implementation with mocked API calls.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from planqa.config import LLMSettings
from planqa.llm.models import LLMMessage, LLMRequest
from planqa.llm.openai import OpenAIProvider


@pytest.fixture
def provider():
    """Create OpenAI provider instance."""
    return OpenAIProvider(
        api_key="sk-test-key-1234567890abcdefghij",
        model="gpt-4o-mini",
        temperature=0.0,
        max_tokens=800,
        timeout=30,
    )


def make_completion(content="SELECT 1", finish_reason="stop"):
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = content
    mock_response.choices[0].finish_reason = finish_reason
    mock_response.model = "gpt-4o-mini"
    mock_response.usage.prompt_tokens = 120
    mock_response.usage.completion_tokens = 30
    mock_response.usage.total_tokens = 150
    return mock_response


class TestOpenAIProviderInit:
    """Test OpenAI provider initialization."""

    def test_initialization(self, provider):
        assert provider.model == "gpt-4o-mini"
        assert provider.temperature == 0.0
        assert provider.max_tokens == 800
        assert provider.provider_name == "openai"
        assert provider.client is not None

    def test_from_settings(self, mock_openai_api_key):
        settings = LLMSettings(openai_api_key=mock_openai_api_key, openai_model="gpt-4o", temperature=0.1)

        provider = OpenAIProvider.from_settings(settings)

        assert provider.model == "gpt-4o"
        assert provider.temperature == 0.1

    def test_from_settings_requires_key(self):
        with pytest.raises(ValueError, match="LLM_OPENAI_API_KEY"):
            OpenAIProvider.from_settings(LLMSettings(_env_file=None))


class TestGenerate:
    """Test generate method."""

    @pytest.mark.asyncio
    async def test_successful_generation(self, provider):
        with patch.object(
            provider.client.chat.completions,
            "create",
            new_callable=AsyncMock,
            return_value=make_completion("SELECT TOP (5) JobName FROM [publish].[DASHt_Planning]"),
        ):
            response = await provider.generate(
                LLMRequest(messages=[LLMMessage(role="user", content="late jobs")])
            )

        assert response.content.startswith("SELECT TOP (5)")
        assert response.usage.total_tokens == 150
        assert response.finish_reason == "stop"
        assert response.provider == "openai"

    @pytest.mark.asyncio
    async def test_applies_defaults(self, provider):
        mock_create = AsyncMock(return_value=make_completion())

        with patch.object(provider.client.chat.completions, "create", mock_create):
            await provider.generate(LLMRequest(messages=[LLMMessage(role="user", content="Test")]))

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["temperature"] == 0.0
        assert call_kwargs["max_tokens"] == 800
        assert call_kwargs["model"] == "gpt-4o-mini"
        assert call_kwargs["messages"] == [{"role": "user", "content": "Test"}]

    @pytest.mark.asyncio
    async def test_request_overrides_defaults(self, provider):
        mock_create = AsyncMock(return_value=make_completion())

        with patch.object(provider.client.chat.completions, "create", mock_create):
            await provider.generate(
                LLMRequest(
                    messages=[LLMMessage(role="user", content="Test")],
                    temperature=0.7,
                    max_tokens=200,
                )
            )

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["temperature"] == 0.7
        assert call_kwargs["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty(self, provider):
        with patch.object(
            provider.client.chat.completions,
            "create",
            new_callable=AsyncMock,
            return_value=make_completion(content=None, finish_reason="tool_calls"),
        ):
            response = await provider.generate(
                LLMRequest(messages=[LLMMessage(role="user", content="Test")])
            )

        assert response.content == ""
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_timeout_propagates(self, provider):
        error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com"))

        with patch.object(
            provider.client.chat.completions, "create", new_callable=AsyncMock, side_effect=error
        ):
            with pytest.raises(openai.APITimeoutError):
                await provider.generate(LLMRequest(messages=[LLMMessage(role="user", content="Test")]))


class TestFinishReason:
    @pytest.mark.parametrize("reason", ["stop", "length", "content_filter"])
    def test_known_reasons_kept(self, reason):
        assert OpenAIProvider._map_finish_reason(reason) == reason

    def test_unknown_reason_maps_to_stop(self):
        assert OpenAIProvider._map_finish_reason(None) == "stop"


class TestComplete:
    @pytest.mark.asyncio
    async def test_sends_system_then_user_message(self, provider):
        mock_create = AsyncMock(return_value=make_completion("SELECT 1"))

        with patch.object(provider.client.chat.completions, "create", mock_create):
            response = await provider.complete("You write T-SQL.", "How many jobs are late?", max_tokens=64)

        call_kwargs = mock_create.call_args.kwargs
        assert call_kwargs["messages"] == [
            {"role": "system", "content": "You write T-SQL."},
            {"role": "user", "content": "How many jobs are late?"},
        ]
        assert call_kwargs["max_tokens"] == 64
        assert call_kwargs["temperature"] == 0.0
        assert response.content == "SELECT 1"
