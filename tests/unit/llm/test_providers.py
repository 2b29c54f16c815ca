"""
Tests for LLM providers and the provider factory.

Tests provider implementations with mocked API clients.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from sqlcopilot.config import LLMSettings
from sqlcopilot.llm.factory import LLMProviderFactory
from sqlcopilot.llm.local import LocalProvider
from sqlcopilot.llm.models import LLMMessage, LLMRequest
from sqlcopilot.llm.openai import OpenAIProvider


@pytest.fixture
def request_():
    return LLMRequest(messages=[LLMMessage(role="user", content="How many orders?")])


def _openai_response(content="SELECT count(*) FROM orders", finish_reason="stop"):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    response.model = "gpt-4o"
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 5
    response.id = "chatcmpl-123"
    return response


class TestOpenAIProvider:
    """Test OpenAI provider with a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=_openai_response())
        client.close = AsyncMock()
        return client

    @pytest.fixture
    def provider(self, client):
        return OpenAIProvider(
            api_key="sk-test-key-1234567890abcdefghij",
            model="gpt-4o",
            temperature=0.0,
            max_tokens=2000,
            client=client,
        )

    @pytest.mark.asyncio
    async def test_successful_generation(self, provider, client, request_):
        response = await provider.generate(request_)

        assert response.content == "SELECT count(*) FROM orders"
        assert response.provider == "openai"
        assert response.usage.total_tokens == 15
        assert response.metadata["id"] == "chatcmpl-123"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 2000
        assert kwargs["messages"] == [{"role": "user", "content": "How many orders?"}]

    @pytest.mark.asyncio
    async def test_request_overrides(self, provider, client):
        request = LLMRequest(
            messages=[LLMMessage(role="user", content="q")],
            temperature=0.5,
            max_tokens=100,
            model="gpt-4o-mini",
        )

        await provider.generate(request)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_unknown_finish_reason_maps_to_stop(self, provider, client, request_):
        client.chat.completions.create.return_value = _openai_response(finish_reason="tool_calls")

        response = await provider.generate(request_)

        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_close(self, provider, client):
        await provider.close()

        client.close.assert_awaited_once()


class TestLocalProvider:
    """Test local provider against a mocked HTTP transport."""

    @staticmethod
    def _provider(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return LocalProvider(base_url="http://llm.local/", model="llama3.1:8b", client=client)

    @pytest.mark.asyncio
    async def test_ollama_endpoint(self, request_):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/chat"
            return httpx.Response(
                200,
                json={
                    "model": "llama3.1:8b",
                    "message": {"role": "assistant", "content": "SELECT 1"},
                    "prompt_eval_count": 7,
                    "eval_count": 3,
                },
            )

        response = await self._provider(handler).generate(request_)

        assert response.content == "SELECT 1"
        assert response.usage.total_tokens == 10
        assert response.provider == "local"

    @pytest.mark.asyncio
    async def test_falls_back_to_openai_compatible_endpoint(self, request_):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/api/chat":
                return httpx.Response(404)
            return httpx.Response(
                200,
                json={
                    "model": "llama3.1:8b",
                    "choices": [{"message": {"content": "SELECT 2"}}],
                    "usage": {"prompt_tokens": 4, "completion_tokens": 2},
                },
            )

        response = await self._provider(handler).generate(request_)

        assert paths == ["/api/chat", "/v1/chat/completions"]
        assert response.content == "SELECT 2"
        assert response.usage.total_tokens == 6

    @pytest.mark.asyncio
    async def test_both_endpoints_failing_raises(self, request_):
        provider = self._provider(lambda request: httpx.Response(500))

        with pytest.raises(httpx.HTTPStatusError):
            await provider.generate(request_)


class TestLLMProviderFactory:
    """Test provider creation from settings."""

    def test_create_openai_provider(self):
        settings = LLMSettings()

        provider = LLMProviderFactory.create_default_provider(settings)

        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "gpt-4o"

    def test_create_local_provider(self):
        settings = LLMSettings(default_provider="local", local_model="qwen2.5:7b")

        provider = LLMProviderFactory.create_default_provider(settings)

        assert isinstance(provider, LocalProvider)
        assert provider.model == "qwen2.5:7b"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            LLMProviderFactory.create_provider("anthropic", LLMSettings())

    def test_openai_without_key(self):
        settings = LLMSettings.model_construct(default_provider="openai", openai_api_key=None)

        with pytest.raises(ValueError, match="API key is required"):
            LLMProviderFactory.create_default_provider(settings)
