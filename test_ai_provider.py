import asyncio
import json

import httpx
import pytest

from integrations.ai_provider import AIProviderError, HttpAIProvider, resolve_provider


def test_resolve_provider_from_base_url() -> None:
    assert resolve_provider("auto", "https://api.anthropic.com") == "anthropic"
    assert resolve_provider("auto", "https://api.openai.com") == "openai_compatible"
    assert resolve_provider("auto", "http://localhost:8000/v1") == "openai_compatible"
    assert resolve_provider("auto", "http://localhost:11434") == "ollama"
    assert resolve_provider("anthropic", "http://localhost:11434") == "anthropic"


def test_openai_compatible_completion() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "hello"}}], "usage": {"total_tokens": 9}},
        )

    async def _run() -> None:
        provider = HttpAIProvider(
            base_url="https://api.openai.com",
            api_key="sk-test",
            transport=httpx.MockTransport(handler),
        )
        completion = await provider.complete(model="gpt-test", prompt="hi", max_tokens=20)
        assert completion.text == "hello"
        assert completion.usage == {"total_tokens": 9}
        assert seen["path"] == "/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["max_tokens"] == 20
        assert seen["body"]["messages"] == [{"role": "user", "content": "hi"}]

    asyncio.run(_run())


def test_anthropic_completion_joins_text_blocks() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "ak"
        return httpx.Response(
            200,
            json={"content": [{"type": "text", "text": "one"}, {"type": "text", "text": "two"}], "usage": {"output_tokens": 2}},
        )

    async def _run() -> None:
        provider = HttpAIProvider(
            base_url="https://api.anthropic.com",
            api_key="ak",
            transport=httpx.MockTransport(handler),
        )
        completion = await provider.complete(model="m", prompt="p", max_tokens=5)
        assert completion.text == "one\ntwo"
        assert completion.usage == {"output_tokens": 2}

    asyncio.run(_run())


def test_ollama_needs_no_key_and_reports_eval_counts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["options"] == {"num_predict": 7}
        return httpx.Response(200, json={"message": {"content": "local"}, "eval_count": 3, "prompt_eval_count": 4})

    async def _run() -> None:
        provider = HttpAIProvider(
            base_url="http://localhost:11434",
            provider="ollama",
            api_key="",
            transport=httpx.MockTransport(handler),
        )
        assert provider.is_configured
        completion = await provider.complete(model="llama", prompt="p", max_tokens=7)
        assert completion.text == "local"
        assert completion.usage == {"prompt_eval_count": 4, "eval_count": 3}

    asyncio.run(_run())


def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    async def _run() -> None:
        provider = HttpAIProvider(
            base_url="https://api.openai.com",
            api_key="sk",
            transport=httpx.MockTransport(handler),
        )
        with pytest.raises(AIProviderError, match="HTTP 429"):
            await provider.complete(model="m", prompt="p", max_tokens=1)

    asyncio.run(_run())


def test_from_env_returns_none_without_key(monkeypatch) -> None:
    monkeypatch.setenv("MODEL_BASE_URL", "https://api.openai.com")
    monkeypatch.setenv("MODEL_PROVIDER", "auto")
    monkeypatch.delenv("MODEL_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert HttpAIProvider.from_env() is None

    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    provider = HttpAIProvider.from_env()
    assert provider is not None
    assert provider.api_key == "sk-env"
