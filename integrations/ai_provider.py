"""
AI Provider: LLM completion collaborator for AI nodes.

Responsibility:
- Abstract the concrete LLM API (OpenAI-compatible, Anthropic, Ollama)
- Resolve provider, base URL and key from environment
- Return generated text plus token usage, or raise AIProviderError

This is the ONLY place where LLMs are called.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"
_PROVIDERS = {"auto", "ollama", "openai_compatible", "anthropic"}


class AIProviderError(RuntimeError):
    """Provider misconfiguration or an unusable provider response."""


@dataclass(frozen=True)
class AICompletion:
    text: str
    usage: dict[str, Any] = field(default_factory=dict)


class AIProvider(Protocol):
    async def complete(self, *, model: str, prompt: str, max_tokens: int) -> AICompletion:
        ...


def resolve_provider(provider_raw: str, base_url: str) -> str:
    if provider_raw != "auto":
        return provider_raw

    lowered = (base_url or "").strip().lower()
    if "anthropic.com" in lowered:
        return "anthropic"
    if "openai.com" in lowered or lowered.endswith("/v1"):
        return "openai_compatible"
    return "ollama"


class HttpAIProvider:
    """Async httpx client speaking the configured provider's chat API."""

    def __init__(
        self,
        base_url: str | None = None,
        provider: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        configured_base_url = (base_url or os.getenv("MODEL_BASE_URL", "")).strip()
        self.base_url = (configured_base_url or DEFAULT_BASE_URL).rstrip("/")
        provider_raw = (provider or os.getenv("MODEL_PROVIDER", "auto")).strip().lower()
        if provider_raw not in _PROVIDERS:
            provider_raw = "auto"
        self.provider = resolve_provider(provider_raw, self.base_url)

        self.api_key = (api_key if api_key is not None else os.getenv("MODEL_API_KEY", "")).strip()
        if not self.api_key:
            if self.provider == "anthropic":
                self.api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
            elif self.provider == "openai_compatible":
                self.api_key = os.getenv("OPENAI_API_KEY", "").strip()

        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_env(cls) -> "HttpAIProvider | None":
        """Return a provider only when it can actually be called."""
        provider = cls()
        if provider.is_configured:
            return provider
        logger.info("AI provider not configured (no API key for provider '%s')", provider.provider)
        return None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self.provider == "ollama"

    async def complete(self, *, model: str, prompt: str, max_tokens: int) -> AICompletion:
        if not self.is_configured:
            raise AIProviderError(f"No API key configured for AI provider '{self.provider}'")

        messages = [{"role": "user", "content": prompt}]
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            try:
                if self.provider == "anthropic":
                    return await self._call_anthropic_messages(client, model, messages, max_tokens)
                if self.provider == "openai_compatible":
                    return await self._call_openai_chat(client, model, messages, max_tokens)
                return await self._call_ollama_chat(client, model, messages, max_tokens)
            except httpx.HTTPStatusError as e:
                detail = (e.response.text or "").strip()[:300]
                raise AIProviderError(
                    f"AI provider returned HTTP {e.response.status_code}: {detail}"
                ) from e
            except httpx.RequestError as e:
                raise AIProviderError(f"AI provider request failed: {e}") from e

    async def _call_openai_chat(
        self,
        client: httpx.AsyncClient,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> AICompletion:
        response = await client.post(
            "/v1/chat/completions",
            json={"model": model, "messages": messages, "max_tokens": max_tokens, "stream": False},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        response.raise_for_status()
        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise AIProviderError("OpenAI-compatible response missing choices")
        message = choices[0].get("message") or {}
        return AICompletion(text=str(message.get("content") or ""), usage=dict(data.get("usage") or {}))

    async def _call_anthropic_messages(
        self,
        client: httpx.AsyncClient,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> AICompletion:
        response = await client.post(
            "/v1/messages",
            json={"model": model, "messages": messages, "max_tokens": max_tokens},
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": os.getenv("ANTHROPIC_VERSION", "2023-06-01"),
            },
        )
        response.raise_for_status()
        data = response.json()
        text_parts = [
            str(block.get("text", "")).strip()
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        text_parts = [part for part in text_parts if part]
        if not text_parts:
            raise AIProviderError("Anthropic response missing text content")
        return AICompletion(text="\n".join(text_parts), usage=dict(data.get("usage") or {}))

    async def _call_ollama_chat(
        self,
        client: httpx.AsyncClient,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> AICompletion:
        response = await client.post(
            "/api/chat",
            json={
                "model": model,
                "messages": messages,
                "stream": False,
                "options": {"num_predict": max_tokens},
            },
        )
        response.raise_for_status()
        data = response.json()
        usage = {
            key: data[key]
            for key in ("prompt_eval_count", "eval_count")
            if key in data
        }
        return AICompletion(text=str((data.get("message") or {}).get("content", "")), usage=usage)
