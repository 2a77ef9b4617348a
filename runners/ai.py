"""AI node: one LLM completion per task type."""

from __future__ import annotations

import json
import os
from typing import Any

from execution.context import ExecutionContext
from integrations.ai_provider import AIProvider, AIProviderError
from runners.base import NodeExecutionResult, NodeRunner
from shared.workflow_contracts import AiConfig, AiNode

SENTIMENTS = ("positive", "negative", "neutral")
SENTIMENT_MAX_TOKENS = 10
CLASSIFICATION_MAX_TOKENS = 50
EXTRACTION_MAX_TOKENS = 500


def _strip_code_fence(text: str) -> str:
    clean_text = text.strip()
    if clean_text.startswith("```"):
        parts = clean_text.split("\n", 1)
        clean_text = parts[1] if len(parts) > 1 else ""
        if clean_text.rstrip().endswith("```"):
            clean_text = clean_text.rstrip()[:-3]
    return clean_text.strip()


class AiRunner(NodeRunner):
    kind = "ai"
    external = True

    def __init__(
        self,
        provider: AIProvider | None = None,
        *,
        default_model: str | None = None,
        timeout_seconds: float | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.provider = provider
        self.default_model = default_model or os.getenv("AI_DEFAULT_MODEL", "gpt-4o-mini")

    async def run(self, node: AiNode, context: ExecutionContext) -> NodeExecutionResult:
        if self.provider is None:
            raise AIProviderError("AI provider is not configured")

        config = node.config
        model = config.model or self.default_model
        handler = getattr(self, f"_{config.task_type}")
        output = await handler(config, model, context)
        context.log(node.id, "info", f"AI task '{config.task_type}' completed with {model}")
        return NodeExecutionResult.ok(output)

    async def _complete(self, model: str, prompt: str, max_tokens: int):
        return await self.provider.complete(model=model, prompt=prompt, max_tokens=max_tokens)

    async def _text_generation(self, config: AiConfig, model: str, context: ExecutionContext) -> dict[str, Any]:
        prompt = context.resolve_text(config.prompt)
        completion = await self._complete(model, prompt, config.max_tokens)
        return {"text": completion.text, "model": model, "usage": completion.usage}

    async def _sentiment_analysis(self, config: AiConfig, model: str, context: ExecutionContext) -> dict[str, Any]:
        text = context.resolve_text(config.text)
        prompt = (
            "Analyze the sentiment of this text and respond with only one word "
            f"(positive, negative, or neutral): {text}"
        )
        completion = await self._complete(model, prompt, SENTIMENT_MAX_TOKENS)
        answer = completion.text.strip().lower().strip(".!\"' ")
        sentiment = answer if answer in SENTIMENTS else "neutral"
        return {"sentiment": sentiment, "text": text, "usage": completion.usage}

    async def _summarization(self, config: AiConfig, model: str, context: ExecutionContext) -> dict[str, Any]:
        text = context.resolve_text(config.text)
        prompt = f"Summarize the following text in {config.max_length} words or less:\n\n{text}"
        completion = await self._complete(model, prompt, config.max_length * 2)
        return {"summary": completion.text, "original_length": len(text), "usage": completion.usage}

    async def _classification(self, config: AiConfig, model: str, context: ExecutionContext) -> dict[str, Any]:
        text = context.resolve_text(config.text)
        category_list = ", ".join(config.categories) if config.categories else "general categories"
        prompt = (
            f"Classify this text into one of these categories ({category_list}):\n\n{text}\n\n"
            "Respond with only the category name."
        )
        completion = await self._complete(model, prompt, CLASSIFICATION_MAX_TOKENS)
        return {
            "category": completion.text.strip(),
            "text": text,
            "categories": list(config.categories),
            "usage": completion.usage,
        }

    async def _data_extraction(self, config: AiConfig, model: str, context: ExecutionContext) -> dict[str, Any]:
        text = context.resolve_text(config.text)
        field_list = ", ".join(config.fields) if config.fields else "relevant information"
        prompt = (
            f"Extract the following information from this text ({field_list}):\n\n{text}\n\n"
            "Respond in JSON format."
        )
        completion = await self._complete(model, prompt, EXTRACTION_MAX_TOKENS)
        raw = completion.text or "{}"
        try:
            extracted: Any = json.loads(_strip_code_fence(raw))
        except json.JSONDecodeError:
            extracted = {"raw": raw}
        return {"extracted": extracted, "text": text, "usage": completion.usage}
