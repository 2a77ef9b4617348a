import asyncio

from execution.context import ExecutionContext
from integrations.ai_provider import AICompletion
from runners.ai import AiRunner
from shared.workflow_contracts import AiNode


class _FakeProvider:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls: list[dict] = []

    async def complete(self, *, model: str, prompt: str, max_tokens: int) -> AICompletion:
        self.calls.append({"model": model, "prompt": prompt, "max_tokens": max_tokens})
        return AICompletion(text=self.text, usage={"total_tokens": 12})


def _context(**variables) -> ExecutionContext:
    return ExecutionContext(workflow_id="wf", execution_id="ex-1", user_id="u1", variables=dict(variables))


def _node(config: dict) -> AiNode:
    return AiNode.model_validate({"id": "ai", "kind": "ai", "config": config})


def test_text_generation_resolves_prompt_and_uses_default_model() -> None:
    async def _run() -> None:
        provider = _FakeProvider("A haiku")
        runner = AiRunner(provider, default_model="test-model")
        result = await runner.execute(_node({"prompt": "Write about {topic}", "max_tokens": 40}), _context(topic="rain"))

        assert result.success is True
        assert result.output == {"text": "A haiku", "model": "test-model", "usage": {"total_tokens": 12}}
        assert provider.calls == [{"model": "test-model", "prompt": "Write about rain", "max_tokens": 40}]

    asyncio.run(_run())


def test_sentiment_is_normalized() -> None:
    async def _run() -> None:
        provider = _FakeProvider(" Positive. ")
        result = await AiRunner(provider).execute(
            _node({"task_type": "sentiment_analysis", "text": "{review}", "model": "m"}),
            _context(review="Loved it"),
        )
        assert result.output["sentiment"] == "positive"
        assert result.output["text"] == "Loved it"
        assert provider.calls[0]["max_tokens"] == 10

        unclear = await AiRunner(_FakeProvider("mixed feelings")).execute(
            _node({"taskType": "Sentiment Analysis", "text": "meh"}), _context()
        )
        assert unclear.output["sentiment"] == "neutral"

    asyncio.run(_run())


def test_summarization_and_classification_token_limits() -> None:
    async def _run() -> None:
        provider = _FakeProvider("Short.")
        summary = await AiRunner(provider).execute(
            _node({"task_type": "summarization", "text": "long text", "max_length": 30}), _context()
        )
        assert summary.output["summary"] == "Short."
        assert summary.output["original_length"] == len("long text")
        assert provider.calls[-1]["max_tokens"] == 60

        category = await AiRunner(_FakeProvider(" billing \n")).execute(
            _node({"task_type": "classification", "text": "refund?", "categories": ["billing", "tech"]}), _context()
        )
        assert category.output["category"] == "billing"
        assert category.output["categories"] == ["billing", "tech"]

    asyncio.run(_run())


def test_data_extraction_parses_fenced_json_and_falls_back_to_raw() -> None:
    async def _run() -> None:
        fenced = '```json\n{"name": "Ana", "age": 31}\n```'
        result = await AiRunner(_FakeProvider(fenced)).execute(
            _node({"task_type": "data_extraction", "text": "Ana is 31", "fields": ["name", "age"]}), _context()
        )
        assert result.output["extracted"] == {"name": "Ana", "age": 31}

        raw = await AiRunner(_FakeProvider("not json")).execute(
            _node({"task_type": "data_extraction", "text": "x"}), _context()
        )
        assert raw.output["extracted"] == {"raw": "not json"}

    asyncio.run(_run())


def test_missing_provider_fails_the_node() -> None:
    async def _run() -> None:
        result = await AiRunner(None).execute(_node({"prompt": "hi"}), _context())
        assert result.success is False
        assert result.error == "AI provider is not configured"

    asyncio.run(_run())


def test_slow_provider_times_out() -> None:
    class _SlowProvider:
        async def complete(self, *, model: str, prompt: str, max_tokens: int) -> AICompletion:
            await asyncio.sleep(1)
            return AICompletion(text="late")

    async def _run() -> None:
        runner = AiRunner(_SlowProvider(), timeout_seconds=0.01)
        result = await runner.execute(_node({"prompt": "hi"}), _context())
        assert result.success is False
        assert "timed out" in (result.error or "")

    asyncio.run(_run())
