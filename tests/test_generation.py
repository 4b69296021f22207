"""Tests for the generation client, its backends and the fallback."""

import asyncio
import json
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from assistant_engine.context.prompt_builder import BuiltPrompt
from assistant_engine.core.generation import (
    AnthropicBackend,
    BackendOutput,
    GenerationBackendError,
    GenerationClient,
    HttpBackend,
    build_backend,
    fallback_answer,
)
from assistant_engine.core.schemas_assistant import RetrievedSource


def _prompt() -> BuiltPrompt:
    return BuiltPrompt(
        system="system text",
        prompt="=== CURRENT USER QUERY ===\nbest gift keywords",
        estimated_tokens=42,
        sources_used=4,
        history_used=0,
    )


def _sources() -> list[RetrievedSource]:
    return [
        RetrievedSource(source_id=f"k{i}", source_type="keyword", source_label=f"gift idea {i}", similarity_score=0.9 - i / 10)
        for i in range(4)
    ]


class _Backend:
    provider = "fake"
    model_id = "fake-model"

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def complete(self, prompt, *, max_tokens, temperature):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


async def _generate(client: GenerationClient, timeout: float = 5.0):
    return await client.generate(
        _prompt(), max_tokens=256, temperature=0.7, timeout=timeout, sources=_sources()
    )


class TestFallbackText:
    def test_lists_top_three_labels_and_types_only(self):
        text = fallback_answer(_sources())
        assert text.startswith("I encountered an issue generating a response.")
        assert "1. gift idea 0 (keyword)" in text
        assert "3. gift idea 2 (keyword)" in text
        assert "gift idea 3" not in text
        assert text.endswith("Please try rephrasing your question or check back later.")

    def test_no_metrics_leak_into_fallback(self):
        source = RetrievedSource(
            source_id="k1",
            source_type="keyword",
            source_label="mothers day mug",
            similarity_score=0.8,
            metadata={"demand_index": 0.93},
        )
        assert "0.93" not in fallback_answer([source])


class TestGenerationClient:
    @pytest.mark.asyncio
    async def test_success_reports_usage(self):
        backend = _Backend(result=BackendOutput(text=" Answer ", input_tokens=120, output_tokens=30))
        client = GenerationClient(backend, log_usage=False)

        result = await _generate(client)

        assert result.text == "Answer"
        assert result.fallback is False
        assert (result.input_tokens, result.output_tokens) == (120, 30)
        assert result.model_id == "fake-model"
        assert result.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_missing_usage_is_estimated(self):
        client = GenerationClient(_Backend(result=BackendOutput(text="abcdefgh")), log_usage=False)
        result = await _generate(client)
        assert result.input_tokens == 42
        assert result.output_tokens == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("refused"),
            GenerationBackendError("status FAILED"),
            RuntimeError("boom"),
        ],
    )
    async def test_backend_errors_fall_back(self, error):
        backend = _Backend(error=error)
        client = GenerationClient(backend, log_usage=False)

        result = await _generate(client)

        assert result.fallback is True
        assert result.text == fallback_answer(_sources())
        assert backend.calls == 1  # never retried

    @pytest.mark.asyncio
    async def test_empty_output_falls_back(self):
        client = GenerationClient(_Backend(result=BackendOutput(text="   ")), log_usage=False)
        result = await _generate(client)
        assert result.fallback is True

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        backend = _Backend(result=BackendOutput(text="late"), delay=1.0)
        client = GenerationClient(backend, log_usage=False)

        result = await _generate(client, timeout=0.05)

        assert result.fallback is True
        assert "timed out" in result.error
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_exhausted_deadline_skips_backend(self):
        backend = _Backend(result=BackendOutput(text="never"))
        client = GenerationClient(backend, log_usage=False)

        result = await _generate(client, timeout=0)

        assert result.fallback is True
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_usage_logged_on_success(self):
        client = GenerationClient(_Backend(result=BackendOutput(text="ok", input_tokens=1, output_tokens=1)))
        with patch("assistant_engine.core.generation.log_llm_usage") as mock_log:
            await _generate(client)
            await client.drain()
        mock_log.assert_called_once()
        assert mock_log.call_args.kwargs["workflow"] == "assistant_ask"
        assert mock_log.call_args.kwargs["fallback"] is False

    @pytest.mark.asyncio
    async def test_fallback_is_logged_as_fallback(self):
        client = GenerationClient(_Backend(error=ConnectionError("refused")))
        with patch("assistant_engine.core.generation.log_llm_usage") as mock_log:
            result = await _generate(client)
            await client.drain()
        assert result.fallback is True
        mock_log.assert_called_once()
        assert mock_log.call_args.kwargs["fallback"] is True
        assert mock_log.call_args.kwargs["tokens_output"] == result.output_tokens

    @pytest.mark.asyncio
    async def test_answer_does_not_wait_for_usage_write(self):
        release = threading.Event()
        written = []

        def slow_log(**kwargs):
            release.wait(timeout=5)
            written.append(kwargs)

        client = GenerationClient(_Backend(result=BackendOutput(text="ok", input_tokens=1, output_tokens=1)))
        with patch("assistant_engine.core.generation.log_llm_usage", side_effect=slow_log):
            result = await _generate(client)
            assert result.text == "ok"
            assert written == []
            release.set()
            await client.drain()
        assert len(written) == 1


class TestAnthropicBackend:
    @pytest.mark.asyncio
    async def test_sends_system_and_user_message(self):
        backend = AnthropicBackend(api_key="test", model_id="claude-haiku-4-5-20251001")
        response = MagicMock()
        response.content = [MagicMock(type="text", text="Grounded answer")]
        response.usage = MagicMock(input_tokens=100, output_tokens=12)
        backend._client = MagicMock()
        backend._client.messages.create = AsyncMock(return_value=response)

        output = await backend.complete(_prompt(), max_tokens=300, temperature=0.2)

        assert output.text == "Grounded answer"
        assert (output.input_tokens, output.output_tokens) == (100, 12)
        kwargs = backend._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "system text"
        assert kwargs["messages"] == [{"role": "user", "content": _prompt().prompt}]
        assert kwargs["max_tokens"] == 300


class TestHttpBackend:
    def _backend(self, handler) -> HttpBackend:
        return HttpBackend(
            "https://api.example.test/v2/endpoint/",
            "secret",
            "self-hosted-7b",
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_posts_input_payload_with_bearer(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "COMPLETED", "output": ["generated text"]})

        output = await self._backend(handler).complete(_prompt(), max_tokens=512, temperature=0.5)

        assert output.text == "generated text"
        assert seen["url"] == "https://api.example.test/v2/endpoint/runsync"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["input"]["max_tokens"] == 512
        assert "best gift keywords" in seen["body"]["input"]["prompt"]

    @pytest.mark.asyncio
    async def test_failed_job_raises(self):
        def handler(request):
            return httpx.Response(200, json={"status": "FAILED", "error": "oom"})

        with pytest.raises(GenerationBackendError):
            await self._backend(handler).complete(_prompt(), max_tokens=512, temperature=0.5)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(503, json={"error": "unavailable"})

        with pytest.raises(httpx.HTTPStatusError):
            await self._backend(handler).complete(_prompt(), max_tokens=512, temperature=0.5)


def test_build_backend_selects_provider():
    settings = MagicMock()
    settings.GENERATION_PROVIDER = "http"
    settings.GENERATION_ENDPOINT_URL = "https://api.example.test"
    settings.GENERATION_ENDPOINT_KEY = None
    settings.GENERATION_MODEL = "m"
    assert isinstance(build_backend(settings), HttpBackend)

    settings.GENERATION_PROVIDER = "nope"
    with pytest.raises(ValueError):
        build_backend(settings)
