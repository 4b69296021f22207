"""Generation client with a deterministic fallback.

The client wraps one backend (Anthropic Messages API or a JSON inference
endpoint) and guarantees generate() returns a GenerationResult: on timeout,
transport error, backend error or empty output it answers with a fixed text
built from the top retrieved sources. Calls are never retried.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import httpx
from anthropic import AsyncAnthropic

from assistant_engine.context.prompt_builder import BuiltPrompt, estimate_tokens
from assistant_engine.core.config import Settings, get_settings
from assistant_engine.core.llm_usage import log_llm_usage
from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import RetrievedSource

logger = get_logger(__name__)

FALLBACK_SOURCE_COUNT = 3


class GenerationBackendError(Exception):
    """Backend answered but the answer is unusable (error status, no output)."""


@dataclass
class BackendOutput:
    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass
class GenerationResult:
    text: str
    model_id: str
    input_tokens: int
    output_tokens: int
    latency_ms: int
    fallback: bool = False
    error: str | None = None


class GenerationBackend(Protocol):
    provider: str
    model_id: str

    async def complete(
        self, prompt: BuiltPrompt, *, max_tokens: int, temperature: float
    ) -> BackendOutput: ...


def fallback_answer(sources: list[RetrievedSource]) -> str:
    """Fixed answer naming only labels and types of the top sources."""
    lines = [
        f"{i}. {s.source_label} ({s.source_type})"
        for i, s in enumerate(sources[:FALLBACK_SOURCE_COUNT], start=1)
    ]
    return (
        "I encountered an issue generating a response. Based on the retrieved data:\n\n"
        + "\n".join(lines)
        + "\n\nPlease try rephrasing your question or check back later."
    )


# =============================================================================
# Backends
# =============================================================================


class AnthropicBackend:
    """Anthropic Messages API."""

    provider = "anthropic"

    def __init__(self, api_key: str | None, model_id: str):
        self.model_id = model_id
        # retries are disabled: a failed call goes straight to the fallback
        self._client = AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(
        self, prompt: BuiltPrompt, *, max_tokens: int, temperature: float
    ) -> BackendOutput:
        response = await self._client.messages.create(
            model=self.model_id,
            max_tokens=max_tokens,
            temperature=temperature,
            system=prompt.system,
            messages=[{"role": "user", "content": prompt.prompt}],
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = getattr(response, "usage", None)
        return BackendOutput(
            text=text,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
        )


class HttpBackend:
    """Self-hosted JSON inference endpoint (RunPod-style serverless worker).

    POST {endpoint}/runsync
        {"input": {"prompt", "max_tokens", "temperature", "top_p", "stop"}}
    → {"status": "COMPLETED", "output": "..." | ["...", ...]}
    """

    provider = "http"

    def __init__(
        self,
        endpoint_url: str,
        api_key: str | None,
        model_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not endpoint_url:
            raise ValueError("GENERATION_ENDPOINT_URL is required for the http provider")
        self.model_id = model_id
        self._url = endpoint_url.rstrip("/") + "/runsync"
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._transport = transport

    async def complete(
        self, prompt: BuiltPrompt, *, max_tokens: int, temperature: float
    ) -> BackendOutput:
        payload = {
            "input": {
                "prompt": prompt.text,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_p": 0.9,
                "stop": ["</s>"],
            }
        }
        # the caller's asyncio.wait_for owns the deadline
        async with httpx.AsyncClient(transport=self._transport, timeout=None) as client:
            response = await client.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
            data: dict[str, Any] = response.json()

        status = data.get("status")
        if status and status != "COMPLETED":
            raise GenerationBackendError(f"Inference job ended with status {status}")

        output = data.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not isinstance(output, str):
            raise GenerationBackendError("Inference response missing output field")
        return BackendOutput(text=output)


def build_backend(settings: Settings) -> GenerationBackend:
    """Pick the backend named by GENERATION_PROVIDER."""
    provider = settings.GENERATION_PROVIDER.lower()
    if provider == "anthropic":
        return AnthropicBackend(settings.ANTHROPIC_API_KEY, settings.GENERATION_MODEL)
    if provider == "http":
        return HttpBackend(
            settings.GENERATION_ENDPOINT_URL or "",
            settings.GENERATION_ENDPOINT_KEY,
            settings.GENERATION_MODEL,
        )
    raise ValueError(f"Unknown GENERATION_PROVIDER: {settings.GENERATION_PROVIDER}")


# =============================================================================
# Client
# =============================================================================


class GenerationClient:
    """Runs one backend call under a deadline and contains every failure."""

    def __init__(self, backend: GenerationBackend, log_usage: bool = True):
        self.backend = backend
        self.log_usage = log_usage
        # usage writes in flight; held so they are not garbage-collected
        self._usage_tasks: set[asyncio.Task] = set()

    @property
    def model_id(self) -> str:
        return self.backend.model_id

    async def generate(
        self,
        prompt: BuiltPrompt,
        *,
        max_tokens: int,
        temperature: float,
        timeout: float,
        sources: list[RetrievedSource],
        user_id: str | None = None,
        thread_id: str | None = None,
    ) -> GenerationResult:
        """Generate an answer, or the fallback text if the backend fails.

        Args:
            prompt: Built prompt
            max_tokens: Completion token cap
            temperature: Sampling temperature
            timeout: Seconds left before the request deadline
            sources: Ranked sources, used only for the fallback text

        Returns:
            GenerationResult; ``fallback`` is True when the backend failed
        """
        started = time.monotonic()
        error: str | None = None
        output: BackendOutput | None = None

        if timeout <= 0:
            error = "deadline exceeded before generation"
        else:
            try:
                output = await asyncio.wait_for(
                    self.backend.complete(prompt, max_tokens=max_tokens, temperature=temperature),
                    timeout=timeout,
                )
                if not output.text.strip():
                    raise GenerationBackendError("Backend returned empty output")
            except asyncio.TimeoutError:
                error = f"timed out after {timeout:.1f}s"
                output = None
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                output = None

        latency_ms = int((time.monotonic() - started) * 1000)

        if output is None:
            text = fallback_answer(sources)
            logger.warning(
                f"Generation failed, using fallback: {error}",
                extra={"extra_data": {"model": self.model_id, "latency_ms": latency_ms}},
            )
            result = GenerationResult(
                text=text,
                model_id=self.model_id,
                input_tokens=prompt.estimated_tokens,
                output_tokens=estimate_tokens(text),
                latency_ms=latency_ms,
                fallback=True,
                error=error,
            )
            self._schedule_usage_log(result, user_id, thread_id)
            return result

        text = output.text.strip()
        result = GenerationResult(
            text=text,
            model_id=self.model_id,
            input_tokens=output.input_tokens if output.input_tokens is not None else prompt.estimated_tokens,
            output_tokens=output.output_tokens if output.output_tokens is not None else estimate_tokens(text),
            latency_ms=latency_ms,
        )
        logger.info(
            f"Generated {result.output_tokens} tokens in {latency_ms}ms with {self.model_id}",
        )

        self._schedule_usage_log(result, user_id, thread_id)
        return result

    def _schedule_usage_log(
        self, result: GenerationResult, user_id: str | None, thread_id: str | None
    ) -> None:
        """Write the usage row in the background; the answer does not wait for it."""
        if not self.log_usage:
            return
        task = asyncio.create_task(
            asyncio.to_thread(
                log_llm_usage,
                workflow="assistant_ask",
                model=result.model_id,
                provider=self.backend.provider,
                tokens_input=result.input_tokens,
                tokens_output=result.output_tokens,
                duration_ms=result.latency_ms,
                user_id=user_id,
                thread_id=thread_id,
                fallback=result.fallback,
            )
        )
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def drain(self) -> None:
        """Wait for pending usage writes."""
        if self._usage_tasks:
            await asyncio.gather(*list(self._usage_tasks), return_exceptions=True)


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
    """Process-wide client built from settings."""
    return GenerationClient(build_backend(get_settings()))
