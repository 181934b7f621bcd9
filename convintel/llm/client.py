"""
Inference Client — The prompt-in, text-out collaborator used by every
paid analysis stage, plus adapters for concrete providers.

The analysis core only depends on the InferenceClient protocol:

    async def complete(system_prompt, user_prompt, options) -> str

Adapters translate that call into an SDK request:
- OpenAIInferenceClient → openai chat.completions (JSON mode when structured)
- AnthropicInferenceClient → anthropic messages
- OllamaInferenceClient → local Ollama /api/chat over httpx

complete_structured() is the single place where a call is bounded by a
timeout and its text parsed into a JSON object. It raises InferenceError
subclasses; the stages catch them and fall back to their defaults.

Usage:
    from openai import AsyncOpenAI
    from convintel.llm.client import OpenAIInferenceClient, CompletionOptions

    client = OpenAIInferenceClient(AsyncOpenAI())
    text = await client.complete(
        "You are a classifier.", "Classify this.",
        CompletionOptions(temperature=0.1, expect_structured_output=True),
    )
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from convintel.exceptions import (
    ConvIntelError,
    InferenceError,
    InferenceTimeoutError,
    ProviderNotConfiguredError,
)
from convintel.llm.parsing import parse_structured_response

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompletionOptions:
    """Per-call options passed to the collaborator."""

    temperature: float = 0.2
    expect_structured_output: bool = True
    model: Optional[str] = None       # None → adapter default
    max_tokens: int = 1024


@runtime_checkable
class InferenceClient(Protocol):
    """Anything that can turn a prompt pair into text (or raise)."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str: ...


async def _invoke(method: Any, **kwargs: Any) -> Any:
    """Call an SDK method that may be sync or async without blocking the loop."""
    if inspect.iscoroutinefunction(method):
        return await method(**kwargs)
    result = await asyncio.to_thread(method, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


# ---------------------------------------------------------------------------
# Provider Adapters
# ---------------------------------------------------------------------------

class OpenAIInferenceClient:
    """Adapter over an `openai.OpenAI` or `openai.AsyncOpenAI` client."""

    provider = "openai"

    def __init__(self, openai_client: Any = None, default_model: str = "gpt-4o-mini"):
        self._openai = openai_client
        self._default_model = default_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str:
        if self._openai is None:
            raise ProviderNotConfiguredError(
                "OpenAI client not configured. "
                "Pass openai_client to OpenAIInferenceClient().",
                provider=self.provider,
            )

        request: dict[str, Any] = {
            "model": options.model or self._default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.expect_structured_output:
            request["response_format"] = {"type": "json_object"}

        response = await _invoke(self._openai.chat.completions.create, **request)

        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice and choice.message else ""
        return text or ""


class AnthropicInferenceClient:
    """Adapter over an `anthropic.Anthropic` or `anthropic.AsyncAnthropic` client."""

    provider = "anthropic"

    def __init__(
        self,
        anthropic_client: Any = None,
        default_model: str = "claude-3-5-haiku-20241022",
    ):
        self._anthropic = anthropic_client
        self._default_model = default_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str:
        if self._anthropic is None:
            raise ProviderNotConfiguredError(
                "Anthropic client not configured. "
                "Pass anthropic_client to AnthropicInferenceClient().",
                provider=self.provider,
            )

        system = system_prompt
        if options.expect_structured_output:
            system += "\n\nRespond with a single JSON object and nothing else."

        response = await _invoke(
            self._anthropic.messages.create,
            model=options.model or self._default_model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=system,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return response.content[0].text if response.content else ""


class OllamaInferenceClient:
    """Adapter for a local Ollama server via httpx."""

    provider = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        default_model: str = "llama3.1:8b",
        http_client: Any = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._http = http_client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str:
        payload: dict[str, Any] = {
            "model": options.model or self._default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        if options.expect_structured_output:
            payload["format"] = "json"

        if self._http is not None:
            resp = await self._http.post(f"{self._base_url}/api/chat", json=payload)
            resp.raise_for_status()
            data = resp.json()
        else:
            async with httpx.AsyncClient(timeout=120.0) as client:
                resp = await client.post(f"{self._base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()

        return data.get("message", {}).get("content", "")


# ---------------------------------------------------------------------------
# Structured Call
# ---------------------------------------------------------------------------

async def complete_structured(
    client: InferenceClient,
    system_prompt: str,
    user_prompt: str,
    options: CompletionOptions,
    *,
    timeout: Optional[float] = None,
    stage: Optional[str] = None,
) -> dict[str, Any]:
    """
    Issue one bounded inference call and parse its JSON object.

    Raises:
        InferenceTimeoutError: the call exceeded `timeout` seconds
        StructuredOutputError: the text was not a JSON object
        InferenceError: any other collaborator failure
    """
    service = getattr(client, "provider", type(client).__name__)
    start = time.monotonic()

    try:
        call = client.complete(system_prompt, user_prompt, options)
        if timeout is not None:
            text = await asyncio.wait_for(call, timeout=timeout)
        else:
            text = await call
    except asyncio.TimeoutError as e:
        raise InferenceTimeoutError(
            f"Inference call exceeded {timeout}s",
            timeout_seconds=timeout or 0.0,
            service=service,
            stage=stage,
        ) from e
    except ConvIntelError as e:
        if isinstance(e, InferenceError):
            raise
        raise InferenceError(str(e), service=service, stage=stage) from e
    except Exception as e:
        raise InferenceError(
            f"Inference call failed: {str(e)[:200]}",
            service=service,
            stage=stage,
        ) from e

    logger.debug(
        "inference_call_complete",
        extra={
            "task_type": stage,
            "model": options.model,
            "duration_ms": round((time.monotonic() - start) * 1000, 1),
        },
    )
    return parse_structured_response(text, stage=stage)


def build_inference_client(settings: Any, sdk_client: Any = None) -> InferenceClient:
    """
    Construct the adapter named by `settings.provider`.

    Args:
        settings: IntelSettings (provider, models, ollama_base_url)
        sdk_client: Pre-built SDK client for openai/anthropic providers
    """
    provider = getattr(settings.provider, "value", settings.provider)
    if provider == "openai":
        return OpenAIInferenceClient(sdk_client, default_model=settings.models.mini)
    if provider == "anthropic":
        return AnthropicInferenceClient(sdk_client, default_model=settings.models.mini)
    if provider == "ollama":
        return OllamaInferenceClient(
            base_url=settings.ollama_base_url or "http://localhost:11434",
            default_model=settings.models.mini,
        )
    raise ProviderNotConfiguredError(
        f"Unsupported provider: {provider}", provider=str(provider)
    )
