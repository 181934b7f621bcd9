"""
Tests for the inference collaborator layer.

Covers:
1. Provider adapters — request shape, response extraction, missing SDK client
2. complete_structured — timeout bound, error mapping, JSON parsing
3. build_inference_client — provider dispatch from settings
4. Parsing helpers

All tests use mocks — no actual API calls to Anthropic, OpenAI, or Ollama.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from convintel.config.schema import IntelSettings, TierModels
from convintel.exceptions import (
    ConfigurationError,
    InferenceError,
    InferenceTimeoutError,
    ProviderNotConfiguredError,
    StructuredOutputError,
)
from convintel.llm.client import (
    AnthropicInferenceClient,
    CompletionOptions,
    InferenceClient,
    OllamaInferenceClient,
    OpenAIInferenceClient,
    build_inference_client,
    complete_structured,
)
from convintel.llm.parsing import (
    as_number,
    as_str_list,
    as_text,
    parse_structured_response,
    strip_code_fences,
)
from convintel.testing.fake_inference import FakeInferenceClient


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def mock_openai():
    """Mock OpenAI client."""
    client = MagicMock()
    choice = MagicMock()
    choice.message.content = '{"ok": true}'
    response = MagicMock()
    response.choices = [choice]
    client.chat.completions.create.return_value = response
    return client


@pytest.fixture
def mock_anthropic():
    """Mock Anthropic client."""
    client = MagicMock()
    response = MagicMock()
    response.content = [MagicMock(text='{"ok": true}')]
    client.messages.create.return_value = response
    return client


STRUCTURED = CompletionOptions(temperature=0.1, expect_structured_output=True, model="m-1")
FREEFORM = CompletionOptions(temperature=0.4, expect_structured_output=False)


# ===========================================================================
# Adapters
# ===========================================================================

class TestOpenAIAdapter:

    @pytest.mark.asyncio
    async def test_request_shape(self, mock_openai):
        client = OpenAIInferenceClient(mock_openai, default_model="gpt-4o-mini")
        text = await client.complete("system", "user", STRUCTURED)

        assert text == '{"ok": true}'
        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "m-1"
        assert kwargs["temperature"] == 0.1
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_freeform_uses_default_model(self, mock_openai):
        await OpenAIInferenceClient(mock_openai, default_model="gpt-4o").complete(
            "s", "u", FREEFORM
        )
        kwargs = mock_openai.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_async_sdk_client(self):
        sdk = MagicMock()
        choice = MagicMock()
        choice.message.content = "hello"
        sdk.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[choice]))

        assert await OpenAIInferenceClient(sdk).complete("s", "u", FREEFORM) == "hello"

    @pytest.mark.asyncio
    async def test_empty_choices(self, mock_openai):
        mock_openai.chat.completions.create.return_value = MagicMock(choices=[])
        assert await OpenAIInferenceClient(mock_openai).complete("s", "u", FREEFORM) == ""

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            await OpenAIInferenceClient().complete("s", "u", FREEFORM)
        assert exc_info.value.provider == "openai"


class TestAnthropicAdapter:

    @pytest.mark.asyncio
    async def test_structured_adds_json_instruction(self, mock_anthropic):
        client = AnthropicInferenceClient(mock_anthropic)
        text = await client.complete("Classify.", "user", STRUCTURED)

        assert text == '{"ok": true}'
        kwargs = mock_anthropic.messages.create.call_args.kwargs
        assert kwargs["system"].startswith("Classify.")
        assert "single JSON object" in kwargs["system"]
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(ProviderNotConfiguredError):
            await AnthropicInferenceClient().complete("s", "u", FREEFORM)


class TestOllamaAdapter:

    @pytest.mark.asyncio
    async def test_posts_chat_payload(self):
        resp = MagicMock()
        resp.json.return_value = {"message": {"content": '{"ok": true}'}}
        http = MagicMock()
        http.post = AsyncMock(return_value=resp)

        client = OllamaInferenceClient(
            base_url="http://ollama:11434/", default_model="llama3", http_client=http
        )
        text = await client.complete("s", "u", STRUCTURED)

        assert text == '{"ok": true}'
        url = http.post.call_args.args[0]
        payload = http.post.call_args.kwargs["json"]
        assert url == "http://ollama:11434/api/chat"
        assert payload["model"] == "m-1"
        assert payload["format"] == "json"
        assert payload["stream"] is False
        resp.raise_for_status.assert_called_once()


# ===========================================================================
# complete_structured
# ===========================================================================

class TestCompleteStructured:

    @pytest.mark.asyncio
    async def test_parses_object(self):
        client = FakeInferenceClient([{"motivation": {"level": "High"}}])
        data = await complete_structured(client, "s", "u", STRUCTURED, timeout=1.0)
        assert data == {"motivation": {"level": "High"}}

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = FakeInferenceClient([{}], delay=0.5)
        with pytest.raises(InferenceTimeoutError) as exc_info:
            await complete_structured(
                client, "s", "u", STRUCTURED, timeout=0.01, stage="stage_detection"
            )
        assert exc_info.value.timeout_seconds == 0.01
        assert exc_info.value.stage == "stage_detection"
        assert exc_info.value.service == "fake"

    @pytest.mark.asyncio
    async def test_arbitrary_error_wrapped(self):
        client = FakeInferenceClient([ConnectionError("reset by peer")])
        with pytest.raises(InferenceError) as exc_info:
            await complete_structured(client, "s", "u", STRUCTURED)
        assert "reset by peer" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_configuration_error_becomes_inference_error(self):
        with pytest.raises(InferenceError) as exc_info:
            await complete_structured(OpenAIInferenceClient(), "s", "u", STRUCTURED)
        assert not isinstance(exc_info.value, ConfigurationError)
        assert exc_info.value.service == "openai"

    @pytest.mark.asyncio
    async def test_inference_error_passes_through(self):
        original = StructuredOutputError("bad")
        client = FakeInferenceClient([original])
        with pytest.raises(StructuredOutputError) as exc_info:
            await complete_structured(client, "s", "u", STRUCTURED)
        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_non_object(self):
        client = FakeInferenceClient(['["a", "b"]'])
        with pytest.raises(StructuredOutputError):
            await complete_structured(client, "s", "u", STRUCTURED)

    @pytest.mark.asyncio
    async def test_cancellation_not_swallowed(self):
        client = FakeInferenceClient([{}], delay=5.0)
        task = asyncio.ensure_future(complete_structured(client, "s", "u", STRUCTURED))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


# ===========================================================================
# Construction
# ===========================================================================

class TestBuildInferenceClient:

    def test_openai(self, mock_openai):
        client = build_inference_client(IntelSettings(provider="openai"), mock_openai)
        assert isinstance(client, OpenAIInferenceClient)
        assert isinstance(client, InferenceClient)

    def test_anthropic(self, mock_anthropic):
        settings = IntelSettings(
            provider="anthropic", models=TierModels(mini="haiku", full="sonnet")
        )
        client = build_inference_client(settings, mock_anthropic)
        assert isinstance(client, AnthropicInferenceClient)

    def test_ollama(self):
        client = build_inference_client(IntelSettings(provider="ollama"))
        assert isinstance(client, OllamaInferenceClient)

    def test_unknown_provider(self):
        settings = MagicMock(provider="carrier-pigeon")
        with pytest.raises(ProviderNotConfiguredError):
            build_inference_client(settings)

    def test_fake_satisfies_protocol(self):
        assert isinstance(FakeInferenceClient(), InferenceClient)


# ===========================================================================
# Parsing helpers
# ===========================================================================

class TestParsing:

    @pytest.mark.parametrize("raw", [
        '```json\n{"a": 1}\n```',
        '```\n{"a": 1}\n```',
        '  {"a": 1}  ',
    ])
    def test_fences_stripped(self, raw):
        assert parse_structured_response(raw) == {"a": 1}

    def test_plain_text_untouched(self):
        assert strip_code_fences("hello") == "hello"

    @pytest.mark.parametrize("raw", [None, "", "   ", "not json", "42"])
    def test_rejected(self, raw):
        with pytest.raises(StructuredOutputError):
            parse_structured_response(raw)

    @pytest.mark.parametrize("value,expected", [
        (7, 7.0), ("85%", 85.0), (True, 0.0), ("junk", 0.0), (None, 0.0),
    ])
    def test_as_number(self, value, expected):
        assert as_number(value) == expected

    def test_as_text(self):
        assert as_text("  hi ") == "hi"
        assert as_text("") is None
        assert as_text(3) == "3"
        assert as_text(False) is None

    def test_as_str_list(self):
        assert as_str_list(["a", None, " ", 2]) == ["a", "2"]
        assert as_str_list("a") == []

    def test_backticks_inside_values_kept(self):
        raw = '{"acknowledgment": "Use ``` to quote the listing.", "tone": "Friendly"}'
        assert parse_structured_response(raw) == {
            "acknowledgment": "Use ``` to quote the listing.",
            "tone": "Friendly",
        }

    def test_fenced_after_preamble(self):
        assert parse_structured_response('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}
