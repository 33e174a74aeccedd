# =============================================================================
# Unit Tests — LLM Providers
# =============================================================================
#
# SDK clients are replaced with AsyncMock objects, so these tests verify the
# request shape and response decoding without any network calls.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import settings
from app.services.errors import (
    MalformedProviderResponse,
    ProviderConfigError,
    RateLimited,
    RequestTimeout,
    ServiceOverloaded,
)
from app.services import llm
from app.services.llm import (
    AnthropicProvider,
    FunctionSpec,
    OpenAICompatibleProvider,
    _translate_sdk_error,
    get_llm_provider,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


SPEC = FunctionSpec(
    name="analyze_property_document",
    description="Return findings.",
    parameters={"type": "object", "properties": {"findings": {"type": "array"}}},
)


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _sdk_error(name: str, status: int | None = None, headers: dict | None = None):
    """Build an exception whose class name matches an SDK exception."""
    cls = type(name, (Exception,), {})
    exc = cls("boom")
    exc.status_code = status
    exc.response = SimpleNamespace(headers=headers or {})
    return exc


class TestTranslateSdkError:
    def test_rate_limit_reads_retry_after(self):
        error = _translate_sdk_error(
            _sdk_error("RateLimitError", 429, {"retry-after": "12"}), "Groq",
        )
        assert isinstance(error, RateLimited)
        assert error.retry_after == 12.0

    def test_rate_limit_without_header(self):
        error = _translate_sdk_error(_sdk_error("RateLimitError", 429), "Groq")
        assert isinstance(error, RateLimited)
        assert error.retry_after is None

    def test_timeout(self):
        assert isinstance(
            _translate_sdk_error(_sdk_error("APITimeoutError"), "Groq"), RequestTimeout,
        )

    def test_auth(self):
        assert isinstance(
            _translate_sdk_error(_sdk_error("AuthenticationError", 401), "Groq"),
            ProviderConfigError,
        )

    def test_server_error(self):
        error = _translate_sdk_error(_sdk_error("InternalServerError", 503), "Groq")
        assert isinstance(error, ServiceOverloaded)

    def test_connection_error(self):
        assert isinstance(
            _translate_sdk_error(_sdk_error("APIConnectionError"), "Groq"),
            ServiceOverloaded,
        )

    def test_other_status_error(self):
        assert isinstance(
            _translate_sdk_error(_sdk_error("APIStatusError", 400), "Groq"),
            MalformedProviderResponse,
        )

    def test_unrelated_exception(self):
        assert _translate_sdk_error(KeyError("x"), "Groq") is None


# ---------------------------------------------------------------------------
# OpenAI-compatible provider
# ---------------------------------------------------------------------------


def _openai_provider(create: AsyncMock) -> OpenAICompatibleProvider:
    provider = OpenAICompatibleProvider(
        api_key="test-key", model="llama-3.1-8b-instant",
        base_url="https://api.groq.com/openai/v1",
    )
    provider._client = MagicMock()
    provider._client.chat.completions.create = create
    return provider


def _completion(arguments: str | None, name: str = SPEC.name):
    tool_calls = (
        [SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))]
        if arguments is not None else None
    )
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=tool_calls))],
        model="llama-3.1-8b-instant",
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
    )


class TestOpenAICompatibleProvider:
    def test_decodes_arguments_and_pins_tool_choice(self):
        create = AsyncMock(return_value=_completion('{"findings": []}'))
        provider = _openai_provider(create)

        response = _run(provider.call_function(
            [{"role": "user", "content": "Analyse this"}], SPEC, system="Be careful",
        ))

        assert response.arguments == {"findings": []}
        assert response.input_tokens == 120
        assert response.output_tokens == 40

        kwargs = create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "Be careful"}
        assert kwargs["tool_choice"] == {
            "type": "function", "function": {"name": SPEC.name},
        }
        assert len(kwargs["tools"]) == 1

    def test_missing_tool_call(self):
        provider = _openai_provider(AsyncMock(return_value=_completion(None)))
        with pytest.raises(MalformedProviderResponse):
            _run(provider.call_function([{"role": "user", "content": "x"}], SPEC))

    def test_invalid_json_arguments(self):
        provider = _openai_provider(AsyncMock(return_value=_completion("{not json")))
        with pytest.raises(MalformedProviderResponse):
            _run(provider.call_function([{"role": "user", "content": "x"}], SPEC))

    def test_sdk_error_is_translated(self):
        create = AsyncMock(side_effect=_sdk_error("RateLimitError", 429))
        provider = _openai_provider(create)
        with pytest.raises(RateLimited):
            _run(provider.call_function([{"role": "user", "content": "x"}], SPEC))


# ---------------------------------------------------------------------------
# Anthropic provider
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def _provider(self, response) -> tuple[AnthropicProvider, AsyncMock]:
        provider = AnthropicProvider(api_key="test-key", model="claude-sonnet-4-6")
        create = AsyncMock(return_value=response)
        provider._client = MagicMock()
        provider._client.messages.create = create
        return provider, create

    def test_reads_tool_use_block(self):
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Thinking..."),
                SimpleNamespace(type="tool_use", name=SPEC.name, input={"findings": []}),
            ],
            model="claude-sonnet-4-6",
            usage=SimpleNamespace(input_tokens=200, output_tokens=50),
        )
        provider, create = self._provider(response)

        result = _run(provider.call_function(
            [{"role": "user", "content": "x"}], SPEC, system="System prompt",
        ))

        assert result.arguments == {"findings": []}
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "System prompt"
        assert kwargs["tool_choice"] == {"type": "tool", "name": SPEC.name}
        assert kwargs["tools"][0]["input_schema"] == SPEC.parameters

    def test_no_tool_use_block(self):
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="I cannot help.")],
            model="claude-sonnet-4-6",
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        )
        provider, _ = self._provider(response)
        with pytest.raises(MalformedProviderResponse):
            _run(provider.call_function([{"role": "user", "content": "x"}], SPEC))


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


class TestGetLlmProvider:
    @pytest.fixture(autouse=True)
    def _fresh_provider(self, monkeypatch):
        monkeypatch.setattr(llm, "_provider", None)
        monkeypatch.setattr(settings, "llm_api_key", "test-key")

    def test_anthropic_selected_by_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "llm_provider", "anthropic")
        assert isinstance(get_llm_provider(), AnthropicProvider)

    def test_openai_compatible_is_the_default(self, monkeypatch):
        monkeypatch.setattr(settings, "llm_provider", "openai_compatible")
        provider = get_llm_provider()
        assert isinstance(provider, OpenAICompatibleProvider)
        assert get_llm_provider() is provider

    def test_missing_key_is_a_config_error(self, monkeypatch):
        monkeypatch.setattr(settings, "llm_provider", "anthropic")
        monkeypatch.setattr(settings, "llm_api_key", None)
        monkeypatch.setattr(settings, "anthropic_api_key", "")
        with pytest.raises(ProviderConfigError):
            get_llm_provider()
