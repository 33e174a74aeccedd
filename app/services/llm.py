# =============================================================================
# Multi-Provider LLM Abstraction: function-calling backends
# =============================================================================
#
# Every provider call in this system is a forced function call: the request
# carries exactly one tool definition and pins tool_choice to it, and the
# provider answers with the function's JSON arguments. Free-text completions
# are never parsed.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Same pattern as KeyValueStore. Tests pass an AsyncMock or any object with
# a matching `call_function()`.
#
# DESIGN DECISION: SDK retries are disabled (max_retries=0).
# The RateLimitManager owns retrying so that every retry spends budget
# through the shared queue.
#
# ERROR TRANSLATION: SDK exceptions are mapped to app.services.errors here.
#   429                    → RateLimited (retry_after from Retry-After)
#   timeout                → RequestTimeout
#   401/403                → ProviderConfigError
#   5xx / connection error → ServiceOverloaded
#   no/invalid tool call   → MalformedProviderResponse
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — Claude, tools + tool_choice {"type": "tool"}
#   ├── OpenAICompatibleProvider — Groq/OpenAI/..., tools + tool_choice function
#   └── get_llm_provider()       — Singleton factory, reads from config
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.config import settings
from app.services.errors import (
    MalformedProviderResponse,
    ProviderConfigError,
    RateLimited,
    RequestTimeout,
    ServiceOverloaded,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSpec:
    """One named function with a JSON-schema parameter object."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class FunctionCallResponse:
    """
    Standardised function-call result from any provider.

    `arguments` is the decoded JSON object the model produced for the
    pinned function. Schema validation happens in the caller.
    """

    name: str
    arguments: dict[str, Any]
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Any = field(default=None, repr=False)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Interface every provider implements."""

    async def call_function(
        self,
        messages: list[dict[str, str]],
        function: FunctionSpec,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> FunctionCallResponse:
        """
        Force the model to call `function` and return its arguments.

        Args:
            messages: Conversation messages ("user"/"assistant" roles only).
            function: The single tool offered; tool_choice is pinned to it.
            system: System prompt (Anthropic: top-level kwarg; OpenAI:
                prepended as a "system" message).
            temperature: Override sampling temperature.
            max_tokens: Override max output tokens.

        Raises:
            RateLimited, ServiceOverloaded, RequestTimeout,
            ProviderConfigError, MalformedProviderResponse
        """
        ...


# ---------------------------------------------------------------------------
# Error Translation
# ---------------------------------------------------------------------------


def _retry_after(exc: Exception) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _translate_sdk_error(exc: Exception, provider: str) -> Exception | None:
    """
    Map an openai/anthropic SDK exception to the pipeline error taxonomy.

    Both SDKs expose the same exception names, so matching on the class
    hierarchy by name keeps this independent of which SDK raised.
    Returns None for exceptions that are not SDK errors.
    """
    names = {cls.__name__ for cls in type(exc).__mro__}
    status = getattr(exc, "status_code", None)

    if "RateLimitError" in names or status == 429:
        return RateLimited(
            f"{provider} rate limit exceeded.", retry_after=_retry_after(exc),
        )
    if "APITimeoutError" in names:
        return RequestTimeout()
    if "AuthenticationError" in names or "PermissionDeniedError" in names:
        return ProviderConfigError(
            f"{provider} rejected the configured API key."
        )
    if "APIConnectionError" in names or (status is not None and status >= 500):
        return ServiceOverloaded(
            f"{provider} is unavailable.", retry_after=_retry_after(exc) or 300.0,
        )
    if "APIStatusError" in names:
        return MalformedProviderResponse(
            f"{provider} rejected the request (HTTP {status})."
        )
    return None


# ---------------------------------------------------------------------------
# Shared defaults
# ---------------------------------------------------------------------------


class _SamplingDefaults:
    """Model name and sampling parameters shared by both SDK wrappers."""

    def __init__(self, model: str | None) -> None:
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    def _sampling(self, temperature: float | None, max_tokens: int | None) -> dict:
        return {
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._max_tokens,
        }


# ---------------------------------------------------------------------------
# Claude via the anthropic SDK
# ---------------------------------------------------------------------------


class AnthropicProvider(_SamplingDefaults):
    """
    Claude, driven through `messages.create` with a single pinned tool.

    The system prompt travels as the top-level `system=` argument, and the
    tool arguments come back decoded as the `input` of a `tool_use` block.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not key:
            raise ProviderConfigError(
                "Claude selected but no key found (LLM_API_KEY / ANTHROPIC_API_KEY)."
            )
        super().__init__(model)
        self._client = AsyncAnthropic(api_key=key, max_retries=0)
        logger.info("Anthropic provider ready (model=%s)", self._model)

    async def call_function(
        self,
        messages: list[dict[str, str]],
        function: FunctionSpec,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> FunctionCallResponse:
        request = dict(
            model=self._model,
            messages=messages,
            tools=[{
                "name": function.name,
                "description": function.description,
                "input_schema": function.parameters,
            }],
            tool_choice={"type": "tool", "name": function.name},
            **self._sampling(temperature, max_tokens),
        )
        if system:
            request["system"] = system

        try:
            response = await self._client.messages.create(**request)
        except Exception as e:
            translated = _translate_sdk_error(e, "Anthropic")
            if translated is None:
                raise
            raise translated from e

        for block in response.content:
            if block.type == "tool_use" and block.name == function.name:
                if not isinstance(block.input, dict):
                    raise MalformedProviderResponse(
                        f"Tool '{function.name}' input is not an object."
                    )
                return FunctionCallResponse(
                    name=block.name,
                    arguments=block.input,
                    model=response.model,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    raw=response,
                )

        raise MalformedProviderResponse(
            f"Anthropic response contained no call to '{function.name}'."
        )


# ---------------------------------------------------------------------------
# Groq, OpenAI and anything else speaking chat-completions
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider(_SamplingDefaults):
    """
    Chat-completions client with one function tool and a pinned tool_choice.

    Pointed at Groq out of the box (LLM_BASE_URL=https://api.groq.com/openai/v1,
    LLM_MODEL=llama-3.1-8b-instant). Tool arguments come back as a JSON
    string and are decoded here.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        base_url = base_url or settings.llm_base_url
        key = api_key or settings.llm_api_key or (
            settings.groq_api_key
            if base_url and "groq.com" in base_url
            else settings.openai_api_key
        )
        if not key:
            raise ProviderConfigError(
                "OpenAI-compatible provider selected but no key found "
                "(LLM_API_KEY / GROQ_API_KEY / OPENAI_API_KEY)."
            )
        super().__init__(model)
        self._client = AsyncOpenAI(api_key=key, base_url=base_url or None, max_retries=0)
        logger.info(
            "OpenAI-compatible provider ready (model=%s, base_url=%s)",
            self._model, base_url or "default",
        )

    async def call_function(
        self,
        messages: list[dict[str, str]],
        function: FunctionSpec,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> FunctionCallResponse:
        if system:
            messages = [{"role": "system", "content": system}, *messages]

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                **self._sampling(temperature, max_tokens),
                tools=[{
                    "type": "function",
                    "function": {
                        "name": function.name,
                        "description": function.description,
                        "parameters": function.parameters,
                    },
                }],
                tool_choice={"type": "function", "function": {"name": function.name}},
            )
        except Exception as e:
            translated = _translate_sdk_error(e, "LLM provider")
            if translated is None:
                raise
            raise translated from e

        message = response.choices[0].message if response.choices else None
        tool_calls = (message.tool_calls or []) if message else []
        call = next(
            (c for c in tool_calls if c.function.name == function.name), None,
        )
        if call is None:
            raise MalformedProviderResponse(
                f"Provider response contained no call to '{function.name}'."
            )

        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError as e:
            raise MalformedProviderResponse(
                f"Arguments for '{function.name}' are not valid JSON: {e}"
            ) from e
        if not isinstance(arguments, dict):
            raise MalformedProviderResponse(
                f"Arguments for '{function.name}' are not a JSON object."
            )

        usage = response.usage
        return FunctionCallResponse(
            name=function.name,
            arguments=arguments,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            raw=response,
        )


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------

# Built on first use; the SDK clients hold connection pools worth reusing.
_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Return the process-wide provider chosen by `settings.llm_provider`.

    "anthropic" selects Claude; anything else selects the OpenAI-compatible
    client (Groq unless LLM_BASE_URL says otherwise).
    """
    global _provider
    if _provider is None:
        provider_cls = (
            AnthropicProvider
            if settings.llm_provider == "anthropic"
            else OpenAICompatibleProvider
        )
        _provider = provider_cls()
    return _provider
