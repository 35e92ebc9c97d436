# =============================================================================
# Multi-Provider LLM Abstraction — Pluggable AI Backend
# =============================================================================
#
# The agentic search makes two kinds of LLM calls, both of which expect a
# JSON object back:
#   - query decomposition (agents/decomposition.py)
#   - self-reflection / relevance evaluation (services/evaluator.py)
#
# This module gives them a common `complete()` interface over Anthropic
# (Claude) and any OpenAI-compatible API (DeepSeek, Qwen, OpenAI, ...),
# plus `parse_json_content()` for the "model wrapped its JSON in a markdown
# fence" case both callers have to handle.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Matches the collaborator protocols in agents/types.py. Tests pass an
# AsyncMock with a `complete` attribute and nothing else.
#
# DESIGN DECISION: Native SDKs over LangChain wrappers.
# We only need one request shape (system + user message → text). The
# anthropic and openai SDKs give direct control over it with fewer layers.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider — system prompt as first message
#   ├── get_llm_provider()       — lazy singleton, reads from config
#   └── parse_json_content()     — fence-tolerant JSON decoding
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from agentic_rag.config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised completion from any provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            messages: Dicts with "role" ("user"/"assistant") and "content".
            system: System prompt, placed however the provider expects it.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...


# ---------------------------------------------------------------------------
# Shared Helpers
# ---------------------------------------------------------------------------


def _require_key(label: str, env_hint: str, *candidates: str | None) -> str:
    """First non-empty key among `candidates`, else ValueError (HTTP 503)."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate
    raise ValueError(f"No API key configured for {label}. Set {env_hint} in .env")


def _sampling(temperature: float | None, max_tokens: int | None) -> tuple[float, int]:
    """Per-call overrides over configured defaults; 0.0 is a valid temperature."""
    return (
        settings.llm_temperature if temperature is None else temperature,
        max_tokens or settings.llm_max_tokens,
    )


def _log_usage(provider: str, response: LLMResponse) -> LLMResponse:
    logger.debug(
        "%s completion: model=%s, in=%d, out=%d tokens",
        provider, response.model, response.input_tokens, response.output_tokens,
    )
    return response


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Claude via AsyncAnthropic.

    The system prompt goes in the top-level `system=` kwarg; Anthropic has
    no "system" message role.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        self._client = AsyncAnthropic(api_key=_require_key(
            "Anthropic", "LLM_API_KEY or ANTHROPIC_API_KEY",
            api_key, settings.llm_api_key, settings.anthropic_api_key,
        ))
        self._model = model or settings.llm_model
        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        resolved_temperature, resolved_max_tokens = _sampling(temperature, max_tokens)
        request: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": resolved_max_tokens,
            "temperature": resolved_temperature,
        }
        if system:
            request["system"] = system

        response = await self._client.messages.create(**request)

        text_blocks = [b.text for b in response.content if b.type == "text"]
        return _log_usage("anthropic", LLMResponse(
            content=text_blocks[0] if text_blocks else "",
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        ))


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any API that speaks the OpenAI chat completions protocol.

    Point it elsewhere through configuration only, e.g.:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://dashscope.aliyuncs.com/compatible-mode/v1
        LLM_MODEL=qwen-plus
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        self._base_url = base_url or settings.llm_base_url
        self._client = AsyncOpenAI(
            api_key=_require_key(
                "the OpenAI-compatible provider", "LLM_API_KEY",
                api_key, settings.llm_api_key, settings.openai_api_key,
            ),
            base_url=self._base_url or None,
        )
        self._model = model or settings.llm_model
        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model, self._base_url or "default",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        resolved_temperature, resolved_max_tokens = _sampling(temperature, max_tokens)
        prefix = [{"role": "system", "content": system}] if system else []

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=prefix + list(messages),
            max_tokens=resolved_max_tokens,
            temperature=resolved_temperature,
        )

        usage = response.usage
        return _log_usage("openai_compatible", LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        ))


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Return the configured provider, creating it on first use.

    Lazy so that importing the package never needs an API key; a missing
    key surfaces as ValueError on the first request (HTTP 503).
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


# ---------------------------------------------------------------------------
# JSON Helpers
# ---------------------------------------------------------------------------


def parse_json_content(content: str) -> dict[str, Any]:
    """
    Decode a JSON object from model output.

    Models regularly wrap JSON in ```json fences despite being told not
    to; those are stripped first.

    Raises:
        json.JSONDecodeError: If the text isn't valid JSON.
        ValueError: If it decodes to something other than an object.
    """
    cleaned = _FENCE_RE.sub("", content.strip())
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
