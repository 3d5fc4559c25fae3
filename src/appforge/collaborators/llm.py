"""Streaming language-model oracles for Anthropic and OpenAI."""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import anthropic
import openai
from anthropic import AsyncAnthropic

from appforge.collaborators.exceptions import ModelOracleError
from appforge.config import DEFAULT_MODEL, Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamFinish:
    reason: Literal["stop", "tool_calls", "length"]


StreamEvent = TextDelta | ToolCall | StreamFinish


class ModelOracle(Protocol):
    """Text-producing model with tool-call interruption.

    ``messages`` are plain ``{"role": "user"|"assistant", "content": str}``
    dicts. Tools use the ``{"name", "description", "input_schema"}`` shape.
    A stream yields text deltas, then any tool calls, then one StreamFinish.
    """

    def stream_text(
        self,
        system: str,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        ...


def to_openai_tool(schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": schema["name"],
            "description": schema.get("description", ""),
            "parameters": schema.get("input_schema", {}),
        },
    }


class AnthropicOracle:
    """ModelOracle backed by the Anthropic Messages streaming API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def stream_text(
        self,
        system: str,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield TextDelta(text)
                final = await stream.get_final_message()
        except anthropic.APIError as exc:
            raise ModelOracleError(f"Anthropic stream failed: {exc}") from exc

        for block in final.content:
            if block.type == "tool_use":
                yield ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))

        if final.stop_reason == "tool_use":
            yield StreamFinish("tool_calls")
        elif final.stop_reason == "max_tokens":
            yield StreamFinish("length")
        else:
            yield StreamFinish("stop")


class OpenAIOracle:
    """ModelOracle backed by OpenAI streaming chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = DEFAULT_MAX_TOKENS,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or openai.AsyncOpenAI(api_key=api_key)

    async def stream_text(
        self,
        system: str,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system}, *messages],
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [to_openai_tool(tool) for tool in tools]

        pending: dict[int, dict[str, str]] = {}
        finish_reason = "stop"
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None and delta.content:
                    yield TextDelta(delta.content)
                for call in (delta.tool_calls if delta is not None else None) or []:
                    entry = pending.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        entry["id"] = call.id
                    if call.function is not None:
                        entry["name"] += call.function.name or ""
                        entry["arguments"] += call.function.arguments or ""
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.OpenAIError as exc:
            raise ModelOracleError(f"OpenAI stream failed: {exc}") from exc

        for index in sorted(pending):
            entry = pending[index]
            try:
                arguments = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError as exc:
                raise ModelOracleError(
                    f"Tool call {entry['name']} had invalid JSON arguments"
                ) from exc
            if not isinstance(arguments, dict):
                raise ModelOracleError(f"Tool call {entry['name']} arguments were not an object")
            yield ToolCall(id=entry["id"], name=entry["name"], arguments=arguments)

        if finish_reason == "tool_calls":
            yield StreamFinish("tool_calls")
        elif finish_reason == "length":
            yield StreamFinish("length")
        else:
            yield StreamFinish("stop")


def build_oracle(settings: Settings) -> ModelOracle:
    """Pick a provider from settings and available API keys.

    Raises:
        ModelOracleError: If the requested provider has no API key.
    """
    provider = settings.llm_provider
    if provider == "auto":
        if settings.anthropic_api_key:
            provider = "anthropic"
        elif settings.openai_api_key:
            provider = "openai"
        else:
            raise ModelOracleError(
                "No Anthropic or OpenAI API key found. "
                "Set ANTHROPIC_API_KEY or OPENAI_API_KEY."
            )

    if provider == "anthropic":
        if not settings.anthropic_api_key:
            raise ModelOracleError("No Anthropic API key found for llm_provider=anthropic.")
        logger.debug("Using Anthropic model %s", settings.resolved_model(provider))
        return AnthropicOracle(
            api_key=settings.anthropic_api_key,
            model=settings.resolved_model(provider),
            max_tokens=settings.max_output_tokens,
        )

    if not settings.openai_api_key:
        raise ModelOracleError("No OpenAI API key found for llm_provider=openai.")
    logger.debug("Using OpenAI model %s", settings.resolved_model(provider))
    return OpenAIOracle(
        api_key=settings.openai_api_key,
        model=settings.resolved_model(provider),
        max_tokens=settings.max_output_tokens,
    )
