"""
Thin adapter layer over LLM provider SDKs (OpenAI, Anthropic).

Each provider exposes the same interface so callers never import
provider-specific code:

* ``generate``     — one-shot completion (chat titles).
* ``stream_chat``  — one streamed, tool-enabled model call.  Yields
  ``TextDelta`` events as text arrives, then one ``ToolCall`` per tool the
  model asked for.

Conversation history is passed in a neutral format and converted per
provider::

    {"role": "user", "content": "..."}
    {"role": "assistant", "content": "...", "tool_calls": [ToolCall, ...]}
    {"role": "tool", "tool_call_id": "...", "name": "...", "content": "<json>"}
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from config.settings import config

logger = logging.getLogger(__name__)


# ── Stream events ────────────────────────────────────────────────────────


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    argument_error: Optional[str] = None


StreamEvent = Union[TextDelta, ToolCall]


def _parse_arguments(raw: str) -> tuple[Dict[str, Any], Optional[str]]:
    if not raw.strip():
        return {}, None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {}, f"Tool arguments are not valid JSON: {exc}"
    if not isinstance(parsed, dict):
        return {}, "Tool arguments must be a JSON object"
    return parsed, None


class BaseLLMProvider(ABC):
    """Common interface that every concrete provider implements."""

    default_model: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> str:
        ...

    @abstractmethod
    def stream_chat(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        system: str = "",
        tools: Sequence[Dict[str, Any]] = (),
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# OpenAI
# ═══════════════════════════════════════════════════════════════════════════════


def to_openai_messages(messages: Sequence[Dict[str, Any]], system: str = "") -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})
    for msg in messages:
        role = msg["role"]
        if role == "tool":
            converted.append(
                {"role": "tool", "tool_call_id": msg["tool_call_id"], "content": msg["content"]}
            )
        elif role == "assistant" and msg.get("tool_calls"):
            converted.append(
                {
                    "role": "assistant",
                    "content": msg.get("content") or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                        }
                        for call in msg["tool_calls"]
                    ],
                }
            )
        else:
            converted.append({"role": role, "content": msg.get("content", "")})
    return converted


class OpenAIProvider(BaseLLMProvider):
    def __init__(self, api_key: str, default_model: str = "gpt-4o"):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(api_key=api_key)
        self.default_model = default_model

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> str:
        response = await self.client.chat.completions.create(
            model=model or self.default_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    async def stream_chat(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        system: str = "",
        tools: Sequence[Dict[str, Any]] = (),
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        kwargs: Dict[str, Any] = {}
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t["description"],
                        "parameters": t["parameters"],
                    },
                }
                for t in tools
            ]

        response = await self.client.chat.completions.create(
            model=model or self.default_model,
            messages=to_openai_messages(messages, system),
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
            **kwargs,
        )

        # tool-call fragments arrive interleaved, keyed by index
        pending: Dict[int, Dict[str, str]] = {}
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield TextDelta(delta.content)
            for fragment in delta.tool_calls or []:
                slot = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    slot["id"] = fragment.id
                if fragment.function is not None:
                    slot["name"] += fragment.function.name or ""
                    slot["arguments"] += fragment.function.arguments or ""

        for index in sorted(pending):
            slot = pending[index]
            arguments, error = _parse_arguments(slot["arguments"])
            yield ToolCall(id=slot["id"], name=slot["name"], arguments=arguments, argument_error=error)


# ═══════════════════════════════════════════════════════════════════════════════
# Anthropic
# ═══════════════════════════════════════════════════════════════════════════════


def to_anthropic_messages(messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        role = msg["role"]
        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg["tool_call_id"],
                "content": msg["content"],
            }
            # all results of one round go back in a single user turn
            last = converted[-1] if converted else None
            if last and last["role"] == "user" and isinstance(last["content"], list):
                last["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        elif role == "assistant":
            blocks: List[Dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": msg["content"]})
            for call in msg.get("tool_calls") or []:
                blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            if blocks:
                converted.append({"role": "assistant", "content": blocks})
        else:
            converted.append({"role": "user", "content": msg.get("content", "")})
    return converted


class AnthropicProvider(BaseLLMProvider):
    def __init__(self, api_key: str, default_model: str = "claude-sonnet-4-20250514"):
        from anthropic import AsyncAnthropic

        self.client = AsyncAnthropic(api_key=api_key)
        self.default_model = default_model

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> str:
        response = await self.client.messages.create(
            model=model or self.default_model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(b.text for b in response.content if b.type == "text")

    async def stream_chat(
        self,
        messages: Sequence[Dict[str, Any]],
        *,
        system: str = "",
        tools: Sequence[Dict[str, Any]] = (),
        temperature: float = 0.3,
        model: str | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        kwargs: Dict[str, Any] = {}
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
                for t in tools
            ]

        async with self.client.messages.stream(
            model=model or self.default_model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=to_anthropic_messages(messages),
            **kwargs,
        ) as stream:
            async for text in stream.text_stream:
                yield TextDelta(text)
            final = await stream.get_final_message()

        for block in final.content:
            if block.type == "tool_use":
                yield ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))


# ═══════════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════════

_provider_cache: Dict[str, BaseLLMProvider] = {}


def get_llm_provider(
    provider_name: str,
    *,
    api_key: str | None = None,
    default_model: str | None = None,
) -> BaseLLMProvider:
    """
    Return (and cache) an LLM provider instance.

    Parameters
    ----------
    provider_name : "openai" | "anthropic"
    api_key       : explicit key; if omitted, read from config.
    default_model : override the default model for this provider instance.
    """

    cache_key = f"{provider_name}:{default_model or 'default'}"
    if cache_key in _provider_cache:
        return _provider_cache[cache_key]

    if provider_name == "openai":
        key = api_key or config.openai_api_key
        instance = OpenAIProvider(api_key=key, default_model=default_model or "gpt-4o")
    elif provider_name == "anthropic":
        key = api_key or (config.anthropic_api_key or "")
        instance = AnthropicProvider(
            api_key=key,
            default_model=default_model or "claude-sonnet-4-20250514",
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider_name}")

    _provider_cache[cache_key] = instance
    return instance
