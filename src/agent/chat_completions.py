"""Chat Completions adapter: full-replay wire protocol.

Works with OpenAI, OpenRouter, Groq, Together, Ollama and other
OpenAI-compatible endpoints. There is no server-side continuation, so
ResponseMeta never carries a response id.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import structlog
from openai import NOT_GIVEN

from src.agent.events import (
    ReasoningDelta,
    ResponseMeta,
    StreamDone,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallDone,
    ToolCallStart,
)
from src.agent.messages import ImagePart, Message, TextPart
from src.agent.model_client import OpenAIModelClient, ProviderRequest

logger = structlog.get_logger()


def _content_to_chat(content: str | list) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    parts: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({"type": "image_url", "image_url": {"url": part.url}})
    return parts


def messages_to_chat(system_prompt: str, messages: list[Message]) -> list[dict[str, Any]]:
    """Convert history to Chat Completions message dicts, system prompt first."""
    result: list[dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})
    for m in messages:
        if m.role == "tool":
            result.append(
                {"role": "tool", "tool_call_id": m.tool_call_id, "content": m.text}
            )
            continue
        msg: dict[str, Any] = {"role": m.role, "content": _content_to_chat(m.content)}
        if m.role == "assistant" and m.tool_calls:
            msg["content"] = m.text or None
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in m.tool_calls
            ]
        if m.role == "assistant" and m.reasoning:
            msg["reasoning_content"] = m.reasoning
        result.append(msg)
    return result


def tools_to_chat(tools: list[dict]) -> list[dict]:
    return [
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


class ChatCompletionsClient(OpenAIModelClient):
    """Streams /chat/completions and normalizes deltas."""

    supports_continuation = False

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        """Stream one turn.

        OpenAI streaming tool_calls format:
        - First chunk per tool: {index, id, function: {name, arguments: ""}}
        - Subsequent chunks: {index, function: {arguments: "partial..."}}
        Some providers (Gemini) send index=None; a new id then opens a new slot
        and an id-less fragment extends the most recent call.
        """
        messages = messages_to_chat(request.system_prompt, request.messages)
        tools = tools_to_chat(request.tools)
        logger.debug(
            "chat_stream_request",
            model=self.model,
            message_count=len(messages),
            tool_count=len(tools),
        )
        extra: dict[str, Any] = {}
        if tools:
            extra["parallel_tool_calls"] = self._settings.parallel_tool_calls
        if self._settings.max_tokens is not None:
            extra["max_tokens"] = self._settings.max_tokens
        if self._settings.reasoning_effort is not None:
            extra["reasoning_effort"] = self._settings.reasoning_effort

        stream = await self._retry_call(
            lambda: self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=tools if tools else NOT_GIVEN,
                stream=True,
                stream_options={"include_usage": True},
                **self._sampling_kwargs(request),
                **extra,
            ),
            context="chat_stream",
        )

        # slot key (index or synthetic) -> call id, in arrival order
        slots: dict[Any, str] = {}
        names: dict[str, str] = {}
        arguments: dict[str, str] = {}
        last_slot: Any = None
        input_tokens = 0
        output_tokens = 0

        async for chunk in stream:
            usage = getattr(chunk, "usage", None)
            if usage is not None:
                input_tokens = usage.prompt_tokens or 0
                output_tokens = usage.completion_tokens or 0
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            reasoning = getattr(delta, "reasoning_content", None) or getattr(
                delta, "reasoning", None
            )
            if reasoning:
                yield ReasoningDelta(delta=reasoning)

            if delta.content:
                yield TextDelta(delta=delta.content)

            for tc_delta in delta.tool_calls or []:
                if tc_delta.index is not None:
                    slot = tc_delta.index
                elif tc_delta.id:
                    slot = next(
                        (k for k, v in slots.items() if v == tc_delta.id),
                        ("id", tc_delta.id),
                    )
                else:
                    slot = last_slot
                if slot is None:
                    continue
                last_slot = slot

                fn = tc_delta.function
                if slot not in slots:
                    call_id = tc_delta.id or f"call_{len(slots)}"
                    slots[slot] = call_id
                    names[call_id] = (fn.name if fn and fn.name else "") or ""
                    arguments[call_id] = ""
                    yield ToolCallStart(id=call_id, name=names[call_id])
                call_id = slots[slot]
                if fn is not None:
                    if fn.name and not names[call_id]:
                        names[call_id] = fn.name
                    if fn.arguments:
                        arguments[call_id] += fn.arguments
                        yield ToolCallDelta(id=call_id, delta=fn.arguments)

        for call_id in slots.values():
            yield ToolCallDone(id=call_id, name=names[call_id], arguments=arguments[call_id])

        yield ResponseMeta(
            response_id=None, input_tokens=input_tokens, output_tokens=output_tokens
        )
        yield StreamDone()
