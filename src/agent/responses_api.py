"""Responses API adapter: stateful-continuation wire protocol.

The endpoint retains prior turns keyed by the response id; when
previous_response_id is set the request carries only the new items
(normally the function_call_output items for the last tool calls).
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
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallDone,
    ToolCallStart,
)
from src.agent.messages import ImagePart, Message, TextPart
from src.agent.model_client import OpenAIModelClient, ProviderRequest

logger = structlog.get_logger()


def _user_content(content: str | list) -> str | list[dict[str, Any]]:
    if isinstance(content, str):
        return content
    parts: list[dict[str, Any]] = []
    for part in content:
        if isinstance(part, TextPart):
            parts.append({"type": "input_text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({"type": "input_image", "image_url": part.url})
    return parts


def messages_to_input(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert history to Responses API input items.

    Assistant tool calls become function_call items and tool messages become
    function_call_output items, correlated by call_id.
    Assistant reasoning is replayed as a reasoning item when the provider
    assigned it an id; the endpoint rejects reasoning items without one.
    """
    items: list[dict[str, Any]] = []
    for m in messages:
        if m.role == "tool":
            items.append(
                {
                    "type": "function_call_output",
                    "call_id": m.tool_call_id,
                    "output": m.text,
                }
            )
        elif m.role == "assistant":
            if m.reasoning_id:
                items.append(
                    {
                        "type": "reasoning",
                        "id": m.reasoning_id,
                        "summary": (
                            [{"type": "summary_text", "text": m.reasoning}]
                            if m.reasoning
                            else []
                        ),
                    }
                )
            if m.text:
                items.append({"role": "assistant", "content": m.text})
            for tc in m.tool_calls or []:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": tc.id,
                        "name": tc.name,
                        "arguments": tc.arguments or "{}",
                    }
                )
        else:
            items.append({"role": m.role, "content": _user_content(m.content)})
    return items


def tools_to_responses(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "name": t["name"],
            "description": t["description"],
            "parameters": t["parameters"],
        }
        for t in tools
    ]


class ResponsesClient(OpenAIModelClient):
    """Streams /responses and normalizes typed events."""

    supports_continuation = True

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        items = messages_to_input(request.messages)
        tools = tools_to_responses(request.tools)
        logger.debug(
            "responses_stream_request",
            model=self.model,
            item_count=len(items),
            tool_count=len(tools),
            continued=request.previous_response_id is not None,
        )
        extra: dict[str, Any] = {}
        if tools:
            extra["parallel_tool_calls"] = self._settings.parallel_tool_calls
        if self._settings.max_tokens is not None:
            extra["max_output_tokens"] = self._settings.max_tokens
        if self._settings.reasoning_effort is not None:
            extra["reasoning"] = {
                "effort": self._settings.reasoning_effort,
                "summary": "auto",
            }

        stream = await self._retry_call(
            lambda: self._client.responses.create(
                model=self.model,
                instructions=request.system_prompt or NOT_GIVEN,
                input=items,
                tools=tools if tools else NOT_GIVEN,
                previous_response_id=request.previous_response_id or NOT_GIVEN,
                prompt_cache_key=request.prompt_cache_key or NOT_GIVEN,
                stream=True,
                **self._sampling_kwargs(request),
                **extra,
            ),
            context="responses_stream",
        )

        # output item id -> call id (argument deltas reference the item id)
        item_to_call: dict[str, str] = {}
        reasoning_id: str | None = None

        async for event in stream:
            kind = event.type
            if kind == "response.output_text.delta":
                yield TextDelta(delta=event.delta)
            elif kind in (
                "response.reasoning_summary_text.delta",
                "response.reasoning_text.delta",
            ):
                yield ReasoningDelta(delta=event.delta)
            elif kind == "response.output_item.added":
                item = event.item
                if item.type == "function_call":
                    item_to_call[item.id] = item.call_id
                    yield ToolCallStart(id=item.call_id, name=item.name)
            elif kind == "response.function_call_arguments.delta":
                call_id = item_to_call.get(event.item_id)
                if call_id is not None:
                    yield ToolCallDelta(id=call_id, delta=event.delta)
            elif kind == "response.output_item.done":
                item = event.item
                if item.type == "function_call":
                    yield ToolCallDone(
                        id=item.call_id, name=item.name, arguments=item.arguments
                    )
                elif item.type == "reasoning":
                    reasoning_id = item.id
            elif kind == "response.completed":
                response = event.response
                usage = response.usage
                yield ResponseMeta(
                    response_id=response.id,
                    reasoning_id=reasoning_id,
                    input_tokens=usage.input_tokens if usage else 0,
                    output_tokens=usage.output_tokens if usage else 0,
                )
            elif kind == "response.failed":
                error = event.response.error
                yield StreamError(message=error.message if error else "response failed")
            elif kind == "error":
                yield StreamError(message=event.message)

        yield StreamDone()
