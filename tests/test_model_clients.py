"""Tests for the Chat Completions and Responses API adapters.

The OpenAI SDK client is replaced with mocks yielding SimpleNamespace chunks.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError

from src.agent.chat_completions import ChatCompletionsClient, messages_to_chat
from src.agent.events import (
    ReasoningDelta,
    ResponseMeta,
    StreamDone,
    StreamError,
    TextDelta,
    ToolCallDone,
    ToolCallStart,
)
from src.agent.messages import ImagePart, Message, TextPart, ToolCall, tool_message
from src.agent.model_client import ProviderRequest, create_model_client
from src.agent.responses_api import ResponsesClient, messages_to_input
from src.infra.errors import LLMError


def _stream_from(items):
    async def _gen():
        for item in items:
            yield item

    return _gen()


async def _collect(client, request):
    return [event async for event in client.stream(request)]


def _request(**kwargs) -> ProviderRequest:
    values = {"system_prompt": "sys", "messages": [Message(role="user", content="hi")]}
    values.update(kwargs)
    return ProviderRequest(**values)


# ---------------------------------------------------------------------------
# Chat Completions
# ---------------------------------------------------------------------------


def _tc_delta(*, index, call_id=None, name=None, args=None):
    fn = None
    if name is not None or args is not None:
        fn = SimpleNamespace(name=name, arguments=args)
    return SimpleNamespace(index=index, id=call_id, function=fn)


def _chunk(*, content=None, tool_calls=None, reasoning=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=reasoning)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)], usage=usage)


def _usage_chunk(prompt, completion):
    return SimpleNamespace(
        choices=[], usage=SimpleNamespace(prompt_tokens=prompt, completion_tokens=completion)
    )


@pytest.fixture()
def chat_client(provider_settings):
    client = ChatCompletionsClient(provider_settings(), max_retries=0)
    client._client = MagicMock()
    return client


class TestChatCompletionsStream:
    @pytest.mark.asyncio
    async def test_text_reasoning_and_usage(self, chat_client):
        chat_client._client.chat.completions.create = AsyncMock(
            return_value=_stream_from(
                [
                    _chunk(reasoning="hmm"),
                    _chunk(content="Hel"),
                    _chunk(content="lo"),
                    _usage_chunk(12, 4),
                ]
            )
        )
        events = await _collect(chat_client, _request())

        assert events == [
            ReasoningDelta(delta="hmm"),
            TextDelta(delta="Hel"),
            TextDelta(delta="lo"),
            ResponseMeta(response_id=None, input_tokens=12, output_tokens=4),
            StreamDone(),
        ]

    @pytest.mark.asyncio
    async def test_indexed_tool_fragments_accumulate(self, chat_client):
        chat_client._client.chat.completions.create = AsyncMock(
            return_value=_stream_from(
                [
                    _chunk(
                        tool_calls=[
                            _tc_delta(index=0, call_id="call_1", name="read", args='{"file_'),
                            _tc_delta(index=1, call_id="call_2", name="grep", args='{"pattern":"x"}'),
                        ]
                    ),
                    _chunk(tool_calls=[_tc_delta(index=0, args='path":"a.py"}')]),
                ]
            )
        )
        events = await _collect(chat_client, _request())

        done = [e for e in events if isinstance(e, ToolCallDone)]
        assert done == [
            ToolCallDone(id="call_1", name="read", arguments='{"file_path":"a.py"}'),
            ToolCallDone(id="call_2", name="grep", arguments='{"pattern":"x"}'),
        ]

    @pytest.mark.asyncio
    async def test_null_index_calls_do_not_concatenate(self, chat_client):
        chat_client._client.chat.completions.create = AsyncMock(
            return_value=_stream_from(
                [
                    _chunk(
                        tool_calls=[
                            _tc_delta(index=None, call_id="fc-1", name="read", args='{"a":1}'),
                            _tc_delta(index=None, call_id="fc-2", name="read", args='{"b":2}'),
                        ]
                    ),
                ]
            )
        )
        events = await _collect(chat_client, _request())

        starts = [e for e in events if isinstance(e, ToolCallStart)]
        done = [e for e in events if isinstance(e, ToolCallDone)]
        assert [s.id for s in starts] == ["fc-1", "fc-2"]
        assert [d.arguments for d in done] == ['{"a":1}', '{"b":2}']

    @pytest.mark.asyncio
    async def test_request_shape(self, chat_client):
        create = AsyncMock(return_value=_stream_from([]))
        chat_client._client.chat.completions.create = create
        tools = [{"name": "read", "description": "Read", "parameters": {"type": "object"}}]
        await _collect(chat_client, _request(tools=tools, temperature=0.3))

        kwargs = create.await_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["tools"][0]["function"]["name"] == "read"
        assert kwargs["temperature"] == 0.3
        assert kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_connection_error_becomes_llm_error(self, chat_client):
        chat_client._client.chat.completions.create = AsyncMock(
            side_effect=APIConnectionError(request=httpx.Request("POST", "https://example.test"))
        )
        with pytest.raises(LLMError, match="after 1 attempts"):
            await _collect(chat_client, _request())

    @pytest.mark.asyncio
    async def test_complete_concatenates_text(self, chat_client):
        chat_client._client.chat.completions.create = AsyncMock(
            return_value=_stream_from([_chunk(content="a"), _chunk(content="b")])
        )
        assert await chat_client.complete(_request()) == "ab"


class TestMessagesToChat:
    def test_tool_round_trip_shape(self):
        messages = [
            Message(role="user", content="hi"),
            Message(
                role="assistant",
                content="",
                tool_calls=[ToolCall(id="c1", name="read", arguments='{"file_path":"a"}')],
            ),
            tool_message("c1", "contents"),
        ]
        result = messages_to_chat("", messages)

        assert result[0] == {"role": "user", "content": "hi"}
        assert result[1]["content"] is None
        assert result[1]["tool_calls"][0]["function"]["name"] == "read"
        assert result[2] == {"role": "tool", "tool_call_id": "c1", "content": "contents"}

    def test_assistant_reasoning_replayed(self):
        message = Message(
            role="assistant",
            content="",
            reasoning="need the file first",
            tool_calls=[ToolCall(id="c1", name="read", arguments="{}")],
        )
        [converted] = messages_to_chat("", [message])
        assert converted["reasoning_content"] == "need the file first"

    def test_no_reasoning_no_field(self):
        [converted] = messages_to_chat("", [Message(role="assistant", content="done")])
        assert "reasoning_content" not in converted

    def test_image_parts(self):
        message = Message(
            role="user", content=[TextPart("see"), ImagePart("data:image/png;base64,AA")]
        )
        [converted] = messages_to_chat("", [message])
        assert converted["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/png;base64,AA"},
        }


# ---------------------------------------------------------------------------
# Responses API
# ---------------------------------------------------------------------------


@pytest.fixture()
def responses_client(provider_settings):
    client = ResponsesClient(provider_settings(type="responses-api"), max_retries=0)
    client._client = MagicMock()
    return client


def _event(kind, **fields):
    return SimpleNamespace(type=kind, **fields)


def _fc_item(call_id, name, arguments=""):
    return SimpleNamespace(
        type="function_call", id=f"item_{call_id}", call_id=call_id, name=name, arguments=arguments
    )


class TestResponsesStream:
    @pytest.mark.asyncio
    async def test_events_normalized(self, responses_client):
        usage = SimpleNamespace(input_tokens=30, output_tokens=7)
        responses_client._client.responses.create = AsyncMock(
            return_value=_stream_from(
                [
                    _event("response.reasoning_summary_text.delta", delta="plan"),
                    _event("response.output_text.delta", delta="ok"),
                    _event("response.output_item.added", item=_fc_item("c1", "read")),
                    _event("response.function_call_arguments.delta", item_id="item_c1", delta="{}"),
                    _event("response.output_item.done", item=_fc_item("c1", "read", "{}")),
                    _event("response.completed", response=SimpleNamespace(id="resp_9", usage=usage)),
                ]
            )
        )
        events = await _collect(responses_client, _request())

        assert events[0] == ReasoningDelta(delta="plan")
        assert events[1] == TextDelta(delta="ok")
        assert ToolCallStart(id="c1", name="read") in events
        assert ToolCallDone(id="c1", name="read", arguments="{}") in events
        assert ResponseMeta(response_id="resp_9", input_tokens=30, output_tokens=7) in events
        assert events[-1] == StreamDone()

    @pytest.mark.asyncio
    async def test_reasoning_item_id_reported(self, responses_client):
        responses_client._client.responses.create = AsyncMock(
            return_value=_stream_from(
                [
                    _event(
                        "response.output_item.done",
                        item=SimpleNamespace(type="reasoning", id="rs_7"),
                    ),
                    _event(
                        "response.completed",
                        response=SimpleNamespace(id="resp_1", usage=None),
                    ),
                ]
            )
        )
        events = await _collect(responses_client, _request())
        assert ResponseMeta(response_id="resp_1", reasoning_id="rs_7") in events

    @pytest.mark.asyncio
    async def test_failure_event(self, responses_client):
        responses_client._client.responses.create = AsyncMock(
            return_value=_stream_from(
                [
                    _event(
                        "response.failed",
                        response=SimpleNamespace(error=SimpleNamespace(message="quota")),
                    )
                ]
            )
        )
        events = await _collect(responses_client, _request())
        assert StreamError(message="quota") in events

    @pytest.mark.asyncio
    async def test_continuation_id_forwarded(self, responses_client):
        create = AsyncMock(return_value=_stream_from([]))
        responses_client._client.responses.create = create
        await _collect(
            responses_client,
            _request(previous_response_id="resp_1", prompt_cache_key="s1"),
        )

        kwargs = create.await_args.kwargs
        assert kwargs["previous_response_id"] == "resp_1"
        assert kwargs["prompt_cache_key"] == "s1"
        assert kwargs["instructions"] == "sys"


class TestMessagesToInput:
    def test_tool_items(self):
        items = messages_to_input(
            [
                Message(role="user", content="hi"),
                Message(
                    role="assistant",
                    content="checking",
                    tool_calls=[ToolCall(id="c1", name="read", arguments="")],
                ),
                tool_message("c1", "contents"),
            ]
        )
        assert items == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "checking"},
            {"type": "function_call", "call_id": "c1", "name": "read", "arguments": "{}"},
            {"type": "function_call_output", "call_id": "c1", "output": "contents"},
        ]

    def test_reasoning_item_precedes_calls(self):
        items = messages_to_input(
            [
                Message(
                    role="assistant",
                    content="",
                    reasoning="need the file first",
                    reasoning_id="rs_1",
                    tool_calls=[ToolCall(id="c1", name="read", arguments="{}")],
                ),
            ]
        )
        assert items == [
            {
                "type": "reasoning",
                "id": "rs_1",
                "summary": [{"type": "summary_text", "text": "need the file first"}],
            },
            {"type": "function_call", "call_id": "c1", "name": "read", "arguments": "{}"},
        ]

    def test_reasoning_without_item_id_not_sent(self):
        items = messages_to_input(
            [Message(role="assistant", content="ok", reasoning="thoughts")]
        )
        assert items == [{"role": "assistant", "content": "ok"}]


class TestCreateModelClient:
    def test_picks_adapter_by_protocol(self, provider_settings):
        assert isinstance(
            create_model_client(provider_settings(type="chat-completions")),
            ChatCompletionsClient,
        )
        assert isinstance(
            create_model_client(provider_settings(type="responses-api")), ResponsesClient
        )
        assert isinstance(
            create_model_client(
                provider_settings(type=None, base_url="http://localhost:11434/v1")
            ),
            ChatCompletionsClient,
        )
