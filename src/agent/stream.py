from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.agent.events import (
    ReasoningDelta,
    ResponseMeta,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallDone,
    ToolCallStart,
)
from src.agent.messages import ToolCall

if TYPE_CHECKING:
    from src.agent.context import AgentCallbacks


@dataclass
class StreamAccumulator:
    """Running state of one model turn."""

    content: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    response_id: str | None = None
    reasoning_id: str | None = None

    def find_call(self, call_id: str) -> ToolCall | None:
        return next((tc for tc in self.tool_calls if tc.id == call_id), None)

    def valid_tool_calls(self) -> list[ToolCall]:
        """Tool calls with a non-empty function name, in arrival order."""
        return [tc for tc in self.tool_calls if tc.name and tc.name.strip()]


def handle_event(
    event: StreamEvent,
    acc: StreamAccumulator,
    callbacks: AgentCallbacks | None = None,
) -> None:
    """Fold one normalized event into the accumulator and fire stream callbacks.

    StreamError, StreamDone are handled by the caller.
    """
    if isinstance(event, TextDelta):
        acc.content += event.delta
        if callbacks:
            callbacks.emit("on_token", event.delta)
    elif isinstance(event, ReasoningDelta):
        acc.reasoning += event.delta
        if callbacks:
            callbacks.emit("on_reasoning", event.delta)
    elif isinstance(event, ToolCallStart):
        if acc.find_call(event.id) is None:
            acc.tool_calls.append(ToolCall(id=event.id, name=event.name))
        if callbacks:
            callbacks.emit("on_tool_call_start", event.id, event.name)
    elif isinstance(event, ToolCallDelta):
        tc = acc.find_call(event.id)
        if tc is not None:
            tc.arguments += event.delta
    elif isinstance(event, ToolCallDone):
        tc = acc.find_call(event.id)
        if tc is None:
            tc = ToolCall(id=event.id, name=event.name)
            acc.tool_calls.append(tc)
        tc.name = event.name
        if event.arguments:
            tc.arguments = event.arguments
    elif isinstance(event, ResponseMeta):
        if event.response_id:
            acc.response_id = event.response_id
        if event.reasoning_id:
            acc.reasoning_id = event.reasoning_id
        acc.input_tokens = event.input_tokens
        acc.output_tokens = event.output_tokens
