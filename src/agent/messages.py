"""Conversation data model shared by the loop, the dispatcher and the provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant", "tool", "system"]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """Image reference (URL or data URI)."""

    url: str


ContentPart = TextPart | ImagePart


@dataclass
class ToolCall:
    """A model-requested action. id is opaque and supplied by the provider."""

    id: str
    name: str
    arguments: str = ""


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Message:
    """One entry of the ordered conversation history."""

    role: Role
    content: str | list[ContentPart] = ""
    reasoning: str | None = None
    # Provider id of the reasoning item (Responses API), for replay.
    reasoning_id: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    usage: TokenUsage | None = None

    @property
    def text(self) -> str:
        """Plain-text view of content (image parts are skipped)."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))


def tool_message(call_id: str, content: str) -> Message:
    return Message(role="tool", content=content, tool_call_id=call_id)


@dataclass
class TokenTotals:
    """Cumulative token counts carried across loop iterations."""

    input: int = 0
    output: int = 0

    def plus(self, input_tokens: int, output_tokens: int) -> TokenTotals:
        return TokenTotals(input=self.input + input_tokens, output=self.output + output_tokens)


@dataclass
class SummaryState:
    """Opaque handoff produced by the context manager, carried across external turns."""

    text: str
    up_to_index: int = 0
    token_count: int = 0


@dataclass
class AgentResult:
    """Terminal outcome of one top-level loop invocation.

    new_messages is the transcript produced by this invocation (assistant
    tool-call turns, their tool results, and the final assistant message), so
    hosts can extend their history without re-deriving it.
    """

    content: str
    reasoning: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    last_input_tokens: int = 0
    new_summary: SummaryState | None = None
    new_messages: list[Message] = field(default_factory=list)
