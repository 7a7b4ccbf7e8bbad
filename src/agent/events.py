from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Normalized provider stream events (one contract for every wire protocol)
# ---------------------------------------------------------------------------


@dataclass
class TextDelta:
    """A chunk of streamed answer text."""

    delta: str


@dataclass
class ReasoningDelta:
    """A chunk of streamed reasoning text."""

    delta: str


@dataclass
class ToolCallStart:
    id: str
    name: str


@dataclass
class ToolCallDelta:
    """A fragment of a tool call's JSON argument payload."""

    id: str
    delta: str


@dataclass
class ToolCallDone:
    """Final name and (optionally) full arguments of a tool call."""

    id: str
    name: str
    arguments: str | None = None


@dataclass
class ResponseMeta:
    """Terminal metadata: continuation id (Responses API only) and usage.

    reasoning_id is the id of the turn's reasoning output item, needed to replay
    it as a Responses API input item.
    """

    response_id: str | None = None
    reasoning_id: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class StreamError:
    message: str


@dataclass
class StreamDone:
    pass


StreamEvent = (
    TextDelta
    | ReasoningDelta
    | ToolCallStart
    | ToolCallDelta
    | ToolCallDone
    | ResponseMeta
    | StreamError
    | StreamDone
)

# ---------------------------------------------------------------------------
# Host-facing agent events (gateway transport)
# ---------------------------------------------------------------------------


@dataclass
class TextChunk:
    """A chunk of text content from the LLM response."""

    content: str


@dataclass
class ReasoningChunk:
    content: str


@dataclass
class ToolCallInfo:
    """Notification that a tool is being called."""

    tool_name: str
    call_id: str


@dataclass
class ToolResultInfo:
    """Notification that a tool call settled."""

    tool_name: str
    call_id: str
    result: str


@dataclass
class SubagentInfo:
    """Subagent lifecycle notification. result is None on start.

    session_id identifies the child run, so parallel runs of one agent stay apart.
    """

    agent: str
    task: str
    result: str | None = None
    session_id: str = ""


@dataclass
class SubagentToken:
    agent: str
    session_id: str
    content: str


AgentEvent = (
    TextChunk | ReasoningChunk | ToolCallInfo | ToolResultInfo | SubagentInfo | SubagentToken
)
