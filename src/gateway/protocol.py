from __future__ import annotations

import json
import uuid
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator


class ChatSendParams(BaseModel):
    content: str
    session_id: str = "main"

    @field_validator("content")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must not be empty")
        return v


class ChatHistoryParams(BaseModel):
    session_id: str = "main"


class AnswerParams(BaseModel):
    """Body of POST /api/answer: resolves the session's pending question."""

    session_id: str = Field(
        min_length=1, validation_alias=AliasChoices("sessionId", "session_id")
    )
    answer: str = Field(min_length=1)


class RPCRequest(BaseModel):
    """Generic RPC request. method determines which params to expect."""

    type: Literal["request"] = "request"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class StreamChunkData(BaseModel):
    content: str
    done: bool


class RPCStreamChunk(BaseModel):
    type: Literal["stream_chunk"] = "stream_chunk"
    id: str
    data: StreamChunkData


class ReasoningData(BaseModel):
    content: str


class RPCReasoning(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    id: str
    data: ReasoningData


class ToolCallData(BaseModel):
    tool_name: str
    call_id: str


class RPCToolCall(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    id: str
    data: ToolCallData


class ToolResultData(BaseModel):
    tool_name: str
    call_id: str
    result: str


class RPCToolResult(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    id: str
    data: ToolResultData


class SubagentData(BaseModel):
    agent: str
    task: str
    # None while the subagent is running
    result: str | None = None
    session_id: str = ""


class RPCSubagent(BaseModel):
    type: Literal["subagent"] = "subagent"
    id: str
    data: SubagentData


class SubagentTokenData(BaseModel):
    agent: str
    session_id: str
    content: str


class RPCSubagentToken(BaseModel):
    type: Literal["subagent_token"] = "subagent_token"
    id: str
    data: SubagentTokenData


class RPCErrorData(BaseModel):
    code: str
    message: str


class RPCError(BaseModel):
    type: Literal["error"] = "error"
    id: str
    error: RPCErrorData


class RPCHistoryResponseData(BaseModel):
    messages: list[dict[str, Any]]
    mode: str


class RPCHistoryResponse(BaseModel):
    type: Literal["response"] = "response"
    id: str
    data: RPCHistoryResponseData


def parse_rpc_request(raw: str) -> RPCRequest:
    """Parse a raw JSON string into an RPCRequest.

    Raises GatewayError(code="PARSE_ERROR") on invalid JSON or schema mismatch.
    """
    from src.infra.errors import GatewayError

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise GatewayError(f"Invalid JSON: {e}", code="PARSE_ERROR") from e
    try:
        return RPCRequest.model_validate(data)
    except Exception as e:
        raise GatewayError(f"Invalid RPC request: {e}", code="PARSE_ERROR") from e
