from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from src.agent.approval import PendingApprovalStore
from src.agent.compaction import SlidingWindowContextManager, TokenCounter
from src.agent.context import AgentConfig
from src.agent.events import (
    ReasoningChunk,
    SubagentInfo,
    SubagentToken,
    TextChunk,
    ToolCallInfo,
    ToolResultInfo,
)
from src.agent.model_client import create_model_client
from src.agent.verification import EditVerifier
from src.config.settings import Settings, get_settings
from src.gateway.dispatch import dispatch_chat
from src.gateway.protocol import (
    AnswerParams,
    ChatHistoryParams,
    ChatSendParams,
    ReasoningData,
    RPCError,
    RPCErrorData,
    RPCHistoryResponse,
    RPCHistoryResponseData,
    RPCReasoning,
    RPCStreamChunk,
    RPCSubagent,
    RPCSubagentToken,
    RPCToolCall,
    RPCToolResult,
    StreamChunkData,
    SubagentData,
    SubagentTokenData,
    ToolCallData,
    ToolResultData,
    parse_rpc_request,
)
from src.infra.errors import GatewayError, StratusError
from src.infra.logging import setup_logging
from src.session.registry import SessionRegistry
from src.session.session import CodingSession
from src.session.todos import TodoStore

logger = structlog.get_logger()

router = APIRouter()


def build_session_registry(settings: Settings) -> SessionRegistry:
    """Wire the process-wide stores and the per-session factory from settings."""
    project_dir = settings.gateway.project_dir.resolve()
    approvals = PendingApprovalStore(
        on_pending=lambda key: logger.info("question_awaiting_answer", session_id=key)
    )
    todos = TodoStore()
    config = AgentConfig(
        provider=settings.provider,
        agent=settings.agent,
        continuation=settings.continuation,
    )
    verifier = EditVerifier(project_dir, timeout_s=settings.agent.lint_timeout_s)

    context_manager = None
    if settings.context.enabled:
        summarizer = (
            create_model_client(
                settings.provider,
                full_replay_url_markers=settings.continuation.full_replay_url_markers,
            )
            if settings.context.summary_enabled
            else None
        )
        context_manager = SlidingWindowContextManager(
            settings.context, TokenCounter(settings.provider.model), summarizer
        )

    def make_session(session_id: str) -> CodingSession:
        return CodingSession(
            session_id,
            project_dir=project_dir,
            config=config,
            approvals=approvals,
            todos=todos,
            context_manager=context_manager,
            verifier=verifier,
        )

    return SessionRegistry(make_session, approvals)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize shared state on startup."""
    settings = get_settings()
    setup_logging(json_output=settings.gateway.json_logs, log_level=settings.gateway.log_level)

    app.state.sessions = build_session_registry(settings)
    logger.info(
        "gateway_started",
        host=settings.gateway.host,
        port=settings.gateway.port,
        project_dir=str(settings.gateway.project_dir.resolve()),
        model=settings.provider.model,
    )

    yield

    pending = app.state.sessions.approvals.keys()
    if pending:
        logger.warning("gateway_stopped_with_pending_questions", sessions=pending)


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/answer")
async def answer(request: Request) -> JSONResponse:
    """Resolve a session's pending question or plan approval with the user's answer."""
    try:
        params = AnswerParams.model_validate(await request.json())
    except (ValidationError, json.JSONDecodeError):
        return JSONResponse(
            {"error": "Missing sessionId or answer"}, status_code=400
        )

    sessions: SessionRegistry = request.app.state.sessions
    session = sessions.get(params.session_id)
    if session is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)

    if not sessions.approvals.resolve(session.environment_id, params.answer):
        logger.warning("answer_without_pending_question", session_id=params.session_id)
        return JSONResponse({"error": "No pending question"}, status_code=404)
    return JSONResponse({"success": True})


@router.post("/api/sessions/{session_id}/cancel")
async def cancel_session(session_id: str, request: Request) -> JSONResponse:
    sessions: SessionRegistry = request.app.state.sessions
    session = sessions.get(session_id)
    if session is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)
    return JSONResponse({"cancelled": session.cancel()})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    logger.info("ws_connected")
    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_rpc_message(websocket, raw)
    except WebSocketDisconnect:
        logger.info("ws_disconnected")


async def _handle_rpc_message(websocket: WebSocket, raw: str) -> None:
    """Parse RPC request, invoke agent, stream response events back."""
    request_id = "unknown"
    try:
        request = parse_rpc_request(raw)
        request_id = request.id

        if request.method == "chat.send":
            await _handle_chat_send(websocket, request_id, request.params)
        elif request.method == "chat.history":
            await _handle_chat_history(websocket, request_id, request.params)
        else:
            error = RPCError(
                id=request_id,
                error=RPCErrorData(
                    code="METHOD_NOT_FOUND",
                    message=f"Unknown method: {request.method}",
                ),
            )
            await websocket.send_text(error.model_dump_json())

    except StratusError as e:
        logger.warning("request_error", code=e.code, error=str(e), request_id=request_id)
        error = RPCError(
            id=request_id,
            error=RPCErrorData(code=e.code, message=str(e)),
        )
        await websocket.send_text(error.model_dump_json())
    except Exception:
        logger.exception("unhandled_error", request_id=request_id)
        error = RPCError(
            id=request_id,
            error=RPCErrorData(code="INTERNAL_ERROR", message="An internal error occurred"),
        )
        await websocket.send_text(error.model_dump_json())


async def _handle_chat_send(
    websocket: WebSocket, request_id: str, params: dict
) -> None:
    """Handle chat.send: delegate to dispatch_chat, stream events over WebSocket."""
    try:
        parsed = ChatSendParams.model_validate(params)
    except ValidationError as e:
        raise GatewayError(str(e), code="INVALID_PARAMS") from e

    sessions: SessionRegistry = websocket.app.state.sessions

    async for event in dispatch_chat(
        sessions=sessions, session_id=parsed.session_id, content=parsed.content
    ):
        if isinstance(event, TextChunk):
            frame = RPCStreamChunk(
                id=request_id, data=StreamChunkData(content=event.content, done=False)
            )
        elif isinstance(event, ReasoningChunk):
            frame = RPCReasoning(id=request_id, data=ReasoningData(content=event.content))
        elif isinstance(event, ToolCallInfo):
            frame = RPCToolCall(
                id=request_id,
                data=ToolCallData(tool_name=event.tool_name, call_id=event.call_id),
            )
        elif isinstance(event, ToolResultInfo):
            frame = RPCToolResult(
                id=request_id,
                data=ToolResultData(
                    tool_name=event.tool_name, call_id=event.call_id, result=event.result
                ),
            )
        elif isinstance(event, SubagentInfo):
            frame = RPCSubagent(
                id=request_id,
                data=SubagentData(
                    agent=event.agent,
                    task=event.task,
                    result=event.result,
                    session_id=event.session_id,
                ),
            )
        elif isinstance(event, SubagentToken):
            frame = RPCSubagentToken(
                id=request_id,
                data=SubagentTokenData(
                    agent=event.agent, session_id=event.session_id, content=event.content
                ),
            )
        else:
            continue
        await websocket.send_text(frame.model_dump_json())

    done_chunk = RPCStreamChunk(
        id=request_id,
        data=StreamChunkData(content="", done=True),
    )
    await websocket.send_text(done_chunk.model_dump_json())


async def _handle_chat_history(
    websocket: WebSocket, request_id: str, params: dict
) -> None:
    """Handle chat.history: display-safe messages (user and assistant text only)."""
    parsed = ChatHistoryParams.model_validate(params)
    sessions: SessionRegistry = websocket.app.state.sessions

    session = sessions.get(parsed.session_id)
    messages = []
    mode = "build"
    if session is not None:
        mode = session.mode.value
        messages = [
            {"role": m.role, "content": m.text}
            for m in session.history
            if m.role in ("user", "assistant") and m.text
        ]
    response = RPCHistoryResponse(
        id=request_id, data=RPCHistoryResponseData(messages=messages, mode=mode)
    )
    await websocket.send_text(response.model_dump_json())


app = FastAPI(title="Stratus Gateway", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


def main() -> None:
    """Serve the gateway with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "src.gateway.app:app",
        host=settings.gateway.host,
        port=settings.gateway.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
