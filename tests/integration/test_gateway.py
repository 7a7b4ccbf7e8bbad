"""Gateway integration tests: WebSocket RPC, answer endpoint, cancellation.

Uses Starlette TestClient against the real router with sessions whose model
client is scripted, so every frame comes from the real loop and dispatcher.
"""

from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from src.agent.approval import PendingApprovalStore
from src.agent.context import AgentConfig
from src.agent.events import (
    ResponseMeta,
    StreamDone,
    StreamError,
    TextDelta,
    ToolCallDone,
    ToolCallStart,
)
from src.agent.model_client import ModelClient
from src.config.settings import ProviderSettings
from src.gateway.app import router
from src.session.registry import SessionRegistry
from src.session.session import CodingSession
from src.session.todos import TodoStore

pytestmark = pytest.mark.integration


class FakeModelClient(ModelClient):
    """Yields pre-configured stream events, one sequence per call."""

    def __init__(self) -> None:
        self._responses: list[list] = []
        self._call_idx = 0

    def set_responses(self, *sequences: list) -> None:
        self._responses = list(sequences)
        self._call_idx = 0

    async def stream(self, request):
        idx = self._call_idx
        self._call_idx += 1
        for event in self._responses[idx] if idx < len(self._responses) else []:
            yield event


def _make_app(tmp_path) -> tuple[FastAPI, FakeModelClient]:
    model = FakeModelClient()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        approvals = PendingApprovalStore()
        todos = TodoStore()
        config = AgentConfig(
            provider=ProviderSettings(api_key="test-key", type="chat-completions")
        )

        def make_session(session_id: str) -> CodingSession:
            return CodingSession(
                session_id,
                project_dir=tmp_path,
                config=config,
                approvals=approvals,
                todos=todos,
                model_client_factory=lambda _config: model,
            )

        app.state.sessions = SessionRegistry(make_session, approvals)
        yield

    app = FastAPI(lifespan=lifespan)
    app.include_router(router)
    return app, model


def _send_rpc(ws, *, method: str, params: dict | None = None, request_id: str = "req-1"):
    msg = {"type": "request", "id": request_id, "method": method, "params": params or {}}
    ws.send_text(json.dumps(msg))


def _collect_until_done(ws) -> list[dict]:
    """Collect WS messages until stream_chunk done=true or error."""
    messages = []
    while True:
        data = json.loads(ws.receive_text())
        messages.append(data)
        if data.get("type") == "stream_chunk" and data["data"]["done"]:
            break
        if data.get("type") == "error":
            break
    return messages


def _text(text: str) -> list:
    return [TextDelta(delta=text), ResponseMeta(input_tokens=5, output_tokens=2), StreamDone()]


class TestChat:
    def test_send_streams_chunks_then_done(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(
            [TextDelta(delta="Hello "), TextDelta(delta="world!"), StreamDone()]
        )

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "hi", "session_id": "s1"})
            messages = _collect_until_done(ws)

        chunks = [m["data"]["content"] for m in messages if m["type"] == "stream_chunk"]
        assert chunks == ["Hello ", "world!", ""]
        assert all(m["id"] == "req-1" for m in messages)

    def test_tool_frames(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(
            [
                ToolCallStart(id="call_1", name="unknown_tool"),
                ToolCallDone(id="call_1", name="unknown_tool", arguments="{}"),
                StreamDone(),
            ],
            _text("Could not find that tool."),
        )

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "go"})
            messages = _collect_until_done(ws)

        types = [m["type"] for m in messages]
        assert types.index("tool_call") < types.index("tool_result")
        result = next(m for m in messages if m["type"] == "tool_result")
        assert result["data"]["call_id"] == "call_1"
        assert "Tool not found: unknown_tool" in result["data"]["result"]

    def test_history_after_send(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(_text("Reply from assistant"))

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "hello", "session_id": "s1"})
            _collect_until_done(ws)
            _send_rpc(ws, method="chat.history", params={"session_id": "s1"}, request_id="h1")
            data = json.loads(ws.receive_text())

        assert data["type"] == "response"
        assert data["id"] == "h1"
        assert data["data"]["mode"] == "build"
        assert data["data"]["messages"] == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Reply from assistant"},
        ]

    def test_history_of_unknown_session_is_empty(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.history", params={"session_id": "nobody"})
            data = json.loads(ws.receive_text())
        assert data["data"]["messages"] == []


class TestRpcErrors:
    def test_invalid_json(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            data = json.loads(ws.receive_text())
        assert data["type"] == "error"
        assert data["error"]["code"] == "PARSE_ERROR"

    def test_unknown_method(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.teleport")
            data = json.loads(ws.receive_text())
        assert data["error"]["code"] == "METHOD_NOT_FOUND"

    def test_empty_content(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "   "})
            data = json.loads(ws.receive_text())
        assert data["error"]["code"] == "INVALID_PARAMS"

    def test_provider_failure_reported(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses([StreamError(message="upstream 503")])
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "hi"})
            messages = _collect_until_done(ws)
        assert messages[-1]["type"] == "error"
        assert messages[-1]["error"]["code"] == "LLM_ERROR"


class TestAnswerEndpoint:
    def test_missing_fields(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client:
            resp = client.post("/api/answer", json={"sessionId": "s1"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing sessionId or answer"}

    def test_unknown_session(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client:
            resp = client.post("/api/answer", json={"sessionId": "nope", "answer": "yes"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Session not found"}

    def test_no_pending_question(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(_text("hi"))
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                _send_rpc(ws, method="chat.send", params={"content": "hi", "session_id": "s1"})
                _collect_until_done(ws)
            resp = client.post("/api/answer", json={"sessionId": "s1", "answer": "yes"})
        assert resp.status_code == 404
        assert resp.json() == {"error": "No pending question"}

    def test_answer_unblocks_question_tool(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(
            [
                ToolCallStart(id="q1", name="question"),
                ToolCallDone(
                    id="q1",
                    name="question",
                    arguments='{"question": "Which db?", "options": ["sqlite", "postgres"]}',
                ),
                StreamDone(),
            ],
            _text("Using sqlite."),
        )

        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            _send_rpc(ws, method="chat.send", params={"content": "set up db", "session_id": "s1"})
            first = json.loads(ws.receive_text())
            assert first["type"] == "tool_call"

            for _ in range(100):
                resp = client.post(
                    "/api/answer", json={"sessionId": "s1", "answer": "sqlite"}
                )
                if resp.status_code == 200:
                    break
                time.sleep(0.02)
            assert resp.json() == {"success": True}

            messages = _collect_until_done(ws)

        result = next(m for m in messages if m["type"] == "tool_result")
        assert json.loads(result["data"]["result"])["answer"] == "sqlite"
        chunks = [m["data"]["content"] for m in messages if m["type"] == "stream_chunk"]
        assert "Using sqlite." in chunks


class TestCancelEndpoint:
    def test_unknown_session(self, tmp_path):
        app, _ = _make_app(tmp_path)
        with TestClient(app) as client:
            resp = client.post("/api/sessions/nope/cancel")
        assert resp.status_code == 404

    def test_idle_session(self, tmp_path):
        app, model = _make_app(tmp_path)
        model.set_responses(_text("hi"))
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                _send_rpc(ws, method="chat.send", params={"content": "hi", "session_id": "s1"})
                _collect_until_done(ws)
            resp = client.post("/api/sessions/s1/cancel")
        assert resp.json() == {"cancelled": False}


def test_health(tmp_path):
    app, _ = _make_app(tmp_path)
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
