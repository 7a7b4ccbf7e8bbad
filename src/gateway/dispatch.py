"""Core dispatch: session lookup -> busy check -> send_message -> event stream.

Kept apart from the WebSocket handler so other transports can reuse it.
SESSION_BUSY propagates as GatewayError; loop errors propagate unchanged
after the last event has been yielded.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

import structlog

from src.agent.context import AgentCallbacks
from src.agent.events import (
    AgentEvent,
    ReasoningChunk,
    SubagentInfo,
    SubagentToken,
    TextChunk,
    ToolCallInfo,
    ToolResultInfo,
)
from src.infra.errors import GatewayError

if TYPE_CHECKING:
    from src.agent.messages import ToolCall
    from src.session.registry import SessionRegistry

logger = structlog.get_logger()


def _queue_callbacks(queue: asyncio.Queue[AgentEvent | None]) -> AgentCallbacks:
    """Translate loop callbacks into AgentEvents on a queue."""
    # Keyed by child session id: parallel runs of one agent must not collide.
    subagent_tasks: dict[str, str] = {}

    def on_tool_call_complete(call: ToolCall, result: str) -> None:
        queue.put_nowait(ToolResultInfo(tool_name=call.name, call_id=call.id, result=result))

    def on_subagent_start(agent: str, task: str, session_id: str) -> None:
        subagent_tasks[session_id] = task
        queue.put_nowait(SubagentInfo(agent=agent, task=task, session_id=session_id))

    def on_subagent_end(agent: str, result: str, session_id: str) -> None:
        queue.put_nowait(
            SubagentInfo(
                agent=agent,
                task=subagent_tasks.pop(session_id, ""),
                result=result,
                session_id=session_id,
            )
        )

    def on_subagent_token(agent: str, token: str, session_id: str) -> None:
        queue.put_nowait(SubagentToken(agent=agent, session_id=session_id, content=token))

    return AgentCallbacks(
        on_token=lambda text: queue.put_nowait(TextChunk(content=text)),
        on_reasoning=lambda text: queue.put_nowait(ReasoningChunk(content=text)),
        on_tool_call_start=lambda call_id, name: queue.put_nowait(
            ToolCallInfo(tool_name=name, call_id=call_id)
        ),
        on_tool_call_complete=on_tool_call_complete,
        on_subagent_start=on_subagent_start,
        on_subagent_end=on_subagent_end,
        on_subagent_token=on_subagent_token,
    )


async def dispatch_chat(
    *,
    sessions: SessionRegistry,
    session_id: str,
    content: str,
) -> AsyncIterator[AgentEvent]:
    """Run one message through the session and yield its events as they happen.

    Raises GatewayError(code="SESSION_BUSY") when the session already has a
    message in flight.
    """
    session = sessions.get_or_create(session_id)
    if session.busy:
        raise GatewayError(
            "Session is being processed by another request. Please try again.",
            code="SESSION_BUSY",
        )

    queue: asyncio.Queue[AgentEvent | None] = asyncio.Queue()
    task = asyncio.create_task(session.send_message(content, _queue_callbacks(queue)))
    task.add_done_callback(lambda _: queue.put_nowait(None))
    logger.info("chat_dispatched", session_id=session_id)

    try:
        while (event := await queue.get()) is not None:
            yield event
        await task
    finally:
        if not task.done():
            # Consumer went away mid-run (e.g. socket closed).
            logger.info("chat_abandoned", session_id=session_id)
            session.cancel()
            task.cancel()
