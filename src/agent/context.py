"""Per-invocation state of the agent loop and the host-facing callback surface."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from src.config.settings import AgentSettings, ContinuationSettings, ProviderSettings

if TYPE_CHECKING:
    from src.agent.compaction import ContextManager
    from src.agent.messages import AgentResult, Message, SummaryState
    from src.agent.model_client import ModelClient
    from src.agent.verification import EditVerifier
    from src.tools.registry import ToolRegistry

logger = structlog.get_logger()


@dataclass
class AgentCallbacks:
    """Fire-and-forget notifications. Return values are ignored; a raising
    callback is logged and never interrupts the loop."""

    on_token: Callable[[str], Any] | None = None
    on_reasoning: Callable[[str], Any] | None = None
    on_tool_call_start: Callable[[str, str], Any] | None = None
    on_tool_call_complete: Callable[[Any, str], Any] | None = None
    on_step_complete: Callable[[int, Any], Any] | None = None
    on_status_change: Callable[[str], Any] | None = None
    on_loop_iteration: Callable[[int, list], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None
    # Subagent callbacks receive (agent, task | result | token, child_session_id).
    on_subagent_start: Callable[[str, str, str], Any] | None = None
    on_subagent_end: Callable[[str, str, str], Any] | None = None
    on_subagent_token: Callable[[str, str, str], Any] | None = None

    def emit(self, name: str, *args: Any) -> None:
        fn = getattr(self, name)
        if fn is None:
            return
        try:
            fn(*args)
        except Exception:
            logger.exception("callback_failed", callback=name)


@dataclass(frozen=True)
class HookContext:
    session_id: str
    project_dir: Path
    agent_id: str
    depth: int
    messages: list[Message]


@dataclass(frozen=True)
class ToolInfo:
    name: str
    description: str


BeforeToolHook = Callable[[ToolInfo, dict, HookContext], Awaitable[dict | None]]
AfterToolHook = Callable[
    [ToolInfo, dict, str | None, Exception | None, HookContext], Awaitable[None]
]


@dataclass
class AgentHooks:
    """Async interception points.

    before_tool_execution may return rewritten arguments, or raise to veto the
    call (the model then sees "Tool blocked: <reason>").
    after_tool_execution is observability only; failures are logged.
    """

    before_llm_call: Callable[[HookContext], Awaitable[None]] | None = None
    after_llm_call: Callable[[HookContext, Any], Awaitable[None]] | None = None
    before_tool_execution: BeforeToolHook | None = None
    after_tool_execution: AfterToolHook | None = None
    on_complete: Callable[[AgentResult, HookContext], Awaitable[None]] | None = None


@dataclass(frozen=True)
class AgentConfig:
    """Static configuration for one loop invocation chain."""

    provider: ProviderSettings
    agent: AgentSettings = field(default_factory=AgentSettings)
    continuation: ContinuationSettings = field(default_factory=ContinuationSettings)
    hooks: AgentHooks = field(default_factory=AgentHooks)


ModelClientFactory = Callable[[AgentConfig], "ModelClient"]


def default_model_client_factory(config: AgentConfig) -> ModelClient:
    from src.agent.model_client import create_model_client

    return create_model_client(
        config.provider,
        full_replay_url_markers=config.continuation.full_replay_url_markers,
    )


@dataclass
class AgentContext:
    """State owned by one top-level invocation chain.

    Each loop iteration works on a shallow copy (dataclasses.replace) with the
    next turn's messages and continuation id; model_client is created once and
    travels with the copies, never re-created within the chain.
    """

    session_id: str
    project_dir: Path
    system_prompt: str
    messages: list[Message]
    tools: ToolRegistry
    config: AgentConfig
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    callbacks: AgentCallbacks = field(default_factory=AgentCallbacks)
    context_manager: ContextManager | None = None
    existing_summary: SummaryState | None = None
    previous_response_id: str | None = None
    environment_id: str | None = None
    agent_id: str = "root"
    model_client: ModelClient | None = None
    model_client_factory: ModelClientFactory = default_model_client_factory
    verifier: EditVerifier | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def get_model_client(self) -> ModelClient:
        """Return the cached provider connection, creating it on first use."""
        if self.model_client is None:
            self.model_client = self.model_client_factory(self.config)
        return self.model_client

    def hook_context(self, depth: int) -> HookContext:
        return HookContext(
            session_id=self.session_id,
            project_dir=self.project_dir,
            agent_id=self.agent_id,
            depth=depth,
            messages=self.messages,
        )
