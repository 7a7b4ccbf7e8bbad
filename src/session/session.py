from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.agent.approval import PLAN_MODE_REMINDER, PlanModeMachine, PlanState
from src.agent.context import (
    AgentCallbacks,
    AgentConfig,
    AgentContext,
    ModelClientFactory,
    default_model_client_factory,
)
from src.agent.loop import run_tool_loop
from src.agent.messages import AgentResult, Message, SummaryState
from src.agent.prompt_builder import PromptBuilder
from src.infra.errors import SessionError
from src.tools.base import AgentMode
from src.tools.builtins import register_builtins
from src.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from src.agent.approval import PendingApprovalStore
    from src.agent.compaction import ContextManager
    from src.agent.verification import EditVerifier
    from src.session.todos import TodoStore

logger = structlog.get_logger()


class CodingSession:
    """One conversation with the agent: history, mode and per-send invocation.

    Only one send_message may run at a time; the approval gate is keyed by
    environment_id, which is the session id for in-process sessions.
    """

    def __init__(
        self,
        session_id: str,
        *,
        project_dir: Path,
        config: AgentConfig,
        approvals: PendingApprovalStore,
        todos: TodoStore,
        context_manager: ContextManager | None = None,
        verifier: EditVerifier | None = None,
        model_client_factory: ModelClientFactory = default_model_client_factory,
        mode: AgentMode = AgentMode.build,
    ) -> None:
        self.session_id = session_id
        self.project_dir = project_dir
        self.history: list[Message] = []
        self.summary: SummaryState | None = None
        self.plan = PlanModeMachine(PlanState.plan if mode == AgentMode.plan else PlanState.build)
        self._config = config
        self._todos = todos
        self._context_manager = context_manager
        self._verifier = verifier
        self._model_client_factory = model_client_factory
        self._prompts = PromptBuilder(project_dir)
        self._registry = ToolRegistry()
        register_builtins(self._registry, todos=todos, approvals=approvals, plan=self.plan)
        self._lock = asyncio.Lock()
        self._cancel_event: asyncio.Event | None = None

    @property
    def environment_id(self) -> str:
        return self.session_id

    @property
    def mode(self) -> AgentMode:
        return AgentMode.plan if self.plan.in_plan else AgentMode.build

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _outgoing_text(self, text: str) -> str:
        reminder = self.plan.consume_build_reminder()
        if reminder is not None:
            return f"{text}\n\n{reminder}"
        if self.plan.in_plan:
            return f"{text}\n\n{PLAN_MODE_REMINDER}"
        return text

    async def send_message(
        self, text: str, callbacks: AgentCallbacks | None = None
    ) -> AgentResult:
        """Run one agent invocation for a user message and extend the history.

        Raises SessionError(code="SESSION_BUSY") if a send is already in flight.
        Loop errors propagate; the history is left unchanged in that case.
        """
        if self._lock.locked():
            raise SessionError(
                f"Session {self.session_id} is already processing a message",
                code="SESSION_BUSY",
            )
        async with self._lock:
            mode = self.mode
            tools = self._registry.for_mode(mode)
            user = Message(role="user", content=self._outgoing_text(text))
            self._cancel_event = asyncio.Event()
            context = AgentContext(
                session_id=self.session_id,
                project_dir=self.project_dir,
                system_prompt=self._prompts.build(mode, tools),
                messages=[*self.history, user],
                tools=tools,
                config=self._config,
                cancel_event=self._cancel_event,
                callbacks=callbacks or AgentCallbacks(),
                context_manager=self._context_manager,
                existing_summary=self.summary,
                environment_id=self.environment_id,
                model_client_factory=self._model_client_factory,
                verifier=self._verifier,
            )
            logger.info("session_send", session_id=self.session_id, mode=mode.value)
            try:
                result = await run_tool_loop(context)
            finally:
                self._cancel_event = None

            self.history.extend([user, *result.new_messages])
            self.summary = result.new_summary
            if self.mode != mode:
                logger.info(
                    "session_mode_switched",
                    session_id=self.session_id,
                    old=mode.value,
                    new=self.mode.value,
                )
            return result

    def cancel(self) -> bool:
        """Signal the in-flight invocation to stop. False if nothing is running."""
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        logger.info("session_cancel_requested", session_id=self.session_id)
        return True
