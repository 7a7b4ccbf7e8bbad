from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.tools.base import AgentMode, BaseTool

if TYPE_CHECKING:
    from src.agent.approval import PendingApprovalStore, PlanModeMachine
    from src.session.todos import TodoStore
    from src.tools.context import ToolContext

logger = structlog.get_logger()

NO_PLAN_ERROR = "No plan exists yet. Use todowrite to create a plan before calling plan_exit."

_BUILD_INSTRUCTIONS = (
    "Your operational mode has changed from plan to build. You may now modify "
    "files and run shell commands. Read the todo list with todoread and work "
    "through each task, updating its status as you go."
)

_REJECTED_MESSAGE = (
    "Plan NOT approved. Stay in plan mode and do not change any files. Update "
    "the todo list from the user's feedback with todowrite, then call plan_exit "
    "again when ready."
)


class PlanEnterTool(BaseTool):
    def __init__(self, plan: PlanModeMachine) -> None:
        self._plan = plan

    @property
    def name(self) -> str:
        return "plan_enter"

    @property
    def description(self) -> str:
        return (
            "Enter plan mode to research and write a plan before implementing. "
            "In plan mode: explore the code, ask questions, record the plan with "
            "todowrite, then call plan_exit."
        )

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        return frozenset({AgentMode.build})

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "reason": {"type": "string", "description": "Why entering plan mode."},
            },
            "required": [],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        self._plan.enter_plan()
        logger.info("plan_mode_entered", session_id=context.session_id)
        return {
            "mode": "plan",
            "entered": True,
            "reason": arguments.get("reason"),
            "message": "Entered plan mode. Write tools become unavailable from the "
            "next message. Create todos, then use plan_exit when ready to build.",
        }


class PlanExitTool(BaseTool):
    """Propose switching to build mode; blocks until the user approves or rejects."""

    def __init__(
        self, plan: PlanModeMachine, todos: TodoStore, approvals: PendingApprovalStore
    ) -> None:
        self._plan = plan
        self._todos = todos
        self._approvals = approvals

    @property
    def name(self) -> str:
        return "plan_exit"

    @property
    def description(self) -> str:
        return (
            "Propose leaving plan mode to start implementation. Call this only "
            "after the plan exists in the todo list. The user is asked to approve "
            "before the mode switches."
        )

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        return frozenset({AgentMode.plan})

    @property
    def timeout_s(self) -> float | None:
        return 0

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": "A 1-2 sentence summary of what you plan to build.",
                },
            },
            "required": ["summary"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        if not self._todos.get(context.session_id):
            return {"approved": False, "error": NO_PLAN_ERROR}

        self._plan.begin_exit()
        try:
            answer = await self._approvals.wait(context.environment_id)
        except BaseException:
            self._plan.abort_exit()
            raise

        if self._plan.complete_exit(answer):
            return {
                "approved": True,
                "mode_switch": "build",
                "summary": arguments["summary"],
                "message": "Plan approved. Switching to build mode.",
                "instructions": _BUILD_INSTRUCTIONS,
            }
        return {
            "approved": False,
            "mode_switch": None,
            "answer": answer,
            "message": _REJECTED_MESSAGE,
        }
