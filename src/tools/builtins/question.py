from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.base import BaseTool

if TYPE_CHECKING:
    from src.agent.approval import PendingApprovalStore
    from src.tools.context import ToolContext


class QuestionTool(BaseTool):
    """Ask the user a question and block until the host supplies the answer."""

    def __init__(self, approvals: PendingApprovalStore) -> None:
        self._approvals = approvals

    @property
    def name(self) -> str:
        return "question"

    @property
    def description(self) -> str:
        return (
            "Ask the user a question when you need clarification or a choice "
            "between options. Blocks until the user answers. Do NOT use this for "
            "plan approval; plan_exit has its own approval flow."
        )

    @property
    def timeout_s(self) -> float | None:
        return 0

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "The question to ask."},
                "options": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Choices to offer the user.",
                },
            },
            "required": ["question"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        answer = await self._approvals.wait(context.environment_id)
        return {
            "answer": answer,
            "question": arguments["question"],
            "options": arguments.get("options"),
        }
