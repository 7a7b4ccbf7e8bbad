from __future__ import annotations

from typing import TYPE_CHECKING

from src.agent.subagent import BUILTIN_SUBAGENTS, DEFAULT_SUBAGENT
from src.infra.errors import ToolError
from src.tools.base import BaseTool

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class TaskTool(BaseTool):
    """Delegation tool. The dispatcher routes calls to the subagent delegator."""

    @property
    def name(self) -> str:
        return "task"

    @property
    def description(self) -> str:
        agents = "\n".join(f"- {d.name}: {d.description}" for d in BUILTIN_SUBAGENTS)
        return (
            "Delegate a task to a subagent that runs independently with its own "
            "tools and returns a summary. Use it to explore without cluttering "
            "the main conversation or to run investigations in parallel.\n\n"
            f"Available subagents:\n{agents}"
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "description": {
                    "type": "string",
                    "description": "What the subagent should do. Be specific.",
                },
                "agent": {
                    "type": "string",
                    "enum": [d.name for d in BUILTIN_SUBAGENTS],
                    "description": f"Which subagent to use. Default: {DEFAULT_SUBAGENT}.",
                },
                "context": {
                    "type": "string",
                    "description": "Optional additional context for the subagent.",
                },
            },
            "required": ["description"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> str:
        raise ToolError("task must be dispatched through the subagent delegator")
