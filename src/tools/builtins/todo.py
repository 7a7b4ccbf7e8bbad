from __future__ import annotations

from typing import TYPE_CHECKING

from src.infra.errors import ToolError
from src.tools.base import BaseTool

if TYPE_CHECKING:
    from src.session.todos import TodoStore
    from src.tools.context import ToolContext


class TodoReadTool(BaseTool):
    def __init__(self, store: TodoStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return "todoread"

    @property
    def description(self) -> str:
        return (
            "Read the current todo list for this session: id, content, status "
            "(pending, in_progress, completed) and priority."
        )

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        todos = self._store.get(context.session_id)
        result: dict = {
            "todos": [t.to_dict() for t in todos],
            "counts": self._store.counts(context.session_id),
        }
        if not todos:
            result["message"] = "No todos defined yet. Use todowrite to create a plan."
        return result


class TodoWriteTool(BaseTool):
    """Replace the session's todo list. The list is the plan plan_exit proposes."""

    def __init__(self, store: TodoStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return "todowrite"

    @property
    def description(self) -> str:
        return (
            "Create or update the todo list for this session. This REPLACES the "
            "entire list; include every task each time. Only one task may be "
            "in_progress at a time."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "todos": {
                    "type": "array",
                    "description": "Complete list of todos to set.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "content": {"type": "string", "description": "Task description."},
                            "status": {
                                "type": "string",
                                "enum": ["pending", "in_progress", "completed"],
                            },
                            "priority": {"type": "string", "enum": ["low", "medium", "high"]},
                        },
                        "required": ["content"],
                    },
                },
            },
            "required": ["todos"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        items = arguments["todos"]
        if any(not isinstance(t, dict) or not t.get("content") for t in items):
            raise ToolError("Every todo needs a non-empty content", code="INVALID_ARGS")
        in_progress = sum(1 for t in items if t.get("status") == "in_progress")
        if in_progress > 1:
            raise ToolError("Only one task can be in_progress at a time", code="INVALID_ARGS")

        todos = self._store.replace(context.session_id, items)
        return {
            "success": True,
            "todos": [t.to_dict() for t in todos],
            "counts": self._store.counts(context.session_id),
            "message": f"Updated {len(todos)} todos",
        }
