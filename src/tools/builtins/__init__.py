from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.builtins.bash import BashTool
from src.tools.builtins.edit_file import EditFileTool
from src.tools.builtins.glob_files import GlobTool
from src.tools.builtins.grep import GrepTool
from src.tools.builtins.list_dir import ListDirTool
from src.tools.builtins.plan_mode import PlanEnterTool, PlanExitTool
from src.tools.builtins.question import QuestionTool
from src.tools.builtins.read_file import ReadFileTool
from src.tools.builtins.task import TaskTool
from src.tools.builtins.todo import TodoReadTool, TodoWriteTool
from src.tools.builtins.write_file import WriteFileTool

if TYPE_CHECKING:
    from src.agent.approval import PendingApprovalStore, PlanModeMachine
    from src.session.todos import TodoStore
    from src.tools.registry import ToolRegistry


def register_builtins(
    registry: ToolRegistry,
    *,
    todos: TodoStore,
    approvals: PendingApprovalStore,
    plan: PlanModeMachine,
) -> None:
    """Register all built-in tools with the registry.

    File and shell tools take the project root from the ToolContext at call
    time; the session-scoped tools are bound to the given stores.
    """
    registry.register(ReadFileTool())
    registry.register(WriteFileTool())
    registry.register(EditFileTool())
    registry.register(ListDirTool())
    registry.register(GlobTool())
    registry.register(GrepTool())
    registry.register(BashTool())
    registry.register(TodoReadTool(todos))
    registry.register(TodoWriteTool(todos))
    registry.register(QuestionTool(approvals))
    registry.register(PlanEnterTool(plan))
    registry.register(PlanExitTool(plan, todos, approvals))
    registry.register(TaskTool())
