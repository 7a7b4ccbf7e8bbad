from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.infra.errors import ToolError
from src.tools.base import AgentMode, BaseTool
from src.tools.builtins._paths import display_path, resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

logger = structlog.get_logger()


class EditFileTool(BaseTool):
    """Exact string replacement inside one file."""

    @property
    def name(self) -> str:
        return "edit"

    @property
    def description(self) -> str:
        return (
            "Replace old_string with new_string in a file. old_string must match "
            "exactly and be unique unless replace_all is true."
        )

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        return frozenset({AgentMode.build})

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File to edit."},
                "old_string": {"type": "string", "description": "Exact text to replace."},
                "new_string": {"type": "string", "description": "Replacement text."},
                "replace_all": {
                    "type": "boolean",
                    "description": "Replace every occurrence. Default: false.",
                },
            },
            "required": ["file_path", "old_string", "new_string"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        raw_path = arguments["file_path"]
        old, new = arguments["old_string"], arguments["new_string"]
        if old == new:
            raise ToolError("old_string and new_string are identical", code="INVALID_ARGS")

        target = resolve_in_project(raw_path, context.project_dir)
        if not target.is_file():
            raise ToolError(f"File not found: {raw_path}", code="FILE_NOT_FOUND")

        text = target.read_text(encoding="utf-8")
        count = text.count(old)
        if count == 0:
            raise ToolError(f"old_string not found in {raw_path}", code="NO_MATCH")
        if count > 1 and not arguments.get("replace_all"):
            raise ToolError(
                f"old_string occurs {count} times in {raw_path}; "
                "add surrounding context or set replace_all",
                code="AMBIGUOUS_MATCH",
            )

        updated = text.replace(old, new) if arguments.get("replace_all") else text.replace(old, new, 1)
        target.write_text(updated, encoding="utf-8")
        replaced = count if arguments.get("replace_all") else 1
        logger.info("file_edited", path=str(target), replacements=replaced)
        return {
            "success": True,
            "file_path": display_path(target, context.project_dir),
            "replacements": replaced,
        }
