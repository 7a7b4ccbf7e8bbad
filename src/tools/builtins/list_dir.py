from __future__ import annotations

from typing import TYPE_CHECKING

from src.infra.errors import ToolError
from src.tools.base import BaseTool
from src.tools.builtins._paths import IGNORED_DIRS, resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

_MAX_ENTRIES = 500


class ListDirTool(BaseTool):
    @property
    def name(self) -> str:
        return "ls"

    @property
    def description(self) -> str:
        return "List a directory in the project. Directories are suffixed with '/'."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list. Default: project root.",
                },
            },
            "required": [],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> str:
        raw_path = arguments.get("path") or "."
        target = resolve_in_project(raw_path, context.project_dir)
        if not target.is_dir():
            raise ToolError(f"Not a directory: {raw_path}", code="NOT_A_DIRECTORY")

        entries = sorted(
            (p for p in target.iterdir() if p.name not in IGNORED_DIRS),
            key=lambda p: (not p.is_dir(), p.name),
        )
        lines = [f"{p.name}/" if p.is_dir() else p.name for p in entries[:_MAX_ENTRIES]]
        if len(entries) > _MAX_ENTRIES:
            lines.append(f"... {len(entries) - _MAX_ENTRIES} more entries")
        return "\n".join(lines) if lines else "(empty directory)"
