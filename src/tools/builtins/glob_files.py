from __future__ import annotations

from typing import TYPE_CHECKING

from src.tools.base import BaseTool
from src.tools.builtins._paths import IGNORED_DIRS, display_path, resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

_MAX_RESULTS = 200


class GlobTool(BaseTool):
    """Find files by glob pattern, newest first."""

    @property
    def name(self) -> str:
        return "glob"

    @property
    def description(self) -> str:
        return (
            "Find files matching a glob pattern such as '**/*.py'. "
            "Results are sorted by modification time, newest first."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern."},
                "path": {
                    "type": "string",
                    "description": "Directory to search from. Default: project root.",
                },
            },
            "required": ["pattern"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> str:
        base = resolve_in_project(arguments.get("path") or ".", context.project_dir)
        root = context.project_dir.resolve()
        matches = [
            p
            for p in base.glob(arguments["pattern"])
            if p.is_file()
            and not IGNORED_DIRS.intersection(p.relative_to(root).parts)
        ]
        matches.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        if not matches:
            return "No files found"
        lines = [display_path(p, context.project_dir) for p in matches[:_MAX_RESULTS]]
        if len(matches) > _MAX_RESULTS:
            lines.append(f"... {len(matches) - _MAX_RESULTS} more files")
        return "\n".join(lines)
