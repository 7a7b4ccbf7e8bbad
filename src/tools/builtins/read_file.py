from __future__ import annotations

from typing import TYPE_CHECKING

from src.infra.errors import ToolError
from src.tools.base import BaseTool
from src.tools.builtins._paths import resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

_DEFAULT_LIMIT = 2000
_MAX_LINE_CHARS = 2000


class ReadFileTool(BaseTool):
    """Read a file inside the project with line numbers."""

    @property
    def name(self) -> str:
        return "read"

    @property
    def description(self) -> str:
        return (
            "Read a text file in the project. Output lines are prefixed with their "
            "1-based line number. Use offset/limit to page through large files."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Path relative to the project root, or absolute inside it.",
                },
                "offset": {
                    "type": "integer",
                    "description": "1-based line to start from. Default: 1.",
                },
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of lines. Default: {_DEFAULT_LIMIT}.",
                },
            },
            "required": ["file_path"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> str:
        raw_path = arguments["file_path"]
        target = resolve_in_project(raw_path, context.project_dir)
        if not target.is_file():
            raise ToolError(f"File not found: {raw_path}", code="FILE_NOT_FOUND")

        try:
            text = target.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ToolError(f"Not a UTF-8 text file: {raw_path}", code="READ_ERROR") from e

        lines = text.splitlines()
        offset = max(1, arguments.get("offset") or 1)
        limit = arguments.get("limit") or _DEFAULT_LIMIT
        window = lines[offset - 1 : offset - 1 + limit]
        if not window:
            return f"(no lines at offset {offset}; file has {len(lines)} lines)"

        out = [
            f"{n:>6}\t{line[:_MAX_LINE_CHARS]}"
            for n, line in enumerate(window, start=offset)
        ]
        end = offset + len(window) - 1
        if end < len(lines):
            out.append(f"\n(showing lines {offset}-{end} of {len(lines)})")
        return "\n".join(out)
