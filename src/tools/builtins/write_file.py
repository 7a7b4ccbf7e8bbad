from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.tools.base import AgentMode, BaseTool
from src.tools.builtins._paths import display_path, resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

logger = structlog.get_logger()


class WriteFileTool(BaseTool):
    """Create or overwrite a file inside the project."""

    @property
    def name(self) -> str:
        return "write"

    @property
    def description(self) -> str:
        return (
            "Write content to a file in the project, creating parent directories "
            "as needed. Overwrites any existing file."
        )

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        return frozenset({AgentMode.build})

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Target file path."},
                "content": {"type": "string", "description": "Full file content."},
            },
            "required": ["file_path", "content"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        target = resolve_in_project(arguments["file_path"], context.project_dir)
        content = arguments["content"]
        existed = target.exists()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info("file_written", path=str(target), chars=len(content))
        return {
            "success": True,
            "file_path": display_path(target, context.project_dir),
            "created": not existed,
            "size": len(content),
        }
