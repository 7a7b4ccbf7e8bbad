from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from src.tools.base import AgentMode, BaseTool

if TYPE_CHECKING:
    from src.tools.context import ToolContext

logger = structlog.get_logger()

_DEFAULT_TIMEOUT_S = 120.0


class BashTool(BaseTool):
    """Run a shell command in the project root."""

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return (
            "Run a shell command with the project root as working directory. "
            "Returns combined stdout/stderr and the exit code."
        )

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        return frozenset({AgentMode.build})

    @property
    def timeout_s(self) -> float | None:
        return _DEFAULT_TIMEOUT_S

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
                "description": {
                    "type": "string",
                    "description": "Short description of what the command does.",
                },
            },
            "required": ["command"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> dict:
        command = arguments["command"]
        logger.info("bash_started", session_id=context.session_id, command=command)
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(context.project_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await proc.communicate()
        finally:
            # Timeout or cancellation cancels communicate(); don't leak the process.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        return {
            "exit_code": proc.returncode,
            "output": stdout.decode(errors="replace"),
        }
