from __future__ import annotations

import platform
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from src.tools.base import AgentMode

if TYPE_CHECKING:
    from src.tools.registry import ToolRegistry

logger = structlog.get_logger()

# Project instruction files loaded every turn (first match wins)
PROJECT_CONTEXT_FILES = ["AGENTS.md", "CLAUDE.md", "CONTRIBUTING.md"]
_MAX_CONTEXT_FILE_CHARS = 20_000


class PromptBuilder:
    """Assembles the system prompt from layers.

    Layers:
    1. Base identity
    2. Mode (plan: read-only analysis, build: full execution)
    3. Tooling (tool descriptions from the mode's registry)
    4. Environment (project root, platform, date)
    5. Project instructions (first of PROJECT_CONTEXT_FILES found)
    """

    def __init__(self, project_dir: Path) -> None:
        self._project_dir = project_dir

    def build(self, mode: AgentMode, tools: ToolRegistry) -> str:
        layers = [
            self._layer_identity(),
            self._layer_mode(mode),
            self._layer_tooling(tools),
            self._layer_environment(),
            self._layer_project(),
        ]
        return "\n\n".join(layer for layer in layers if layer)

    def _layer_identity(self) -> str:
        return (
            "You are a coding agent working inside the user's project. Use the "
            "available tools to inspect and change the code, verify your work, "
            "and answer concisely once the task is done."
        )

    def _layer_mode(self, mode: AgentMode) -> str:
        if mode == AgentMode.plan:
            return (
                "## Mode: PLAN\n"
                "Analyse only. Do not modify files or run state-changing commands. "
                "Record the plan with todowrite and call plan_exit for approval."
            )
        return (
            "## Mode: BUILD\n"
            "You may read, write and edit files and run shell commands. Keep the "
            "todo list current while you work."
        )

    def _layer_tooling(self, tools: ToolRegistry) -> str:
        if not len(tools):
            return ""
        lines = ["## Available Tools"]
        lines.extend(f"- **{t.name}**: {t.description.splitlines()[0]}" for t in tools.list_tools())
        return "\n".join(lines)

    def _layer_environment(self) -> str:
        now = datetime.now(UTC)
        return (
            "## Environment\n"
            f"Project root: {self._project_dir.resolve()}\n"
            f"Platform: {platform.system().lower()}\n"
            f"Date: {now.strftime('%Y-%m-%d')}"
        )

    def _layer_project(self) -> str:
        for filename in PROJECT_CONTEXT_FILES:
            path = self._project_dir / filename
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8").strip()
            except (OSError, UnicodeDecodeError):
                logger.warning("project_context_unreadable", file=filename)
                continue
            if content:
                return f"## Project Instructions ({filename})\n{content[:_MAX_CONTEXT_FILE_CHARS]}"
        return ""
