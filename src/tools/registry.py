from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.tools.base import AgentMode, BaseTool

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for agent tools. Provides lookup, subsetting and schema export.

    A registry handed to the agent loop is treated as immutable for the
    duration of that invocation; derive a new one with subset()/for_mode().
    """

    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Raises ValueError if name already registered."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> BaseTool | None:
        """Get a tool by name. Returns None if not found."""
        return self._tools.get(name)

    def list_tools(self) -> list[BaseTool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        """New registry holding only the named tools that exist here."""
        return ToolRegistry(self._tools[n] for n in names if n in self._tools)

    def for_mode(self, mode: AgentMode) -> ToolRegistry:
        """New registry holding the tools offered in the given mode."""
        return ToolRegistry(t for t in self._tools.values() if mode in t.allowed_modes)

    def get_tools_schema(self) -> list[dict]:
        """Return neutral tool schemas; provider adapters convert them to wire format.

        Output format:
        [{"name": ..., "description": ..., "parameters": ...}]
        """
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            }
            for tool in self._tools.values()
        ]
