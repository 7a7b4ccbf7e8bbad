from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.tools.context import ToolContext


class AgentMode(StrEnum):
    """Operational mode of a coding session.

    plan: read-only analysis. build: full read-write execution.
    """

    plan = "plan"
    build = "build"


class BaseTool(ABC):
    """Abstract base class for agent tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name used in function calling."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what the tool does."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema describing the tool's input parameters."""
        ...

    @property
    def allowed_modes(self) -> frozenset[AgentMode]:
        """Modes in which this tool is offered. Default: both."""
        return frozenset({AgentMode.plan, AgentMode.build})

    @property
    def timeout_s(self) -> float | None:
        """Execution timeout. None = use AgentSettings.tool_timeout_s, 0 = unbounded."""
        return None

    @property
    def max_result_size(self) -> int | None:
        """Result truncation limit in characters. None = AgentSettings default."""
        return None

    @abstractmethod
    async def execute(self, arguments: dict, context: ToolContext) -> str | dict:
        """Execute the tool with parsed arguments and the runtime context.

        Dict results are JSON-encoded by the executor. Raising marks the call
        as failed; the failure is reported back to the model, never propagated.
        """
        ...
