"""Custom exception hierarchy for Stratus.

All application-specific exceptions inherit from StratusError,
which carries an error code for RPC error frame mapping.
"""

from __future__ import annotations


class StratusError(Exception):
    """Base exception for all Stratus errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class GatewayError(StratusError):
    """Errors in the Gateway / WebSocket layer."""

    def __init__(self, message: str, *, code: str = "GATEWAY_ERROR") -> None:
        super().__init__(message, code=code)


class SessionError(StratusError):
    """Errors in coding session management."""

    def __init__(self, message: str, *, code: str = "SESSION_ERROR") -> None:
        super().__init__(message, code=code)


class AgentError(StratusError):
    """Errors in the Agent runtime."""

    def __init__(self, message: str, *, code: str = "AGENT_ERROR") -> None:
        super().__init__(message, code=code)


class LLMError(AgentError):
    """Errors from LLM API calls (timeouts, rate limits, stream error events)."""

    def __init__(self, message: str, *, code: str = "LLM_ERROR") -> None:
        super().__init__(message, code=code)


class MaxDepthError(AgentError):
    """The tool loop reached its depth ceiling. Fatal, no partial result."""

    def __init__(self, depth: int, max_depth: int) -> None:
        super().__init__(
            f"Tool loop exceeded max depth of {max_depth}", code="MAX_DEPTH_EXCEEDED"
        )
        self.depth = depth
        self.max_depth = max_depth


class AgentCancelledError(AgentError):
    """The invocation's cancellation event was set. A clean unwind, not a failure."""

    def __init__(self, message: str = "Agent run was cancelled") -> None:
        super().__init__(message, code="ABORTED")


class ToolError(AgentError):
    """Errors during tool execution."""

    def __init__(self, message: str, *, code: str = "TOOL_ERROR") -> None:
        super().__init__(message, code=code)


class ToolBlockedError(ToolError):
    """Raised by a before-tool hook to veto a call."""

    def __init__(self, message: str = "Blocked by hook") -> None:
        super().__init__(message, code="TOOL_BLOCKED")


class ToolTimeoutError(ToolError):
    """A tool executor exceeded its timeout."""

    def __init__(self, tool_name: str, timeout_s: float) -> None:
        super().__init__(
            f'Tool "{tool_name}" timed out after {timeout_s:g}s', code="TOOL_TIMEOUT"
        )
        self.tool_name = tool_name
        self.timeout_s = timeout_s


class ApprovalPendingError(ToolError):
    """A second wait was requested for a key that already has a live entry."""

    def __init__(self, key: str) -> None:
        super().__init__(
            f"An approval is already pending for '{key}'", code="APPROVAL_PENDING"
        )
        self.key = key
