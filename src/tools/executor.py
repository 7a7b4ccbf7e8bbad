"""Tool execution: argument parsing, schema validation, timeout, retry, result formatting."""

from __future__ import annotations

import asyncio
import errno
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from jsonschema import Draft7Validator

from src.infra.errors import ToolError, ToolTimeoutError

if TYPE_CHECKING:
    from src.tools.base import BaseTool
    from src.tools.context import ToolContext

logger = structlog.get_logger()

T = TypeVar("T")

# errno values of failures that usually clear on their own
_TRANSIENT_ERRNOS = frozenset(
    {
        errno.ENOENT,
        errno.EACCES,
        errno.EBUSY,
        errno.ETIMEDOUT,
        errno.ECONNRESET,
        errno.ECONNREFUSED,
    }
)
_MAX_RETRY_DELAY_S = 5.0


@dataclass
class ToolOutcome:
    success: bool
    result: str


def error_result(message: str, **extra: Any) -> str:
    """Structured error payload fed back to the model so it can self-correct."""
    return json.dumps({"error": True, "message": message, **extra})


def parse_tool_arguments(raw: str | None) -> dict:
    """Parse a JSON argument payload. Empty payload parses as {}.

    Raises ToolError(code="INVALID_ARGS") on malformed JSON or a non-object value.
    """
    try:
        parsed = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError) as e:
        raise ToolError(f"Invalid JSON arguments: {e}", code="INVALID_ARGS") from e
    if not isinstance(parsed, dict):
        raise ToolError(
            f"Expected dict arguments, got {type(parsed).__name__}", code="INVALID_ARGS"
        )
    return parsed


def validate_arguments(parameters: dict, arguments: dict) -> list[dict[str, str]]:
    """Validate arguments against the tool's JSON schema. Returns a list of errors.

    Null values are treated as omitted: models often send null for optional fields.
    """
    present = {key: value for key, value in arguments.items() if value is not None}
    validator = Draft7Validator(parameters)
    errors = sorted(validator.iter_errors(present), key=lambda item: list(map(str, item.path)))
    return [
        {
            "path": ".".join(str(segment) for segment in error.path) or "$",
            "message": error.message,
        }
        for error in errors
    ]


def is_transient(exc: BaseException) -> bool:
    """Timeouts, dropped connections and busy or briefly missing files."""
    if isinstance(exc, ToolTimeoutError):
        return True
    if isinstance(exc, ToolError):
        return False
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    return isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS


def truncate_result(text: str, max_size: int) -> str:
    if len(text) <= max_size:
        return text
    omitted = len(text) - max_size
    return f"{text[:max_size]}\n\n[... truncated {omitted} characters]"


async def _retry_transient(
    attempt: Callable[[], Awaitable[T]],
    *,
    tool_name: str,
    max_retries: int,
    base_delay: float,
) -> T:
    """Run attempt, retrying transient failures with exponential backoff."""
    for n in range(max_retries + 1):
        try:
            return await attempt()
        except Exception as e:
            if n == max_retries or not is_transient(e):
                raise
            delay = min(base_delay * (2**n), _MAX_RETRY_DELAY_S)
            logger.warning(
                "tool_retry",
                tool_name=tool_name,
                attempt=n + 1,
                max_retries=max_retries,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
    # Unreachable, but satisfies type checker
    raise RuntimeError("Retry loop exhausted")  # pragma: no cover


async def execute_tool(
    tool: BaseTool,
    arguments: dict,
    context: ToolContext,
    *,
    default_timeout_s: float,
    default_max_result_size: int,
    max_retries: int = 2,
    base_delay: float = 0.1,
) -> ToolOutcome:
    """Execute a tool with validation, timeout, transient-error retry and truncation.

    Each attempt runs under the timeout; transient failures (see is_transient)
    are retried up to max_retries times with exponential backoff.
    Never raises for tool-level failures: they come back as ToolOutcome(success=False)
    with a structured error payload.
    """
    errors = validate_arguments(tool.parameters, arguments)
    if errors:
        return ToolOutcome(
            success=False,
            result=json.dumps(
                {
                    "error": True,
                    "type": "validation_error",
                    "tool_name": tool.name,
                    "errors": errors,
                    "suggestion": "Check the tool parameters and ensure they "
                    "match the expected schema.",
                }
            ),
        )

    timeout_s = tool.timeout_s if tool.timeout_s is not None else default_timeout_s
    max_size = (
        tool.max_result_size
        if tool.max_result_size is not None
        else default_max_result_size
    )

    async def _attempt() -> Any:
        if not timeout_s:
            return await tool.execute(arguments, context)
        try:
            return await asyncio.wait_for(tool.execute(arguments, context), timeout_s)
        except TimeoutError as e:
            raise ToolTimeoutError(tool.name, timeout_s) from e

    try:
        raw = await _retry_transient(
            _attempt, tool_name=tool.name, max_retries=max_retries, base_delay=base_delay
        )
    except ToolError as e:
        logger.warning("tool_execution_error", tool_name=tool.name, code=e.code, error=str(e))
        return ToolOutcome(
            success=False,
            result=error_result(str(e), code=e.code, tool_name=tool.name),
        )
    except Exception as e:
        logger.exception("tool_execution_failed", tool_name=tool.name)
        return ToolOutcome(
            success=False,
            result=error_result(f"Tool {tool.name} failed: {e}", tool_name=tool.name),
        )

    text = raw if isinstance(raw, str) else json.dumps(raw)
    logger.info("tool_executed", tool_name=tool.name, chars=len(text))
    return ToolOutcome(success=True, result=truncate_result(text, max_size))
