"""Parallel tool dispatch: every tool call of one turn runs concurrently.

Each call settles to exactly one tool-role message matched by call id.
Tool-level failures (unknown tool, bad arguments, hook veto, executor error)
become structured error results; nothing here raises to the loop except
cancellation.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from src.agent.context import ToolInfo
from src.agent.messages import Message, ToolCall, tool_message
from src.agent.subagent import run_task
from src.agent.verification import EDIT_TOOL_NAMES
from src.infra.errors import AgentCancelledError, ToolError
from src.tools.context import ToolContext
from src.tools.executor import error_result, execute_tool, parse_tool_arguments

if TYPE_CHECKING:
    from src.agent.context import AgentContext

logger = structlog.get_logger()

DELEGATION_TOOL_NAME = "task"


def _edited_path(arguments: dict) -> str | None:
    return arguments.get("file_path") or arguments.get("path")


def _edited_content(tool_name: str, arguments: dict) -> str | None:
    if tool_name == "write":
        return arguments.get("content")
    if tool_name == "edit":
        return arguments.get("new_string")
    return None


async def _verify(tool_name: str, arguments: dict, context: AgentContext) -> str | None:
    path = _edited_path(arguments)
    if context.verifier is None or not path:
        return None
    try:
        return await context.verifier.advisory(path, _edited_content(tool_name, arguments))
    except Exception:
        logger.exception("edit_verification_failed", tool_name=tool_name, path=path)
        return None


async def _run_call(call: ToolCall, context: AgentContext, depth: int) -> str:
    tool = context.tools.get(call.name)
    if tool is None:
        logger.warning("unknown_tool", tool_name=call.name, call_id=call.id)
        return error_result(f"Tool not found: {call.name}")

    try:
        arguments = parse_tool_arguments(call.arguments)
    except ToolError as e:
        logger.warning("tool_args_parse_failed", tool_name=call.name, call_id=call.id)
        return error_result(str(e), tool_name=call.name)

    hooks = context.config.hooks
    info = ToolInfo(name=tool.name, description=tool.description)
    hook_ctx = context.hook_context(depth)

    if hooks.before_tool_execution is not None:
        try:
            rewritten = await hooks.before_tool_execution(info, arguments, hook_ctx)
        except Exception as e:
            logger.info("tool_blocked", tool_name=call.name, call_id=call.id, reason=str(e))
            return error_result(f"Tool blocked: {e}")
        if rewritten is not None:
            arguments = rewritten

    error: Exception | None = None
    if tool.name == DELEGATION_TOOL_NAME:
        result = await run_task(arguments, context)
    else:
        outcome = await execute_tool(
            tool,
            arguments,
            ToolContext(
                session_id=context.session_id,
                project_dir=context.project_dir,
                environment_id=context.environment_id or context.session_id,
                cancel_event=context.cancel_event,
            ),
            default_timeout_s=context.config.agent.tool_timeout_s,
            default_max_result_size=context.config.agent.max_tool_result_size,
            max_retries=context.config.agent.tool_max_retries,
        )
        result = outcome.result
        if not outcome.success:
            error = ToolError(result)
        elif tool.name in EDIT_TOOL_NAMES:
            advisory = await _verify(tool.name, arguments, context)
            if advisory:
                result = f"{result}\n\n{advisory}"

    if hooks.after_tool_execution is not None:
        try:
            await hooks.after_tool_execution(info, arguments, result, error, hook_ctx)
        except Exception:
            logger.exception("after_tool_hook_failed", tool_name=call.name, call_id=call.id)

    return result


async def _dispatch_one(call: ToolCall, context: AgentContext, depth: int) -> Message:
    try:
        result = await _run_call(call, context, depth)
    except AgentCancelledError:
        result = error_result("Tool call cancelled", tool_name=call.name)
    except Exception as e:
        logger.exception("tool_dispatch_failed", tool_name=call.name, call_id=call.id)
        result = error_result(f"Tool {call.name} failed: {e}")
    context.callbacks.emit("on_tool_call_complete", call, result)
    return tool_message(call.id, result)


async def dispatch_tool_calls(
    tool_calls: list[ToolCall], context: AgentContext, depth: int = 0
) -> list[Message]:
    """Run all calls concurrently; return one tool message per call, in call order."""
    logger.info(
        "tool_dispatch",
        session_id=context.session_id,
        depth=depth,
        tools=[tc.name for tc in tool_calls],
    )
    return list(
        await asyncio.gather(*(_dispatch_one(tc, context, depth) for tc in tool_calls))
    )
