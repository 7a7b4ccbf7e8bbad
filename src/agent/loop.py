"""The tool loop: model turn, parallel tool dispatch, continuation, repeat.

Runs as an explicit iterative loop bounded by AgentSettings.max_depth. Each
iteration works on a shallow copy of the AgentContext carrying the next
turn's messages and continuation id.

Exactly one of these ends an invocation: a returned AgentResult, or one
raised error (MaxDepthError, AgentCancelledError, LLMError).
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

import structlog

from src.agent.continuation import ContinuationPolicy, build_next_turn
from src.agent.dispatcher import dispatch_tool_calls
from src.agent.events import StreamDone, StreamError
from src.agent.messages import (
    AgentResult,
    Message,
    SummaryState,
    TokenTotals,
    TokenUsage,
)
from src.agent.model_client import ProviderRequest
from src.agent.stream import StreamAccumulator, handle_event
from src.infra.errors import AgentCancelledError, LLMError, MaxDepthError

if TYPE_CHECKING:
    from src.agent.context import AgentContext

logger = structlog.get_logger()


async def _call_hook(name: str, hook: Callable[..., Awaitable[Any]] | None, *args: Any) -> None:
    if hook is None:
        return
    try:
        await hook(*args)
    except Exception:
        logger.exception("hook_failed", hook=name)


async def _manage_context(
    context: AgentContext,
) -> tuple[list[Message], str, SummaryState | None]:
    """Run the context manager; its failures fall back to the unmodified inputs.

    Skipped while continuing statefully: the endpoint holds the history and
    the request carries only the new tool results.
    """
    if context.context_manager is None or context.previous_response_id:
        return context.messages, context.system_prompt, context.existing_summary
    try:
        managed = await context.context_manager.manage(
            context.messages, context.system_prompt, context.existing_summary
        )
    except Exception:
        logger.exception("context_management_failed", session_id=context.session_id)
        return context.messages, context.system_prompt, context.existing_summary
    return managed.messages, managed.system_prompt, managed.new_summary


def _cancelled(context: AgentContext, depth: int) -> AgentCancelledError:
    logger.info("agent_cancelled", session_id=context.session_id, depth=depth)
    context.callbacks.emit("on_status_change", "cancelled")
    return AgentCancelledError()


async def _stream_turn(
    context: AgentContext, request: ProviderRequest, depth: int
) -> StreamAccumulator:
    acc = StreamAccumulator()
    client = context.get_model_client()
    try:
        async with aclosing(client.stream(request)) as events:
            async for event in events:
                if context.cancelled:
                    raise _cancelled(context, depth)
                if isinstance(event, StreamError):
                    raise LLMError(f"LLM stream error: {event.message}")
                if isinstance(event, StreamDone):
                    break
                handle_event(event, acc, context.callbacks)
    except (AgentCancelledError, LLMError) as e:
        if isinstance(e, LLMError):
            logger.error("llm_stream_error", session_id=context.session_id, error=str(e))
            context.callbacks.emit("on_error", e)
            context.callbacks.emit("on_status_change", "error")
        raise
    except Exception as e:
        err = LLMError(f"LLM stream failed: {e}")
        logger.exception("llm_stream_failed", session_id=context.session_id)
        context.callbacks.emit("on_error", err)
        context.callbacks.emit("on_status_change", "error")
        raise err from e
    return acc


async def run_tool_loop(
    context: AgentContext,
    depth: int = 0,
    tokens: TokenTotals | None = None,
) -> AgentResult:
    """Drive the model until it answers without requesting tools.

    Raises MaxDepthError once depth reaches the configured ceiling (before any
    provider call), AgentCancelledError when the cancel event is observed, and
    LLMError on provider stream failure.
    """
    totals = tokens or TokenTotals()
    policy = ContinuationPolicy(context.config.provider, context.config.continuation)
    hooks = context.config.hooks
    callbacks = context.callbacks
    max_depth = context.config.agent.max_depth
    # Everything produced by this invocation, in order.
    transcript: list[Message] = []
    # Full conversation for replay, independent of what the last request carried.
    full_history = list(context.messages)

    while True:
        if context.cancelled:
            raise _cancelled(context, depth)
        if depth >= max_depth:
            err = MaxDepthError(depth, max_depth)
            logger.error(
                "max_depth_exceeded", session_id=context.session_id, depth=depth, max_depth=max_depth
            )
            callbacks.emit("on_error", err)
            callbacks.emit("on_status_change", "error")
            raise err

        messages, system_prompt, summary = await _manage_context(context)
        hook_ctx = context.hook_context(depth)
        await _call_hook("before_llm_call", hooks.before_llm_call, hook_ctx)

        request = ProviderRequest(
            system_prompt=system_prompt,
            messages=messages,
            tools=context.tools.get_tools_schema(),
            previous_response_id=context.previous_response_id,
            prompt_cache_key=context.session_id,
            temperature=context.config.provider.temperature,
        )
        callbacks.emit("on_status_change", "thinking")
        logger.info(
            "llm_request",
            session_id=context.session_id,
            agent_id=context.agent_id,
            depth=depth,
            messages=len(messages),
            continuation=bool(context.previous_response_id),
        )
        acc = await _stream_turn(context, request, depth)
        totals = totals.plus(acc.input_tokens, acc.output_tokens)

        valid_calls = acc.valid_tool_calls()
        assistant = Message(
            role="assistant",
            content=acc.content,
            reasoning=acc.reasoning or None,
            reasoning_id=acc.reasoning_id,
            tool_calls=list(valid_calls) or None,
            usage=TokenUsage(input_tokens=acc.input_tokens, output_tokens=acc.output_tokens),
        )
        await _call_hook("after_llm_call", hooks.after_llm_call, hook_ctx, assistant)
        callbacks.emit("on_step_complete", depth, assistant)

        if not valid_calls:
            transcript.append(assistant)
            result = AgentResult(
                content=acc.content,
                reasoning=acc.reasoning or None,
                input_tokens=totals.input,
                output_tokens=totals.output,
                last_input_tokens=acc.input_tokens,
                new_summary=summary,
                new_messages=transcript,
            )
            await _call_hook("on_complete", hooks.on_complete, result, hook_ctx)
            callbacks.emit("on_status_change", "completed")
            logger.info(
                "agent_completed",
                session_id=context.session_id,
                agent_id=context.agent_id,
                depth=depth,
                input_tokens=totals.input,
                output_tokens=totals.output,
            )
            return result

        callbacks.emit("on_status_change", "tool_execution")
        tool_results = await dispatch_tool_calls(valid_calls, context, depth)
        if context.cancelled:
            raise _cancelled(context, depth)

        mode = policy.decide(acc.response_id)
        next_turn = build_next_turn(
            mode,
            history=full_history,
            content=acc.content,
            reasoning=acc.reasoning,
            reasoning_id=acc.reasoning_id,
            tool_calls=valid_calls,
            tool_results=tool_results,
            response_id=acc.response_id,
        )
        transcript.extend([assistant, *tool_results])
        full_history.extend([assistant, *tool_results])
        logger.info(
            "continuation_decided",
            session_id=context.session_id,
            depth=depth,
            mode=mode.value,
            next_messages=len(next_turn.messages),
        )
        callbacks.emit("on_loop_iteration", depth, valid_calls)

        context = dataclasses.replace(
            context,
            messages=next_turn.messages,
            previous_response_id=next_turn.previous_response_id,
            existing_summary=summary,
        )
        depth += 1
