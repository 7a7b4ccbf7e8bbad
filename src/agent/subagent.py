"""Subagent delegation: run a bounded sub-task in an isolated child loop.

A child gets its own session id, history, filtered tool registry and depth
ceiling. It shares the parent's cancellation event, so cancelling the
parent cancels every descendant.
"""

from __future__ import annotations

import dataclasses
import json
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from src.agent.context import AgentCallbacks, AgentContext
from src.agent.messages import Message
from src.infra.errors import AgentCancelledError

if TYPE_CHECKING:
    from src.agent.messages import AgentResult

logger = structlog.get_logger()

# Marker appended to the session id for every delegation level.
DELEGATION_MARKER = ":task:"
DEFAULT_SUBAGENT = "explore"


@dataclass(frozen=True)
class SubagentDefinition:
    name: str
    description: str
    system_prompt: str
    tool_names: tuple[str, ...]
    max_depth: int
    temperature: float


@dataclass
class SubagentResult:
    agent: str
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None


_EXPLORE_PROMPT = """\
You are an exploration agent focused on quickly understanding codebases.

Your capabilities:
- Read files and directories using the read and ls tools
- Search code with grep
- Use glob patterns to find files

Your constraints:
- You CANNOT modify files
- You CANNOT run shell commands
- Focus on gathering information quickly
- Summarize your findings concisely

When given a task:
1. Understand what information is needed
2. Use the most efficient tools to find it
3. Return a clear, structured summary"""

_GENERAL_PROMPT = """\
You are a general-purpose coding agent that can perform complex tasks.

Your capabilities:
- Read and write files
- Run shell commands
- Search and navigate code
- Make targeted edits

Your constraints:
- Be careful with destructive operations
- Keep your work focused on the assigned task

When given a task:
1. Understand the requirements
2. Plan your approach
3. Execute efficiently
4. Report your results"""

_RESEARCH_PROMPT = """\
You are a research agent focused on gathering information from the project's
code and documentation.

Your capabilities:
- Read files and documentation
- List directories
- Search text with grep

Your constraints:
- Cite the files you drew from
- Summarize concisely

When given a task:
1. Identify what information is needed
2. Locate the relevant sources
3. Extract key information
4. Return a well-organized summary with file references"""

BUILTIN_SUBAGENTS: tuple[SubagentDefinition, ...] = (
    SubagentDefinition(
        name="explore",
        description="Fast codebase exploration agent. Read-only access for finding "
        "files, searching code, and understanding project structure.",
        system_prompt=_EXPLORE_PROMPT,
        tool_names=("read", "ls", "grep", "glob"),
        max_depth=5,
        temperature=0.3,
    ),
    SubagentDefinition(
        name="general",
        description="General-purpose subagent for complex tasks. Can read, write, "
        "and execute commands.",
        system_prompt=_GENERAL_PROMPT,
        tool_names=("read", "write", "edit", "ls", "grep", "glob", "bash"),
        max_depth=8,
        temperature=0.5,
    ),
    SubagentDefinition(
        name="research",
        description="Research agent for gathering information from project files "
        "and documentation.",
        system_prompt=_RESEARCH_PROMPT,
        tool_names=("read", "ls", "grep"),
        max_depth=3,
        temperature=0.4,
    ),
)


def get_subagent_definition(name: str) -> SubagentDefinition | None:
    return next((d for d in BUILTIN_SUBAGENTS if d.name == name), None)


def subagent_depth(session_id: str) -> int:
    """Lineage depth: number of delegation markers in the session id (root = 0)."""
    return session_id.count(DELEGATION_MARKER)


def child_session_id(parent_session_id: str, agent: str) -> str:
    return f"{parent_session_id}{DELEGATION_MARKER}{agent}-{secrets.token_hex(4)}"


def _child_callbacks(parent: AgentCallbacks, agent: str, session_id: str) -> AgentCallbacks:
    """Child tokens are attributed to the subagent run; tool activity passes through."""

    def on_token(token: str) -> None:
        parent.emit("on_subagent_token", agent, token, session_id)

    return AgentCallbacks(
        on_token=on_token,
        on_reasoning=parent.on_reasoning,
        on_tool_call_start=parent.on_tool_call_start,
        on_tool_call_complete=parent.on_tool_call_complete,
        on_status_change=parent.on_status_change,
        on_error=parent.on_error,
        on_subagent_start=parent.on_subagent_start,
        on_subagent_end=parent.on_subagent_end,
        on_subagent_token=parent.on_subagent_token,
    )


async def delegate(
    definition: SubagentDefinition, task: str, parent: AgentContext
) -> SubagentResult:
    """Run one child agent to completion and fold its outcome into a SubagentResult.

    Errors raised by the child run are captured in SubagentResult.error;
    cancellation propagates so the whole invocation unwinds.
    """
    from src.agent.loop import run_tool_loop

    max_subagent_depth = parent.config.agent.max_subagent_depth
    child_depth = subagent_depth(parent.session_id) + 1
    if child_depth >= max_subagent_depth:
        logger.warning(
            "subagent_depth_exceeded",
            session_id=parent.session_id,
            agent=definition.name,
            depth=child_depth,
            max_depth=max_subagent_depth,
        )
        return SubagentResult(
            agent=definition.name,
            content="Cannot spawn subagent: maximum agent depth "
            f"({max_subagent_depth}) reached.",
            error="max_depth_exceeded",
        )

    provider = parent.config.provider.model_copy(
        update={"temperature": definition.temperature}
    )
    agent_settings = parent.config.agent.model_copy(
        update={"max_depth": definition.max_depth}
    )
    session_id = child_session_id(parent.session_id, definition.name)
    child = AgentContext(
        session_id=session_id,
        project_dir=parent.project_dir,
        system_prompt=definition.system_prompt,
        messages=[Message(role="user", content=task)],
        tools=parent.tools.subset(definition.tool_names),
        config=dataclasses.replace(parent.config, provider=provider, agent=agent_settings),
        cancel_event=parent.cancel_event,
        callbacks=_child_callbacks(parent.callbacks, definition.name, session_id),
        environment_id=parent.environment_id,
        agent_id=definition.name,
        model_client_factory=parent.model_client_factory,
        verifier=parent.verifier,
    )

    parent.callbacks.emit("on_subagent_start", definition.name, task, session_id)
    logger.info(
        "subagent_started",
        parent_session_id=parent.session_id,
        session_id=child.session_id,
        agent=definition.name,
        tools=child.tools.names(),
    )
    try:
        result: AgentResult = await run_tool_loop(child)
    except AgentCancelledError:
        parent.callbacks.emit("on_subagent_end", definition.name, "cancelled", session_id)
        raise
    except Exception as e:
        logger.exception("subagent_failed", session_id=child.session_id, agent=definition.name)
        parent.callbacks.emit(
            "on_subagent_end",
            definition.name,
            json.dumps({"error": True, "message": str(e)}),
            session_id,
        )
        return SubagentResult(
            agent=definition.name, content=f"Subagent error: {e}", error=str(e)
        )

    parent.callbacks.emit("on_subagent_end", definition.name, result.content, session_id)
    logger.info(
        "subagent_completed",
        session_id=child.session_id,
        agent=definition.name,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
    )
    return SubagentResult(
        agent=definition.name,
        content=result.content,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
    )


async def run_task(arguments: dict, parent: AgentContext) -> str:
    """Execute the delegation tool's arguments and format the JSON result text."""
    description = str(arguments.get("description") or "")
    agent_name = arguments.get("agent") or DEFAULT_SUBAGENT
    extra = arguments.get("context")

    definition = get_subagent_definition(agent_name)
    if definition is None:
        available = ", ".join(d.name for d in BUILTIN_SUBAGENTS)
        return json.dumps(
            {"error": True, "message": f"Unknown subagent: {agent_name}. Available: {available}"}
        )

    task = f"{description}\n\nAdditional context:\n{extra}" if extra else description
    result = await delegate(definition, task, parent)
    if result.error:
        return json.dumps(
            {
                "error": True,
                "agent": agent_name,
                "message": result.error,
                "content": result.content,
            }
        )
    return json.dumps(
        {
            "agent": agent_name,
            "task": description,
            "result": result.content,
            "tokens": {"input": result.input_tokens, "output": result.output_tokens},
        }
    )
