"""Shared pytest fixtures for Stratus tests.

Provides a scripted ModelClient (one list of StreamEvents per provider call)
and factories for AgentContext built on plain in-memory tool registries.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest

from src.agent.context import AgentCallbacks, AgentConfig, AgentContext, AgentHooks
from src.agent.events import StreamEvent
from src.agent.messages import Message
from src.agent.model_client import ModelClient, ProviderRequest
from src.config.settings import AgentSettings, ContinuationSettings, ProviderSettings
from src.tools.base import BaseTool
from src.tools.context import ToolContext
from src.tools.registry import ToolRegistry


class ScriptedModelClient(ModelClient):
    """Yields one pre-configured event sequence per stream() call and records requests."""

    def __init__(self, *turns: list[StreamEvent]) -> None:
        self.turns = list(turns)
        self.requests: list[ProviderRequest] = []

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        self.requests.append(request)
        idx = len(self.requests) - 1
        if idx >= len(self.turns):
            raise AssertionError(f"unexpected provider call #{idx + 1}")
        for event in self.turns[idx]:
            yield event


class FakeTool(BaseTool):
    """Configurable tool: returns a fixed result, optionally after a delay or by raising."""

    def __init__(
        self,
        name: str,
        result: str | dict = "ok",
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        timeout_s: float | None = None,
        parameters: dict | None = None,
    ) -> None:
        self._name = name
        self._result = result
        self._delay = delay
        self._error = error
        self._timeout_s = timeout_s
        self._parameters = parameters or {"type": "object", "properties": {}}
        self.calls: list[dict] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"Fake {self._name} tool"

    @property
    def parameters(self) -> dict:
        return self._parameters

    @property
    def timeout_s(self) -> float | None:
        return self._timeout_s

    async def execute(self, arguments: dict, context: ToolContext) -> str | dict:
        self.calls.append(arguments)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result


@pytest.fixture()
def provider_settings() -> Callable[..., ProviderSettings]:
    def _make(**overrides) -> ProviderSettings:
        values = {"api_key": "test-key", "model": "gpt-5-mini", "type": "chat-completions"}
        values.update(overrides)
        return ProviderSettings(**values)

    return _make


@pytest.fixture()
def make_context(tmp_path: Path, provider_settings) -> Callable[..., AgentContext]:
    """Build an AgentContext around a ScriptedModelClient and a list of tools."""

    def _make(
        client: ModelClient | None = None,
        tools: list[BaseTool] | None = None,
        *,
        provider: ProviderSettings | None = None,
        agent: AgentSettings | None = None,
        hooks: AgentHooks | None = None,
        callbacks: AgentCallbacks | None = None,
        messages: list[Message] | None = None,
        **kwargs,
    ) -> AgentContext:
        config = AgentConfig(
            provider=provider or provider_settings(),
            agent=agent or AgentSettings(),
            continuation=ContinuationSettings(),
            hooks=hooks or AgentHooks(),
        )
        return AgentContext(
            session_id=kwargs.pop("session_id", "s1"),
            project_dir=tmp_path,
            system_prompt=kwargs.pop("system_prompt", "You are a test agent."),
            messages=messages if messages is not None else [Message(role="user", content="hi")],
            tools=ToolRegistry(tools or []),
            config=config,
            callbacks=callbacks or AgentCallbacks(),
            model_client=client,
            **kwargs,
        )

    return _make
