"""Continuation strategy: how the next turn of a tool conversation is sent.

Two wire styles exist behind one loop:

- stateful: the endpoint keeps prior turns keyed by a response id; the client
  resends only the new tool-result messages plus previous_response_id.
- full replay: the client resends the whole history, the just-produced
  assistant turn (content + tool calls + reasoning), and the tool results.

Decision order:
1. An explicit provider type in configuration always wins.
2. Otherwise the base_url is matched against the known full-replay endpoints.
3. A separate denylist (ContinuationSettings.broken_continuation) forces full
   replay for endpoints that advertise continuation but silently drop it.
4. Stateful without a response id this turn falls back to full replay once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from src.agent.messages import Message, ToolCall

if TYPE_CHECKING:
    from src.config.settings import (
        ContinuationDenyRule,
        ContinuationSettings,
        ProviderSettings,
    )

logger = structlog.get_logger()


class WireProtocol(StrEnum):
    responses = "responses-api"
    chat_completions = "chat-completions"


class ContinuationMode(StrEnum):
    stateful = "stateful"
    full_replay = "full_replay"


def resolve_wire_protocol(
    provider: ProviderSettings, full_replay_url_markers: list[str] | None = None
) -> WireProtocol:
    """Explicit type wins; otherwise infer from base_url; default is the Responses API."""
    if provider.type == "chat-completions":
        return WireProtocol.chat_completions
    if provider.type == "responses-api":
        return WireProtocol.responses

    if full_replay_url_markers is None:
        from src.config.settings import ContinuationSettings

        full_replay_url_markers = ContinuationSettings().full_replay_url_markers

    url = (provider.base_url or "").lower()
    if any(marker.lower() in url for marker in full_replay_url_markers):
        return WireProtocol.chat_completions
    return WireProtocol.responses


def match_broken_continuation(
    provider: ProviderSettings, rules: list[ContinuationDenyRule]
) -> ContinuationDenyRule | None:
    """Return the first denylist rule matching the provider's model or base_url."""
    values = {
        "model": provider.model.lower(),
        "base_url": (provider.base_url or "").lower(),
    }
    for rule in rules:
        if rule.marker.lower() in values[rule.field]:
            return rule
    return None


class ContinuationPolicy:
    """Decides stateful vs full replay for one provider configuration."""

    def __init__(self, provider: ProviderSettings, settings: ContinuationSettings) -> None:
        self._protocol = resolve_wire_protocol(provider, settings.full_replay_url_markers)
        self._deny_rule = (
            match_broken_continuation(provider, settings.broken_continuation)
            if self._protocol == WireProtocol.responses
            else None
        )
        if self._deny_rule is not None:
            logger.info(
                "continuation_denylisted",
                model=provider.model,
                base_url=provider.base_url,
                field=self._deny_rule.field,
                marker=self._deny_rule.marker,
                reason=self._deny_rule.reason,
            )

    @property
    def protocol(self) -> WireProtocol:
        return self._protocol

    @property
    def stateful_supported(self) -> bool:
        return self._protocol == WireProtocol.responses and self._deny_rule is None

    def decide(self, response_id: str | None) -> ContinuationMode:
        if self.stateful_supported and response_id:
            return ContinuationMode.stateful
        return ContinuationMode.full_replay


@dataclass
class NextTurn:
    messages: list[Message]
    previous_response_id: str | None


def build_next_turn(
    mode: ContinuationMode,
    *,
    history: list[Message],
    content: str,
    reasoning: str,
    tool_calls: list[ToolCall],
    tool_results: list[Message],
    response_id: str | None,
    reasoning_id: str | None = None,
) -> NextTurn:
    """Build the message list and continuation id for the next model request."""
    if mode == ContinuationMode.stateful:
        return NextTurn(messages=list(tool_results), previous_response_id=response_id)

    assistant = Message(
        role="assistant",
        content=content,
        tool_calls=list(tool_calls),
        reasoning=reasoning or None,
        reasoning_id=reasoning_id,
    )
    return NextTurn(
        messages=[*history, assistant, *tool_results],
        previous_response_id=None,
    )
