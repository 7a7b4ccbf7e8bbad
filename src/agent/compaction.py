"""Context management: keep the request within the model's input budget.

The loop hands every request's history and system prompt to a ContextManager
before calling the provider. The sliding-window manager drops the oldest
messages once the budget is exceeded and, optionally, folds them into a
rolling summary carried forward as SummaryState.
"""

from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import structlog
import tiktoken

from src.agent.messages import Message, SummaryState
from src.agent.model_client import ProviderRequest

if TYPE_CHECKING:
    from src.agent.model_client import ModelClient
    from src.config.settings import ContextSettings

logger = structlog.get_logger()

# Per-message overhead in OpenAI chat format (~4 tokens per message header).
_MSG_OVERHEAD_TOKENS = 4
# Reply priming tokens added once per request.
_REPLY_PRIMING_TOKENS = 3

_SUMMARY_HEADER = "## Conversation summary (earlier turns)"

_SUMMARY_PROMPT = """\
You are a conversation compactor for a coding agent. Merge the previous summary
and the conversation excerpt below into one updated summary.

Keep:
- files read or changed, with the reason
- decisions made and constraints discovered
- unfinished work and open questions

Rules:
- Be concise. One sentence per item.
- Do NOT include greetings or acknowledgments.
- Stay within {max_output_tokens} tokens.
"""


class TokenCounter:
    """Token counter with tiktoken precision and chars/4 fallback.

    Binds to a specific model at construction time; models tiktoken does not
    know are counted in estimate mode.
    """

    def __init__(self, model: str) -> None:
        self._model = model
        self._encoding: tiktoken.Encoding | None = None
        self._mode: Literal["exact", "estimate"] = "estimate"

        try:
            self._encoding = tiktoken.encoding_for_model(model)
            self._mode = "exact"
        except KeyError:
            logger.warning("tokenizer_fallback", model=model, mode="estimate")

    @property
    def tokenizer_mode(self) -> Literal["exact", "estimate"]:
        return self._mode

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            return len(self._encoding.encode(text))
        return math.ceil(len(text) / 4)

    def count_messages(self, messages: list[Message]) -> int:
        """Count tokens for a message list, including per-message overhead."""
        total = 0
        for msg in messages:
            total += _MSG_OVERHEAD_TOKENS
            total += self.count_text(msg.role)
            total += self.count_text(msg.text)
            if msg.reasoning:
                total += self.count_text(msg.reasoning)
            if msg.tool_calls:
                total += self.count_text(
                    json.dumps([[tc.id, tc.name, tc.arguments] for tc in msg.tool_calls])
                )
            if msg.tool_call_id:
                total += self.count_text(msg.tool_call_id)
        total += _REPLY_PRIMING_TOKENS
        return total


@dataclass
class ContextResult:
    messages: list[Message]
    system_prompt: str
    new_summary: SummaryState | None = None


class ContextManager(ABC):
    """Shapes history and system prompt before each provider request."""

    @abstractmethod
    async def manage(
        self,
        messages: list[Message],
        system_prompt: str,
        existing_summary: SummaryState | None,
    ) -> ContextResult: ...


def with_summary(system_prompt: str, summary: SummaryState | None) -> str:
    if summary is None or not summary.text:
        return system_prompt
    return f"{system_prompt}\n\n{_SUMMARY_HEADER}\n{summary.text}"


def _render_transcript(messages: list[Message]) -> str:
    lines: list[str] = []
    for msg in messages:
        if msg.role == "tool":
            lines.append(f"[tool result {msg.tool_call_id}] {msg.text}")
            continue
        if msg.text:
            lines.append(f"[{msg.role}] {msg.text}")
        for tc in msg.tool_calls or []:
            lines.append(f"[{msg.role} called {tc.name}] {tc.arguments}")
    return "\n".join(lines)


class SlidingWindowContextManager(ContextManager):
    """Drop oldest messages over budget; summarize what was dropped when enabled.

    SummaryState.up_to_index is an index into the full host history: every
    message before it is represented by the summary text and is skipped.
    """

    def __init__(
        self,
        settings: ContextSettings,
        counter: TokenCounter,
        summarizer: ModelClient | None = None,
    ) -> None:
        self._settings = settings
        self._counter = counter
        self._summarizer = summarizer

    def _fits(self, messages: list[Message], system_prompt: str) -> bool:
        used = self._counter.count_text(system_prompt) + self._counter.count_messages(messages)
        return used <= self._settings.usable_input_budget

    def _cut_index(self, live: list[Message], system_prompt: str) -> int:
        """Smallest cut keeping the tail within budget and min_preserved_messages intact."""
        max_cut = max(0, len(live) - self._settings.min_preserved_messages)
        cut = 0
        while cut < max_cut and not self._fits(live[cut:], system_prompt):
            cut += 1
        # Never start the window on orphaned tool results.
        while cut < len(live) and live[cut].role == "tool":
            cut += 1
        return cut

    async def _summarize(
        self, summarizer: ModelClient, previous: SummaryState | None, dropped: list[Message]
    ) -> str:
        prompt = _SUMMARY_PROMPT.format(max_output_tokens=self._settings.summary_target_tokens)
        body = (
            f"Previous summary:\n{previous.text if previous else '(none)'}\n\n"
            f"Conversation excerpt:\n{_render_transcript(dropped)}"
        )
        return await summarizer.complete(
            ProviderRequest(
                system_prompt=prompt,
                messages=[Message(role="user", content=body)],
                temperature=self._settings.summary_temperature,
            )
        )

    async def manage(
        self,
        messages: list[Message],
        system_prompt: str,
        existing_summary: SummaryState | None,
    ) -> ContextResult:
        if not self._settings.enabled:
            return ContextResult(messages, system_prompt, existing_summary)

        start = min(existing_summary.up_to_index, len(messages)) if existing_summary else 0
        live = messages[start:]
        prompt = with_summary(system_prompt, existing_summary)
        if self._fits(live, prompt):
            return ContextResult(live, prompt, existing_summary)

        cut = self._cut_index(live, prompt)
        if cut == 0:
            logger.warning("context_over_budget_uncuttable", messages=len(live))
            return ContextResult(live, prompt, existing_summary)

        dropped, kept = live[:cut], live[cut:]
        if self._settings.summary_enabled and self._summarizer is not None:
            text = await self._summarize(self._summarizer, existing_summary, dropped)
            summary = SummaryState(
                text=text,
                up_to_index=start + cut,
                token_count=self._counter.count_text(text),
            )
        else:
            summary = SummaryState(
                text=existing_summary.text if existing_summary else "",
                up_to_index=start + cut,
                token_count=existing_summary.token_count if existing_summary else 0,
            )

        logger.info(
            "context_trimmed",
            dropped=len(dropped),
            kept=len(kept),
            up_to_index=summary.up_to_index,
            summary_tokens=summary.token_count,
            tokenizer_mode=self._counter.tokenizer_mode,
        )
        return ContextResult(kept, with_summary(system_prompt, summary), summary)
