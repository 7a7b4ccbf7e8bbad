from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from src.agent.events import StreamError, StreamEvent, TextDelta
from src.agent.messages import Message
from src.infra.errors import LLMError

if TYPE_CHECKING:
    from src.config.settings import ProviderSettings

logger = structlog.get_logger()

T = TypeVar("T")

_RETRYABLE = (APIConnectionError, APITimeoutError, RateLimitError)


@dataclass
class ProviderRequest:
    """Normalized request, independent of the wire protocol.

    tools: neutral schemas [{"name", "description", "parameters"}]; each adapter
    converts them to its own format.
    previous_response_id: continuation id from the prior turn (Responses API only).
    """

    system_prompt: str
    messages: list[Message]
    tools: list[dict] = field(default_factory=list)
    previous_response_id: str | None = None
    prompt_cache_key: str | None = None
    temperature: float | None = None


class ModelClient(ABC):
    """Abstract base class for LLM provider adapters.

    Every adapter turns a ProviderRequest into the same normalized StreamEvent
    sequence, so the loop never probes wire-specific fields.
    """

    supports_continuation: bool = False

    @abstractmethod
    def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        """Stream normalized events for one model turn."""
        ...

    async def complete(self, request: ProviderRequest) -> str:
        """Run a turn without tools and return the concatenated answer text."""
        chunks: list[str] = []
        async for event in self.stream(request):
            if isinstance(event, TextDelta):
                chunks.append(event.delta)
            elif isinstance(event, StreamError):
                raise LLMError(f"LLM stream error: {event.message}")
        return "".join(chunks)


class OpenAIModelClient(ModelClient):
    """Shared plumbing for adapters built on the OpenAI SDK.

    Includes exponential backoff retry for transient errors.
    """

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self._settings = settings
        self._client = AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            default_headers=settings.headers or None,
        )
        self._max_retries = max_retries
        self._base_delay = base_delay

    @property
    def model(self) -> str:
        return self._settings.model

    async def _retry_call(
        self,
        coro_factory: Callable[[], Coroutine[Any, Any, T]],
        *,
        context: str = "",
    ) -> T:
        """Execute an async call with exponential backoff retry.

        Retries on: APIConnectionError, APITimeoutError, RateLimitError.
        Non-retryable API errors are wrapped in LLMError.
        """
        for attempt in range(self._max_retries + 1):
            try:
                return await coro_factory()
            except _RETRYABLE as e:
                if attempt == self._max_retries:
                    raise LLMError(
                        f"LLM call failed after {self._max_retries + 1} attempts: {e}"
                    ) from e
                delay = self._base_delay * (2**attempt) + random.uniform(0, 0.5)
                logger.warning(
                    "llm_retry",
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    delay=round(delay, 2),
                    error=str(e),
                    context=context,
                )
                await asyncio.sleep(delay)
            except APIStatusError as e:
                raise LLMError(
                    f"LLM API error: {e.status_code} {e.message}"
                ) from e
        # Unreachable, but satisfies type checker
        raise LLMError("Retry loop exhausted")  # pragma: no cover

    def _sampling_kwargs(self, request: ProviderRequest) -> dict[str, Any]:
        temperature = (
            request.temperature
            if request.temperature is not None
            else self._settings.temperature
        )
        return {"temperature": temperature} if temperature is not None else {}


def create_model_client(
    settings: ProviderSettings,
    *,
    full_replay_url_markers: list[str] | None = None,
) -> ModelClient:
    """Pick the adapter for the configured endpoint's wire protocol."""
    from src.agent.chat_completions import ChatCompletionsClient
    from src.agent.continuation import WireProtocol, resolve_wire_protocol
    from src.agent.responses_api import ResponsesClient

    protocol = resolve_wire_protocol(settings, full_replay_url_markers)
    logger.info(
        "model_client_created",
        protocol=protocol.value,
        model=settings.model,
        base_url=settings.base_url,
    )
    if protocol == WireProtocol.responses:
        return ResponsesClient(settings)
    return ChatCompletionsClient(settings)
