from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ToolContext:
    """Runtime context injected into tool execution by the dispatcher.

    environment_id: identity of the execution environment (sandbox or session);
    the approval gate keys pending questions by it.
    cancel_event: the invocation's shared cancellation signal. Tools may poll it;
    the engine never interrupts an executor already in flight.
    """

    session_id: str
    project_dir: Path
    environment_id: str
    cancel_event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
