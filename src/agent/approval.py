"""Human-approval gate: suspend a tool call until an external answer arrives.

PendingApprovalStore keys one outstanding future per execution environment.
A waiting tool call suspends without timeout; the host wakes it exactly once
through resolve(). Entries are not reclaimed when a session goes away; hosts
that tear a session down mid-wait must call cancel() themselves.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import StrEnum

import structlog

from src.infra.errors import ApprovalPendingError

logger = structlog.get_logger()

PLAN_MODE_REMINDER = """\
<system-reminder>
You are in PLAN mode. You may read and search the project but must not modify
files or run commands that change state. Record the plan with todowrite, then
call plan_exit to ask the user to approve it.
</system-reminder>"""

BUILD_SWITCH_REMINDER = """\
<system-reminder>
The user approved the plan. You are now in BUILD mode with full tool access.
Work through the todo list in order and keep each item's status current.
</system-reminder>"""

_APPROVE_MARKERS = ("approve", "start building")


class PendingApprovalStore:
    """Correlation-key -> future registry, owned by the application object."""

    def __init__(self, on_pending: Callable[[str], object] | None = None) -> None:
        self._pending: dict[str, asyncio.Future[str]] = {}
        self._on_pending = on_pending

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def keys(self) -> list[str]:
        return list(self._pending)

    async def wait(self, key: str) -> str:
        """Suspend until resolve(key, ...) supplies the answer text.

        Raises ApprovalPendingError if key already has a live waiter.
        """
        existing = self._pending.get(key)
        if existing is not None and not existing.done():
            raise ApprovalPendingError(key)

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        logger.info("approval_pending", key=key)
        if self._on_pending is not None:
            try:
                self._on_pending(key)
            except Exception:
                logger.exception("approval_listener_failed", key=key)
        try:
            return await future
        finally:
            # Cancelled waiters leave no entry behind; resolved ones were popped.
            if self._pending.get(key) is future:
                del self._pending[key]

    def resolve(self, key: str, answer: str) -> bool:
        """Wake the waiter for key. False if nothing was pending (safe no-op)."""
        future = self._pending.pop(key, None)
        if future is None or future.done():
            logger.info("approval_resolve_miss", key=key)
            return False
        future.set_result(answer)
        logger.info("approval_resolved", key=key)
        return True

    def cancel(self, key: str) -> bool:
        """Cancel a live wait. Only for explicit host use."""
        future = self._pending.pop(key, None)
        if future is None or future.done():
            return False
        future.cancel()
        logger.info("approval_cancelled", key=key)
        return True


class PlanState(StrEnum):
    plan = "plan"
    exit_pending = "exit_pending"
    build = "build"


def is_approval(answer: str) -> bool:
    text = answer.lower()
    return any(marker in text for marker in _APPROVE_MARKERS)


class PlanModeMachine:
    """Per-session plan/build state with a one-shot build-switch reminder."""

    def __init__(self, state: PlanState = PlanState.build) -> None:
        self._state = state
        self._build_reminder_pending = False

    @property
    def state(self) -> PlanState:
        return self._state

    @property
    def in_plan(self) -> bool:
        return self._state != PlanState.build

    def enter_plan(self) -> None:
        self._state = PlanState.plan
        self._build_reminder_pending = False

    def begin_exit(self) -> None:
        if self._state != PlanState.plan:
            raise ValueError(f"Cannot request plan exit from state {self._state}")
        self._state = PlanState.exit_pending

    def complete_exit(self, answer: str) -> bool:
        """Apply the user's resolution text. Returns True when the plan was approved."""
        if self._state != PlanState.exit_pending:
            raise ValueError(f"No plan exit pending (state {self._state})")
        if is_approval(answer):
            self._state = PlanState.build
            self._build_reminder_pending = True
            logger.info("plan_approved")
            return True
        self._state = PlanState.plan
        logger.info("plan_rejected")
        return False

    def abort_exit(self) -> None:
        """Return to PLAN when the wait ends without an answer."""
        if self._state == PlanState.exit_pending:
            self._state = PlanState.plan

    def consume_build_reminder(self) -> str | None:
        if not self._build_reminder_pending:
            return None
        self._build_reminder_pending = False
        return BUILD_SWITCH_REMINDER
