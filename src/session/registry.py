from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from src.session.session import CodingSession

if TYPE_CHECKING:
    from src.agent.approval import PendingApprovalStore

logger = structlog.get_logger()

SessionFactory = Callable[[str], CodingSession]


class SessionRegistry:
    """Session id -> CodingSession, owned by the application object.

    Removing a session does not touch the approval store: a question still
    pending for it stays pending until the host resolves or cancels it.
    """

    def __init__(self, factory: SessionFactory, approvals: PendingApprovalStore) -> None:
        self._factory = factory
        self._approvals = approvals
        self._sessions: dict[str, CodingSession] = {}

    @property
    def approvals(self) -> PendingApprovalStore:
        return self._approvals

    def get(self, session_id: str) -> CodingSession | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> CodingSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._factory(session_id)
            self._sessions[session_id] = session
            logger.info("session_created", session_id=session_id)
        return session

    def remove(self, session_id: str) -> CodingSession | None:
        session = self._sessions.pop(session_id, None)
        if session is not None and session.environment_id in self._approvals:
            logger.warning("session_removed_with_pending_approval", session_id=session_id)
        return session

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
