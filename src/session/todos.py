"""In-memory todo lists, one per session. The plan lives here."""

from __future__ import annotations

import secrets
from dataclasses import asdict, dataclass
from typing import Literal

TodoStatus = Literal["pending", "in_progress", "completed"]
TodoPriority = Literal["low", "medium", "high"]


@dataclass
class TodoItem:
    id: str
    content: str
    status: TodoStatus = "pending"
    priority: TodoPriority = "medium"

    def to_dict(self) -> dict:
        return asdict(self)


class TodoStore:
    """Session id -> ordered todo list. Writes replace the whole list."""

    def __init__(self) -> None:
        self._todos: dict[str, list[TodoItem]] = {}

    def get(self, session_id: str) -> list[TodoItem]:
        return list(self._todos.get(session_id, []))

    def replace(self, session_id: str, items: list[dict]) -> list[TodoItem]:
        todos = [
            TodoItem(
                id=item.get("id") or secrets.token_hex(4),
                content=item["content"],
                status=item.get("status") or "pending",
                priority=item.get("priority") or "medium",
            )
            for item in items
        ]
        self._todos[session_id] = todos
        return list(todos)

    def counts(self, session_id: str) -> dict[str, int]:
        todos = self._todos.get(session_id, [])
        counts = {"total": len(todos), "pending": 0, "in_progress": 0, "completed": 0}
        for todo in todos:
            counts[todo.status] += 1
        return counts

    def clear(self, session_id: str) -> None:
        self._todos.pop(session_id, None)
