from __future__ import annotations

import fnmatch
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from src.infra.errors import ToolError
from src.tools.base import BaseTool
from src.tools.builtins._paths import IGNORED_DIRS, display_path, resolve_in_project

if TYPE_CHECKING:
    from src.tools.context import ToolContext

_MAX_MATCHES = 100
_MAX_FILE_BYTES = 1_000_000


def _iter_files(base: Path, include: str | None):
    if base.is_file():
        yield base
        return
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
        for filename in sorted(filenames):
            if include and not fnmatch.fnmatch(filename, include):
                continue
            yield Path(dirpath) / filename


class GrepTool(BaseTool):
    """Regex search over project files."""

    @property
    def name(self) -> str:
        return "grep"

    @property
    def description(self) -> str:
        return (
            "Search file contents with a regular expression. Returns matching "
            "lines as path:line: text."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regular expression."},
                "path": {
                    "type": "string",
                    "description": "File or directory to search. Default: project root.",
                },
                "include": {
                    "type": "string",
                    "description": "Filename glob filter, e.g. '*.py'.",
                },
            },
            "required": ["pattern"],
        }

    async def execute(self, arguments: dict, context: ToolContext) -> str:
        try:
            regex = re.compile(arguments["pattern"])
        except re.error as e:
            raise ToolError(f"Invalid regex: {e}", code="INVALID_ARGS") from e
        base = resolve_in_project(arguments.get("path") or ".", context.project_dir)

        results: list[str] = []
        for path in _iter_files(base, arguments.get("include")):
            if context.cancelled or len(results) >= _MAX_MATCHES:
                break
            try:
                if path.stat().st_size > _MAX_FILE_BYTES:
                    continue
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            rel = display_path(path, context.project_dir)
            for n, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    results.append(f"{rel}:{n}: {line.strip()[:300]}")
                    if len(results) >= _MAX_MATCHES:
                        results.append(f"(stopped at {_MAX_MATCHES} matches)")
                        break
        return "\n".join(results) if results else "No matches found"
